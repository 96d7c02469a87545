"""Grind-by-weight coffee scale: weight history, settings storage, control state machine, screen layout and a simulator."""

__version__ = "0.1.0"
__all__ = ["mathbuffer", "settings", "controller", "display", "app"]