"""Layout of the 128x64 status screen as a list of positioned text items."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional

from grindscale.controller import MenuEntry, ScaleController
from grindscale.settings import Status

SCREEN_WIDTH = 128
SCREEN_HEIGHT = 64
CHAR_WIDTH = 7
LEFT_MARGIN = 5
RIGHT_EDGE = 123
SLEEP_AFTER_MS = 60_000
ARROW = "\u2794"

Clock = Callable[[], float]


def _monotonic_ms() -> int:
    return time.monotonic_ns() // 1_000_000


def text_width(text: str) -> int:
    """Width in pixels of ``text`` in the fixed-width screen fonts."""
    return CHAR_WIDTH * len(text)


class Font(str, Enum):
    REGULAR = "7x13"
    BOLD = "7x14B"
    SYMBOLS = "unifont_symbols"


@dataclass(frozen=True)
class TextItem:
    """A string drawn at a pixel position; ``inverted`` marks the highlighted row."""

    text: str
    x: int
    y: int
    font: Font = Font.REGULAR
    inverted: bool = False

    @property
    def width(self) -> int:
        return text_width(self.text)


@dataclass
class Frame:
    """One screenful of text; an empty frame is a blank (sleeping) screen."""

    items: List[TextItem] = field(default_factory=list)

    def texts(self) -> List[str]:
        return [item.text for item in self.items]

    @property
    def highlighted(self) -> Optional[str]:
        return next((item.text for item in self.items if item.inverted), None)

    def _at(self, text: str, x: int, y: int, font: Font = Font.REGULAR) -> None:
        self.items.append(TextItem(text, x, y, font))

    def _center(self, text: str, y: int, font: Font = Font.REGULAR) -> None:
        self._at(text, SCREEN_WIDTH // 2 - text_width(text) // 2, y, font)

    def _left(self, text: str, y: int, font: Font = Font.REGULAR) -> None:
        self._at(text, LEFT_MARGIN, y, font)

    def _left_active(self, text: str, y: int, font: Font = Font.REGULAR) -> None:
        self.items.append(TextItem(text, LEFT_MARGIN, y, font, inverted=True))

    def _right(self, text: str, y: int, font: Font = Font.REGULAR) -> None:
        self._at(text, RIGHT_EDGE - text_width(text), y, font)

    def _choice(self, first: str, second: str, y: int, first_active: bool) -> None:
        if first_active:
            self._left_active(first, y)
            self._left(second, y + 16)
        else:
            self._left(first, y)
            self._left_active(second, y + 16)


class DisplayRenderer:
    """Builds the frame that matches the controller's current state."""

    def __init__(self, controller: ScaleController, clock: Optional[Clock] = None) -> None:
        self.controller = controller
        self._clock: Clock = clock if clock is not None else _monotonic_ms

    def render(self) -> Frame:
        frame = Frame()
        now = int(self._clock())
        c = self.controller
        if now - c.last_significant_weight_change_at > SLEEP_AFTER_MS:
            return frame
        if c.scale_last_updated_at == 0:
            frame._at("Initializing...", 0, 20)
        elif not c.scale_ready:
            frame._at("SCALE ERROR", 0, 20)
        elif c.status == Status.GRINDING_IN_PROGRESS:
            elapsed = (now - c.started_grinding_at) / 1000 if c.started_grinding_at > 0 else 0.0
            self._grind_progress(frame, "Grinding...", elapsed)
        elif c.status == Status.GRINDING_FINISHED:
            elapsed = (c.finished_grinding_at - c.started_grinding_at) / 1000
            self._grind_progress(frame, "Grinding finished", elapsed)
        elif c.status == Status.EMPTY:
            frame._center("Weight:", 0)
            frame._center(f"{abs(c.scale_weight):3.1f}g", 32, Font.BOLD)
            frame._left(f"Set: {c.set_weight:3.1f}g", 50)
        elif c.status == Status.GRINDING_FAILED:
            frame._center("Grinding failed", 0, Font.BOLD)
            frame._center("Press the balance", 32)
            frame._center("to reset", 42)
        elif c.status == Status.IN_MENU:
            self._menu(frame)
        elif c.status == Status.IN_SUBMENU:
            self._setting(frame)
        return frame

    def _grind_progress(self, frame: Frame, title: str, elapsed_s: float) -> None:
        c = self.controller
        frame._center(title, 0)
        frame._at(f"{c.scale_weight - c.cup_weight_empty:3.1f}g", 3, 32, Font.BOLD)
        frame._at(ARROW, 64, 32, Font.SYMBOLS)
        frame._at(f"{c.set_weight:3.1f}g", 84, 32, Font.BOLD)
        frame._center(f"{elapsed_s:3.1f}s", SCREEN_HEIGHT)

    def _menu(self, frame: Frame) -> None:
        items = self.controller.menu_items
        current = self.controller.current_menu_item
        count = len(items)
        frame._center("Menu", 0, Font.BOLD)
        frame._left(items[(current - 1) % count].name, 19)
        frame._left_active(items[current].name, 35)
        frame._left(items[(current + 1) % count].name, 51)

    def _setting(self, frame: Frame) -> None:
        c = self.controller
        setting = c.current_setting
        if setting == MenuEntry.OFFSET:
            frame._center("Adjust offset", 0, Font.BOLD)
            frame._center(f"{c.offset:3.2f}g", 28)
        elif setting == MenuEntry.CUP_WEIGHT:
            frame._center("Cup Weight", 0, Font.BOLD)
            frame._center(f"{c.scale_weight:3.1f}g", 19)
            frame._left("Place cup on scale", 35)
            frame._left("and press button", 51)
        elif setting == MenuEntry.CALIBRATE:
            frame._center("Calibration", 0, Font.BOLD)
            frame._center("Place 100g weight", 19)
            frame._center("on scale and", 35)
            frame._center("press button", 51)
        elif setting == MenuEntry.SCALE_MODE:
            frame._center("Set Scale Mode", 0, Font.BOLD)
            frame._choice("GBW", "Scale only", 19, first_active=not c.scale_mode)
        elif setting == MenuEntry.GRIND_MODE:
            frame._center("Set Grinder", 0, Font.BOLD)
            frame._center("Start/Stop Mode", 19, Font.BOLD)
            frame._choice("Continuous", "Impulse", 35, first_active=c.grind_mode)
        elif setting == MenuEntry.RESET:
            frame._center("Reset to defaults?", 0, Font.BOLD)
            frame._choice("Confirm", "Cancel", 19, first_active=c.reset_confirmed)