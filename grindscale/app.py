"""Simulated scale: replay a weight trace through the controller and show the result."""

from __future__ import annotations

import argparse
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Optional, Sequence

from grindscale.controller import LoadCell, ScaleController
from grindscale.display import DisplayRenderer
from grindscale.settings import LOADCELL_SCALE_FACTOR, Preferences, SettingsStore, Status

STEP_MS = 50
START_MS = 1000


class SimulatedLoadCell(LoadCell):
    """Load cell that returns a fixed sequence of readings in grams."""

    def __init__(self, weights: Iterable[float]) -> None:
        self._weights: List[float] = [float(w) for w in weights]
        self._position = 0
        self.zero = 0.0
        self.scale_factor = LOADCELL_SCALE_FACTOR
        self.tare_count = 0

    @property
    def remaining(self) -> int:
        return len(self._weights) - self._position

    def wait_ready(self, timeout_ms: int) -> bool:
        return self.remaining > 0

    def get_units(self, times: int = 1) -> float:
        if self.remaining <= 0:
            raise RuntimeError("no more readings")
        raw = self._weights[self._position]
        self._position += 1
        return raw - self.zero

    def tare(self, times: int) -> None:
        if self.remaining > 0:
            self.zero = self._weights[self._position]
        elif self._weights:
            self.zero = self._weights[-1]
        self.tare_count += 1

    def set_scale(self, factor: float) -> None:
        self.scale_factor = float(factor)


class _SimClock:
    def __init__(self, start: int = START_MS) -> None:
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


@dataclass
class SimulationResult:
    controller: ScaleController
    clock: _SimClock
    statuses: List[Status] = field(default_factory=list)


def run_simulation(
    weights: Sequence[float],
    store: Optional[SettingsStore] = None,
    steps: Optional[int] = None,
) -> SimulationResult:
    """Feed one reading and one status step per tick, ticks being 50 ms apart."""
    clock = _SimClock()
    controller = ScaleController(
        store if store is not None else SettingsStore(),
        SimulatedLoadCell(weights),
        clock=clock,
    )
    controller.setup()
    result = SimulationResult(controller, clock)
    for _ in range(len(weights) if steps is None else steps):
        controller.read_scale()
        result.statuses.append(controller.status_step())
        clock.advance(STEP_MS)
    return result


def _read_weights(path: Path) -> List[float]:
    return [float(line) for line in path.read_text(encoding="utf-8").split() if line]


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Replay a weight trace through the grind scale.")
    parser.add_argument("weights", nargs="*", type=float, help="readings in grams, 50 ms apart")
    parser.add_argument("--file", type=Path, help="file with one reading per line")
    parser.add_argument("--preferences", type=Path, help="JSON file holding the settings")
    parser.add_argument("--verbose", action="store_true", help="log controller events")
    args = parser.parse_args(argv)

    if args.verbose:
        logging.basicConfig(level=logging.INFO)
    weights = list(args.weights)
    if args.file is not None:
        weights.extend(_read_weights(args.file))

    store = SettingsStore(Preferences(args.preferences))
    result = run_simulation(weights, store)
    controller = result.controller

    previous = None
    for index, status in enumerate(result.statuses):
        if status != previous:
            print(f"{index * STEP_MS:>7} ms  {status.name}")
            previous = status
    print(f"status: {controller.status.name}")
    print(f"offset: {controller.offset:.2f}")
    for text in DisplayRenderer(controller, result.clock).render().texts():
        print(f"| {text}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())