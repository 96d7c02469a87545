"""Scale state machine: weighing, grind control and the rotary-encoder menu."""

from __future__ import annotations

import abc
import logging
import time
from dataclasses import dataclass
from enum import IntEnum
from typing import Callable, List, Optional, Tuple

from grindscale.mathbuffer import MathBuffer
from grindscale.settings import (
    COFFEE_DOSE_OFFSET,
    COFFEE_DOSE_WEIGHT,
    CUP_DETECTION_TOLERANCE,
    CUP_WEIGHT,
    GRINDING_FAILED_WEIGHT_TO_RESET,
    LOADCELL_SCALE_FACTOR,
    MAX_AUTO_OFFSET_CHANGE,
    MAX_GRINDING_TIME,
    MAX_OFFSET,
    MIN_AUTO_OFFSET_CHANGE,
    MIN_OFFSET,
    SIGNIFICANT_WEIGHT_CHANGE,
    TARE_MEASURES,
    TARE_MIN_INTERVAL,
    WEIGHT_CHECK_TIME,
    SettingsStore,
    Status,
)

logger = logging.getLogger(__name__)

HISTORY_SIZE = 100
BUTTON_DEBOUNCE_MS = 500
ENCODER_ACCELERATION = 150
READY_TIMEOUT_MS = 300
GRINDER_PULSE_MS = 100
CUP_MIN_WEIGHT_TO_SET = 15.0
RETURN_TO_EMPTY_WEIGHT = 5.0
AUTO_TARE_MIN_DRIFT = 0.2
AUTO_TARE_MAX_WEIGHT = 3.0
SCALE_MODE_START_WEIGHT = 0.1
AUTO_OFFSET_SETTLE_MS = 1500
AUTO_OFFSET_STABLE_MS = 1000

Clock = Callable[[], float]
EstimateFilter = Callable[[float], float]


def _monotonic_ms() -> int:
    return time.monotonic_ns() // 1_000_000


class LoadCell(abc.ABC):
    """Interface of the load-cell amplifier the controller reads from."""

    @abc.abstractmethod
    def wait_ready(self, timeout_ms: int) -> bool:
        """Wait up to ``timeout_ms`` for a reading; return whether one is available."""

    @abc.abstractmethod
    def get_units(self, times: int = 1) -> float:
        """Return the scaled reading averaged over ``times`` samples."""

    @abc.abstractmethod
    def tare(self, times: int) -> None:
        """Zero the cell using the average of ``times`` samples."""

    @abc.abstractmethod
    def set_scale(self, factor: float) -> None:
        """Set the raw-to-grams conversion factor."""


class GrinderOutput:
    """The grinder's start/stop line, remembering every level written to it."""

    def __init__(
        self,
        sleep: Optional[Callable[[float], None]] = None,
        pulse_ms: int = GRINDER_PULSE_MS,
    ) -> None:
        self.level = False
        self.history: List[bool] = []
        self.pulse_ms = pulse_ms
        self._sleep = sleep

    def write(self, level: bool) -> None:
        self.level = bool(level)
        self.history.append(self.level)

    def pulse(self) -> None:
        """Raise the line briefly, as a button press on the grinder would."""
        self.write(True)
        if self._sleep is not None:
            self._sleep(self.pulse_ms / 1000)
        self.write(False)


class MenuEntry(IntEnum):
    CUP_WEIGHT = 0
    CALIBRATE = 1
    OFFSET = 2
    SCALE_MODE = 3
    GRIND_MODE = 4
    EXIT = 5
    RESET = 6


@dataclass(frozen=True)
class MenuItem:
    id: int
    name: str
    increment: float = 0.0
    attribute: Optional[str] = None


MENU_ITEMS: Tuple[MenuItem, ...] = (
    MenuItem(1, "Cup weight", 1.0, "set_cup_weight"),
    MenuItem(2, "Calibrate"),
    MenuItem(3, "Offset", 0.1, "offset"),
    MenuItem(4, "Scale Mode"),
    MenuItem(5, "Grinding Mode"),
    MenuItem(6, "Exit"),
    MenuItem(7, "Reset"),
)


class ScaleController:
    """Holds the scale state and advances it on readings, ticks and input events."""

    def __init__(
        self,
        store: SettingsStore,
        load_cell: LoadCell,
        grinder: Optional[GrinderOutput] = None,
        clock: Optional[Clock] = None,
        estimate_filter: Optional[EstimateFilter] = None,
    ) -> None:
        self.store = store
        self.load_cell = load_cell
        self.grinder = grinder if grinder is not None else GrinderOutput()
        self._clock: Clock = clock if clock is not None else _monotonic_ms
        self._filter = estimate_filter
        self.weight_history = MathBuffer(HISTORY_SIZE, self._clock)
        self.menu_items: Tuple[MenuItem, ...] = MENU_ITEMS

        self.scale_weight = 0.0
        self.set_weight = 0.0
        self.set_cup_weight = 0.0
        self.offset = 0.0
        self.scale_mode = False
        self.grind_mode = False
        self.grinder_active = False

        self.scale_last_updated_at = 0
        self.last_significant_weight_change_at = 0
        self.last_tare_at = 0
        self.scale_ready = False
        self.status = Status.EMPTY
        self.cup_weight_empty = 0.0
        self.started_grinding_at = 0
        self.finished_grinding_at = 0

        self.encoder_dir = 1
        self.encoder_value = 0
        self.encoder_acceleration = ENCODER_ACCELERATION
        self.reset_confirmed = False
        self.current_menu_item = 0
        self.current_setting: Optional[MenuEntry] = None

        self.new_offset = False
        self.last_weight_stable_at = 0
        self.last_stable_weight = 0.0

        # Clicks within the first half second after start-up are ignored.
        self._ignore_clicks_until = BUTTON_DEBOUNCE_MS

    def _now(self) -> int:
        return int(self._clock())

    def setup(self) -> None:
        """Load stored parameters and put the outputs in their idle state."""
        self.encoder_acceleration = ENCODER_ACCELERATION
        self.grinder.write(False)

        calibration = self.store.load_calibration()
        self.set_weight = self.store.load_set_weight()
        self.offset = self.store.load_offset()
        self.set_cup_weight = self.store.load_cup_weight()
        self.scale_mode = self.store.load_scale_mode()
        self.grind_mode = self.store.load_grind_mode()
        logger.info(
            "Loaded parameters: calibration=%s set_weight=%s offset=%s "
            "cup_weight=%s scale_mode=%s grind_mode=%s",
            calibration,
            self.set_weight,
            self.offset,
            self.set_cup_weight,
            self.scale_mode,
            self.grind_mode,
        )
        self.load_cell.set_scale(calibration)

    def tare(self) -> None:
        logger.info("Taring scale")
        self.load_cell.tare(TARE_MEASURES)
        self.last_tare_at = self._now()

    def read_scale(self) -> bool:
        """Take one reading, taring first if requested; return whether the cell answered."""
        if self.last_tare_at == 0:
            logger.info("Retaring scale, current offset %s", self.offset)
            self.tare()
        if not self.load_cell.wait_ready(READY_TIMEOUT_MS):
            logger.warning("Load cell not found.")
            self.scale_ready = False
            return False
        reading = self.load_cell.get_units(1)
        if self._filter is not None:
            reading = self._filter(reading)
        self.scale_weight = reading
        self.scale_last_updated_at = self._now()
        self.weight_history.push(reading)
        self.scale_ready = True
        return True

    def status_step(self) -> Status:
        """Advance the grind state machine once and return the new status."""
        now = self._now()
        ten_sec_avg = self.weight_history.average_since(now - 10_000)
        if abs(ten_sec_avg - self.scale_weight) > SIGNIFICANT_WEIGHT_CHANGE:
            self.last_significant_weight_change_at = now

        if self.status == Status.EMPTY:
            self._step_empty(now, ten_sec_avg)
        elif self.status == Status.GRINDING_IN_PROGRESS:
            self._step_grinding(now)
        elif self.status == Status.GRINDING_FINISHED:
            self._step_finished(now)
        elif self.status == Status.GRINDING_FAILED:
            if self.scale_weight >= GRINDING_FAILED_WEIGHT_TO_RESET:
                logger.info("Going back to empty")
                self.status = Status.EMPTY
        return self.status

    def _step_empty(self, now: int, ten_sec_avg: float) -> None:
        if (
            now - self.last_tare_at > TARE_MIN_INTERVAL
            and abs(ten_sec_avg) > AUTO_TARE_MIN_DRIFT
            and ten_sec_avg < AUTO_TARE_MAX_WEIGHT
            and self.scale_weight < AUTO_TARE_MAX_WEIGHT
        ):
            self.last_tare_at = 0

        history = self.weight_history
        low = history.min_since(now - 1000)
        high = history.max_since(now - 1000)
        if (
            abs(low - self.set_cup_weight) < CUP_DETECTION_TOLERANCE
            and abs(high - self.set_cup_weight) < CUP_DETECTION_TOLERANCE
        ):
            logger.info("Starting grinding")
            self.cup_weight_empty = history.average_since(now - 500)
            self.status = Status.GRINDING_IN_PROGRESS
            if not self.scale_mode:
                self.new_offset = True
                self.started_grinding_at = now
            self.grinder_toggle()

    def _fail(self, reason: str) -> None:
        logger.warning("Grinding failed: %s", reason)
        self.grinder_toggle()
        self.status = Status.GRINDING_FAILED

    def _step_grinding(self, now: int) -> None:
        history = self.weight_history
        if not self.scale_ready:
            self._fail("scale not ready")

        if (
            self.scale_mode
            and self.started_grinding_at == 0
            and self.scale_weight - self.cup_weight_empty >= SCALE_MODE_START_WEIGHT
        ):
            logger.info("Started grinding at %s", now)
            self.started_grinding_at = now
            return

        if not self.scale_mode and now - self.started_grinding_at > MAX_GRINDING_TIME:
            self._fail("grinding took too long")
            return

        if (
            not self.scale_mode
            and now - self.started_grinding_at > WEIGHT_CHECK_TIME
            and self.scale_weight - history.first_value_older_than(now - WEIGHT_CHECK_TIME) < 1
        ):
            self._fail("no change in weight was detected")
            return

        if (
            not self.scale_mode
            and history.min_since(now - 200) < self.cup_weight_empty - CUP_DETECTION_TOLERANCE
        ):
            self._fail("weight too low")
            return

        current_offset = 0.0 if self.scale_mode else self.offset
        if history.max_since(now - 200) >= self.cup_weight_empty + self.set_weight + current_offset:
            logger.info("Finished grinding")
            self.finished_grinding_at = now
            self.grinder_toggle()
            self.status = Status.GRINDING_FINISHED

    def _step_finished(self, now: int) -> None:
        current = self.weight_history.average_since(now - 500)
        if self.scale_weight < RETURN_TO_EMPTY_WEIGHT:
            logger.info("Going back to empty")
            self.started_grinding_at = 0
            self.status = Status.EMPTY
            self.store.save_structure(
                self.offset,
                self.set_cup_weight,
                self.set_weight,
                self.scale_mode,
                self.grind_mode,
            )
            return

        if (
            current != self.set_weight + self.cup_weight_empty
            and now - self.finished_grinding_at > AUTO_OFFSET_SETTLE_MS
            and self.new_offset
        ):
            if abs(current - self.last_stable_weight) < MIN_AUTO_OFFSET_CHANGE:
                if self.last_weight_stable_at == 0:
                    self.last_weight_stable_at = now
                    self.last_stable_weight = current
                elif now - self.last_weight_stable_at > AUTO_OFFSET_STABLE_MS:
                    self._auto_adjust_offset(current)
                    self.new_offset = False
                    self.last_weight_stable_at = 0
            else:
                self.last_weight_stable_at = 0
                self.last_stable_weight = current

    def _auto_adjust_offset(self, current: float) -> None:
        error = self.set_weight + self.cup_weight_empty - current
        if not MIN_AUTO_OFFSET_CHANGE <= abs(error) <= MAX_AUTO_OFFSET_CHANGE:
            logger.info("Weight error too large for auto-adjustment: %s", error)
            return
        proposed = self.offset + error
        if MIN_OFFSET <= proposed <= MAX_OFFSET:
            self.offset = proposed
            self.store.save_offset(self.offset)
            logger.info("Auto-adjusted offset by %sg, new offset: %s", error, self.offset)
        else:
            logger.info("Proposed offset out of bounds, skipping auto-adjustment")

    def grinder_toggle(self) -> None:
        """Start or stop the grinder; does nothing in scale-only mode."""
        if self.scale_mode:
            return
        if self.grind_mode:
            self.grinder_active = not self.grinder_active
            self.grinder.write(self.grinder_active)
        else:
            self.grinder.pulse()

    def on_encoder(self, new_value: int) -> None:
        """Handle a change of the rotary encoder's position."""
        if self.status == Status.EMPTY:
            self.set_weight += (new_value - self.encoder_value) / 10 * self.encoder_dir
            self.encoder_value = new_value
            self.store.save_set_weight(self.set_weight)
        elif self.status == Status.IN_MENU:
            diff = new_value - self.encoder_value
            count = len(self.menu_items)
            if diff > 0:
                self.current_menu_item = (self.current_menu_item + self.encoder_dir) % count
            elif diff < 0:
                self.current_menu_item = (self.current_menu_item - self.encoder_dir) % count
            self.encoder_value = new_value
        elif self.status == Status.IN_SUBMENU:
            if self.current_setting == MenuEntry.OFFSET:
                self.offset += (new_value - self.encoder_value) * self.encoder_dir / 100
                self.encoder_value = new_value
                if abs(self.offset) >= self.set_weight:
                    self.offset = self.set_weight
            elif self.current_setting == MenuEntry.SCALE_MODE:
                self.scale_mode = not self.scale_mode
            elif self.current_setting == MenuEntry.GRIND_MODE:
                self.grind_mode = not self.grind_mode
            elif self.current_setting == MenuEntry.RESET:
                self.reset_confirmed = not self.reset_confirmed

    def on_button_click(self) -> None:
        """Handle a press of the encoder's button."""
        if self._now() < self._ignore_clicks_until:
            return
        if self.status == Status.EMPTY:
            self.status = Status.IN_MENU
            self.current_menu_item = 0
            self.encoder_acceleration = 0
        elif self.status == Status.IN_MENU:
            self._open_menu_item()
        elif self.status == Status.IN_SUBMENU:
            self._confirm_setting()

    def _open_menu_item(self) -> None:
        entry = MenuEntry(self.current_menu_item)
        if entry == MenuEntry.EXIT:
            self.status = Status.EMPTY
            self.encoder_acceleration = ENCODER_ACCELERATION
            logger.debug("Exited menu")
            return
        self.status = Status.IN_SUBMENU
        self.current_setting = entry
        if entry == MenuEntry.RESET:
            self.reset_confirmed = False
        logger.debug("Opened %s menu", self.menu_items[entry].name)

    def _back_to_menu(self) -> None:
        self.status = Status.IN_MENU
        self.current_setting = None

    def _confirm_setting(self) -> None:
        setting = self.current_setting
        if setting == MenuEntry.OFFSET:
            self.store.save_offset(self.offset)
            self._back_to_menu()
        elif setting == MenuEntry.CUP_WEIGHT:
            if self.scale_weight > CUP_MIN_WEIGHT_TO_SET:
                self.set_cup_weight = self.scale_weight
                self.store.save_cup_weight(self.set_cup_weight)
                self._back_to_menu()
        elif setting == MenuEntry.CALIBRATE:
            calibration = self.store.load_calibration() * (self.scale_weight / 100)
            self.store.save_calibration(calibration)
            self.load_cell.set_scale(calibration)
            self._back_to_menu()
        elif setting == MenuEntry.SCALE_MODE:
            self.store.save_scale_mode(self.scale_mode)
            self._back_to_menu()
        elif setting == MenuEntry.GRIND_MODE:
            self.store.save_grind_mode(self.grind_mode)
            self._back_to_menu()
        elif setting == MenuEntry.RESET:
            if self.reset_confirmed:
                self.store.reset_to_defaults()
                self.set_weight = COFFEE_DOSE_WEIGHT
                self.offset = COFFEE_DOSE_OFFSET
                self.set_cup_weight = CUP_WEIGHT
                self.scale_mode = False
                self.grind_mode = False
                self.load_cell.set_scale(LOADCELL_SCALE_FACTOR)
            self._back_to_menu()