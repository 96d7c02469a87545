from dataclasses import dataclass

import pytest

from grindscale.controller import (
    ENCODER_ACCELERATION,
    MENU_ITEMS,
    GrinderOutput,
    LoadCell,
    MenuEntry,
    ScaleController,
)
from grindscale.settings import (
    COFFEE_DOSE_OFFSET,
    COFFEE_DOSE_WEIGHT,
    CUP_WEIGHT,
    LOADCELL_SCALE_FACTOR,
    MAX_GRINDING_TIME,
    TARE_MEASURES,
    SettingsStore,
    Status,
)


class FakeClock:
    def __init__(self, start=1000):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, ms):
        self.now += ms


class FakeLoadCell(LoadCell):
    def __init__(self):
        self.weight = 0.0
        self.ready = True
        self.scale = None
        self.tare_calls = []

    def wait_ready(self, timeout_ms):
        return self.ready

    def get_units(self, times=1):
        return self.weight

    def tare(self, times):
        self.tare_calls.append(times)

    def set_scale(self, factor):
        self.scale = factor


@dataclass
class Rig:
    controller: ScaleController
    clock: FakeClock
    cell: FakeLoadCell
    grinder: GrinderOutput
    store: SettingsStore

    def feed(self, weight, steps=1, step_ms=50):
        self.cell.weight = weight
        for _ in range(steps):
            self.clock.advance(step_ms)
            self.controller.read_scale()
            self.controller.status_step()

    def pulses(self):
        return self.grinder.history.count(True)


def make_rig(store=None, estimate_filter=None):
    store = store if store is not None else SettingsStore()
    clock = FakeClock()
    cell = FakeLoadCell()
    grinder = GrinderOutput()
    controller = ScaleController(store, cell, grinder, clock, estimate_filter)
    controller.setup()
    return Rig(controller, clock, cell, grinder, store)


@pytest.fixture
def rig():
    return make_rig()


def open_setting(rig, entry):
    rig.controller.on_button_click()
    rig.controller.current_menu_item = entry
    rig.controller.on_button_click()


def test_setup_loads_defaults(rig):
    c = rig.controller
    assert c.set_weight == COFFEE_DOSE_WEIGHT
    assert c.offset == COFFEE_DOSE_OFFSET
    assert c.set_cup_weight == CUP_WEIGHT
    assert rig.cell.scale == LOADCELL_SCALE_FACTOR
    assert rig.grinder.level is False
    assert c.status == Status.EMPTY


def test_setup_uses_stored_values():
    store = SettingsStore()
    store.save_set_weight(20.0)
    store.save_scale_mode(True)
    rig = make_rig(store)
    assert rig.controller.set_weight == 20.0
    assert rig.controller.scale_mode is True


def test_menu_navigation_visits_seven_entries_in_order(rig):
    c = rig.controller
    c.on_button_click()
    visited = [MENU_ITEMS[c.current_menu_item].name]
    for value in range(1, 8):
        c.on_encoder(value)
        visited.append(MENU_ITEMS[c.current_menu_item].name)
    assert visited == [
        "Cup weight",
        "Calibrate",
        "Offset",
        "Scale Mode",
        "Grinding Mode",
        "Exit",
        "Reset",
        "Cup weight",
    ]


def test_first_read_tares(rig):
    rig.feed(12.5)
    c = rig.controller
    assert rig.cell.tare_calls == [TARE_MEASURES]
    assert c.last_tare_at == rig.clock.now
    assert c.scale_weight == 12.5
    assert c.scale_ready is True
    assert c.scale_last_updated_at == rig.clock.now


def test_read_without_ready_cell(rig):
    rig.cell.ready = False
    assert rig.controller.read_scale() is False
    assert rig.controller.scale_ready is False


def test_estimate_filter_is_applied():
    rig = make_rig(estimate_filter=lambda reading: reading / 2)
    rig.feed(40.0)
    assert rig.controller.scale_weight == 20.0


def test_small_drift_triggers_retare(rig):
    rig.feed(1.0, steps=220)
    assert len(rig.cell.tare_calls) >= 2


def test_significant_change_is_recorded(rig):
    rig.feed(0.0, steps=20)
    rig.feed(50.0)
    assert rig.controller.last_significant_weight_change_at == rig.clock.now


def test_encoder_adjusts_set_weight(rig):
    rig.controller.on_encoder(10)
    assert rig.controller.set_weight == pytest.approx(COFFEE_DOSE_WEIGHT + 1)
    assert rig.store.load_set_weight() == pytest.approx(COFFEE_DOSE_WEIGHT + 1)
    rig.controller.on_encoder(0)
    assert rig.controller.set_weight == pytest.approx(COFFEE_DOSE_WEIGHT)


def test_button_ignored_right_after_start(rig):
    rig.clock.now = 100
    rig.controller.on_button_click()
    assert rig.controller.status == Status.EMPTY


def test_menu_navigation_wraps_and_moves_one_step(rig):
    c = rig.controller
    c.on_button_click()
    assert c.status == Status.IN_MENU
    assert c.encoder_acceleration == 0
    c.on_encoder(-1)
    assert c.current_menu_item == len(MENU_ITEMS) - 1
    c.on_encoder(0)
    assert c.current_menu_item == 0
    c.on_encoder(1)
    assert c.current_menu_item == 1
    c.on_encoder(11)
    assert c.current_menu_item == 2


def test_exit_menu(rig):
    c = rig.controller
    c.on_button_click()
    c.on_encoder(-1)
    c.on_encoder(-2)
    assert c.current_menu_item == MenuEntry.EXIT
    c.on_button_click()
    assert c.status == Status.EMPTY
    assert c.encoder_acceleration == ENCODER_ACCELERATION


@pytest.mark.parametrize(
    "entry",
    [
        MenuEntry.CUP_WEIGHT,
        MenuEntry.CALIBRATE,
        MenuEntry.OFFSET,
        MenuEntry.SCALE_MODE,
        MenuEntry.GRIND_MODE,
        MenuEntry.RESET,
    ],
)
def test_entering_submenu(rig, entry):
    open_setting(rig, entry)
    assert rig.controller.status == Status.IN_SUBMENU
    assert rig.controller.current_setting == entry


def test_offset_submenu_saves(rig):
    open_setting(rig, MenuEntry.OFFSET)
    rig.controller.on_encoder(50)
    assert rig.controller.offset == pytest.approx(COFFEE_DOSE_OFFSET + 0.5)
    rig.controller.on_button_click()
    assert rig.controller.status == Status.IN_MENU
    assert rig.controller.current_setting is None
    assert rig.store.load_offset() == pytest.approx(COFFEE_DOSE_OFFSET + 0.5)


def test_offset_clamped_to_set_weight(rig):
    open_setting(rig, MenuEntry.OFFSET)
    rig.controller.on_encoder(5000)
    assert rig.controller.offset == rig.controller.set_weight


def test_cup_weight_needs_a_cup(rig):
    open_setting(rig, MenuEntry.CUP_WEIGHT)
    rig.feed(10.0)
    rig.controller.on_button_click()
    assert rig.controller.status == Status.IN_SUBMENU
    rig.feed(95.0)
    rig.controller.on_button_click()
    assert rig.controller.status == Status.IN_MENU
    assert rig.controller.set_cup_weight == 95.0
    assert rig.store.load_cup_weight() == 95.0


def test_calibration_scales_factor(rig):
    open_setting(rig, MenuEntry.CALIBRATE)
    rig.feed(50.0)
    rig.controller.on_button_click()
    assert rig.store.load_calibration() == pytest.approx(LOADCELL_SCALE_FACTOR / 2)
    assert rig.cell.scale == pytest.approx(rig.store.load_calibration())
    assert rig.controller.status == Status.IN_MENU


def test_scale_mode_toggle_saved(rig):
    open_setting(rig, MenuEntry.SCALE_MODE)
    rig.controller.on_encoder(1)
    assert rig.controller.scale_mode is True
    rig.controller.on_button_click()
    assert rig.store.load_scale_mode() is True


def test_grind_mode_toggle_saved(rig):
    open_setting(rig, MenuEntry.GRIND_MODE)
    rig.controller.on_encoder(1)
    rig.controller.on_button_click()
    assert rig.controller.grind_mode is True
    assert rig.store.load_grind_mode() is True


def test_reset_confirmed_restores_defaults(rig):
    c = rig.controller
    c.on_encoder(30)
    c.offset = 1.0
    rig.cell.scale = 1.0
    open_setting(rig, MenuEntry.RESET)
    assert c.reset_confirmed is False
    c.on_encoder(31)
    assert c.reset_confirmed is True
    c.on_button_click()
    assert c.set_weight == COFFEE_DOSE_WEIGHT
    assert c.offset == COFFEE_DOSE_OFFSET
    assert rig.store.load_set_weight() == COFFEE_DOSE_WEIGHT
    assert rig.cell.scale == LOADCELL_SCALE_FACTOR
    assert c.status == Status.IN_MENU


def test_reset_cancelled_keeps_values(rig):
    c = rig.controller
    c.offset = 1.0
    open_setting(rig, MenuEntry.RESET)
    c.on_button_click()
    assert c.offset == 1.0
    assert c.status == Status.IN_MENU


def test_cup_detected_starts_grinding(rig):
    rig.feed(70.0)
    c = rig.controller
    assert c.status == Status.GRINDING_IN_PROGRESS
    assert c.started_grinding_at == rig.clock.now
    assert c.cup_weight_empty == pytest.approx(70.0)
    assert rig.pulses() == 1
    assert rig.grinder.level is False


def test_grinding_finishes_at_target(rig):
    rig.feed(70.0)
    rig.feed(86.0)
    assert rig.controller.status == Status.GRINDING_FINISHED
    assert rig.controller.finished_grinding_at == rig.clock.now
    assert rig.pulses() == 2


def test_grinding_fails_without_weight_gain(rig):
    rig.feed(70.0)
    rig.feed(72.0, steps=70)
    assert rig.controller.status == Status.GRINDING_FAILED
    assert rig.pulses() == 2


def test_grinding_fails_on_timeout(rig):
    rig.feed(70.0)
    rig.clock.advance(MAX_GRINDING_TIME)
    rig.feed(75.0)
    assert rig.controller.status == Status.GRINDING_FAILED


def test_grinding_fails_when_cup_removed(rig):
    rig.feed(70.0)
    rig.feed(20.0)
    assert rig.controller.status == Status.GRINDING_FAILED


def test_grinding_fails_when_cell_stops(rig):
    rig.feed(70.0)
    rig.cell.ready = False
    rig.clock.advance(50)
    rig.controller.read_scale()
    assert rig.controller.status_step() == Status.GRINDING_FAILED


def test_failed_resets_on_heavy_press(rig):
    rig.feed(70.0)
    rig.feed(20.0)
    rig.feed(150.0)
    assert rig.controller.status == Status.EMPTY


def test_finished_returns_to_empty_and_saves(rig):
    rig.feed(70.0)
    rig.feed(86.0)
    rig.feed(2.0)
    assert rig.controller.status == Status.EMPTY
    assert rig.controller.started_grinding_at == 0
    assert rig.store.validate_stored() is True


def test_auto_offset_adjustment(rig):
    rig.feed(70.0)
    rig.feed(86.0)
    rig.feed(86.0, steps=60)
    c = rig.controller
    assert c.status == Status.GRINDING_FINISHED
    assert c.new_offset is False
    assert c.offset > COFFEE_DOSE_OFFSET
    assert rig.store.load_offset() == pytest.approx(c.offset)


def test_continuous_grind_mode(rig):
    rig.controller.grind_mode = True
    rig.feed(70.0)
    assert rig.grinder.level is True
    assert rig.controller.grinder_active is True
    rig.feed(86.0)
    assert rig.grinder.level is False


def test_scale_mode_times_without_grinder(rig):
    c = rig.controller
    c.scale_mode = True
    rig.feed(70.0)
    assert c.status == Status.GRINDING_IN_PROGRESS
    assert c.started_grinding_at == 0
    rig.feed(71.0)
    assert c.started_grinding_at == rig.clock.now
    rig.feed(88.5)
    assert c.status == Status.GRINDING_FINISHED
    assert rig.pulses() == 0


def test_grinder_toggle_modes(rig):
    c = rig.controller
    c.grind_mode = True
    c.grinder_toggle()
    c.grinder_toggle()
    assert rig.grinder.history[-2:] == [True, False]
    c.scale_mode = True
    before = list(rig.grinder.history)
    c.grinder_toggle()
    assert rig.grinder.history == before


def test_grinder_pulse_records_edges():
    grinder = GrinderOutput()
    grinder.pulse()
    assert grinder.history == [True, False]
    assert grinder.level is False