# grindscale

This package holds the control logic for a grind-by-weight coffee scale. The
scale has a load cell, a grinder start/stop line, and a rotary encoder with a
push button. The logic is written against an abstract load cell, so you can
drive it with real readings or replay a recorded weight trace through
`SimulatedLoadCell`.

## Modules

### `grindscale.mathbuffer`

`MathBuffer(capacity=100, clock=None)` is a fixed-capacity ring buffer of
samples. Each sample is stamped with the clock in milliseconds.

Queries walk from the newest sample back to the oldest. They stop at the first
sample stamped before the cutoff:

- `samples_since(cutoff_ms)` yields `(value, timestamp)` pairs.
- `count_since` counts those samples.
- `average_since` returns their mean.
- `max_since` and `min_since` return their largest and smallest value.
- `first_value_older_than(cutoff_ms)` returns the newest sample stamped before
  the cutoff.

`push(value)` returns `True` once the buffer is full. Every statistic returns 0
when no sample qualifies.

### `grindscale.settings`

- `Status` lists the scale states: `EMPTY`, `GRINDING_IN_PROGRESS`,
  `GRINDING_FINISHED`, `GRINDING_FAILED`, `IN_MENU` and `IN_SUBMENU`. The
  module also defines the weight limits, timing limits and default values.
- `Preferences(path=None)` is a key/value store:
  - `get` and `put` handle numbers and booleans.
  - `get_bytes` and `put_bytes` handle binary records.
  - With a path, the store is kept in a JSON file and rewritten on every change.
  - Without a path, it lives only in memory.
- `SettingsStore(preferences=None)` saves and loads the offset, cup weight,
  target weight, calibration factor, scale mode and grind mode.
  - Values are stored as fixed-point integers.
  - The offset, cup weight and target weight are checked against their ranges.
    A value out of range is replaced by its default, on save and on load.
  - `reset_to_defaults()` writes every default.
  - `save_structure(...)` writes a single checksummed `ScaleSettings` record.
  - `validate_stored()` reports whether that record is present and intact.
- `ScaleSettings` packs into 16 bytes with `to_bytes()`. `from_bytes()` raises
  `ValueError` when the size or checksum is wrong. `calculate_checksum()`
  computes a 16-bit additive checksum.

### `grindscale.controller`

- `LoadCell` is the abstract interface to the load-cell amplifier. Its methods
  are `wait_ready`, `get_units`, `tare` and `set_scale`.
- `GrinderOutput` models the grinder line:
  - It records every level written to it in `history`.
  - `pulse()` gives a short start/stop impulse.
- `ScaleController(store, load_cell, grinder=None, clock=None,
  estimate_filter=None)` is the state machine:
  - `setup()` loads the stored parameters.
  - `read_scale()` takes one reading. It tares first when a tare is due.
  - `status_step()` advances the state machine once and returns the status.
  - `grinder_toggle()` starts or stops the grinder. In continuous mode it
    toggles the line; otherwise it sends a pulse. It does nothing in
    scale-only mode.
  - `on_encoder(new_value)` and `on_button_click()` handle the encoder. With an
    empty scale, turning the encoder adjusts the target weight. The button opens
    a menu with these entries: cup weight, calibration, offset, scale mode,
    grinding mode, exit and reset.

`status_step()` does the following:

- Detects the cup and starts grinding.
- Stops the grinder at the target weight plus the offset.
- Fails a grind in three cases:
  - it runs too long;
  - the weight stops rising;
  - the weight drops below the cup.
- After a finished grind, corrects the offset once the weight has settled.
- Returns to the empty state when the cup is taken off. At that point it saves
  the settings record.

### `grindscale.display`

`DisplayRenderer(controller, clock=None).render()` returns a `Frame` for the
128x64 screen that matches the controller's state. The frame is made of
`TextItem`s, each with text, position, font and an `inverted` flag for the
highlighted row.

- `Frame.texts()` lists the strings.
- `Frame.highlighted` gives the highlighted one.
- After 60 seconds without a significant weight change, the frame is empty.

### `grindscale.app`

- `SimulatedLoadCell(weights)` returns a fixed sequence of readings. Taring
  zeroes it at the next reading.
- `run_simulation(weights, store=None, steps=None)` runs the controller on a
  simulated clock. Each 50 ms tick does one reading and one status step.
- `main(argv=None)` is the command-line entry point.

## Installation

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## Command line

```
grindscale 0 70 70 72 76 80 84 86 2
grindscale --file trace.txt --preferences scale-settings.json --verbose
```

The command replays readings through a simulated load cell. The readings are in
grams, 50 ms apart. You can give them as arguments, or in a file with `--file`
(whitespace-separated).

The command prints:

- the time and name of each status change;
- the final status and offset;
- the text of the final screen, one line per item.

Options:

- `--preferences` keeps the settings in a JSON file. Without it they stay in
  memory.
- `--verbose` logs controller events.

## Library use

```python
from grindscale.app import run_simulation
from grindscale.settings import Preferences, SettingsStore

store = SettingsStore(Preferences("scale-settings.json"))
result = run_simulation([0.0, 70.0, 75.0, 85.0, 88.0], store, 50)
print(result.controller.status.name, result.statuses)
```

## What it does not do

The package contains no drivers for real hardware:

- It has no load-cell amplifier implementation. Supply your own `LoadCell`
  subclass, or use `SimulatedLoadCell`.
- It does not read a real rotary encoder or button. Call `on_encoder` and
  `on_button_click` yourself.
- It does not draw on a physical screen. `DisplayRenderer` only produces the
  layout as data.
- `GrinderOutput` does not switch a real output line.

Nothing runs in the background. The caller drives `read_scale()` and
`status_step()`. The package has no network connectivity.