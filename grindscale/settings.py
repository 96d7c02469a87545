"""Scale status codes, limits and persistent settings storage."""

from __future__ import annotations

import json
import logging
import struct
from dataclasses import dataclass
from enum import IntEnum
from pathlib import Path
from typing import Any, Dict, Optional, Union

logger = logging.getLogger(__name__)


class Status(IntEnum):
    EMPTY = 0
    GRINDING_IN_PROGRESS = 1
    GRINDING_FINISHED = 2
    GRINDING_FAILED = 3
    IN_MENU = 4
    IN_SUBMENU = 5


CUP_WEIGHT = 70.0
CUP_DETECTION_TOLERANCE = 5.0
LOADCELL_SCALE_FACTOR = 7351.0
TARE_MEASURES = 20
SIGNIFICANT_WEIGHT_CHANGE = 5.0
COFFEE_DOSE_WEIGHT = 18.0
COFFEE_DOSE_OFFSET = -2.5
MAX_GRINDING_TIME = 30_000
GRINDING_FAILED_WEIGHT_TO_RESET = 150.0

MAX_OFFSET = 10.0
MIN_OFFSET = -10.0
MAX_CUP_WEIGHT = 200.0
MIN_CUP_WEIGHT = 10.0
MAX_SET_WEIGHT = 100.0
MIN_SET_WEIGHT = 5.0
MIN_AUTO_OFFSET_CHANGE = 0.05
MAX_AUTO_OFFSET_CHANGE = 5.0
WEIGHT_CHECK_TIME = 3000
TARE_MIN_INTERVAL = 10_000

# Little-endian with the natural padding before the 32-bit calibration field.
_SETTINGS_FORMAT = struct.Struct("<hhhxxiBBH")
SETTINGS_SIZE = _SETTINGS_FORMAT.size

_KEY_OFFSET = "offsetHuns"
_KEY_CUP_WEIGHT = "cupWeightTenths"
_KEY_SET_WEIGHT = "setWeightTenths"
_KEY_CALIBRATION = "calibration"
_KEY_SCALE_MODE = "scaleMode"
_KEY_GRIND_MODE = "grindMode"
_KEY_SETTINGS = "settings"


def _wrap(value: int, bits: int) -> int:
    half = 1 << (bits - 1)
    return ((value + half) & ((1 << bits) - 1)) - half


def _to_int16(value: float) -> int:
    return _wrap(int(value), 16)


def _to_int32(value: float) -> int:
    return _wrap(int(value), 32)


@dataclass(frozen=True)
class ScaleSettings:
    """Snapshot of all settings, stored as one checksummed record."""

    offset_tenths: int
    cup_weight_tenths: int
    set_weight_tenths: int
    calibration_hundredths: int
    scale_mode: bool
    grind_mode: bool

    def checksum(self) -> int:
        return calculate_checksum(self)

    def to_bytes(self) -> bytes:
        return _SETTINGS_FORMAT.pack(
            self.offset_tenths,
            self.cup_weight_tenths,
            self.set_weight_tenths,
            self.calibration_hundredths,
            int(self.scale_mode),
            int(self.grind_mode),
            self.checksum(),
        )

    @classmethod
    def from_bytes(cls, data: bytes) -> "ScaleSettings":
        """Decode a stored record; raise ValueError on wrong size or bad checksum."""
        if len(data) != SETTINGS_SIZE:
            raise ValueError(
                f"settings record must be {SETTINGS_SIZE} bytes, got {len(data)}"
            )
        offset, cup, set_weight, calibration, scale_mode, grind_mode, stored = (
            _SETTINGS_FORMAT.unpack(data)
        )
        settings = cls(
            offset, cup, set_weight, calibration, bool(scale_mode), bool(grind_mode)
        )
        expected = settings.checksum()
        if stored != expected:
            raise ValueError(
                f"settings checksum mismatch: stored {stored:#06x}, expected {expected:#06x}"
            )
        return settings


def calculate_checksum(settings: ScaleSettings) -> int:
    """16-bit additive checksum over all fields, seeded with 0xABCD."""
    calibration = settings.calibration_hundredths
    total = (
        settings.offset_tenths
        + settings.cup_weight_tenths
        + settings.set_weight_tenths
        + (calibration & 0xFFFF)
        + ((calibration >> 16) & 0xFFFF)
        + int(settings.scale_mode)
        + int(settings.grind_mode)
        + 0xABCD
    )
    return total & 0xFFFF


class Preferences:
    """Small key-value store, kept in a JSON file when a path is given."""

    def __init__(self, path: Optional[Union[str, Path]] = None) -> None:
        self._path = Path(path) if path is not None else None
        self._values: Dict[str, Any] = {}
        self._blobs: Dict[str, bytes] = {}
        if self._path is not None and self._path.exists():
            document = json.loads(self._path.read_text(encoding="utf-8"))
            self._values = dict(document.get("values", {}))
            self._blobs = {
                key: bytes.fromhex(text)
                for key, text in document.get("bytes", {}).items()
            }

    def get(self, key: str, default: Any = None) -> Any:
        return self._values.get(key, default)

    def put(self, key: str, value: Union[int, float, bool]) -> None:
        if not isinstance(value, (int, float, bool)):
            raise TypeError(f"unsupported preference type: {type(value).__name__}")
        self._values[key] = value
        self._flush()

    def get_bytes(self, key: str) -> Optional[bytes]:
        return self._blobs.get(key)

    def put_bytes(self, key: str, data: bytes) -> None:
        self._blobs[key] = bytes(data)
        self._flush()

    def _flush(self) -> None:
        if self._path is None:
            return
        document = {
            "values": self._values,
            "bytes": {key: blob.hex() for key, blob in self._blobs.items()},
        }
        tmp = self._path.with_name(self._path.name + ".tmp")
        tmp.write_text(json.dumps(document, indent=2, sort_keys=True), encoding="utf-8")
        tmp.replace(self._path)


class SettingsStore:
    """Validated load and save of each scale parameter."""

    def __init__(self, preferences: Optional[Preferences] = None) -> None:
        self.preferences = preferences if preferences is not None else Preferences()

    def save_offset(self, value: float) -> float:
        if value < MIN_OFFSET or value > MAX_OFFSET:
            logger.warning("Invalid offset %s, using default", value)
            value = COFFEE_DOSE_OFFSET
        self.preferences.put(_KEY_OFFSET, _to_int16(value * 100))
        logger.info("Saved offset: %s", value)
        return value

    def save_cup_weight(self, value: float) -> float:
        if value < MIN_CUP_WEIGHT or value > MAX_CUP_WEIGHT:
            logger.warning("Invalid cup weight %s, using default", value)
            value = CUP_WEIGHT
        self.preferences.put(_KEY_CUP_WEIGHT, _to_int16(value * 10))
        logger.info("Saved cup weight: %s", value)
        return value

    def save_set_weight(self, value: float) -> float:
        if value < MIN_SET_WEIGHT or value > MAX_SET_WEIGHT:
            logger.warning("Invalid set weight %s, using default", value)
            value = COFFEE_DOSE_WEIGHT
        self.preferences.put(_KEY_SET_WEIGHT, _to_int16(value * 10))
        logger.info("Saved set weight: %s", value)
        return value

    def save_calibration(self, value: float) -> float:
        self.preferences.put(_KEY_CALIBRATION, _to_int32(value * 100))
        logger.info("Saved calibration: %s", value)
        return value

    def save_scale_mode(self, mode: bool) -> None:
        self.preferences.put(_KEY_SCALE_MODE, bool(mode))

    def save_grind_mode(self, mode: bool) -> None:
        self.preferences.put(_KEY_GRIND_MODE, bool(mode))

    def load_offset(self) -> float:
        raw = self.preferences.get(_KEY_OFFSET, _to_int16(COFFEE_DOSE_OFFSET * 100))
        offset = raw / 100.0
        if offset < MIN_OFFSET or offset > MAX_OFFSET:
            logger.warning("Loaded offset out of range, using default")
            offset = self.save_offset(COFFEE_DOSE_OFFSET)
        return offset

    def load_cup_weight(self) -> float:
        raw = self.preferences.get(_KEY_CUP_WEIGHT, _to_int16(CUP_WEIGHT * 10))
        cup_weight = raw / 10.0
        if cup_weight < MIN_CUP_WEIGHT or cup_weight > MAX_CUP_WEIGHT:
            logger.warning("Loaded cup weight out of range, using default")
            cup_weight = self.save_cup_weight(CUP_WEIGHT)
        return cup_weight

    def load_set_weight(self) -> float:
        raw = self.preferences.get(_KEY_SET_WEIGHT, _to_int16(COFFEE_DOSE_WEIGHT * 10))
        set_weight = raw / 10.0
        if set_weight < MIN_SET_WEIGHT or set_weight > MAX_SET_WEIGHT:
            logger.warning("Loaded set weight out of range, using default")
            set_weight = self.save_set_weight(COFFEE_DOSE_WEIGHT)
        return set_weight

    def load_calibration(self) -> float:
        raw = self.preferences.get(_KEY_CALIBRATION, _to_int32(LOADCELL_SCALE_FACTOR * 100))
        return raw / 100.0

    def load_scale_mode(self) -> bool:
        return bool(self.preferences.get(_KEY_SCALE_MODE, False))

    def load_grind_mode(self) -> bool:
        return bool(self.preferences.get(_KEY_GRIND_MODE, False))

    def reset_to_defaults(self) -> None:
        logger.info("Resetting all parameters to defaults")
        self.save_offset(COFFEE_DOSE_OFFSET)
        self.save_cup_weight(CUP_WEIGHT)
        self.save_set_weight(COFFEE_DOSE_WEIGHT)
        self.save_calibration(LOADCELL_SCALE_FACTOR)
        self.save_scale_mode(False)
        self.save_grind_mode(False)

    def validate_stored(self) -> bool:
        """Return True when a complete record with a valid checksum is stored."""
        data = self.preferences.get_bytes(_KEY_SETTINGS)
        if data is None:
            logger.info("Settings structure not found, using individual parameters")
            return False
        try:
            ScaleSettings.from_bytes(data)
        except ValueError as error:
            logger.warning("%s, using individual parameters", error)
            return False
        logger.info("Settings loaded and validated successfully")
        return True

    def save_structure(
        self,
        offset: float,
        cup_weight: float,
        set_weight: float,
        scale_mode: bool,
        grind_mode: bool,
    ) -> ScaleSettings:
        settings = ScaleSettings(
            offset_tenths=_to_int16(offset * 10),
            cup_weight_tenths=_to_int16(cup_weight * 10),
            set_weight_tenths=_to_int16(set_weight * 10),
            calibration_hundredths=_to_int32(self.load_calibration() * 100),
            scale_mode=bool(scale_mode),
            grind_mode=bool(grind_mode),
        )
        self.preferences.put_bytes(_KEY_SETTINGS, settings.to_bytes())
        logger.info("Settings structure saved with checksum")
        return settings