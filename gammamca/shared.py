# shared.py

import json
import logging
import platform

from os import getenv
from pathlib import Path

# --------------------
# Versioning
__version__ = "1.0.0"
# --------------------

APP_NAME = "GammaMCA"

DATA_TYPES = ("data", "background")
ORDER_TYPES = ("chron", "hist")


# -------------------------------
# Errors
# -------------------------------

class GammaMcaError(Exception):
    """Base class for all errors raised by gammamca."""


class TransportError(GammaMcaError, ConnectionError):
    """The physical link failed (read error, device unplugged)."""


class CalibrationError(GammaMcaError, ValueError):
    """Calibration points cannot produce a valid polynomial."""


class SettingsError(GammaMcaError, ValueError):
    """A configuration value is outside its allowed range."""


# -------------------------------
# Logging Setup
# -------------------------------
if platform.system() == "Darwin":
    LOG_DIR = Path.home() / "Library" / "Logs" / APP_NAME

elif platform.system() == "Windows":
    LOG_DIR = Path(getenv("APPDATA", str(Path.home() / "AppData" / "Roaming"))) / APP_NAME / "logs"

else:
    LOG_DIR = Path.home() / f".{APP_NAME.lower()}" / "logs"

LOG_FORMAT = '[%(asctime)s] %(levelname)s: %(message)s'

# Create app logger
logger = logging.getLogger("GammaMcaLogger")
logger.propagate = False


def init_logging(log_dir=None, level=logging.INFO):
    """Attach the file handler to the app logger. Safe to call repeatedly."""
    if any(isinstance(h, logging.FileHandler) for h in logger.handlers):
        return logger

    log_dir = Path(log_dir) if log_dir else LOG_DIR
    log_dir.mkdir(parents=True, exist_ok=True)

    fh = logging.FileHandler(log_dir / "gammamca_log.txt", mode='w', encoding='utf-8')
    fh.setLevel(logging.DEBUG)
    fh.setFormatter(logging.Formatter(LOG_FORMAT, datefmt='%H:%M:%S'))
    logger.addHandler(fh)
    logger.setLevel(level)

    logger.info("   ✅ Logger is ready.")
    return logger


# -------------------------------
# Settings Keys & Validation
# -------------------------------

SETTINGS_SCHEMA = {
    "adc_channels": {"type": "int", "default": 4096, "min": 1},
    "eol_char": {"type": "char", "default": ";"},
    "baud_rate": {"type": "int", "default": 9600, "min": 1},
    "max_size": {"type": "int", "default": 200000, "min": 1},
    "max_length": {"type": "int", "default": 20, "min": 1},
    "order_type": {"type": "str", "default": "chron", "choices": ORDER_TYPES},
    "console_memory": {"type": "int", "default": 1000000, "min": 1},
    "refresh_rate": {"type": "float", "default": 1.0, "min": 0, "exclusive": True},
    "max_rec_time_enabled": {"type": "bool", "default": False},
    "max_rec_time": {"type": "float", "default": 1800.0, "min": 0, "exclusive": True},
    "max_iso_dist": {"type": "float", "default": 100.0, "min": 0, "exclusive": True},
    "peak_thres": {"type": "float", "default": 0.025, "min": 0, "max": 1, "exclusive": True},
    "peak_lag": {"type": "int", "default": 150, "min": 1},
    "peak_width": {"type": "int", "default": 2, "min": 1},
    "seek_width": {"type": "float", "default": 2.0, "min": 0, "exclusive": True},
    "gauss_sigma": {"type": "int", "default": 0, "min": 0},
    "sma_length": {"type": "int", "default": 8, "min": 1},
}


def _to_bool(raw_value):
    if isinstance(raw_value, str):
        return raw_value.strip().lower() in ("1", "true", "yes", "on")
    return bool(raw_value)


def convert_setting(key, raw_value):
    """Convert and range-check one value according to SETTINGS_SCHEMA."""
    try:
        meta = SETTINGS_SCHEMA[key]
    except KeyError:
        raise SettingsError(f"Unknown setting '{key}'") from None

    expected_type = meta["type"]

    try:
        if expected_type == "int":
            if isinstance(raw_value, float) and not raw_value.is_integer():
                raise ValueError(f"{raw_value} is not an integer")
            value = int(str(raw_value).strip()) if isinstance(raw_value, str) else int(raw_value)
        elif expected_type == "float":
            value = float(raw_value)
            if value != value or value in (float("inf"), float("-inf")):
                raise ValueError("not a finite number")
        elif expected_type == "bool":
            value = _to_bool(raw_value)
        elif expected_type == "char":
            value = str(raw_value)
            if len(value) != 1:
                raise ValueError("must be a single character")
        else:
            value = str(raw_value).strip()
    except (TypeError, ValueError) as e:
        raise SettingsError(f"Invalid value {raw_value!r} for '{key}': {e}") from None

    if "choices" in meta and value not in meta["choices"]:
        raise SettingsError(f"'{key}' must be one of {meta['choices']}, got {value!r}")

    if "min" in meta:
        too_small = value <= meta["min"] if meta.get("exclusive") else value < meta["min"]
        if too_small:
            raise SettingsError(f"'{key}' is below its minimum: {value}")

    if "max" in meta and value > meta["max"]:
        raise SettingsError(f"'{key}' is above its maximum: {value}")

    return value


class Settings:
    """Validated runtime configuration of one acquisition session."""

    def __init__(self, **overrides):
        for key, meta in SETTINGS_SCHEMA.items():
            setattr(self, key, meta["default"])
        for key, value in overrides.items():
            setattr(self, key, convert_setting(key, value))

    def __repr__(self):
        return f"Settings({self.to_settings()!r})"

    def update(self, key, value):
        """Set one key. Invalid values are declined and the old value kept."""
        try:
            setattr(self, key, convert_setting(key, value))
        except SettingsError as e:
            logger.warning(f"👆 Setting declined: {e}")
            return False
        return True

    def to_settings(self):
        return {key: getattr(self, key) for key in SETTINGS_SCHEMA}

    @classmethod
    def from_settings(cls, settings):
        result = cls()

        if not isinstance(settings, dict):
            logger.error("  ❌ shared settings is not a dictionary.")
            return result

        for key, meta in SETTINGS_SCHEMA.items():
            if key not in settings:
                continue
            try:
                setattr(result, key, convert_setting(key, settings[key]))
            except SettingsError as e:
                logger.error(f"   ❌ shared Failed to load '{key}' as {meta['type']} Error: {e}")
                setattr(result, key, meta["default"])

        return result


def load_settings(path):
    try:
        with open(path, "r", encoding="utf-8") as f:
            loaded = json.load(f)

    except (OSError, json.JSONDecodeError) as e:
        logger.error(f"   ❌ shared load_settings {e}")
        loaded = {}

    return Settings.from_settings(loaded)
