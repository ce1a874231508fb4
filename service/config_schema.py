# service/config_schema.py
from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from typing import Any

import yaml

from modules.job_tracker.lib.config import ConfigError as _SettingsError
from modules.job_tracker.lib.config import Settings

logger = logging.getLogger(__name__)


class ConfigError(ValueError):
    """Raised when the config is invalid."""


@dataclass
class _LoadResult:
    """Internal convenience container (not required by callers)."""

    cfg: dict[str, Any]
    source: str


# Every six hours unless configured otherwise.
DEFAULT_SCHEDULE: dict[str, Any] = {"interval": {"hours": 6}}

_TOP_LEVEL_FIELDS = ("timezone", "schedule", "ingest")
_TRIGGER_FIELDS = ("cron", "interval")
_SCHEDULE_EXTRAS = ("run_on_start", "misfire_grace_time")
_INTERVAL_FIELDS = ("weeks", "days", "hours", "minutes", "seconds", "jitter", "timezone", "start_date", "end_date")


def load_config(path: str | None = None) -> dict[str, Any]:
    """
    Load the service configuration.

    Resolution order:
      1) Explicit `path` argument (if provided)
      2) os.environ['CONFIG_PATH'] (if set)
      3) Internal default (default schedule, empty ingest section)

    Returns:
        dict with "timezone", "schedule" and "ingest" always present.
    """
    resolved_path = path or os.environ.get("CONFIG_PATH")
    if not resolved_path:
        logger.info("CONFIG_PATH not provided; using default config.")
        cfg: dict[str, Any] = {}
        _apply_top_level_defaults(cfg)
        return cfg

    cfg = _read_any(resolved_path).cfg
    if not isinstance(cfg, dict):
        raise ConfigError(f"Top-level config in {resolved_path} must be an object.")
    _apply_top_level_defaults(cfg)
    return cfg


def validate(cfg: dict[str, Any]) -> None:
    """
    Validate the configuration. Raise ConfigError on any problem.
    No prints, no sys.exit().
    """
    if not isinstance(cfg, dict):
        raise ConfigError("Config must be a dict.")

    unknown = [k for k in cfg if k not in _TOP_LEVEL_FIELDS]
    if unknown:
        logger.warning("Ignoring unknown top-level config key(s): %s", sorted(unknown))

    # timezone is optional; if present must be str
    tz = cfg.get("timezone")
    if tz is not None and not isinstance(tz, str):
        raise ConfigError("'timezone' must be a string if provided.")

    _validate_schedule(cfg.get("schedule", DEFAULT_SCHEDULE))

    ingest = cfg.get("ingest", {})
    if not isinstance(ingest, dict):
        raise ConfigError("'ingest' must be an object.")
    try:
        Settings.from_env_and_kwargs(ingest)
    except _SettingsError as e:
        raise ConfigError(f"ingest: {e}") from e


def trigger_definition(cfg: dict[str, Any]) -> dict[str, Any]:
    """The {"interval": ...} / {"cron": ...} part of the schedule (extras stripped)."""
    schedule = cfg.get("schedule") or DEFAULT_SCHEDULE
    return {k: v for k, v in schedule.items() if k in _TRIGGER_FIELDS}


def _validate_schedule(schedule: Any) -> None:
    if not isinstance(schedule, dict):
        raise ConfigError("'schedule' must be an object.")

    unknown = set(schedule) - set(_TRIGGER_FIELDS) - set(_SCHEDULE_EXTRAS)
    if unknown:
        raise ConfigError(f"'schedule' has unknown field(s): {sorted(unknown)}")

    present = [k for k in _TRIGGER_FIELDS if schedule.get(k) is not None]
    if len(present) != 1:
        raise ConfigError(f"'schedule': exactly one trigger required among {', '.join(_TRIGGER_FIELDS)}.")

    kind = present[0]
    value = schedule[kind]
    if kind == "interval":
        if not isinstance(value, dict):
            raise ConfigError("'schedule.interval' must be an object of time kwargs.")
        bad = set(value) - set(_INTERVAL_FIELDS)
        if bad:
            raise ConfigError(f"'schedule.interval' has unknown field(s): {sorted(bad)}")
        total = 0
        for k in ("weeks", "days", "hours", "minutes", "seconds"):
            if k in value:
                total += _to_int(value[k], field=f"interval.{k}", allow_zero=True)
        if total == 0:
            raise ConfigError("'schedule.interval' must be greater than 0.")
    elif not isinstance(value, (str, dict)):
        raise ConfigError("'schedule.cron' must be a crontab string or an object.")
    elif isinstance(value, str) and len(value.split()) not in (5, 6):
        raise ConfigError(f"'schedule.cron' must have 5 or 6 fields: {value!r}")

    if "run_on_start" in schedule:
        _to_bool(schedule["run_on_start"], field="run_on_start")
    if "misfire_grace_time" in schedule:
        _to_int(schedule["misfire_grace_time"], field="misfire_grace_time", allow_zero=True)


def _apply_top_level_defaults(cfg: dict[str, Any]) -> None:
    # Resolve timezone now so the scheduler can use cfg['timezone']
    tz = cfg.get("timezone")
    if not isinstance(tz, str) or not tz.strip():
        cfg["timezone"] = os.environ.get("TZ", "UTC")

    if cfg.get("schedule") is None:
        cfg["schedule"] = dict(DEFAULT_SCHEDULE)
    elif isinstance(cfg["schedule"], dict):
        schedule = dict(cfg["schedule"])
        if "run_on_start" in schedule:
            schedule["run_on_start"] = _to_bool(schedule["run_on_start"], field="run_on_start")
        cfg["schedule"] = schedule

    if cfg.get("ingest") is None:
        cfg["ingest"] = {}


def _to_bool(value: Any, *, field: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        v = value.strip().lower()
        if v in {"1", "true", "yes", "on"}:
            return True
        if v in {"0", "false", "no", "off"}:
            return False
    raise ConfigError(f"'{field}' must be a boolean (or boolean-like string).")


def _to_int(value: Any, *, field: str, allow_zero: bool) -> int:
    try:
        iv = int(value)
    except (TypeError, ValueError) as err:
        raise ConfigError(f"'{field}' must be an integer.") from err
    if iv < 0 or (iv == 0 and not allow_zero):
        raise ConfigError(f"'{field}' must be >= {'0' if allow_zero else '1'} (got {iv}).")
    return iv


def _read_any(path: str) -> _LoadResult:
    lower = path.lower()
    try:
        with open(path, encoding="utf-8") as f:
            text = f.read()
    except FileNotFoundError as e:
        raise ConfigError(f"Config file not found: {path}") from e
    except OSError as e:
        raise ConfigError(f"Failed to read config file: {path}: {e}") from e

    if lower.endswith(".json"):
        try:
            return _LoadResult(cfg=json.loads(text), source=path)
        except json.JSONDecodeError as e:
            raise ConfigError(f"Invalid JSON in {path}: {e}") from e

    if lower.endswith(".yml") or lower.endswith(".yaml"):
        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {path}: {e}") from e
        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ConfigError("Top-level YAML must be a mapping/object.")
        return _LoadResult(cfg=data, source=path)

    # Try JSON as a fallback if extension is unknown
    try:
        return _LoadResult(cfg=json.loads(text), source=path)
    except json.JSONDecodeError:
        pass

    raise ConfigError(f"Unsupported config format for {path}. Use .json or .yml/.yaml.")
