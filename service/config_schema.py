# service/config_schema.py
from __future__ import annotations

import json
import logging
import os
import re
from dataclasses import dataclass
from typing import Any

import yaml

from modules.job_aggregator.lib.config import ConfigError, Settings

logger = logging.getLogger(__name__)

DEFAULT_SCHEDULE: dict[str, Any] = {"cron": "0 0 * * *"}  # daily at midnight

_TRIGGER_FIELDS = ("cron", "interval", "date", "daily_time")
_TIME_RE = re.compile(r"^(\d{1,2}):(\d{2})(?::(\d{2}))?$")
_TOP_LEVEL_KEYS = {"timezone", "schedule", "run_on_start", "aggregator", "executor_workers"}


@dataclass
class _LoadResult:
    """Internal convenience container (not required by callers)."""

    cfg: dict[str, Any]
    source: str


def load_config(path: str | None = None) -> dict[str, Any]:
    """
    Load the service configuration.

    Resolution order:
      1) Explicit `path` argument (if provided)
      2) os.environ['CONFIG_PATH'] (if set)
      3) Internal default (daily midnight schedule, default aggregator settings)

    Returns:
        dict with "timezone", "schedule", "run_on_start", "aggregator", "executor_workers".
    """
    resolved_path = path or os.environ.get("CONFIG_PATH")
    if not resolved_path:
        logger.info("CONFIG_PATH not provided; using default config.")
        cfg: dict[str, Any] = {}
    else:
        cfg = _read_any(resolved_path).cfg

    _apply_top_level_defaults(cfg)
    return cfg


def validate(cfg: dict[str, Any]) -> None:
    """
    Validate the configuration. Raise ConfigError on any problem.
    No prints, no sys.exit().
    """
    if not isinstance(cfg, dict):
        raise ConfigError("Config must be a dict.")

    unknown = set(cfg.keys()) - _TOP_LEVEL_KEYS
    if unknown:
        raise ConfigError(f"Unknown top-level key(s): {sorted(unknown)}")

    tz = cfg.get("timezone")
    if tz is not None and not isinstance(tz, str):
        raise ConfigError("'timezone' must be a string if provided.")

    schedule = cfg.get("schedule")
    if not isinstance(schedule, dict):
        raise ConfigError("'schedule' must be an object with exactly one trigger.")
    present = [k for k in _TRIGGER_FIELDS if k in schedule]
    if len(present) != 1:
        raise ConfigError(f"'schedule': exactly one trigger required among {', '.join(_TRIGGER_FIELDS)}.")

    kind = present[0]
    value = schedule[kind]
    if kind == "cron":
        if isinstance(value, str):
            if len(value.split()) != 5:
                raise ConfigError("'schedule.cron' string must have 5 fields.")
        elif not isinstance(value, dict):
            raise ConfigError("'schedule.cron' must be a crontab string or an object.")
    elif kind == "interval":
        if not isinstance(value, dict):
            raise ConfigError("'schedule.interval' must be an object of time kwargs.")
        for k in ("weeks", "days", "hours", "minutes", "seconds"):
            if k in value:
                _to_int(value[k], field=f"schedule.interval.{k}", allow_zero=True)
    elif kind == "date":
        if not (isinstance(value, (str, int, float)) or isinstance(value, dict)):
            raise ConfigError("'schedule.date' must be an ISO string, epoch seconds, or {'run_at': ...}.")
    elif kind == "daily_time":
        if not isinstance(value, dict) or "time" not in value:
            raise ConfigError("'schedule.daily_time' must be an object with a 'time' field.")
        times = value["time"] if isinstance(value["time"], list) else [value["time"]]
        for t in times:
            _validate_time_of_day(t)

    if not isinstance(cfg.get("run_on_start"), bool):
        raise ConfigError("'run_on_start' must be a boolean.")

    _to_int(cfg.get("executor_workers"), field="executor_workers", allow_zero=False)

    aggregator = cfg.get("aggregator")
    if not isinstance(aggregator, dict):
        raise ConfigError("'aggregator' must be an object of settings.")

    Settings.from_env_and_kwargs(aggregator)


def _apply_top_level_defaults(cfg: dict[str, Any]) -> None:
    tz = cfg.get("timezone")
    if not isinstance(tz, str) or not tz.strip():
        cfg["timezone"] = os.environ.get("TZ", "UTC")

    if cfg.get("schedule") is None:
        cfg["schedule"] = dict(DEFAULT_SCHEDULE)

    if "run_on_start" in cfg:
        cfg["run_on_start"] = _to_bool(cfg["run_on_start"], field="run_on_start")
    else:
        cfg["run_on_start"] = False

    if cfg.get("aggregator") is None:
        cfg["aggregator"] = {}

    if cfg.get("executor_workers") is None:
        cfg["executor_workers"] = 2


def _validate_time_of_day(value: Any) -> None:
    if not isinstance(value, str):
        raise ConfigError("'schedule.daily_time.time' entries must be strings like 'HH:MM'.")
    m = _TIME_RE.match(value.strip())
    if not m:
        raise ConfigError(f"'schedule.daily_time.time' must match HH:MM[:SS] (got {value!r}).")
    hour, minute, second = int(m.group(1)), int(m.group(2)), int(m.group(3) or 0)
    if not (0 <= hour <= 23 and 0 <= minute <= 59 and 0 <= second <= 59):
        raise ConfigError(f"'schedule.daily_time.time' out of range (got {value!r}).")


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

    if lower.endswith(".yml") or lower.endswith(".yaml"):
        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    else:
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise ConfigError(f"Invalid JSON in {path}: {e}") from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError(f"Top-level config in {path} must be a mapping/object.")
    return _LoadResult(cfg=data, source=path)
