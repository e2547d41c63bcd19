# service/scheduler.py
from __future__ import annotations

import logging
import threading
import time as _time
from collections.abc import Iterable
from datetime import datetime, time, timedelta
from datetime import tzinfo as _dt_tzinfo
from typing import Any
from zoneinfo import ZoneInfo

import pytz
from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.combining import OrTrigger
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger

from modules.job_aggregator.lib.controller import AggregatorController

from .logging_utils import write_activity_log

LOG = logging.getLogger(__name__)

JOB_ID = "aggregate"


# ---- Public controller ------------------------------------------------------


class SchedulerController:
    """
    A small façade around APScheduler so the CLI can manage lifecycle cleanly.
    """

    def __init__(self, scheduler: BackgroundScheduler) -> None:
        self._scheduler = scheduler
        self._stopped_evt = threading.Event()

    def stop(self) -> None:
        if self._scheduler.running:
            LOG.info("Shutting down scheduler...")
            # wait=False -> stop immediately; an in-flight run is allowed to finish.
            self._scheduler.shutdown(wait=False)
        self._stopped_evt.set()
        LOG.info("Scheduler shut down complete.")

    def join(self, timeout: float | None = None) -> bool:
        """
        Block until the scheduler is fully stopped (or timeout).
        Returns True if stopped before timeout, else False.
        """
        return self._stopped_evt.wait(timeout=timeout)

    def next_run_time(self) -> datetime | None:
        job = self._scheduler.get_job(JOB_ID)
        return getattr(job, "next_run_time", None) if job else None


# ---- Module API -------------------------------------------------------------


def start(controller: AggregatorController, cfg: dict[str, Any]) -> SchedulerController:
    """
    Build a BackgroundScheduler with the single aggregation job and start it.

    The job calls controller.trigger_run(wait=True): a scheduled fire that lands
    during an explicit run queues behind it instead of being dropped.
    """
    tz = _resolve_timezone(cfg)
    scheduler = build_scheduler(cfg, tz)

    trigger = _build_trigger(cfg.get("schedule") or {}, str(tz))
    _add_aggregate_job(scheduler, controller, trigger)

    if cfg.get("run_on_start"):
        scheduler.add_job(
            func=_job_wrapper,
            args=(controller, "startup"),
            trigger="date",  # no run_date: fire as soon as the scheduler starts
            id=f"{JOB_ID}-startup",
            replace_existing=True,
        )

    scheduler.start()
    LOG.info("Scheduler started with %d job(s).", len(scheduler.get_jobs()))

    sc = SchedulerController(scheduler)
    nrt = sc.next_run_time()
    if nrt:
        LOG.info("Next scheduled scrape at %s", nrt.isoformat())
    return sc


def build_scheduler(cfg: dict[str, Any], tz) -> BackgroundScheduler:
    job_defaults = {
        "coalesce": True,  # run only the latest if many were missed
        "max_instances": 1,
    }
    executors = {"default": ThreadPoolExecutor(_int_or(cfg.get("executor_workers"), 2))}
    jobstores = {"default": MemoryJobStore()}
    return BackgroundScheduler(
        timezone=tz,
        job_defaults=job_defaults,
        executors=executors,
        jobstores=jobstores,
    )


# ---- Helpers ----------------------------------------------------------------


def _add_aggregate_job(scheduler: BackgroundScheduler, controller: AggregatorController, trigger: Any) -> None:
    scheduler.add_job(
        func=_job_wrapper,
        args=(controller, "scheduled"),
        trigger=trigger,
        id=JOB_ID,
        max_instances=1,
        coalesce=True,
        replace_existing=True,
    )
    LOG.debug("Registered job[%s] trigger=%s", JOB_ID, trigger)


def _job_wrapper(controller: AggregatorController, trigger_type: str) -> None:
    """
    Runs inside the APScheduler worker. Errors are logged, never raised:
    a failed run must not unschedule the job.
    """
    started = _time.monotonic()
    LOG.info("Job[%s] starting (%s)", JOB_ID, trigger_type)
    try:
        summary = controller.trigger_run(wait=True, trigger_type=trigger_type)
    except Exception:
        LOG.exception("Job[%s] raised an exception.", JOB_ID)
        _write_activity(trigger_type, status="error", duration_s=_time.monotonic() - started)
        return

    duration = _time.monotonic() - started
    LOG.info("Job[%s] finished in %.3fs: %d job(s), %d new", JOB_ID, duration, summary.job_count, summary.new_count)
    _write_activity(trigger_type, status="ok", duration_s=duration, job_count=summary.job_count)


def _write_activity(trigger_type: str, status: str, duration_s: float, job_count: int | None = None) -> None:
    """Best-effort activity logging; non-fatal on errors."""
    try:
        write_activity_log({
            "source": "scheduler",
            "event": "job_run",
            "fields": {
                "job_id": JOB_ID,
                "trigger_type": trigger_type,
                "status": status,
                "duration_ms": int(duration_s * 1000),
                "job_count": job_count,
            },
        })
    except Exception:
        LOG.debug("write_activity_log failed for job[%s]", JOB_ID, exc_info=True)


def _resolve_timezone(cfg: dict[str, Any]):
    """
    APScheduler 3.x prefers a pytz timezone; unknown names fall back to UTC.
    """
    tz_name = cfg.get("timezone") or "UTC"
    try:
        return pytz.timezone(tz_name)
    except pytz.UnknownTimeZoneError:
        LOG.warning("Falling back to UTC timezone (invalid tz '%s')", tz_name)
        return pytz.UTC


def _tz(z):
    if not z:
        return None
    if isinstance(z, _dt_tzinfo):
        return z
    return ZoneInfo(str(z))


def _build_trigger(trig_def: dict[str, Any], tz: str | None) -> Any:
    """
    Build an APScheduler trigger from a dict.

    Supported shapes:
      {"interval": {weeks|days|hours|minutes|seconds, jitter?, start_date?, end_date?, timezone?}}
      {"cron":     {second?, minute?, hour?, day?, day_of_week?, month?, jitter?, start_date?, end_date?, timezone?}}
      {"cron":     "0 0 * * *"}  # crontab, scheduler tz
      {"date":     {"run_at": ISO|epoch|datetime, timezone?}} or a bare ISO|epoch value
      {"daily_time": {"time": "HH:MM[:SS]" | [...], "day_of_week"?, "timezone"?}}

    A block's own 'timezone' wins over the scheduler tz.
    """
    if not isinstance(trig_def, dict):
        raise ValueError("trigger spec must be a dict")

    present = [k for k in ("interval", "cron", "date", "daily_time") if trig_def.get(k) is not None]
    if len(present) != 1:
        raise ValueError("exactly one of {'interval','cron','date','daily_time'} must be provided")
    kind = present[0]

    builders = {
        "interval": _interval_trigger,
        "cron": _cron_trigger,
        "date": _date_trigger,
        "daily_time": _daily_time_trigger,
    }
    return builders[kind](trig_def[kind], _tz(tz))


def _interval_trigger(spec: Any, default_tz) -> IntervalTrigger:
    if not isinstance(spec, dict):
        raise ValueError("interval must be an object with time fields")

    allowed = {"weeks", "days", "hours", "minutes", "seconds", "jitter", "timezone", "start_date", "end_date"}
    unknown = set(spec.keys()) - allowed
    if unknown:
        raise ValueError(f"interval has unknown field(s): {sorted(unknown)}")

    def _as_int_ge0(name: str) -> int:
        try:
            v = int(spec.get(name, 0))
        except (TypeError, ValueError) as err:
            raise ValueError(f"interval.{name} must be an integer") from err
        if v < 0:
            raise ValueError(f"interval.{name} must be >= 0")
        return v

    kwargs: dict[str, Any] = {}
    for k in ("weeks", "days", "hours", "minutes", "seconds"):
        v = _as_int_ge0(k)
        if v:
            kwargs[k] = v
    if not kwargs:
        raise ValueError("interval must be greater than 0 (provide at least one nonzero time field)")
    if _as_int_ge0("jitter"):
        kwargs["jitter"] = _as_int_ge0("jitter")
    for k in ("start_date", "end_date"):
        if k in spec:
            kwargs[k] = spec[k]

    return IntervalTrigger(timezone=_tz(spec.get("timezone")) or default_tz, **kwargs)


def _cron_trigger(spec: Any, default_tz) -> CronTrigger:
    if isinstance(spec, str):
        fields = spec.strip().split()
        if len(fields) != 5:
            raise ValueError(f"cron string must have 5 fields (got {len(fields)}): {spec!r}")
        return CronTrigger.from_crontab(spec, timezone=default_tz)
    if not isinstance(spec, dict):
        raise ValueError("cron must be a crontab string or an object")

    allowed = {"second", "minute", "hour", "day", "day_of_week", "month", "timezone", "start_date", "end_date", "jitter"}
    unknown = set(spec.keys()) - allowed
    if unknown:
        raise ValueError(f"cron has unknown field(s): {sorted(unknown)}")

    return CronTrigger(
        second=spec.get("second", 0),
        minute=spec.get("minute", 0),
        hour=spec.get("hour", 0),
        day=spec.get("day"),
        day_of_week=spec.get("day_of_week"),
        month=spec.get("month"),
        start_date=spec.get("start_date"),
        end_date=spec.get("end_date"),
        jitter=spec.get("jitter"),
        timezone=_tz(spec.get("timezone")) or default_tz,
    )


def _date_trigger(spec: Any, default_tz) -> DateTrigger:
    if isinstance(spec, dict):
        run_at = spec.get("run_at")
        tzinfo = _tz(spec.get("timezone")) or default_tz
    else:
        run_at = spec
        tzinfo = default_tz

    if run_at is None:
        raise ValueError("date trigger requires 'run_at' (or non-empty scalar value)")

    if isinstance(run_at, (int, float)):
        dt = datetime.fromtimestamp(run_at, tz=tzinfo)
    elif isinstance(run_at, datetime):
        dt = run_at if run_at.tzinfo else run_at.replace(tzinfo=tzinfo)
    else:
        try:
            dt = datetime.fromisoformat(str(run_at).replace("Z", "+00:00"))
        except ValueError as e:
            raise ValueError(f"Invalid date.run_at: {run_at!r}") from e
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=tzinfo)

    return DateTrigger(run_date=dt, timezone=dt.tzinfo or tzinfo)


def _daily_time_trigger(spec: Any, default_tz) -> Any:
    if not isinstance(spec, dict):
        raise ValueError("daily_time must be an object")

    allowed = {"time", "day_of_week", "timezone"}
    unknown = set(spec.keys()) - allowed
    if unknown:
        raise ValueError(f"daily_time has unknown field(s): {sorted(unknown)}")

    tzinfo = _tz(spec.get("timezone")) or default_tz

    times = spec.get("time")
    if times is None:
        raise ValueError("daily_time requires 'time'")
    if isinstance(times, str):
        times = [times]
    if not isinstance(times, Iterable):
        raise ValueError("daily_time.time must be a string or list of strings")

    # One CronTrigger per exact (h, m, s); never a cross-product of hours x minutes
    per_time = [
        CronTrigger(second=s, minute=m, hour=h, day_of_week=spec.get("day_of_week"), timezone=tzinfo)
        for h, m, s in sorted({_parse_time_of_day(str(t)) for t in times})
    ]
    return per_time[0] if len(per_time) == 1 else OrTrigger(per_time)


def _parse_time_of_day(s: str) -> tuple[int, int, int]:
    parts = s.split(":")
    if len(parts) not in (2, 3):
        raise ValueError(f"daily_time.time must be 'HH:MM' or 'HH:MM:SS', got {s!r}")
    try:
        hh, mm = int(parts[0]), int(parts[1])
        ss = int(parts[2]) if len(parts) == 3 else 0
    except ValueError as err:
        raise ValueError(f"daily_time.time must contain integers: {s!r}") from err
    time(hh, mm, ss)  # validates ranges
    return hh, mm, ss


def preview_fire_times(trigger, tz, count: int = 6, start: datetime | None = None) -> list[datetime]:
    """
    Next `count` fire times of `trigger`, seeded at `start` (default now).
    Used by `cli schedule-preview`.
    """
    now = start or datetime.now(tz=tz)
    prev: datetime | None = None  # first fire is computed the way the scheduler does on add_job
    times: list[datetime] = []
    for _ in range(count):
        nxt = trigger.get_next_fire_time(prev, now)
        if nxt is None:
            break
        times.append(nxt)
        prev = nxt
        now = nxt + timedelta(microseconds=1)
    return times


def _int_or(v: Any, default: int) -> int:
    """Return int(v) or default if v is None/invalid (lenient for config)."""
    try:
        return int(v) if v is not None else default
    except (TypeError, ValueError):
        return default
