# service/scheduler.py
from __future__ import annotations

import logging
import os
import socket
import threading
import time as _time
import uuid
from concurrent.futures import Future
from concurrent.futures import ThreadPoolExecutor as _BackgroundPool
from concurrent.futures import TimeoutError as FutureTimeout
from datetime import datetime
from datetime import tzinfo as _dt_tzinfo
from typing import Any
from zoneinfo import ZoneInfo

import pytz
from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from modules.job_tracker.lib.db import DEFAULT_LEASE_TTL_S
from modules.job_tracker.lib.engine import IngestionEngine
from modules.job_tracker.lib.models import RunOutcome

from . import config_schema
from .logging_utils import write_activity_log, write_error_log

LOG = logging.getLogger(__name__)

JOB_ID = "job_tracker.run_all"


class RunScheduler:
    """
    Periodic + on-demand ingestion runs with at most one run in flight.

    Every trigger path (interval ticks, `run` from the CLI, background
    requests) takes two guards without blocking: an in-process lock, then the
    store's run lease, which is shared with other processes on the same
    database (`serve` and a separate `cli run`). A trigger that misses either
    is skipped, not queued.
    """

    def __init__(
        self,
        engine: IngestionEngine,
        *,
        trigger: Any = None,  # "apscheduler.triggers.base.BaseTrigger"
        timezone: Any = None,
        run_on_start: bool = False,
        misfire_grace_time: int | None = None,
        lease_ttl_s: float = DEFAULT_LEASE_TTL_S,
    ) -> None:
        self.engine = engine
        self.timezone = timezone or pytz.UTC
        self.trigger_def = trigger or IntervalTrigger(hours=6, timezone=self.timezone)
        self.run_on_start = run_on_start
        self.misfire_grace_time = misfire_grace_time
        self.lease_ttl_s = lease_ttl_s
        self.holder = f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:8]}"

        self._guard = threading.Lock()
        self._background = _BackgroundPool(max_workers=1, thread_name_prefix="job-tracker-run")
        self._scheduler: BackgroundScheduler | None = None
        self._stopped_evt = threading.Event()

    @classmethod
    def from_config(cls, engine: IngestionEngine, cfg: dict[str, Any]) -> RunScheduler:
        tz = _resolve_timezone(cfg)
        schedule = cfg.get("schedule") or config_schema.DEFAULT_SCHEDULE
        return cls(
            engine,
            trigger=_build_trigger(config_schema.trigger_definition(cfg), tz),
            timezone=tz,
            run_on_start=bool(schedule.get("run_on_start", False)),
            misfire_grace_time=schedule.get("misfire_grace_time"),
        )

    # ---- state ----

    @property
    def running(self) -> bool:
        """True while this instance has a run (any trigger path) in flight."""
        return self._guard.locked()

    # ---- trigger paths ----

    def trigger(self) -> list[RunOutcome] | None:
        """
        Run every enabled source now, unless a run is already in flight
        (then return None). Exceptions propagate; the guard is always cleared.
        """
        if not self._claim("run_all"):
            return None
        try:
            return self._run_all()
        finally:
            self._release()

    def trigger_source(self, source_id: str) -> RunOutcome | None:
        """Single-source run sharing the same guard. None if a run is in flight."""
        if not self._claim("run_one", source_id=source_id):
            return None
        started = _time.monotonic()
        try:
            outcome = self.engine.run_one(source_id)
        finally:
            self._release()
        _write_activity(
            "run_one",
            status="ok" if outcome.success else "error",
            duration_s=_time.monotonic() - started,
            source_id=source_id,
        )
        return outcome

    def trigger_in_background(self) -> bool:
        """
        Hand a full run to the single background worker and return at once.
        False (nothing queued) when a run is already in flight.
        """
        if not self._claim("background"):
            return False
        try:
            self._background.submit(self._background_run)
        except Exception:
            self._release()
            raise
        return True

    # ---- lifecycle ----

    def start(self) -> None:
        """Build the APScheduler instance, register the periodic job, and start."""
        job_defaults = {
            "coalesce": True,  # skipped ticks are lost, never caught up
            "max_instances": 1,
        }
        scheduler = BackgroundScheduler(
            timezone=self.timezone,
            job_defaults=job_defaults,
            executors={"default": ThreadPoolExecutor(1)},
            jobstores={"default": MemoryJobStore()},
        )
        job_kwargs: dict[str, Any] = {}
        if self.run_on_start:
            job_kwargs["next_run_time"] = datetime.now(tz=self.timezone)
        scheduler.add_job(
            func=self._tick,
            trigger=self.trigger_def,
            id=JOB_ID,
            misfire_grace_time=self.misfire_grace_time,
            replace_existing=True,
            **job_kwargs,
        )
        scheduler.start()
        self._scheduler = scheduler
        self._stopped_evt.clear()

        job = scheduler.get_job(JOB_ID)
        nrt = getattr(job, "next_run_time", None) if job else None
        LOG.info("Scheduler started (trigger=%s, next_run_time=%s)", self.trigger_def, nrt)

    def stop(self) -> None:
        """Promptly shut down APScheduler; an in-flight run is allowed to finish."""
        if self._scheduler is not None and self._scheduler.running:
            LOG.info("Shutting down scheduler...")
            self._scheduler.shutdown(wait=False)
        self._background.shutdown(wait=False)
        self._stopped_evt.set()
        LOG.info("Scheduler shut down complete.")

    def join(self, timeout: float | None = None) -> bool:
        """
        Block until the scheduler is fully stopped (or timeout).
        Returns True if stopped before timeout, else False.
        """
        return self._stopped_evt.wait(timeout=timeout)

    def drain(self, timeout: float | None = None) -> bool:
        """Wait for queued background work to finish. False on timeout."""
        marker: Future = self._background.submit(lambda: None)
        try:
            marker.result(timeout=timeout)
        except FutureTimeout:
            return False
        return True

    # ---- internals ----

    def _run_all(self) -> list[RunOutcome]:
        started = _time.monotonic()
        LOG.info("Starting scheduled scraping...")
        outcomes = self.engine.run_all()
        self.engine.sweep_expired()
        duration = _time.monotonic() - started
        LOG.info("Scraping run finished in %.3fs (%d sources)", duration, len(outcomes))
        _write_activity(
            "run_all",
            status="ok",
            duration_s=duration,
            sources=len(outcomes),
            failed=[o.source_id for o in outcomes if not o.success],
        )
        return outcomes

    def _tick(self) -> None:
        """APScheduler job body: never lets an exception escape into the scheduler."""
        try:
            self.trigger()
        except Exception as e:
            LOG.exception("Scheduled run raised an exception.")
            _write_error("tick", e)

    def _background_run(self) -> None:
        try:
            self._run_all()
        except Exception as e:
            LOG.exception("Background run raised an exception.")
            _write_error("background", e)
        finally:
            self._release()

    def _claim(self, event: str, **fields: Any) -> bool:
        """Take the in-process lock, then the store lease. False (logged as skipped) if either is held."""
        if not self._guard.acquire(blocking=False):
            self._skipped(event, **fields)
            return False
        try:
            leased = self.engine.store.acquire_run_lease(self.holder, self.lease_ttl_s)
        except BaseException:
            self._guard.release()
            raise
        if not leased:
            self._guard.release()
            self._skipped(event, held_by=self.engine.store.run_lease_holder(), **fields)
            return False
        return True

    def _release(self) -> None:
        try:
            self.engine.store.release_run_lease(self.holder)
        finally:
            self._guard.release()

    def _skipped(self, event: str, **fields: Any) -> None:
        LOG.info("Scraping already in progress, skipping...")
        _write_activity(event, status="skipped", duration_s=0.0, **fields)


# ---- Helpers ----------------------------------------------------------------


def _resolve_timezone(cfg: dict[str, Any]):
    """
    APScheduler 3.x expects a pytz timezone. We accept either:
    - config['timezone'] (e.g., 'America/Montevideo')
    - env TZ
    - default to UTC
    """
    tz_name = cfg.get("timezone") or os.getenv("TZ") or "UTC"
    try:
        return pytz.timezone(tz_name)
    except pytz.UnknownTimeZoneError:
        LOG.warning("Falling back to UTC timezone (invalid or missing tz '%s')", tz_name)
        return pytz.UTC


def _build_trigger(trig_def: dict[str, Any], tz: Any) -> Any:
    """
    Build an APScheduler trigger from a dict.

    Supported shapes:
      {"interval": {weeks|days|hours|minutes|seconds, jitter?, start_date?, end_date?, timezone?}}
      {"cron":     {second?, minute?, hour?, day?, day_of_week?, month?, jitter?, start_date?, end_date?, timezone?}}
      {"cron":     "0 */6 * * *"}  # crontab, scheduler tz used by default

    A trigger block's own 'timezone' wins over the scheduler tz (`tz`).
    """
    if not isinstance(trig_def, dict):
        raise ValueError("trigger spec must be a dict")

    def _tz(z):
        if not z:
            return None
        if isinstance(z, _dt_tzinfo):
            return z
        return ZoneInfo(str(z))

    default_tz = _tz(tz)

    present = [k for k in ("interval", "cron") if trig_def.get(k) is not None]
    if len(present) != 1:
        raise ValueError("exactly one of {'interval','cron'} must be provided")
    kind = present[0]

    # ---------- INTERVAL ----------
    if kind == "interval":
        spec = trig_def["interval"]
        if not isinstance(spec, dict):
            raise ValueError("interval must be an object with time fields")

        allowed = {"weeks", "days", "hours", "minutes", "seconds", "jitter", "timezone", "start_date", "end_date"}
        unknown = set(spec.keys()) - allowed
        if unknown:
            raise ValueError(f"interval has unknown field(s): {sorted(unknown)}")

        def _as_int_ge0(name: str) -> int:
            if name not in spec:
                return 0
            try:
                v = int(spec[name])
            except ValueError as err:
                raise ValueError(f"interval.{name} must be an integer") from err
            if v < 0:
                raise ValueError(f"interval.{name} must be >= 0")
            return v

        iv = {name: _as_int_ge0(name) for name in ("weeks", "days", "hours", "minutes", "seconds")}
        if sum(iv.values()) == 0:
            raise ValueError("interval must be greater than 0 (provide at least one nonzero time field)")

        kwargs: dict[str, Any] = {k: v for k, v in iv.items() if v}
        jitter = _as_int_ge0("jitter")
        if jitter:
            kwargs["jitter"] = jitter
        for k in ("start_date", "end_date"):
            if k in spec:
                kwargs[k] = spec[k]

        return IntervalTrigger(timezone=_tz(spec.get("timezone")) or default_tz, **kwargs)

    # ---------- CRON ----------
    cron_spec = trig_def["cron"]
    if isinstance(cron_spec, str):
        fields = cron_spec.strip().split()
        if len(fields) not in (5, 6):
            raise ValueError(f"cron string must have 5 or 6 fields (got {len(fields)}): {cron_spec!r}")
        return CronTrigger.from_crontab(cron_spec, timezone=default_tz)
    if isinstance(cron_spec, dict):
        allowed = {
            "second",
            "minute",
            "hour",
            "day",
            "day_of_week",
            "month",
            "timezone",
            "start_date",
            "end_date",
            "jitter",
        }
        unknown = set(cron_spec.keys()) - allowed
        if unknown:
            raise ValueError(f"cron has unknown field(s): {sorted(unknown)}")

        return CronTrigger(
            second=cron_spec.get("second", 0),
            minute=cron_spec.get("minute", 0),
            hour=cron_spec.get("hour", 0),
            day=cron_spec.get("day"),
            day_of_week=cron_spec.get("day_of_week"),
            month=cron_spec.get("month"),
            start_date=cron_spec.get("start_date"),
            end_date=cron_spec.get("end_date"),
            jitter=cron_spec.get("jitter"),
            timezone=_tz(cron_spec.get("timezone")) or default_tz,
        )
    raise ValueError("cron must be a crontab string or an object")


def _write_activity(event: str, status: str, duration_s: float, **fields: Any) -> None:
    """Best-effort JSONL activity logging; non-fatal on errors."""
    try:
        write_activity_log({
            "source": "scheduler",
            "event": event,
            "fields": {"status": status, "duration_ms": int(duration_s * 1000), **fields},
        })
    except Exception:
        LOG.debug("write_activity_log failed for %s", event, exc_info=True)


def _write_error(event: str, exc: BaseException) -> None:
    try:
        write_error_log({"source": "scheduler", "event": event, "error": repr(exc)})
    except Exception:
        LOG.debug("write_error_log failed for %s", event, exc_info=True)
