# service/cli.py
"""
User-facing command-line entrypoints for the container.

Subcommands
-----------
serve
    - Starts the RunScheduler (APScheduler interval/cron trigger)
    - Registers signal handlers for graceful shutdown

run [--source ID] [--background]
    - One ingestion pass now (all enabled sources, or a single one)
    - Shares the scheduler's overlap guard

sweep
    - Deactivates postings whose closing date has passed

jobs [--source ID] [--search TEXT] [--location TEXT] [--all] [--limit N] [--json]
stats
sources
toggle-source ID on|off
logs [--source ID] [--limit N]
    - Read/maintenance views over the record store

validate-config
    - Loads/validates config and returns nonzero on error

Exit codes: 0 ok, 1 failure, 2 configuration unavailable, 130 interrupted.
"""

from __future__ import annotations

import argparse
import functools
import json
import logging
import signal
import sys
import threading
import time
from collections.abc import Iterable, Sequence
from dataclasses import asdict
from datetime import datetime
from types import SimpleNamespace
from typing import Any

from modules.job_tracker.lib.catalog import Catalog
from modules.job_tracker.lib.config import ConfigError as SettingsError
from modules.job_tracker.lib.config import Settings
from modules.job_tracker.lib.db import SourceNotFound
from modules.job_tracker.lib.models import RunOutcome
from modules.job_tracker.main import build_engine
from service import config_schema as _config_schema
from service import logging_utils as L
from service import scheduler as _scheduler

LOG = logging.getLogger("service.cli")


# -------------------------- Utility / glue code ------------------------------
class _Unavailable(Exception):
    """Configuration could not be loaded/validated (exit code 2)."""


def _now_iso() -> str:
    return datetime.now().astimezone().isoformat()


def _load_context(args: argparse.Namespace) -> SimpleNamespace:
    """cfg -> Settings -> engine + catalog + scheduler, all sharing one store."""
    try:
        cfg = _config_schema.load_config(args.config)
        _config_schema.validate(cfg)
        settings = Settings.from_env_and_kwargs(cfg.get("ingest") or {})
    except (_config_schema.ConfigError, SettingsError) as e:
        raise _Unavailable(str(e)) from e
    engine = build_engine(settings)
    return SimpleNamespace(
        cfg=cfg,
        settings=settings,
        engine=engine,
        catalog=Catalog(engine.store),
        scheduler=_scheduler.RunScheduler.from_config(engine, cfg),
    )


def _print_table(rows: Iterable[Sequence[Any]], headers: Sequence[str]) -> None:
    """Very simple fixed-width table printer."""
    rows = [[("" if c is None else str(c)) for c in r] for r in rows]
    widths = [len(h) for h in headers]
    for r in rows:
        widths = [max(w, len(c)) for w, c in zip(widths, r)]
    sep = "+-" + "-+-".join("-" * w for w in widths) + "-+"
    print(sep)
    print("| " + " | ".join(h.ljust(w) for h, w in zip(headers, widths)) + " |")
    print(sep)
    for r in rows:
        print("| " + " | ".join(c.ljust(w) for c, w in zip(r, widths)) + " |")
    print(sep)


def _print_outcomes(outcomes: Sequence[RunOutcome]) -> None:
    for o in outcomes:
        if o.success:
            print(f"OK   {o.source_name}: {o.jobs_found} found, {o.jobs_added} added, {o.jobs_updated} updated")
        else:
            print(f"FAIL {o.source_name}: {o.error}")


def _dump_json(value: Any) -> None:
    print(json.dumps(value, ensure_ascii=False, indent=2, default=str))


def _guarded(fn):
    """Map the common failure modes of a subcommand onto exit codes."""

    @functools.wraps(fn)
    def wrapper(args: argparse.Namespace) -> int:
        try:
            return fn(args)
        except KeyboardInterrupt:
            return 130
        except _Unavailable as e:
            print(f"ERROR: configuration unavailable: {e}", file=sys.stderr)
            return 2
        except Exception as e:
            LOG.exception("Command %s failed: %s", args.cmd, e)
            print(f"FAILURE: {e}", file=sys.stderr)
            L.write_error_log({"ts": _now_iso(), "where": f"cli.{args.cmd}", "error": repr(e)})
            return 1

    return wrapper


# ------------------------------ Subcommands ----------------------------------
def cmd_validate_config(args: argparse.Namespace) -> int:
    try:
        cfg = _config_schema.load_config(args.config)
        _config_schema.validate(cfg)
        print("OK: configuration is valid.")
        return 0
    except KeyboardInterrupt:
        return 130
    except Exception as e:
        LOG.exception("Configuration validation failed: %s", e)
        print(f"ERROR: configuration invalid: {e}", file=sys.stderr)
        return 1


@_guarded
def cmd_run(args: argparse.Namespace) -> int:
    ctx = _load_context(args)
    sched = ctx.scheduler
    start_time = time.monotonic()

    if args.source:
        outcome = sched.trigger_source(args.source)
        outcomes = None if outcome is None else [outcome]
    elif args.background:
        if not sched.trigger_in_background():
            print("SKIPPED: a run is already in progress.")
            return 0
        print("QUEUED: run started in the background.")
        sched.drain()
        outcomes = []
    else:
        outcomes = sched.trigger()

    if outcomes is None:
        print("SKIPPED: a run is already in progress.")
        return 0

    _print_outcomes(outcomes)
    L.write_activity_log({
        "ts": _now_iso(),
        "event": "cli_run",
        "trigger_type": "adhoc",
        "source": args.source,
        "background": bool(args.background),
        "outcomes": [o.as_dict() for o in outcomes],
        "duration_ms": int((time.monotonic() - start_time) * 1000),
    })
    return 0 if all(o.success for o in outcomes) else 1


@_guarded
def cmd_sweep(args: argparse.Namespace) -> int:
    ctx = _load_context(args)
    n = ctx.catalog.sweep_expired()
    print(f"Deactivated {n} expired posting(s).")
    return 0


@_guarded
def cmd_jobs(args: argparse.Namespace) -> int:
    ctx = _load_context(args)
    postings = ctx.catalog.list_postings(
        active=None if args.all else True,
        source_id=args.source,
        search=args.search,
        location=args.location,
        limit=args.limit,
    )
    if args.json:
        _dump_json([asdict(p) for p in postings])
        return 0
    if not postings:
        print("No postings found.")
        return 0
    _print_table(
        ((p.id, p.source_id, p.title[:60], p.company, p.posted_date, p.closing_date) for p in postings),
        headers=("ID", "SOURCE", "TITLE", "COMPANY", "POSTED", "CLOSES"),
    )
    return 0


@_guarded
def cmd_stats(args: argparse.Namespace) -> int:
    ctx = _load_context(args)
    _dump_json(ctx.catalog.posting_stats())
    return 0


@_guarded
def cmd_sources(args: argparse.Namespace) -> int:
    ctx = _load_context(args)
    sources = ctx.catalog.list_sources()
    if not sources:
        print("No sources configured.")
        return 0
    _print_table(
        ((s.id, s.name, "on" if s.enabled else "off", s.last_scraped, s.total_jobs) for s in sources),
        headers=("ID", "NAME", "ENABLED", "LAST SCRAPED", "JOBS"),
    )
    return 0


@_guarded
def cmd_toggle_source(args: argparse.Namespace) -> int:
    ctx = _load_context(args)
    enabled = args.state == "on"
    if not ctx.catalog.toggle_source(args.source_id, enabled):
        print(f"ERROR: {SourceNotFound(args.source_id)}", file=sys.stderr)
        return 1
    print(f"{args.source_id}: {'enabled' if enabled else 'disabled'}")
    return 0


@_guarded
def cmd_logs(args: argparse.Namespace) -> int:
    ctx = _load_context(args)
    if args.source:
        logs = ctx.catalog.run_logs_for_source(args.source, limit=args.limit or 10)
    else:
        logs = ctx.catalog.recent_run_logs(limit=args.limit or 50)
    if not logs:
        print("No run logs yet.")
        return 0
    rows = [
        (
            lg.id,
            lg.source_name or lg.source_id,
            lg.status,
            lg.jobs_found,
            lg.jobs_added,
            lg.jobs_updated,
            lg.started_at,
            lg.error_message,
        )
        for lg in logs
    ]
    _print_table(
        rows,
        headers=("ID", "SOURCE", "STATUS", "FOUND", "ADDED", "UPDATED", "STARTED", "ERROR"),
    )
    return 0


def cmd_serve(args: argparse.Namespace) -> int:
    """
    Run the scheduler loop in a daemon-like fashion until a termination
    signal is received, then stop it cleanly.
    """
    L.write_activity_log({"ts": _now_iso(), "event": "serve_start"})

    stop_event = threading.Event()
    running = SimpleNamespace(sched=None)

    def _graceful_shutdown(signum=None, frame=None):
        LOG.info("Signal %s received; initiating shutdown...", signum)
        stop_event.set()
        _safe_stop("scheduler", running.sched)

    # Register signals early
    for sig in (signal.SIGINT, signal.SIGTERM):
        signal.signal(sig, _graceful_shutdown)

    try:
        ctx = _load_context(args)
        running.sched = ctx.scheduler
        running.sched.start()
        LOG.info("Scheduler started: %r", running.sched)

        # Main wait loop (respond quickly to signals)
        while not stop_event.is_set():
            time.sleep(0.3)

        _safe_stop("scheduler", running.sched)
        L.write_activity_log({"ts": _now_iso(), "event": "serve_stop"})
        return 0

    except KeyboardInterrupt:
        _graceful_shutdown("KeyboardInterrupt")
        return 130
    except _Unavailable as e:
        print(f"ERROR: configuration unavailable: {e}", file=sys.stderr)
        return 2
    except Exception as e:
        LOG.exception("Fatal error in serve: %s", e)
        _graceful_shutdown("UnhandledException")
        return 1


def _safe_stop(name: str, handle: Any) -> None:
    """Best-effort stop & join for a scheduler-like object."""
    if handle is None:
        return
    try:
        handle.stop()
        handle.join(timeout=10.0)
    except Exception:  # pragma: no cover
        LOG.exception("Error stopping %s", name)


# ------------------------------- Argparse ------------------------------------
def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="python -m service.cli",
        description="Job tracker service command-line tools",
    )
    p.add_argument(
        "--config",
        help="Path to config file (fallbacks to CONFIG_PATH env or built-in default).",
    )
    sub = p.add_subparsers(dest="cmd", required=True)

    # serve
    sp = sub.add_parser("serve", help="Run the periodic ingestion scheduler.")
    sp.set_defaults(func=cmd_serve)

    # run
    sp = sub.add_parser("run", help="Run ingestion now (all enabled sources, or one).")
    sp.add_argument("--source", help="Only run this source id.")
    sp.add_argument(
        "--background",
        action="store_true",
        help="Queue the run on the background worker and wait for it to finish.",
    )
    sp.set_defaults(func=cmd_run)

    # sweep
    sp = sub.add_parser("sweep", help="Deactivate postings whose closing date has passed.")
    sp.set_defaults(func=cmd_sweep)

    # jobs
    sp = sub.add_parser("jobs", help="List stored postings (most recent first).")
    sp.add_argument("--source", help="Filter by source id.")
    sp.add_argument("--search", help="Match title/company/description.")
    sp.add_argument("--location", help="Match location.")
    sp.add_argument("--all", action="store_true", help="Include inactive postings.")
    sp.add_argument("--limit", type=int, help="Maximum rows.")
    sp.add_argument("--json", action="store_true", help="Print JSON instead of a table.")
    sp.set_defaults(func=cmd_jobs)

    # stats
    sp = sub.add_parser("stats", help="Posting counts (total, active, per source).")
    sp.set_defaults(func=cmd_stats)

    # sources
    sp = sub.add_parser("sources", help="List configured sources.")
    sp.set_defaults(func=cmd_sources)

    # toggle-source
    sp = sub.add_parser("toggle-source", help="Enable or disable a source.")
    sp.add_argument("source_id")
    sp.add_argument("state", choices=("on", "off"))
    sp.set_defaults(func=cmd_toggle_source)

    # logs
    sp = sub.add_parser("logs", help="Show recent run logs.")
    sp.add_argument("--source", help="Only logs for this source id.")
    sp.add_argument("--limit", type=int, help="Maximum rows (default 50, or 10 per source).")
    sp.set_defaults(func=cmd_logs)

    # validate-config
    sp = sub.add_parser("validate-config", help="Verify configuration correctness.")
    sp.set_defaults(func=cmd_validate_config)

    return p


# --------------------------------- Main --------------------------------------
def main(argv: Iterable[str] | None = None) -> int:
    L.configure_logging()
    parser = _build_parser()
    args = parser.parse_args(args=list(argv) if argv is not None else None)
    # Attach top-level args (like --config) to subcommand handlers
    return args.func(args)


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
