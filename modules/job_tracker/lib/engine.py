"""
Ingestion engine: runs extractors for one or all enabled sources, upserts what
they find, and records one run log per source attempt.

Features:
  - Sources run strictly sequentially, with a politeness delay after each
  - Failure isolation: one source failing never aborts the others
  - Expiration sweep (closing_date in the past -> inactive)
  - Dependency injection for testability (`sleep`, `fetcher_factory`)
  - Structured activity/error records via `logging_bridge`
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from datetime import date
from typing import Optional

from . import logging_bridge
from .config import ScraperConfig, Settings
from .db import RecordStore
from .http_client import RetryingFetcher
from .models import RUN_ERROR, RUN_SUCCESS, RunOutcome
from .scrapers.registry import ExtractorRegistry

LOG = logging.getLogger(__name__)

FetcherFactory = Callable[[ScraperConfig], RetryingFetcher]


def _elapsed_us(start_ns: int) -> int:
    return int((time.perf_counter_ns() - start_ns) // 1000)


class IngestionEngine:
    def __init__(
        self,
        store: RecordStore,
        registry: ExtractorRegistry,
        settings: Settings,
        *,
        sleep: Callable[[float], None] = time.sleep,
        fetcher_factory: FetcherFactory = RetryingFetcher.from_config,
    ) -> None:
        self.store = store
        self.registry = registry
        self.settings = settings
        self._sleep = sleep
        self._fetcher_factory = fetcher_factory

    # =========================================================================
    # ALL SOURCES
    # =========================================================================
    def run_all(self) -> list[RunOutcome]:
        """
        One outcome per enabled source, in store order. Never raises for a
        single source's failure.
        """
        start_ns = time.perf_counter_ns()
        sources = self.store.enabled_sources()
        logging_bridge.activity({
            "component": "job_tracker.engine",
            "op": "run_start",
            "sources": [s.id for s in sources],
        })

        outcomes: list[RunOutcome] = []
        for src in sources:
            outcomes.append(self.run_one(src.id))
            delay_ms = self.settings.scraper_config_for(src.id).inter_source_delay_ms
            if delay_ms > 0:
                self._sleep(delay_ms / 1000.0)

        logging_bridge.activity({
            "component": "job_tracker.engine",
            "op": "summary",
            "sources": len(outcomes),
            "succeeded": sum(1 for o in outcomes if o.success),
            "failed": [o.source_id for o in outcomes if not o.success],
            "jobs_found": sum(o.jobs_found for o in outcomes),
            "jobs_added": sum(o.jobs_added for o in outcomes),
            "jobs_updated": sum(o.jobs_updated for o in outcomes),
            "total_us": _elapsed_us(start_ns),
        })
        return outcomes

    # =========================================================================
    # ONE SOURCE
    # =========================================================================
    def run_one(self, source_id: str) -> RunOutcome:
        """
        Extract + upsert for a single source.

        Any error after the run log is opened (unknown source, no extractor,
        extraction or storage failure) closes the log as `error` and comes back
        as a failed outcome instead of raising.
        """
        start_ns = time.perf_counter_ns()
        source_name = source_id
        log_id: Optional[int] = None
        fetcher: Optional[RetryingFetcher] = None
        try:
            log_id = self.store.create_run_log(source_id)
            source = self.store.require_source(source_id)
            source_name = source.name
            LOG.info("Scraping %s...", source.name)

            config = self.settings.scraper_config_for(source.id)
            fetcher = self._fetcher_factory(config)
            extractor = self.registry.resolve(source, fetcher=fetcher, config=config)
            candidates = extractor.extract()

            added = updated = 0
            for cand in candidates:
                if self.store.upsert_posting(source.id, cand):
                    added += 1
                else:
                    updated += 1

            self.store.update_source_stats(source.id, len(candidates))
            self.store.complete_run_log(
                log_id,
                RUN_SUCCESS,
                jobs_found=len(candidates),
                jobs_added=added,
                jobs_updated=updated,
            )
        except Exception as e:
            message = str(e) or repr(e)
            LOG.error("Error scraping %s: %s", source_name, message)
            self._fail_run_log(log_id, message)
            logging_bridge.error({
                "component": "job_tracker.engine",
                "op": "run_one",
                "source_id": source_id,
                "error": repr(e),
                "duration_us": _elapsed_us(start_ns),
            })
            return RunOutcome(source_id=source_id, source_name=source_name, success=False, error=message)
        finally:
            if fetcher is not None:
                fetcher.close()

        outcome = RunOutcome(
            source_id=source_id,
            source_name=source_name,
            success=True,
            jobs_found=len(candidates),
            jobs_added=added,
            jobs_updated=updated,
        )
        LOG.info(
            "%s: %d jobs found, %d added, %d updated",
            source_name,
            outcome.jobs_found,
            outcome.jobs_added,
            outcome.jobs_updated,
        )
        logging_bridge.activity({
            "component": "job_tracker.engine",
            "op": "source_result",
            "source_id": source_id,
            "jobs_found": outcome.jobs_found,
            "jobs_added": outcome.jobs_added,
            "jobs_updated": outcome.jobs_updated,
            "duration_us": _elapsed_us(start_ns),
        })
        return outcome

    # =========================================================================
    # EXPIRATION
    # =========================================================================
    def sweep_expired(self, today: date | str | None = None) -> int:
        """Deactivate postings whose closing date is before `today`. Idempotent."""
        if today is None:
            today = date.today()
        day = today.isoformat() if isinstance(today, date) else str(today)
        n = self.store.sweep_expired(day)
        if n:
            LOG.info("Deactivated %d expired postings", n)
        logging_bridge.activity({
            "component": "job_tracker.engine",
            "op": "sweep_expired",
            "today": day,
            "deactivated": n,
        })
        return n

    # ---- internals ----
    def _fail_run_log(self, log_id: Optional[int], message: str) -> None:
        if log_id is None:
            return
        try:
            self.store.complete_run_log(log_id, RUN_ERROR, error_message=message)
        except Exception:
            # The failure itself is already reported by the caller.
            LOG.exception("Could not close run log %s as error", log_id)
