from __future__ import annotations

from datetime import date
from typing import Any, Optional

from .db import RecordStore
from .models import Posting, RunLog, Source


class Catalog:
    """
    Read and maintenance operations for an outer API layer.

    Listing postings sweeps expired ones first, so a caller never sees a
    posting as active after its closing date.
    """

    def __init__(self, store: RecordStore) -> None:
        self.store = store

    # ---- postings ----
    def list_postings(
        self,
        *,
        active: Optional[bool] = None,
        source_id: Optional[str] = None,
        search: Optional[str] = None,
        location: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list[Posting]:
        self.sweep_expired()
        return self.store.query_postings(
            active=active,
            source_id=source_id,
            search=search,
            location=location,
            limit=limit,
        )

    def get_posting(self, posting_id: int) -> Optional[Posting]:
        return self.store.get_posting(posting_id)

    def posting_stats(self) -> dict[str, Any]:
        return self.store.posting_stats()

    def deactivate_posting(self, posting_id: int) -> bool:
        return self.store.deactivate_posting(posting_id)

    def sweep_expired(self, today: Optional[date] = None) -> int:
        return self.store.sweep_expired((today or date.today()).isoformat())

    # ---- sources ----
    def list_sources(self) -> list[Source]:
        return self.store.list_sources()

    def get_source(self, source_id: str) -> Optional[Source]:
        return self.store.get_source(source_id)

    def toggle_source(self, source_id: str, enabled: bool) -> bool:
        return self.store.set_source_enabled(source_id, enabled)

    def source_stats(self, source_id: str) -> dict[str, Any]:
        """Raises SourceNotFound for an unknown id."""
        self.store.require_source(source_id)
        return self.store.source_stats(source_id)

    # ---- run logs ----
    def recent_run_logs(self, limit: int = 50) -> list[RunLog]:
        return self.store.recent_run_logs(limit)

    def run_logs_for_source(self, source_id: str, limit: int = 10) -> list[RunLog]:
        return self.store.run_logs_for_source(source_id, limit)
