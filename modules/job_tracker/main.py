from __future__ import annotations

from typing import Any

from .lib.config import Settings
from .lib.db import RecordStore
from .lib.engine import IngestionEngine
from .lib.scrapers import default_registry


def build_engine(settings: Settings, **engine_kwargs: Any) -> IngestionEngine:
    """
    Wire store + built-in registry + settings into an engine.
    Source rows are seeded from settings (enabled flag only on first sight).

    Runs go through service.scheduler.RunScheduler, which owns the run guard.
    """
    store = RecordStore(settings.sqlite_path)
    store.init()
    store.sync_sources(settings.sources)
    return IngestionEngine(store, default_registry(), settings, **engine_kwargs)
