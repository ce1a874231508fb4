# modules/job_tracker/lib/__init__.py
from __future__ import annotations

# Re-export commonly-used types for convenience
from .catalog import Catalog
from .config import ConfigError, ScraperConfig, Settings, SourceConfig
from .db import RecordStore, RunLogStateError, SourceNotFound
from .engine import IngestionEngine
from .http_client import FetchExhausted, RetryingFetcher
from .models import Candidate, Posting, RunLog, RunOutcome, Source
from .scrapers import ExtractorRegistry, UnconfiguredSource, default_registry

__all__ = [
    "Candidate",
    "Catalog",
    "ConfigError",
    "ExtractorRegistry",
    "FetchExhausted",
    "IngestionEngine",
    "Posting",
    "RecordStore",
    "RetryingFetcher",
    "RunLog",
    "RunLogStateError",
    "RunOutcome",
    "ScraperConfig",
    "Settings",
    "Source",
    "SourceConfig",
    "SourceNotFound",
    "UnconfiguredSource",
    "default_registry",
]
