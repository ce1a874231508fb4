# job_tracker/scrapers/__init__.py
from __future__ import annotations

from .base import InvalidCandidate, ScraperError, SourceExtractor, UnparseableDocument
from .registry import ExtractorRegistry, UnconfiguredSource, default_registry, register

# Importing the variants registers them (@register) in the built-in table.
from .buscojobs import BuscoJobsExtractor
from .computrabajo import CompuTrabajoExtractor
from .linkedin import LinkedInExtractor
from .stub import StubExtractor
from .uruguay_concursa import UruguayConcursaExtractor
from .uruguay_xxi import UruguayXXIExtractor

__all__ = [
    "BuscoJobsExtractor",
    "CompuTrabajoExtractor",
    "ExtractorRegistry",
    "InvalidCandidate",
    "LinkedInExtractor",
    "ScraperError",
    "SourceExtractor",
    "StubExtractor",
    "UnconfiguredSource",
    "UnparseableDocument",
    "UruguayConcursaExtractor",
    "UruguayXXIExtractor",
    "default_registry",
    "register",
]
