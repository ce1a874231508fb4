from __future__ import annotations

from collections.abc import Callable

from ..config import ScraperConfig
from ..http_client import RetryingFetcher
from ..models import Source
from .base import SourceExtractor

# (source, fetcher, config) -> extractor; an extractor class satisfies this.
ExtractorFactory = Callable[[Source, RetryingFetcher, ScraperConfig], SourceExtractor]

# Built-in variants, filled by the @register decorator at import time.
_BUILTINS: dict[str, ExtractorFactory] = {}


class UnconfiguredSource(LookupError):
    """No extractor is registered for the source id."""

    def __init__(self, source_id: str) -> None:
        super().__init__(f"No extractor configured for source {source_id!r}")
        self.source_id = source_id


def _key(source_id: str) -> str:
    return (source_id or "").strip().lower()


class ExtractorRegistry:
    """
    source id -> extractor factory.

    Instances are explicit state: the engine is handed one, tests build their
    own. default_registry() returns one pre-loaded with the built-in variants.
    """

    def __init__(self, factories: dict[str, ExtractorFactory] | None = None) -> None:
        self._factories: dict[str, ExtractorFactory] = {}
        for sid, factory in (factories or {}).items():
            self.register(sid, factory)

    def register(self, source_id: str, factory: ExtractorFactory) -> None:
        """Register (or silently replace) the factory for `source_id`."""
        key = _key(source_id)
        if not key:
            raise ValueError("Cannot register an extractor under an empty source id.")
        if not callable(factory):
            raise TypeError(f"Extractor factory for {key!r} must be callable, got {factory!r}.")
        self._factories[key] = factory

    def unregister(self, source_id: str) -> None:
        self._factories.pop(_key(source_id), None)

    def is_supported(self, source_id: str) -> bool:
        return _key(source_id) in self._factories

    def source_ids(self) -> list[str]:
        return sorted(self._factories)

    def resolve(self, source: Source, *, fetcher: RetryingFetcher, config: ScraperConfig) -> SourceExtractor:
        """
        Build the extractor bound to `source`.
        Raises UnconfiguredSource if nothing is registered for source.id.
        """
        factory = self._factories.get(_key(source.id))
        if factory is None:
            raise UnconfiguredSource(source.id)
        return factory(source, fetcher, config)


def register(cls: type[SourceExtractor]) -> type[SourceExtractor]:
    """
    Class decorator registering a built-in extractor under cls.source_id.
    Requires cls.source_id to be a non-empty string.
    """
    sid = getattr(cls, "source_id", "") or ""
    if not isinstance(sid, str) or not sid.strip():
        raise ValueError(f"Cannot register extractor {cls!r}: missing/empty 'source_id'.")
    key = _key(sid)
    if key in _BUILTINS and _BUILTINS[key] is not cls:
        # Allow idempotent re-registers of the same class; otherwise reject.
        raise ValueError(f"Source id {key!r} already registered to {_BUILTINS[key]!r}.")
    _BUILTINS[key] = cls
    return cls


def default_registry() -> ExtractorRegistry:
    """A fresh registry holding every built-in variant (imported by the package)."""
    return ExtractorRegistry(dict(_BUILTINS))
