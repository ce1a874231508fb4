from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable
from typing import TypeVar

from ..config import ScraperConfig
from ..http_client import FetchExhausted, RetryingFetcher
from ..models import Candidate, Source
from ..normalize import is_valid_candidate

T = TypeVar("T")


class ScraperError(Exception):
    """Base exception for extractor failures."""


class UnparseableDocument(ScraperError):
    """The fetched document has no structural anchor to extract from."""


class InvalidCandidate(ScraperError):
    """A single listing lacked required fields; dropped, never surfaced."""


class SourceExtractor(ABC):
    """
    Extraction interface, one instance per configured source.

    Contract:
      - extract() returns the candidates found on the source (no source_id).
      - Every returned candidate satisfies is_valid_candidate().
      - One malformed listing never aborts the rest.
      - FetchExhausted is handled inside extract(): warning + empty list.
      - UnparseableDocument propagates; the engine records it as a run error.
      - Network access goes through self.fetcher only.
    """

    # Concrete subclasses MUST set this to the registry key, e.g. "buscojobs"
    source_id: str = ""

    def __init__(self, source: Source, fetcher: RetryingFetcher, config: ScraperConfig) -> None:
        self.source = source
        self.fetcher = fetcher
        self.config = config
        self.log = logging.getLogger(f"{type(self).__module__}[{source.id}]")

    @abstractmethod
    def extract(self) -> list[Candidate]:
        """Fetch the source document(s) and return valid candidates."""
        raise NotImplementedError

    # ---- helpers shared by variants ----
    def fetch_page(self, url: str | None = None) -> str | None:
        """
        GET the listing page (source.url by default).
        Returns None once retries are exhausted; the caller then yields no candidates.
        """
        target = url or self.source.url
        try:
            return self.fetcher.fetch(target)
        except FetchExhausted as e:
            self.log.warning("Giving up on %s after %d attempts: %s", e.url, e.attempts, e.last_error)
            return None

    def collect(self, elements: Iterable[T], build: Callable[[T], Candidate | None]) -> list[Candidate]:
        """
        Apply `build` to every element, keeping only valid candidates.
        Per-element failures are logged and skipped. A repeated id keeps its first
        position but takes the fields of the latest listing.
        """
        by_id: dict[str, Candidate] = {}
        for el in elements:
            try:
                cand = build(el)
                if cand is None or not is_valid_candidate(cand):
                    raise InvalidCandidate("missing id, title or url")
            except InvalidCandidate as e:
                self.log.debug("Dropped listing: %s", e)
                continue
            except Exception as e:
                self.log.warning("Error processing listing: %s", e)
                continue
            by_id[cand.external_id] = cand
        return list(by_id.values())
