from __future__ import annotations

from typing import Any

from ..models import Candidate
from ..normalize import make_external_id
from .base import ScraperError, SourceExtractor
from .registry import register


@register
class StubExtractor(SourceExtractor):
    """
    A zero-network extractor used for tests and dry-runs.

    ScraperConfig.params may contain:
      - items: list[{title:str, url:str, ...Candidate fields}]  # REQUIRED for producing candidates
      - fail:  str                                              # OPTIONAL, raise ScraperError(fail)

    Items without external_id get "stub-<hash(url)>". Invalid items are
    dropped exactly like a real extractor would drop them.
    """

    source_id = "stub"
    tag = "stub"

    _FIELDS = (
        "company",
        "location",
        "description",
        "posted_date",
        "closing_date",
        "salary",
        "job_type",
        "category",
    )

    def extract(self) -> list[Candidate]:
        params: dict[str, Any] = dict(self.config.params or {})
        if params.get("fail"):
            raise ScraperError(str(params["fail"]))

        raw_items = params.get("items") or []
        if not isinstance(raw_items, list):
            raw_items = []
        return self.collect(raw_items, self._from_item)

    def _from_item(self, item: Any) -> Candidate | None:
        if not isinstance(item, dict):
            return None
        url = str(item.get("url") or "").strip()
        extra = {k: item[k] for k in self._FIELDS if item.get(k) is not None}
        return Candidate(
            external_id=str(item.get("external_id") or make_external_id(self.tag, url)),
            title=str(item.get("title") or "").strip(),
            url=url,
            **extra,
        )
