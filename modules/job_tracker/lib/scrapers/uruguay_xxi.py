# modules/job_tracker/lib/scrapers/uruguay_xxi.py
"""
Uruguay XXI "llamados y licitaciones" page.

Cards first (.llamados-item & co); when the page layout yields nothing, any
link inside the main content whose text mentions llamado/licitación/concurso.
Titles often end with the closing date ("... 15/03/2025"), which is cut off
and stored as closing_date.
"""

from __future__ import annotations

import re
from typing import Optional

from bs4.element import Tag

from ..models import Candidate
from ..normalize import clean_text, make_external_id, normalize_url, origin_of, parse_date
from ..utils import today_iso
from .base import InvalidCandidate, SourceExtractor
from .markup import all_text, first_attr, first_text, keyword_links, parse_document, select_any
from .registry import register

CARD_SELECTORS = (".llamados-item", ".job-listing", "article.llamado", ".licitacion-item")
CONTENT_SELECTORS = ("main", ".content", "#content")
KEYWORDS = ("llamado", "licitación", "licitacion", "concurso")

COMPANY = "Uruguay XXI"
DEFAULT_DESCRIPTION = "Llamado o licitación de Uruguay XXI. Visita el enlace para más información."

_DMY = re.compile(r"\d{2}/\d{2}/\d{4}")
_TRAILING_DMY = re.compile(r"\s*\d{2}/\d{2}/\d{4}\s*$")


def split_closing_date(title: str) -> tuple[str, Optional[str]]:
    """
    ('Consultoría ... 15/03/2025') -> ('Consultoría ...', '2025-03-15').
    An impossible date (31/02) gives no closing date.
    """
    m = _DMY.search(title)
    if not m:
        return title, None
    return _TRAILING_DMY.sub("", title).strip(), parse_date(m.group(0))


@register
class UruguayXXIExtractor(SourceExtractor):
    source_id = "uruguay-xxi"
    tag = "uxxi"

    def extract(self) -> list[Candidate]:
        self.log.info("Fetching llamados...")
        html = self.fetch_page()
        if html is None:
            return []
        soup = parse_document(html, where=self.source.id)
        base = origin_of(self.source.url)

        jobs = self.collect(select_any(soup, CARD_SELECTORS), lambda el: self._from_card(el, base))
        if not jobs:
            self.log.warning("No items found with specific selectors, trying generic approach...")
            scopes = select_any(soup, CONTENT_SELECTORS)
            links = keyword_links(scopes, text_keywords=KEYWORDS, min_text_length=10)
            jobs = self.collect(links, lambda a: self._from_link(a, base))

        self.log.info("Found %d items", len(jobs))
        return jobs

    def _from_card(self, el: Tag, base: str) -> Candidate:
        raw_title = first_text(el, "h2, h3, .title, .llamado-title") or first_text(el, "a")
        if len(raw_title) < 3:
            raise InvalidCandidate("card without title")
        title, closing = split_closing_date(raw_title)
        url = normalize_url(first_attr(el, "a", "href"), base)

        description = first_text(el, "p, .description, .excerpt", 1000)
        if not description:
            description = clean_text(el.get_text(" ").replace(title, ""), 1000)
        posted = parse_date(all_text(el, ".date, .fecha, time"))

        return Candidate(
            external_id=make_external_id(self.tag, url),
            title=title,
            url=url,
            company=COMPANY,
            location="Uruguay",
            description=description or DEFAULT_DESCRIPTION,
            posted_date=posted or today_iso(),
            closing_date=closing,
            category="gobierno",
            job_type="Licitación/Llamado",
        )

    def _from_link(self, a: Tag, base: str) -> Candidate:
        title, closing = split_closing_date(clean_text(a.get_text(" ")))
        url = normalize_url(str(a.get("href") or ""), base)
        return Candidate(
            external_id=make_external_id(self.tag, url),
            title=title,
            url=url,
            company=COMPANY,
            location="Uruguay",
            description=DEFAULT_DESCRIPTION,
            posted_date=today_iso(),
            closing_date=closing,
            category="gobierno",
            job_type="Licitación/Llamado",
        )
