# modules/job_tracker/lib/scrapers/linkedin.py
"""
LinkedIn public (guest) job search results.

Only the server-rendered guest markup is read; anything behind a login wall
is simply not there and yields no candidates.
"""

from __future__ import annotations

from bs4.element import Tag

from ..models import Candidate
from ..normalize import clean_text, make_external_id, normalize_url, origin_of, parse_date
from ..utils import today_iso
from .base import InvalidCandidate, SourceExtractor
from .markup import first_attr, first_text, keyword_links, parse_document, select_any
from .registry import register

CARD_SELECTORS = (".base-card", ".job-card-container", ".jobs-search__results-list li")
LINK_HINTS = ("/jobs/view/",)

DEFAULT_COMPANY = "Empresa confidencial"
DEFAULT_DESCRIPTION = "Visita LinkedIn para más detalles."


@register
class LinkedInExtractor(SourceExtractor):
    source_id = "linkedin"
    tag = "li"

    def extract(self) -> list[Candidate]:
        self.log.info("Fetching job listings...")
        html = self.fetch_page()
        if html is None:
            return []
        soup = parse_document(html, where=self.source.id)
        base = origin_of(self.source.url)

        jobs = self.collect(select_any(soup, CARD_SELECTORS), lambda el: self._from_card(el, base))
        if not jobs:
            self.log.warning("No job cards found, falling back to /jobs/view/ links")
            jobs = self.collect(keyword_links(soup, href_keywords=LINK_HINTS), lambda a: self._from_link(a, base))

        self.log.info("Found %d jobs", len(jobs))
        return jobs

    def _from_card(self, el: Tag, base: str) -> Candidate:
        title = first_text(el, "h3, .base-search-card__title, .job-card-list__title")
        if not title:
            raise InvalidCandidate("card without title")
        link = first_attr(el, "a", "href")
        if not link:
            raise InvalidCandidate("card without link")
        url = normalize_url(link, base)

        # <time datetime="2025-01-20"> is exact; the visible text is "hace 2 días".
        date_el = el.select_one("time, .job-search-card__listdate")
        posted = None
        if date_el is not None:
            posted = parse_date(str(date_el.get("datetime") or "")) or parse_date(clean_text(date_el.get_text(" ")))

        return Candidate(
            external_id=make_external_id(self.tag, url),
            title=title,
            url=url,
            company=first_text(el, "h4, .base-search-card__subtitle, .job-card-container__company-name")
            or DEFAULT_COMPANY,
            location=first_text(el, ".job-search-card__location, .job-card-container__metadata-item") or "Uruguay",
            description=first_text(el, ".base-search-card__snippet, .job-card-list__snippet", 1000)
            or DEFAULT_DESCRIPTION,
            posted_date=posted or today_iso(),
            category="general",
        )

    def _from_link(self, a: Tag, base: str) -> Candidate:
        url = normalize_url(str(a.get("href") or ""), base)
        return Candidate(
            external_id=make_external_id(self.tag, url),
            title=clean_text(a.get_text(" "), 200),
            url=url,
            company=DEFAULT_COMPANY,
            location="Uruguay",
            description=DEFAULT_DESCRIPTION,
            posted_date=today_iso(),
            category="general",
        )
