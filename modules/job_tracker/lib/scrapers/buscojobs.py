# modules/job_tracker/lib/scrapers/buscojobs.py
from __future__ import annotations

from bs4.element import Tag

from ..models import Candidate
from ..normalize import clean_text, make_external_id, normalize_url, origin_of, parse_date
from ..utils import today_iso
from .base import InvalidCandidate, SourceExtractor
from .markup import all_text, first_attr, first_text, keyword_links, parse_document, select_any
from .registry import register

CARD_SELECTORS = (".job-item", ".job-card", "article.job", ".offer-item")
LINK_HINTS = ("/oferta", "/empleo")


@register
class BuscoJobsExtractor(SourceExtractor):
    """
    BuscoJobs Uruguay listing page.

    Job cards carry title/company/location/date; the fallback keeps any link
    pointing at an offer page and uses its text as the title.
    """

    source_id = "buscojobs"
    tag = "buscojobs"

    def extract(self) -> list[Candidate]:
        self.log.info("Fetching job listings...")
        html = self.fetch_page()
        if html is None:
            return []
        soup = parse_document(html, where=self.source.id)
        base = origin_of(self.source.url)

        jobs = self.collect(select_any(soup, CARD_SELECTORS), lambda el: self._from_card(el, base))
        if not jobs:
            self.log.warning("No job cards found, falling back to offer links")
            links = keyword_links(soup, href_keywords=LINK_HINTS)
            jobs = self.collect(links, lambda a: self._from_link(a, base))

        self.log.info("Found %d jobs", len(jobs))
        return jobs

    def _from_card(self, el: Tag, base: str) -> Candidate:
        title = first_text(el, "h2, h3, .job-title, .title")
        if len(title) < 3:
            raise InvalidCandidate("card without title")
        url = normalize_url(first_attr(el, "a", "href"), base)
        return Candidate(
            external_id=make_external_id(self.tag, url),
            title=title,
            url=url,
            company=first_text(el, ".company, .employer, .company-name") or "No especificada",
            location=first_text(el, ".location, .city, .place") or "Uruguay",
            description=first_text(el, ".description, .summary, p", 500) or title,
            posted_date=parse_date(all_text(el, ".date, .posted, time")) or today_iso(),
        )

    def _from_link(self, a: Tag, base: str) -> Candidate:
        title = clean_text(a.get_text(" "), 200)
        url = normalize_url(str(a.get("href") or ""), base)
        return Candidate(
            external_id=make_external_id(self.tag, url),
            title=title,
            url=url,
            company="No especificada",
            location="Uruguay",
            description=title,
            posted_date=today_iso(),
        )
