# modules/job_tracker/lib/scrapers/computrabajo.py
from __future__ import annotations

from bs4.element import Tag

from ..models import Candidate
from ..normalize import clean_text, make_external_id, normalize_url, origin_of, parse_date
from ..utils import today_iso
from .base import InvalidCandidate, SourceExtractor
from .markup import all_text, first_attr, first_text, keyword_links, parse_document, select_any
from .registry import register

CARD_SELECTORS = ("article[data-link]", ".box_offer", ".job-offer", 'div[id*="offer"]')
LINK_HINTS = ("/ofertas-de-trabajo/",)


@register
class CompuTrabajoExtractor(SourceExtractor):
    """
    CompuTrabajo Uruguay. Offer cards are <article data-link="...">; the link
    may live on the card itself rather than on an inner anchor. Salary is kept
    verbatim when the card shows one.
    """

    source_id = "computrabajo"
    tag = "computrabajo"

    def extract(self) -> list[Candidate]:
        self.log.info("Fetching job listings...")
        html = self.fetch_page()
        if html is None:
            return []
        soup = parse_document(html, where=self.source.id)
        base = origin_of(self.source.url)

        jobs = self.collect(select_any(soup, CARD_SELECTORS), lambda el: self._from_card(el, base))
        if not jobs:
            self.log.warning("No offer cards found, falling back to offer links")
            links = keyword_links(soup, href_keywords=LINK_HINTS)
            jobs = self.collect(links, lambda a: self._from_link(a, base))

        self.log.info("Found %d jobs", len(jobs))
        return jobs

    def _from_card(self, el: Tag, base: str) -> Candidate:
        title = first_text(el, 'h2, h3, .js-o-link, a[class*="title"]')
        if len(title) < 3:
            raise InvalidCandidate("card without title")
        link = first_attr(el, "a", "href") or str(el.get("data-link") or "")
        url = normalize_url(link, base)
        return Candidate(
            external_id=make_external_id(self.tag, url),
            title=title,
            url=url,
            company=first_text(el, '.company, [class*="company"]') or "No especificada",
            location=first_text(el, '.location, [class*="location"], [class*="lugar"]') or "Uruguay",
            description=first_text(el, ".offer_description, p", 500) or title,
            posted_date=parse_date(all_text(el, '.date, time, [class*="fecha"]')) or today_iso(),
            salary=first_text(el, '.salary, [class*="salario"]') or None,
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
