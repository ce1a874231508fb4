# modules/job_tracker/lib/scrapers/uruguay_concursa.py
"""
Uruguay Concursa (ONSC) public calls.

The portal renders calls as table rows keyed by a call number ("123/2025").
Layers, first non-empty wins:
  1. table rows carrying a call number (or the word "llamado")
  2. generic containers (.llamado, .concurso, article, ...)
  3. links that mention llamado/concurso or carry a call number
"""

from __future__ import annotations

import re

from bs4.element import Tag

from ..models import Candidate
from ..normalize import clean_text, make_external_id, normalize_url, origin_of, parse_date
from ..utils import today_iso
from .base import InvalidCandidate, SourceExtractor
from .markup import first_attr, first_text, keyword_links, parse_document, select_any
from .registry import register

ROW_SELECTORS = ("table tr", ".listado tr", ".resultado tr", "tbody tr")
CONTAINER_SELECTORS = (".llamado", ".job-item", ".concurso", "article", ".resultado-item")
LINK_HINTS = ("llamado", "concurso")

DEFAULT_COMPANY = "Uruguay Concursa - ONSC"

_CALL_NUMBER = re.compile(r"(\d{1,5}/\d{4})")
_LLAMADO = re.compile(r"llamado", re.IGNORECASE)
_DMY = re.compile(r"\d{2}/\d{2}/\d{4}")
_DIGITS_ONLY = re.compile(r"^\d+$")
_NAV_TEXT = re.compile(r"inicio|mapa|accesibilidad|sesión|registrarse", re.IGNORECASE)


def _with_onsc(company: str) -> str:
    return company if company == DEFAULT_COMPANY else f"{company} - ONSC"


@register
class UruguayConcursaExtractor(SourceExtractor):
    source_id = "uruguay-concursa"
    tag = "uc"

    def extract(self) -> list[Candidate]:
        self.log.info("Fetching llamados públicos...")
        html = self.fetch_page()
        if html is None:
            return []
        soup = parse_document(html, where=self.source.id)
        base = origin_of(self.source.url)

        rows = [
            tr
            for tr in select_any(soup, ROW_SELECTORS)
            if _CALL_NUMBER.search(tr.get_text(" ")) or _LLAMADO.search(tr.get_text(" "))
        ]
        jobs = self.collect(rows, lambda tr: self._from_row(tr, base))
        if rows:
            self.log.debug("%d candidate rows, %d usable", len(rows), len(jobs))

        if not jobs:
            self.log.warning("Trying alternative selectors for job listings...")
            jobs = self.collect(select_any(soup, CONTAINER_SELECTORS), lambda el: self._from_container(el, base))

        if not jobs:
            self.log.warning("Trying generic link extraction...")
            links = keyword_links(soup, href_keywords=LINK_HINTS, text_pattern=_CALL_NUMBER, min_text_length=10)
            jobs = self.collect(links, lambda a: self._from_link(a, base))

        self.log.info("Found %d llamados", len(jobs))
        return jobs

    # ---- layer 1: table rows ----
    def _from_row(self, tr: Tag, base: str) -> Candidate:
        cells = [clean_text(td.get_text(" ")) for td in tr.find_all("td")]
        if not cells:
            raise InvalidCandidate("header row")
        m = _CALL_NUMBER.search(" ".join(cells))
        if not m:
            raise InvalidCandidate("row without call number")
        number = m.group(1)

        company = DEFAULT_COMPANY
        title = ""
        for i, text in enumerate(cells):
            if len(text) < 3:
                continue
            # Organism is one of the leading cells; skip the number/date cells.
            is_label = not (_DIGITS_ONLY.match(text) or _CALL_NUMBER.fullmatch(text) or _DMY.fullmatch(text))
            if i <= 2 and len(text) > 3 and is_label and company == DEFAULT_COMPANY:
                company = f"{text} - ONSC"
                continue
            if len(text) > 20 and not title:
                title = text
        title = title or f"Llamado {number}"

        dates = [d for d in (parse_date(m2.group(0)) for c in cells for m2 in _DMY.finditer(c)) if d]
        posted = dates[0] if dates else today_iso()
        closing = dates[1] if len(dates) > 1 else None

        link = first_attr(tr, "a", "href")
        url = normalize_url(link, base) if link else self.source.url
        company = clean_text(company, 100)

        return Candidate(
            external_id=make_external_id(self.tag, url, number),
            title=clean_text(title, 200),
            url=url,
            company=company,
            location="Uruguay",
            description=f"Llamado {number} - {company}. Consulta los detalles en el portal de Uruguay Concursa.",
            posted_date=posted,
            closing_date=closing,
            category="gobierno",
            job_type="Concurso Público",
        )

    # ---- layer 2: containers ----
    def _from_container(self, el: Tag, base: str) -> Candidate:
        title = first_text(el, "h1, h2, h3, h4, .title, .titulo")
        if len(title) < 5:
            raise InvalidCandidate("container without title")
        company = first_text(el, ".organismo, .departamento, .institucion, .company") or DEFAULT_COMPANY

        link = first_attr(el, "a", "href")
        if not link:
            parent = el.find_parent("a")
            link = str(parent.get("href") or "") if parent is not None else ""
        url = normalize_url(link, base) if link else self.source.url

        return Candidate(
            external_id=make_external_id(self.tag, url),
            title=title,
            url=url,
            company=_with_onsc(company),
            location="Uruguay",
            description=first_text(el, ".descripcion, .description, p", 1000) or title,
            posted_date=parse_date(first_text(el, ".fecha, .date, time")) or today_iso(),
            category="gobierno",
            job_type="Concurso Público",
        )

    # ---- layer 3: links ----
    def _from_link(self, a: Tag, base: str) -> Candidate:
        text = clean_text(a.get_text(" "))
        if len(text) < 10:
            raise InvalidCandidate("link text too short")
        if _NAV_TEXT.search(text):
            raise InvalidCandidate("navigation link")
        url = normalize_url(str(a.get("href") or ""), base)
        return Candidate(
            external_id=make_external_id(self.tag, url),
            title=clean_text(text, 200),
            url=url,
            company=DEFAULT_COMPANY,
            location="Uruguay",
            description="Concurso público del Estado. Visita el portal de Uruguay Concursa para más detalles.",
            posted_date=today_iso(),
            category="gobierno",
            job_type="Concurso Público",
        )
