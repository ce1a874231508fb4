"""
BeautifulSoup helpers used by the extractor variants.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Sequence

from bs4 import BeautifulSoup  # pip install beautifulsoup4
from bs4.element import Tag

from ..normalize import clean_text
from .base import UnparseableDocument


def parse_document(html: str | None, *, where: str = "") -> BeautifulSoup:
    """
    Parse HTML, raising UnparseableDocument when there is nothing to anchor on
    (empty body, or text that contains no markup element at all).
    """
    if not html or not html.strip():
        raise UnparseableDocument(f"{where or 'document'}: empty response body")
    soup = BeautifulSoup(html, "html.parser")
    if soup.find(True) is None:
        raise UnparseableDocument(f"{where or 'document'}: no markup elements found")
    return soup


def first_text(el: Tag, selectors: str, max_length: int | None = None) -> str:
    """Cleaned text of the first element matching the (comma-joined) selectors."""
    found = el.select_one(selectors)
    if found is None:
        return ""
    return clean_text(found.get_text(" "), max_length)


def all_text(el: Tag, selectors: str) -> str:
    """Joined text of every element matching the selectors (for date cells etc.)."""
    return clean_text(" ".join(f.get_text(" ") for f in el.select(selectors)))


def first_attr(el: Tag, selectors: str, attr: str) -> str:
    found = el.select_one(selectors)
    if found is None:
        return ""
    value = found.get(attr)
    if isinstance(value, list):
        value = " ".join(value)
    return (value or "").strip()


def select_any(soup: BeautifulSoup | Tag, selectors: Sequence[str]) -> list[Tag]:
    """Elements matching any of `selectors`, in document order, without duplicates."""
    return soup.select(", ".join(selectors))


def keyword_links(
    scope: BeautifulSoup | Tag | Iterable[Tag],
    *,
    text_keywords: Sequence[str] = (),
    href_keywords: Sequence[str] = (),
    text_pattern: re.Pattern[str] | None = None,
    min_text_length: int = 10,
) -> list[Tag]:
    """
    Generic fallback: anchors whose text (>= min_text_length) mentions one of
    `text_keywords` / matches `text_pattern`, or whose href contains one of
    `href_keywords`. Hrefs containing "#" and javascript: links are ignored.
    """
    if isinstance(scope, (BeautifulSoup, Tag)):
        anchors = scope.find_all("a", href=True)
    else:
        anchors = [a for s in scope for a in s.find_all("a", href=True)]

    out: list[Tag] = []
    seen: set[int] = set()
    for a in anchors:
        if id(a) in seen:
            continue
        seen.add(id(a))
        href = str(a.get("href") or "").strip()
        text = clean_text(a.get_text(" "))
        if not href or "#" in href or "javascript:" in href.lower():
            continue
        lower_text = text.lower()
        lower_href = href.lower()
        by_text = len(text) >= min_text_length and (
            any(k in lower_text for k in text_keywords) or bool(text_pattern and text_pattern.search(text))
        )
        by_href = any(k in lower_href for k in href_keywords) and len(text) >= 3
        if by_text or by_href:
            out.append(a)
    return out
