"""
Normalization helpers shared by every extractor.

All functions are pure (apart from reading today's date) and never raise on
malformed input: they return None/"" and let the caller decide.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from datetime import date, timedelta
from typing import Any, Optional
from urllib.parse import urlsplit

from dateutil import parser as _date_parser

from .models import Candidate

_WS_RE = re.compile(r"\s+")
_DMY_RE = re.compile(r"(\d{2})/(\d{2})/(\d{4})")
_ISO_RE = re.compile(r"(\d{4})-(\d{2})-(\d{2})")

# Relative terms as they appear on the (Spanish-language) sources.
_TODAY_WORDS = ("hoy", "today")
_YESTERDAY_WORDS = ("ayer", "yesterday")

_MIN_TITLE_LEN = 3
_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


# -----------------------------------------------------------------------------
# Dates
# -----------------------------------------------------------------------------
def parse_date(text: str | None, today: date | None = None) -> Optional[str]:
    """
    Parse free-form listing dates into YYYY-MM-DD.

    Order (first match wins, no disambiguation):
      1. "hoy"/"today", "ayer"/"yesterday"
      2. DD/MM/YYYY anywhere in the text
      3. YYYY-MM-DD anywhere in the text
      4. dateutil's generic parser (day-first)
    """
    if not text:
        return None
    raw = str(text).strip()
    if not raw:
        return None
    lower = raw.lower()
    today = today or date.today()

    if any(w in lower for w in _TODAY_WORDS):
        return today.isoformat()
    if any(w in lower for w in _YESTERDAY_WORDS):
        return (today - timedelta(days=1)).isoformat()

    m = _DMY_RE.search(raw)
    if m:
        day, month, year = m.groups()
        return _safe_iso(int(year), int(month), int(day))

    m = _ISO_RE.search(raw)
    if m:
        year, month, day = m.groups()
        return _safe_iso(int(year), int(month), int(day))

    try:
        return _date_parser.parse(raw, dayfirst=True).date().isoformat()
    except (ValueError, OverflowError):
        return None


def _safe_iso(year: int, month: int, day: int) -> Optional[str]:
    try:
        return date(year, month, day).isoformat()
    except ValueError:
        return None


# -----------------------------------------------------------------------------
# URLs
# -----------------------------------------------------------------------------
def normalize_url(url: str | None, base_url: str) -> str:
    """
    Make `url` absolute against `base_url`.

    - http(s)://...  -> unchanged
    - //host/path    -> base scheme + url
    - /path          -> base scheme://host + url
    - anything else  -> base_url + "/" + url
    """
    if not url:
        return base_url
    url = url.strip()
    if url.startswith(("http://", "https://")):
        return url
    base = urlsplit(base_url)
    scheme = base.scheme or "https"
    if url.startswith("//"):
        return f"{scheme}:{url}"
    if url.startswith("/"):
        return f"{scheme}://{base.netloc}{url}"
    return f"{base_url.rstrip('/')}/{url}"


def origin_of(url: str) -> str:
    """scheme://host of `url` (what relative listing links are resolved against)."""
    parts = urlsplit(url)
    return f"{parts.scheme or 'https'}://{parts.netloc}"


# -----------------------------------------------------------------------------
# Text
# -----------------------------------------------------------------------------
def clean_text(text: str | None, max_length: int | None = None) -> str:
    """Collapse whitespace, trim, optionally truncate (not word-aware)."""
    if not text:
        return ""
    cleaned = _WS_RE.sub(" ", str(text)).strip()
    if max_length and len(cleaned) > max_length:
        cleaned = cleaned[:max_length].strip()
    return cleaned


# -----------------------------------------------------------------------------
# Identity
# -----------------------------------------------------------------------------
def identity_hash(seed: str) -> str:
    """
    Short, deterministic, order-sensitive token for `seed`.

    32-bit rolling hash (h*31 + unit over UTF-16 code units), absolute value,
    rendered in base 36. Not cryptographic; collisions are possible and the
    (source_id, external_id) unique index is the real guard.
    """
    data = (seed or "").encode("utf-16-le")
    h = 0
    for i in range(0, len(data), 2):
        unit = data[i] | (data[i + 1] << 8)
        h = (h * 31 + unit) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return _to_base36(abs(h))


def _to_base36(n: int) -> str:
    if n == 0:
        return "0"
    out = []
    while n:
        n, r = divmod(n, 36)
        out.append(_BASE36[r])
    return "".join(reversed(out))


def make_external_id(tag: str, *parts: str) -> str:
    """'<tag>-<hash>' so ids say which source minted them."""
    return f"{tag}-{identity_hash(''.join(p or '' for p in parts))}"


# -----------------------------------------------------------------------------
# Validation
# -----------------------------------------------------------------------------
def is_valid_candidate(candidate: Candidate | Mapping[str, Any] | None) -> bool:
    """True iff external_id, title (>= 3 chars) and url are all present."""
    if candidate is None:
        return False
    if isinstance(candidate, Mapping):
        external_id = candidate.get("external_id")
        title = candidate.get("title")
        url = candidate.get("url")
    else:
        external_id = candidate.external_id
        title = candidate.title
        url = candidate.url
    return bool(external_id) and bool(url) and bool(title) and len(title) >= _MIN_TITLE_LEN
