from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from typing import Any

from .utils import getenv_str, truthy

DEFAULT_SQLITE_PATH = "/app/local/state/jobs.db"
DEFAULT_USER_AGENT = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36"


# -----------------------------
# Exceptions
# -----------------------------
class ConfigError(ValueError):
    """Raised when provided kwargs/env cannot form a valid Settings."""


# -----------------------------
# Models
# -----------------------------
@dataclass(frozen=True)
class ScraperConfig:
    """
    Per-source fetch/politeness settings.
    - *_ms fields are milliseconds, as they appear in deployment config.
    - params: arbitrary dict handed to the extractor (e.g. stub items).
    """

    user_agent: str = DEFAULT_USER_AGENT
    timeout_ms: int = 30_000
    max_attempts: int = 3
    base_delay_ms: int = 1_000
    inter_source_delay_ms: int = 2_000
    params: dict[str, Any] = field(default_factory=dict)

    def merged(self, overrides: Mapping[str, Any] | None) -> ScraperConfig:
        """Return a copy with `overrides` applied (unknown keys rejected)."""
        if not overrides:
            return self
        unknown = set(overrides) - _SCRAPER_KEYS
        if unknown:
            raise ConfigError(f"scraper_config has unknown field(s): {sorted(unknown)}")
        kw: dict[str, Any] = {}
        for k, v in overrides.items():
            if k == "params":
                if not isinstance(v, dict):
                    raise ConfigError("scraper_config.params must be an object.")
                kw[k] = {**self.params, **v}
            elif k == "user_agent":
                kw[k] = str(v)
            else:
                kw[k] = _as_int_ge0(k, v)
        return replace(self, **kw)


_SCRAPER_KEYS = {"user_agent", "timeout_ms", "max_attempts", "base_delay_ms", "inter_source_delay_ms", "params"}


@dataclass(frozen=True)
class SourceConfig:
    """
    One configured origin to crawl.
    - id: stable source id; also the extractor registry key (e.g. "buscojobs")
    - enabled: only used when the source row is first created
    """

    id: str
    name: str
    url: str
    enabled: bool = True
    scraper: ScraperConfig = field(default_factory=ScraperConfig)


@dataclass
class Settings:
    """
    Canonical configuration for the ingestion pipeline.

    Sources are either given inline (`sources`) or loaded from a JSON file
    (`sources_path`), a flat list of:
        {"id": "...", "name": "...", "url": "...", "enabled": true,
         "scraper_config": {"timeout_ms": 30000, ...}}
    """

    sqlite_path: str = DEFAULT_SQLITE_PATH
    sources: list[SourceConfig] = field(default_factory=list)
    scraper_defaults: ScraperConfig = field(default_factory=ScraperConfig)

    # ------------- convenience -------------
    def source(self, source_id: str) -> SourceConfig | None:
        for sc in self.sources:
            if sc.id == source_id:
                return sc
        return None

    def scraper_config_for(self, source_id: str) -> ScraperConfig:
        """Per-source scraper config; deployment defaults for unlisted sources."""
        sc = self.source(source_id)
        return sc.scraper if sc else self.scraper_defaults

    # ------------- constructors -------------
    @classmethod
    def from_env_and_kwargs(cls, kwargs: Mapping[str, Any] | None) -> Settings:
        """
        Build Settings from kwargs with validation.

        Expected kwargs (all optional):

            sqlite_path: str       # else $JOB_TRACKER_DB, else /app/local/state/jobs.db
            sources: list[dict]    # inline source list
            sources_path: str      # JSON file with the same list (used if `sources` absent)
            scraper_defaults: dict # ScraperConfig fields applied to every source
        """
        kw = dict(kwargs or {})

        sqlite_path = str(kw.get("sqlite_path") or getenv_str("JOB_TRACKER_DB") or DEFAULT_SQLITE_PATH)

        defaults_raw = kw.get("scraper_defaults") or {}
        if not isinstance(defaults_raw, Mapping):
            raise ConfigError("'scraper_defaults' must be an object.")
        scraper_defaults = ScraperConfig().merged(defaults_raw)

        raw_sources = kw.get("sources")
        if raw_sources is None and kw.get("sources_path"):
            raw_sources = _load_sources_file(str(kw["sources_path"]))

        settings = cls(
            sqlite_path=sqlite_path,
            sources=_parse_sources_list(raw_sources, scraper_defaults),
            scraper_defaults=scraper_defaults,
        )
        _validate_settings(settings)
        return settings


# -----------------------------
# Helpers
# -----------------------------
def _load_sources_file(path: str) -> Any:
    try:
        with open(path, encoding="utf-8") as f:
            return json.load(f)
    except FileNotFoundError as e:
        raise ConfigError(f"sources file not found: {path}") from e
    except json.JSONDecodeError as e:
        raise ConfigError(f"sources file is invalid JSON: {path}") from e


def _parse_sources_list(value: Any, defaults: ScraperConfig) -> list[SourceConfig]:
    """
    Parse a flat list into SourceConfig objects.
    Accepts: [{"id": "...", "name": "...", "url": "...", "scraper_config": {...}}, ...]
    """
    if not value:
        return []
    if not isinstance(value, list):
        raise ConfigError("Expected a list of source objects.")
    out: list[SourceConfig] = []
    for i, item in enumerate(value):
        if not isinstance(item, dict):
            raise ConfigError(f"sources[{i}] must be an object.")
        sid = str(item.get("id") or "").strip()
        url = str(item.get("url") or "").strip()
        if not sid or not url:
            raise ConfigError(f"sources[{i}] requires 'id' and 'url'.")
        name = str(item.get("name") or sid).strip()
        overrides = item.get("scraper_config") or {}
        if not isinstance(overrides, dict):
            raise ConfigError(f"sources[{i}].scraper_config must be an object.")
        enabled = item.get("enabled", True)
        out.append(
            SourceConfig(
                id=sid,
                name=name,
                url=url,
                enabled=truthy(enabled),
                scraper=defaults.merged(overrides),
            )
        )
    return out


def _as_int_ge0(name: str, value: Any) -> int:
    try:
        v = int(value)
    except (TypeError, ValueError) as err:
        raise ConfigError(f"scraper_config.{name} must be an integer") from err
    if v < 0:
        raise ConfigError(f"scraper_config.{name} must be >= 0")
    return v


def _validate_settings(s: Settings) -> None:
    if not s.sqlite_path.strip():
        raise ConfigError("'sqlite_path' cannot be empty.")

    seen: set[str] = set()
    for sc in s.sources:
        if sc.id in seen:
            raise ConfigError(f"Duplicate source id {sc.id!r}.")
        seen.add(sc.id)
        if sc.scraper.max_attempts < 1:
            raise ConfigError(f"{sc.id}: 'max_attempts' must be >= 1.")
        if sc.scraper.timeout_ms <= 0:
            raise ConfigError(f"{sc.id}: 'timeout_ms' must be > 0.")
    if s.scraper_defaults.max_attempts < 1:
        raise ConfigError("scraper_defaults.max_attempts must be >= 1.")
