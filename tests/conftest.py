# tests/conftest.py
import json
import os
import tempfile

import pytest
import requests
from freezegun import freeze_time

from modules.job_tracker.lib.config import ScraperConfig, Settings
from modules.job_tracker.lib.db import RecordStore
from modules.job_tracker.lib.engine import IngestionEngine
from modules.job_tracker.lib.http_client import RetryingFetcher
from modules.job_tracker.lib.models import Candidate, Source
from modules.job_tracker.lib.scrapers import ExtractorRegistry, StubExtractor


# ---------------------------------------------------------------------
# Live tests are opt-in: use --live or RUN_LIVE_TESTS=1
# ---------------------------------------------------------------------
def pytest_addoption(parser: pytest.Parser) -> None:
    parser.addoption(
        "--live",
        action="store_true",
        default=False,
        help="Run tests marked as 'live' (network calls or external services).",
    )


def pytest_configure(config: pytest.Config) -> None:
    # Marker registration (so pytest --markers shows it)
    config.addinivalue_line(
        "markers",
        "live: marks tests that perform live network calls or hit external services (skipped by default).",
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    run_live = config.getoption("--live") or os.getenv("RUN_LIVE_TESTS") == "1"
    if run_live:
        return
    skip_live = pytest.mark.skip(reason="live tests disabled (use --live or RUN_LIVE_TESTS=1)")
    for item in items:
        if "live" in item.keywords:
            item.add_marker(skip_live)


# ---------------------------------------------------------------------
# Test-wide env defaults (autouse, function-scoped)
# ---------------------------------------------------------------------
@pytest.fixture(autouse=True)
def _env_defaults(monkeypatch):
    # Write logs to a throwaway dir so real logs stay clean (per test)
    tmp_logs = tempfile.mkdtemp(prefix="jt-pytest-logs-")
    monkeypatch.setenv("LOG_DIR", tmp_logs)
    monkeypatch.setenv("ACTIVITY_LOG_PREFIX", "activity-test")
    monkeypatch.setenv("ERROR_LOG_PREFIX", "error-test")
    monkeypatch.delenv("CONFIG_PATH", raising=False)
    monkeypatch.delenv("JOB_TRACKER_DB", raising=False)
    yield


@pytest.fixture
def frozen_today():
    with freeze_time("2025-03-10T12:00:00Z"):
        yield


# ---------------------------------------------------------------------
# HTTP fakes
# ---------------------------------------------------------------------
class FakeResponse:
    def __init__(self, text="", status=200, url="https://example.test/"):
        self.text = text
        self.status_code = status
        self.url = url
        self.encoding = "utf-8"
        self.apparent_encoding = "utf-8"

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Error for url: {self.url}", response=self)


class FakeSession:
    """
    requests.Session stand-in. `script` is a list consumed one item per GET:
    a str (200 body), an int (error status) or an exception instance (raised).
    The last item repeats once the script runs out.
    """

    def __init__(self, script):
        self.script = list(script)
        self.headers = {}
        self.calls = []
        self.closed = False

    def get(self, url, params=None, headers=None, timeout=None):
        self.calls.append({"url": url, "params": params, "timeout": timeout})
        item = self.script.pop(0) if len(self.script) > 1 else self.script[0]
        if isinstance(item, BaseException):
            raise item
        if isinstance(item, int):
            return FakeResponse(status=item, url=url)
        return FakeResponse(text=item, url=url)

    def close(self):
        self.closed = True


@pytest.fixture
def fake_session():
    return FakeSession


@pytest.fixture
def recorded_sleeps():
    return []


@pytest.fixture
def make_fetcher(recorded_sleeps):
    """Build a RetryingFetcher over a FakeSession; sleeps are recorded, not slept."""

    def _make(script, **kwargs):
        kwargs.setdefault("max_attempts", 3)
        kwargs.setdefault("base_delay", 1.0)
        return RetryingFetcher(session=FakeSession(script), sleep=recorded_sleeps.append, **kwargs)

    return _make


@pytest.fixture
def html_source():
    """A Source row shape for extractor tests."""

    def _make(source_id, url):
        return Source(id=source_id, name=source_id, url=url)

    return _make


# ---------------------------------------------------------------------
# Store / engine wiring
# ---------------------------------------------------------------------
@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "jobs.db")


@pytest.fixture
def store(db_path):
    s = RecordStore(db_path)
    s.reset()
    s.init()
    return s


def _stub_source(source_id, items=None, *, name=None, enabled=True, fail=None, delay_ms=0):
    params = {"items": items or []}
    if fail:
        params["fail"] = fail
    return {
        "id": source_id,
        "name": name or source_id.title(),
        "url": f"https://{source_id}.example.test/",
        "enabled": enabled,
        "scraper_config": {"params": params, "inter_source_delay_ms": delay_ms},
    }


@pytest.fixture
def stub_source():
    """Inline source dict whose scraper params feed the zero-network stub extractor."""
    return _stub_source


@pytest.fixture
def make_settings(db_path):
    def _make(sources, **extra):
        return Settings.from_env_and_kwargs({"sqlite_path": db_path, "sources": sources, **extra})

    return _make


@pytest.fixture
def stub_registry():
    """Every configured source id resolves to the stub extractor."""

    class _AllStub(ExtractorRegistry):
        def resolve(self, source, *, fetcher, config):
            if not self.is_supported(source.id):
                return StubExtractor(source, fetcher, config)
            return super().resolve(source, fetcher=fetcher, config=config)

    return _AllStub()


@pytest.fixture
def make_engine(store, stub_registry, recorded_sleeps):
    """Engine over the per-test store; fetchers never touch the network."""

    def _make(settings, registry=None):
        store.sync_sources(settings.sources)
        return IngestionEngine(
            store,
            registry if registry is not None else stub_registry,
            settings,
            sleep=recorded_sleeps.append,
            fetcher_factory=lambda cfg: RetryingFetcher.from_config(
                cfg, session=FakeSession(["<html></html>"]), sleep=recorded_sleeps.append
            ),
        )

    return _make


@pytest.fixture
def candidate():
    def _make(external_id="ext-1", title="Backend Engineer", url="https://example.test/jobs/1", **kw):
        return Candidate(external_id=external_id, title=title, url=url, **kw)

    return _make


@pytest.fixture
def write_config(tmp_path, monkeypatch, db_path):
    """Write a service config (JSON) and point CONFIG_PATH at it."""

    def _write(sources, **top):
        cfg = {
            "timezone": "UTC",
            "schedule": {"interval": {"hours": 6}},
            "ingest": {"sqlite_path": db_path, "sources": sources},
            **top,
        }
        p = tmp_path / "config.json"
        p.write_text(json.dumps(cfg), encoding="utf-8")
        monkeypatch.setenv("CONFIG_PATH", str(p))
        return p

    return _write


@pytest.fixture
def scraper_config():
    return ScraperConfig(max_attempts=2, base_delay_ms=0, inter_source_delay_ms=0)
