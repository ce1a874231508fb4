# tests/test_http_client.py
import pytest
import requests

from modules.job_tracker.lib.config import ScraperConfig
from modules.job_tracker.lib.http_client import FetchExhausted, RetryingFetcher


def test_success_on_first_attempt_does_not_sleep(make_fetcher, recorded_sleeps):
    f = make_fetcher(["<html>ok</html>"])
    assert f.fetch("https://a.test/") == "<html>ok</html>"
    assert len(f.session.calls) == 1
    assert recorded_sleeps == []


def test_linear_backoff_between_attempts(make_fetcher, recorded_sleeps):
    f = make_fetcher([500, requests.ConnectionError("reset"), "<html>third</html>"])
    assert f.fetch("https://a.test/") == "<html>third</html>"
    assert len(f.session.calls) == 3
    assert recorded_sleeps == [1.0, 2.0]


def test_exhaustion_makes_exactly_max_attempts(make_fetcher, recorded_sleeps):
    f = make_fetcher([503], max_attempts=4, base_delay=0.5)
    with pytest.raises(FetchExhausted) as ei:
        f.fetch("https://a.test/list")

    err = ei.value
    assert err.url == "https://a.test/list"
    assert err.attempts == 4
    assert isinstance(err.last_error, requests.HTTPError)
    assert err.__cause__ is err.last_error
    assert len(f.session.calls) == 4
    # no wait after the final attempt
    assert recorded_sleeps == [0.5, 1.0, 1.5]


def test_single_attempt_never_sleeps(make_fetcher, recorded_sleeps):
    f = make_fetcher([requests.Timeout("slow")], max_attempts=1)
    with pytest.raises(FetchExhausted):
        f.fetch("https://a.test/")
    assert recorded_sleeps == []


def test_zero_base_delay_skips_sleep(make_fetcher, recorded_sleeps):
    f = make_fetcher([500], base_delay=0)
    with pytest.raises(FetchExhausted):
        f.fetch("https://a.test/")
    assert len(f.session.calls) == 3
    assert recorded_sleeps == []


def test_non_request_errors_are_not_retried(make_fetcher):
    f = make_fetcher([KeyError("boom")])
    with pytest.raises(KeyError):
        f.fetch("https://a.test/")
    assert len(f.session.calls) == 1


def test_from_config_converts_milliseconds(fake_session):
    cfg = ScraperConfig(user_agent="jt-test/1.0", timeout_ms=1500, max_attempts=5, base_delay_ms=250)
    f = RetryingFetcher.from_config(cfg, session=fake_session(["ok"]))
    assert f.timeout == 1.5
    assert f.max_attempts == 5
    assert f.base_delay == 0.25
    assert f.session.headers["User-Agent"] == "jt-test/1.0"

    f.fetch("https://a.test/")
    assert f.session.calls[0]["timeout"] == 1.5


def test_rejects_zero_attempts():
    with pytest.raises(ValueError):
        RetryingFetcher(max_attempts=0)


def test_close_closes_session(make_fetcher):
    f = make_fetcher(["ok"])
    f.close()
    assert f.session.closed
