# job_tracker/http_client.py
from __future__ import annotations

import logging
import time
from collections.abc import Callable, Mapping
from typing import Any, Optional

import requests
from requests.adapters import HTTPAdapter

from .config import DEFAULT_USER_AGENT, ScraperConfig

LOG = logging.getLogger(__name__)


class FetchExhausted(RuntimeError):
    """Every attempt for `url` failed; `last_error` is the final underlying error."""

    def __init__(self, url: str, attempts: int, last_error: Optional[BaseException]) -> None:
        super().__init__(f"Failed to fetch {url} after {attempts} attempts: {last_error}")
        self.url = url
        self.attempts = attempts
        self.last_error = last_error


class RetryingFetcher:
    """
    The single network path for extractors.

    Bounded retry with LINEAR backoff: after failed attempt n the fetcher waits
    base_delay * n seconds. No wait after the last attempt, no jitter.
    Retries are done here (not by urllib3) so the attempt count is exact.
    """

    def __init__(
        self,
        timeout: float = 30.0,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        user_agent: str = DEFAULT_USER_AGENT,
        *,
        session: requests.Session | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.timeout = float(timeout)
        self.max_attempts = int(max_attempts)
        self.base_delay = float(base_delay)
        self._sleep = sleep

        if session is None:
            session = requests.Session()
            adapter = HTTPAdapter(max_retries=0, pool_connections=4, pool_maxsize=4)
            session.mount("http://", adapter)
            session.mount("https://", adapter)
        self.session = session
        self.session.headers.update({"User-Agent": user_agent})

    @classmethod
    def from_config(cls, config: ScraperConfig, **kwargs: Any) -> RetryingFetcher:
        """Build from the millisecond-based deployment config."""
        return cls(
            timeout=config.timeout_ms / 1000.0,
            max_attempts=config.max_attempts,
            base_delay=config.base_delay_ms / 1000.0,
            user_agent=config.user_agent,
            **kwargs,
        )

    # ---- core ----
    def fetch(
        self,
        url: str,
        *,
        params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
        timeout: float | None = None,
        encoding: str | None = None,
    ) -> str:
        """GET `url` and return decoded text, retrying per the policy above."""
        resp = self._get_with_retry(url, params=params, headers=headers, timeout=timeout)
        if encoding:
            resp.encoding = encoding
        elif not resp.encoding and resp.apparent_encoding:
            resp.encoding = resp.apparent_encoding
        return resp.text

    def _get_with_retry(
        self,
        url: str,
        *,
        params: Mapping[str, Any] | None,
        headers: Mapping[str, str] | None,
        timeout: float | None,
    ) -> requests.Response:
        last_error: Optional[BaseException] = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                LOG.debug("Attempt %d/%d: fetching %s", attempt, self.max_attempts, url)
                resp = self.session.get(url, params=params, headers=headers, timeout=timeout or self.timeout)
                resp.raise_for_status()
                return resp
            except requests.RequestException as e:
                last_error = e
                LOG.warning("Attempt %d/%d for %s failed: %s", attempt, self.max_attempts, url, e)
                if attempt < self.max_attempts:
                    delay = self.base_delay * attempt
                    if delay > 0:
                        self._sleep(delay)
        raise FetchExhausted(url, self.max_attempts, last_error) from last_error

    def close(self) -> None:
        try:
            self.session.close()
        except Exception:
            LOG.debug("RetryingFetcher.close() swallow", exc_info=True)
