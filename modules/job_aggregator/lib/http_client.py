# job_aggregator/http_client.py
from __future__ import annotations

import logging
from collections.abc import Mapping

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .config import DEFAULT_USER_AGENT

LOG = logging.getLogger(__name__)


class FetchError(Exception):
    """A page could not be fetched (transport error, timeout, or non-2xx status)."""

    def __init__(self, url: str, reason: str, status: int | None = None):
        super().__init__(f"{url}: {reason}")
        self.url = url
        self.reason = reason
        self.status = status


class HttpClient:
    """
    Shared HTTP client for search-result pages.

    A failed fetch is never retried inside a run; the unit is simply absent
    until the next scheduled run.
    """

    def __init__(
        self,
        timeout: float = 10.0,
        user_agent: str = DEFAULT_USER_AGENT,
        pool_size: int = 10,
    ):
        self.timeout = float(timeout)
        self.session = requests.Session()
        self.session.headers.update({
            "User-Agent": user_agent,
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
            "Accept-Language": "en-US,en;q=0.9",
        })

        retry = Retry(total=0, connect=0, read=0, redirect=5, raise_on_status=False)
        adapter = HTTPAdapter(max_retries=retry, pool_connections=pool_size, pool_maxsize=pool_size)
        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)

    def get_text(
        self,
        url: str,
        *,
        headers: Mapping[str, str] | None = None,
        timeout: float | None = None,
    ) -> str:
        """GET and return decoded text; raises FetchError on any failure."""
        try:
            resp = self.session.get(url, headers=headers, timeout=timeout or self.timeout)
        except requests.Timeout as e:
            raise FetchError(url, f"timed out after {timeout or self.timeout}s") from e
        except requests.RequestException as e:
            raise FetchError(url, f"{type(e).__name__}: {e}") from e

        if not 200 <= resp.status_code < 300:
            raise FetchError(url, f"HTTP {resp.status_code}", status=resp.status_code)
        if not resp.encoding and resp.apparent_encoding:
            resp.encoding = resp.apparent_encoding
        return resp.text

    # fetch(url) is the capability the site scraper consumes
    __call__ = get_text

    def close(self) -> None:
        try:
            self.session.close()
        except Exception:
            LOG.debug("HttpClient.close() swallow", exc_info=True)
