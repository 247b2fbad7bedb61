"""
HTTP client for everything that does not need a browser.

Covers the geo lookup, downloading the URL list and the plain per-URL timing
of the ``urls`` command. The proxy is an explicit constructor argument.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import httpx

from cdnbench.config import is_http_url
from cdnbench.errors import UrlListError
from cdnbench.stats import round_ms
from cdnbench.timing import TimingContext

logger = logging.getLogger(__name__)

USER_AGENT = "cdntest-bench"


@dataclass
class UrlMetrics:
    """Timing of one plain GET request."""

    status_code: int | None
    size_bytes: int
    ttfb_ms: int | None
    total_ms: int | None
    timeout: bool = False
    error: str | None = None


class BenchmarkClient:
    """Thin httpx wrapper with per-call timeouts.

    Use as a context manager:
        with BenchmarkClient(proxy=proxy) as client:
            client.request_json("https://ipinfo.io/json", timeout_ms=3000)
    """

    def __init__(
        self,
        proxy: str | None = None,
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ):
        self.proxy = proxy
        self.timeout = timeout
        self._transport = transport
        self._client: httpx.Client | None = None

    def __enter__(self) -> BenchmarkClient:
        kwargs: dict[str, Any] = {
            "timeout": httpx.Timeout(self.timeout),
            "headers": {"user-agent": USER_AGENT},
            "follow_redirects": False,
        }
        if self._transport is not None:
            kwargs["transport"] = self._transport
        elif self.proxy:
            kwargs["proxy"] = self.proxy
        self._client = httpx.Client(**kwargs)
        return self

    def __exit__(self, *args) -> None:
        if self._client:
            self._client.close()
            self._client = None

    @property
    def client(self) -> httpx.Client:
        if self._client is None:
            raise RuntimeError("Client not initialized. Use 'with' context manager.")
        return self._client

    def request_json(self, url: str, timeout_ms: float) -> Any:
        """GET a JSON document; non-2xx raises httpx.HTTPStatusError."""
        response = self.client.get(
            url,
            headers={"accept": "application/json"},
            timeout=timeout_ms / 1000,
        )
        response.raise_for_status()
        return response.json()

    def request_text(self, url: str, timeout_ms: float) -> str:
        response = self.client.get(
            url,
            headers={"accept": "text/plain"},
            timeout=timeout_ms / 1000,
        )
        response.raise_for_status()
        return response.text

    def fetch_url_metrics(self, url: str, timeout_ms: float) -> UrlMetrics:
        """Stream a GET and time the first body byte and the full transfer.

        Never raises for network problems; they come back in ``error``.
        """
        status_code = None
        size_bytes = 0
        ttfb_ms: float | None = None

        with TimingContext("fetch", url=url) as timer:
            try:
                with self.client.stream("GET", url, timeout=timeout_ms / 1000) as response:
                    status_code = response.status_code
                    headers_ms = timer.elapsed_ms
                    for chunk in response.iter_bytes():
                        if ttfb_ms is None and chunk:
                            ttfb_ms = timer.elapsed_ms
                        size_bytes += len(chunk)
                    if ttfb_ms is None:
                        ttfb_ms = headers_ms
            except httpx.TimeoutException as e:
                logger.debug(f"Timeout fetching {url}: {e}")
                return UrlMetrics(status_code, size_bytes, round_ms(ttfb_ms), None, True, "timeout")
            except httpx.HTTPError as e:
                logger.debug(f"Error fetching {url}: {e}")
                return UrlMetrics(status_code, size_bytes, round_ms(ttfb_ms), None, False, str(e) or type(e).__name__)

        return UrlMetrics(
            status_code=status_code,
            size_bytes=size_bytes,
            ttfb_ms=round_ms(ttfb_ms),
            total_ms=round_ms(timer.elapsed_ms),
        )


def parse_url_list(data: str) -> list[str]:
    """One URL per line; blank lines and ``#`` comments are skipped."""
    urls = []
    for line in data.splitlines():
        trimmed = line.strip()
        if not trimmed or trimmed.startswith("#"):
            continue
        if not is_http_url(trimmed):
            raise UrlListError(f"Invalid URL: {trimmed}")
        urls.append(trimmed)
    if not urls:
        raise UrlListError("No URLs found in list")
    return urls


def load_url_list(client: BenchmarkClient, list_url: str, timeout_ms: float) -> list[str]:
    if not is_http_url(list_url or ""):
        raise UrlListError("--urls must be an http(s) URL")
    try:
        data = client.request_text(list_url, timeout_ms)
    except httpx.HTTPError as e:
        raise UrlListError(f"Cannot fetch URL list {list_url}: {e}") from e
    return parse_url_list(data)
