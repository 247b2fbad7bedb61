"""
City detection from the public IP, used to tag results with where they ran.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable

import httpx

from cdnbench.client import BenchmarkClient
from cdnbench.config import non_empty

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GeoProvider:
    name: str
    url: str
    pick_city: Callable[[dict[str, Any]], Any]
    pick_ip: Callable[[dict[str, Any]], Any]


@dataclass(frozen=True)
class GeoResult:
    city: str | None = None
    source: str | None = None
    ip: str | None = None


PROVIDERS = (
    GeoProvider("ipinfo.io", "https://ipinfo.io/json", lambda d: d.get("city"), lambda d: d.get("ip")),
    GeoProvider("ipapi.co", "https://ipapi.co/json/", lambda d: d.get("city"), lambda d: d.get("ip")),
)


def detect_city(client: BenchmarkClient, timeout_ms: float = 3000) -> GeoResult:
    """Ask each provider in turn; the first one that knows the city or IP wins."""
    for provider in PROVIDERS:
        try:
            data = client.request_json(provider.url, timeout_ms)
        except (httpx.HTTPError, ValueError) as e:
            logger.debug(f"Geo lookup via {provider.name} failed: {e}")
            continue
        if not isinstance(data, dict):
            continue

        city = non_empty(provider.pick_city(data))
        ip = non_empty(provider.pick_ip(data))
        if city or ip:
            return GeoResult(city=city, source=provider.name, ip=ip)

    return GeoResult()
