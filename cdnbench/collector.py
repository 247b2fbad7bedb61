"""
Image timing collection.

The page side of the collector is a single script evaluated inside the
browser: it lists every rendered <img> together with the Resource Timing
entry that matches its URL and returns plain JSON. Everything else (host
filtering, load classification, aggregation) happens here on the host side
so it can be reasoned about and tested without a browser.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Sequence

from playwright.async_api import Error as PlaywrightError

from cdnbench.errors import MetricsCollectionFailure

logger = logging.getLogger(__name__)

# Tracking pixels that never count toward image metrics
IGNORED_IMAGE_HOSTS = ("ad.adriver.ru", "ev.adriver.ru")

IMAGE_SNAPSHOT_SCRIPT = """
() => {
  const entries = performance.getEntriesByType("resource");
  const rows = [];
  for (const img of Array.from(document.images)) {
    const src = img.currentSrc || img.src;
    if (!src) continue;
    let hostname;
    try {
      hostname = new URL(src, document.baseURI).hostname;
    } catch (e) {
      continue;
    }
    const entry = entries.find((r) => r.name === src || r.name === img.currentSrc);
    rows.push({
      src,
      hostname,
      complete: img.complete,
      naturalWidth: img.naturalWidth,
      timing: entry
        ? {
            responseEnd: entry.responseEnd,
            ttfb: entry.responseStart - entry.startTime,
            duration: entry.duration,
            transferSize: entry.transferSize,
          }
        : null,
    });
  }
  return rows;
}
"""


def match_host(host: str, pattern: str) -> bool:
    """Match a hostname against a pattern where ``*`` spans any characters.

    A pattern without ``*`` must equal the host. Otherwise the literal parts
    between wildcards must appear in order; the first part is anchored to the
    start of the host unless the pattern begins with ``*`` and the last part
    is anchored to the end unless the pattern ends with ``*``.
    """
    if not host or not pattern:
        return False
    if "*" not in pattern:
        return host == pattern

    parts = [p for p in pattern.split("*") if p]
    if not parts:
        return True
    if not pattern.startswith("*") and not host.startswith(parts[0]):
        return False
    if not pattern.endswith("*") and not host.endswith(parts[-1]):
        return False

    index = 0
    for part in parts:
        found = host.find(part, index)
        if found == -1:
            return False
        index = found + len(part)
    return True


def host_allowed(host: str, allow_hosts: Sequence[str]) -> bool:
    """An empty allow-list admits every host."""
    return not allow_hosts or any(match_host(host, p) for p in allow_hosts)


@dataclass
class ImageTiming:
    """Network timing of one image resource within a trial."""

    url: str
    hostname: str
    response_end: float | None = None
    ttfb: float | None = None
    duration: float | None = None
    transfer_size: int | None = None
    no_timing: bool = False

    @property
    def has_timing(self) -> bool:
        return self.response_end is not None and self.duration is not None

    @property
    def request_start(self) -> float | None:
        if not self.has_timing:
            return None
        return self.response_end - self.duration


@dataclass
class ImageSnapshot:
    """Point-in-time view of the qualifying images on a page."""

    timings: list[ImageTiming] = field(default_factory=list)
    failed_urls: list[str] = field(default_factory=list)
    pending_urls: list[str] = field(default_factory=list)
    urls: list[str] = field(default_factory=list)
    hosts: list[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.urls)

    @property
    def loaded(self) -> int:
        return len(self.timings)

    @property
    def failed(self) -> int:
        return len(self.failed_urls)

    @property
    def pending(self) -> int:
        return len(self.pending_urls)

    @property
    def _timed(self) -> list[ImageTiming]:
        return [t for t in self.timings if t.has_timing]

    @property
    def max_response_end(self) -> float | None:
        timed = self._timed
        return max(t.response_end for t in timed) if timed else None

    @property
    def images_only_ms(self) -> float | None:
        """Span from the first image request start to the last response end.

        Images without timing data are not part of the span.
        """
        timed = self._timed
        if not timed:
            return None
        first_start = min(t.request_start for t in timed)
        return self.max_response_end - first_start

    @property
    def avg_image_ms(self) -> float | None:
        timed = self._timed
        if not timed:
            return None
        return sum(t.duration for t in timed) / len(timed)

    @property
    def sum_image_ms(self) -> float | None:
        timed = self._timed
        if not timed:
            return None
        return sum(t.duration for t in timed)


def build_snapshot(
    rows: Iterable[dict[str, Any]],
    ignore_hosts: Sequence[str] = IGNORED_IMAGE_HOSTS,
    allow_hosts: Sequence[str] = (),
) -> ImageSnapshot:
    """Filter and classify the raw per-image rows returned by the page script."""
    snapshot = ImageSnapshot()
    seen_hosts: dict[str, None] = {}

    for row in rows:
        src = row.get("src")
        hostname = row.get("hostname") or ""
        if not src or hostname in ignore_hosts or not host_allowed(hostname, allow_hosts):
            continue

        snapshot.urls.append(src)
        seen_hosts.setdefault(hostname, None)

        complete = bool(row.get("complete"))
        natural_width = row.get("naturalWidth") or 0
        timing = row.get("timing")

        if not complete:
            snapshot.pending_urls.append(src)

        if complete and natural_width == 0:
            # Broken image: never "loaded", whatever the timing entry says
            snapshot.failed_urls.append(src)
        elif timing:
            snapshot.timings.append(
                ImageTiming(
                    url=src,
                    hostname=hostname,
                    response_end=timing.get("responseEnd"),
                    ttfb=timing.get("ttfb"),
                    duration=timing.get("duration"),
                    transfer_size=timing.get("transferSize"),
                )
            )
        elif complete:
            # Cross-origin response without Timing-Allow-Origin
            snapshot.timings.append(ImageTiming(url=src, hostname=hostname, no_timing=True))

    snapshot.hosts = list(seen_hosts)
    return snapshot


async def collect_image_timings(
    page,
    ignore_hosts: Sequence[str] = IGNORED_IMAGE_HOSTS,
    allow_hosts: Sequence[str] = (),
) -> ImageSnapshot:
    """Evaluate the snapshot script in the page and classify the result."""
    try:
        rows = await page.evaluate(IMAGE_SNAPSHOT_SCRIPT)
    except PlaywrightError as e:
        raise MetricsCollectionFailure(f"Image snapshot failed: {e}") from e

    return build_snapshot(rows or [], ignore_hosts, allow_hosts)
