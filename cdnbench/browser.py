"""
Playwright trial runner: page loading, image timing measurement.

Every trial gets its own browser context so cookies, cache and storage never
leak between measurements; the context is closed on every exit path.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Sequence

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from cdnbench.collector import IGNORED_IMAGE_HOSTS, ImageSnapshot, collect_image_timings
from cdnbench.errors import (
    ImageLoadTimeout,
    MetricsCollectionFailure,
    NavigationError,
    NavigationTimeout,
)
from cdnbench.stats import round_ms
from cdnbench.timing import TimingContext

logger = logging.getLogger(__name__)

BROWSER_NAMES = ("chromium", "firefox", "webkit")

POLL_INTERVAL_MS = 200
PROGRESS_LOG_EVERY_MS = 5000
MAX_PENDING_URLS_LOGGED = 3

LCP_OBSERVER_SCRIPT = """
window.__bench = { lcp: null };
new PerformanceObserver((list) => {
  for (const entry of list.getEntries()) {
    window.__bench.lcp = entry.startTime;
  }
}).observe({ type: "largest-contentful-paint", buffered: true });
"""

AUTO_SCROLL_SCRIPT = """
async (delay) => {
  const sleep = (ms) => new Promise((r) => setTimeout(r, ms));
  const viewport = window.innerHeight || document.documentElement.clientHeight;
  const step = Math.max(1, Math.floor(viewport * 0.85));
  const maxScroll = Math.max(document.body.scrollHeight, document.documentElement.scrollHeight);
  let current = 0;
  while (current < maxScroll) {
    window.scrollTo(0, current);
    await sleep(delay);
    current += step;
  }
  window.scrollTo(0, 0);
}
"""

PAGE_METRICS_SCRIPT = """
() => {
  const nav = performance.getEntriesByType("navigation")[0];
  return {
    ttfb: nav ? nav.responseStart - nav.startTime : null,
    lcp: window.__bench ? window.__bench.lcp : null,
    userAgent: navigator.userAgent,
    viewport: { width: window.innerWidth, height: window.innerHeight },
  };
}
"""

NAVIGATION_TIMING_SCRIPT = """
() => {
  const nav = performance.getEntriesByType("navigation")[0];
  if (!nav) return { ttfb: null, total: null };
  return {
    ttfb: nav.responseStart - nav.startTime,
    total: nav.responseEnd - nav.startTime,
  };
}
"""


class TrialState(str, Enum):
    NAVIGATING = "navigating"
    SCROLLING = "scrolling"
    WAITING_IMAGES = "waiting_images"
    COLLECTING_METRICS = "collecting_metrics"
    DONE = "done"
    FAILED = "failed"


@dataclass
class WaitResult:
    """Outcome of polling a page until its images settle."""

    snapshot: ImageSnapshot
    timeout: bool
    timeout_reason: str | None


@dataclass
class PageMetrics:
    ttfb_ms: int | None = None
    lcp_ms: int | None = None
    user_agent: str | None = None
    viewport: dict[str, int] | None = None


@dataclass(frozen=True)
class TrialResult:
    """Everything measured during one page trial."""

    url: str
    state: TrialState
    images_loaded_ms: int | None
    avg_image_ms: int | None
    sum_image_ms: int | None
    timeout: bool
    timeout_reason: str | None
    images_total: int
    images_loaded: int
    images_failed: int
    images_pending: int
    errors_count: int
    nav_status: int | None = None
    nav_error: str | None = None
    nav_url: str | None = None
    ttfb_ms: int | None = None
    lcp_ms: int | None = None
    user_agent: str | None = None
    viewport: dict[str, int] | None = None
    image_urls: list[str] = field(default_factory=list)
    image_failed_urls: list[str] = field(default_factory=list)
    image_hosts: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class ImageTrialResult:
    """Direct navigation to a single image URL."""

    url: str
    timeout: bool
    timeout_reason: str | None
    errors_count: int
    nav_status: int | None = None
    nav_error: str | None = None
    nav_url: str | None = None
    ttfb_ms: int | None = None
    total_ms: int | None = None


def navigation_failure(error: Exception) -> type[NavigationTimeout] | type[NavigationError]:
    return NavigationTimeout if isinstance(error, PlaywrightTimeoutError) else NavigationError


async def launch_browser(playwright, browser_name: str = "chromium", headless: bool = True):
    """Launch the named engine; unknown names fall back to chromium."""
    browser_type = {
        "firefox": playwright.firefox,
        "webkit": playwright.webkit,
    }.get(browser_name, playwright.chromium)
    logger.info(f"Launching {browser_type.name} (headless={headless})")
    return await browser_type.launch(headless=headless)


async def disable_cache_if_possible(context, page, browser_name: str) -> bool:
    """Turn off the HTTP cache through CDP; only chromium exposes it."""
    if browser_name != "chromium":
        return False
    session = await context.new_cdp_session(page)
    await session.send("Network.setCacheDisabled", {"cacheDisabled": True})
    return True


async def auto_scroll(page, delay_ms: int | None) -> None:
    """Walk down the page to trigger lazy-loaded images, then return to the top."""
    if delay_ms is None or delay_ms < 0:
        return
    await page.evaluate(AUTO_SCROLL_SCRIPT, delay_ms)


async def wait_for_images(
    page,
    ignore_hosts: Sequence[str] = IGNORED_IMAGE_HOSTS,
    allow_hosts: Sequence[str] = (),
    verbose: bool = False,
    log_prefix: str = "",
    max_wait_ms: float = 60000,
    poll_interval_ms: float = POLL_INTERVAL_MS,
) -> WaitResult:
    """Poll the page's images until none are pending or max_wait_ms passes.

    On timeout the last snapshot is returned as-is, complete or not.
    """
    prefix = f"{log_prefix} " if log_prefix else ""
    last_log_ms: float | None = None

    with TimingContext("wait_for_images") as timer:
        while timer.elapsed_ms < max_wait_ms:
            try:
                snapshot = await collect_image_timings(page, ignore_hosts, allow_hosts)
            except MetricsCollectionFailure as e:
                logger.warning(f"{prefix}{e}")
                return WaitResult(ImageSnapshot(), True, MetricsCollectionFailure.reason)

            if snapshot.total == 0 or snapshot.total == snapshot.failed:
                return WaitResult(snapshot, False, "no_images")

            if snapshot.pending == 0:
                return WaitResult(snapshot, False, "images_failed" if snapshot.failed else None)

            elapsed = timer.elapsed_ms
            if verbose and (last_log_ms is None or elapsed - last_log_ms >= PROGRESS_LOG_EVERY_MS):
                last_log_ms = elapsed
                logger.info(
                    f"{prefix}waiting: total {snapshot.total} loaded {snapshot.loaded} "
                    f"failed {snapshot.failed} pending {snapshot.pending}"
                )
                if snapshot.pending_urls:
                    logger.info(f"{prefix}pending: {' '.join(snapshot.pending_urls[:MAX_PENDING_URLS_LOGGED])}")

            await asyncio.sleep(poll_interval_ms / 1000)

    try:
        snapshot = await collect_image_timings(page, ignore_hosts, allow_hosts)
    except MetricsCollectionFailure as e:
        logger.warning(f"{prefix}{e}")
        return WaitResult(ImageSnapshot(), True, MetricsCollectionFailure.reason)

    logger.debug(f"{prefix}gave up after {timer.elapsed_ms:.0f}ms with {snapshot.pending} pending")
    return WaitResult(snapshot, True, ImageLoadTimeout.reason)


async def collect_page_metrics(page) -> PageMetrics:
    """Navigation TTFB, LCP, user agent and viewport of the current document."""
    try:
        data = await page.evaluate(PAGE_METRICS_SCRIPT)
    except PlaywrightError as e:
        raise MetricsCollectionFailure(f"Page metrics failed: {e}") from e

    return PageMetrics(
        ttfb_ms=round_ms(data.get("ttfb")),
        lcp_ms=round_ms(data.get("lcp")),
        user_agent=data.get("userAgent"),
        viewport=data.get("viewport"),
    )


async def run_page_trial(
    browser,
    browser_name: str,
    url: str,
    scroll_delay_ms: int | None = 0,
    allowed_image_hosts: Sequence[str] = (),
    timeout_ms: float = 60000,
    verbose: bool = False,
    log_prefix: str = "",
) -> TrialResult:
    """Load one page in a fresh context and measure how long its images take."""
    prefix = f"{log_prefix} " if log_prefix else ""
    context = await browser.new_context()
    try:
        page = await context.new_page()
        await page.add_init_script(script=LCP_OBSERVER_SCRIPT)
        await disable_cache_if_possible(context, page, browser_name)
        page.set_default_timeout(0)
        page.set_default_navigation_timeout(0)

        state = TrialState.NAVIGATING
        nav_status = nav_url = nav_error = None
        images_loaded_ms: float | None = None

        with TimingContext("trial", url=url) as timer:
            try:
                response = await page.goto(url, wait_until="domcontentloaded", timeout=timeout_ms)
                if response is not None:
                    nav_status = response.status
                    nav_url = response.url
                    logger.debug(f"{prefix}nav {nav_status} {nav_url}")

                state = TrialState.SCROLLING
                await auto_scroll(page, scroll_delay_ms)

                state = TrialState.WAITING_IMAGES
                waited = await wait_for_images(
                    page,
                    IGNORED_IMAGE_HOSTS,
                    allowed_image_hosts,
                    verbose=verbose,
                    log_prefix=log_prefix,
                    max_wait_ms=timeout_ms,
                )
                snapshot = waited.snapshot

                if snapshot.images_only_ms is not None:
                    images_loaded_ms = snapshot.images_only_ms
                elif not waited.timeout and snapshot.pending == 0:
                    # No Resource Timing at all: fall back to wall clock
                    images_loaded_ms = timer.elapsed_ms

            except PlaywrightError as e:
                failure = navigation_failure(e)
                logger.warning(f"{prefix}{failure.reason}: {e.message}")
                logger.debug(f"{prefix}failed while {state.value}")
                state = TrialState.FAILED
                nav_error = e.message or failure.reason
                images_loaded_ms = None
                snapshot = ImageSnapshot()
                waited = WaitResult(snapshot, True, failure.reason)

        if state is not TrialState.FAILED:
            state = TrialState.COLLECTING_METRICS
        try:
            metrics = await collect_page_metrics(page)
        except MetricsCollectionFailure as e:
            logger.debug(f"{prefix}{e}")
            metrics = PageMetrics()

        return TrialResult(
            url=url,
            state=TrialState.DONE if state is not TrialState.FAILED else state,
            images_loaded_ms=round_ms(images_loaded_ms),
            avg_image_ms=round_ms(snapshot.avg_image_ms),
            sum_image_ms=round_ms(snapshot.sum_image_ms),
            timeout=waited.timeout,
            timeout_reason=waited.timeout_reason,
            images_total=snapshot.total - snapshot.failed,
            images_loaded=snapshot.loaded,
            images_failed=snapshot.failed,
            images_pending=snapshot.pending,
            errors_count=snapshot.failed,
            nav_status=nav_status,
            nav_error=nav_error,
            nav_url=nav_url,
            ttfb_ms=metrics.ttfb_ms,
            lcp_ms=metrics.lcp_ms,
            user_agent=metrics.user_agent,
            viewport=metrics.viewport,
            image_urls=list(snapshot.urls),
            image_failed_urls=list(snapshot.failed_urls),
            image_hosts=list(snapshot.hosts),
        )
    finally:
        await context.close()


async def run_image_trial(browser, browser_name: str, url: str, timeout_ms: float = 30000) -> ImageTrialResult:
    """Navigate straight to an image and read the navigation timing."""
    context = await browser.new_context()
    try:
        page = await context.new_page()
        await disable_cache_if_possible(context, page, browser_name)

        nav_status = nav_url = nav_error = None
        timeout = False
        timeout_reason = None

        try:
            response = await page.goto(url, wait_until="load", timeout=timeout_ms)
            if response is not None:
                nav_status = response.status
                nav_url = response.url
        except PlaywrightError as e:
            failure = navigation_failure(e)
            logger.warning(f"{failure.reason}: {e.message}")
            timeout = True
            timeout_reason = failure.reason
            nav_error = e.message or failure.reason

        ttfb_ms = total_ms = None
        try:
            data = await page.evaluate(NAVIGATION_TIMING_SCRIPT)
            ttfb_ms = round_ms(data.get("ttfb"))
            total_ms = round_ms(data.get("total"))
        except PlaywrightError as e:
            logger.debug(f"Navigation timing unavailable for {url}: {e.message}")

        failed = timeout or (nav_status is not None and nav_status >= 400)
        return ImageTrialResult(
            url=url,
            timeout=timeout,
            timeout_reason=timeout_reason,
            errors_count=1 if failed else 0,
            nav_status=nav_status,
            nav_error=nav_error,
            nav_url=nav_url,
            ttfb_ms=ttfb_ms,
            total_ms=total_ms,
        )
    finally:
        await context.close()


async def run_warmup(
    browser,
    browser_name: str,
    urls: Sequence[str],
    passes: int = 2,
    timeout_ms: float = 15000,
) -> None:
    """Load every URL a few times to prime DNS, connections and CDN edges."""
    for run in range(passes):
        for url in urls:
            context = await browser.new_context()
            try:
                page = await context.new_page()
                await disable_cache_if_possible(context, page, browser_name)
                await page.goto(url, wait_until="domcontentloaded", timeout=timeout_ms)
            except PlaywrightError as e:
                logger.debug(f"Warmup {run + 1}/{passes} {url}: {e.message}")
            finally:
                await context.close()
