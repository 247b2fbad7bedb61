from collections import deque
from types import SimpleNamespace

import pytest

from cdnbench.browser import AUTO_SCROLL_SCRIPT, PAGE_METRICS_SCRIPT
from cdnbench.collector import IMAGE_SNAPSHOT_SCRIPT
from cdnbench.metrics import TrialRecord


def image_row(src, hostname="img.example.com", complete=True, natural_width=100, timing=None):
    """One row as returned by the in-page image snapshot script."""
    return {
        "src": src,
        "hostname": hostname,
        "complete": complete,
        "naturalWidth": natural_width,
        "timing": timing,
    }


def timing(response_end, duration, ttfb=10.0, transfer_size=1000):
    return {
        "responseEnd": response_end,
        "ttfb": ttfb,
        "duration": duration,
        "transferSize": transfer_size,
    }


class FakeCDPSession:
    def __init__(self):
        self.sent = []

    async def send(self, method, params=None):
        self.sent.append((method, params))


class FakePage:
    """Stands in for a Playwright page.

    ``snapshots`` is a list of row lists returned by consecutive image
    snapshot evaluations; the last one repeats once the list runs out.
    """

    def __init__(self, snapshots=None, goto_error=None, metrics=None, metrics_error=None, status=200):
        self.snapshots = deque(snapshots or [[]])
        self.goto_error = goto_error
        self.metrics = metrics or {"ttfb": 42.4, "lcp": 350.6, "userAgent": "FakeAgent", "viewport": {"width": 1280, "height": 720}}
        self.metrics_error = metrics_error
        self.status = status
        self.init_scripts = []
        self.visited = []
        self.scrolls = []
        self.default_timeout = None
        self.default_navigation_timeout = None

    async def add_init_script(self, script=None, path=None):
        self.init_scripts.append(script)

    def set_default_timeout(self, timeout):
        self.default_timeout = timeout

    def set_default_navigation_timeout(self, timeout):
        self.default_navigation_timeout = timeout

    async def goto(self, url, wait_until=None, timeout=None):
        self.visited.append((url, wait_until, timeout))
        if self.goto_error is not None:
            raise self.goto_error
        return SimpleNamespace(status=self.status, url=url)

    async def evaluate(self, script, arg=None):
        if script == IMAGE_SNAPSHOT_SCRIPT:
            rows = self.snapshots[0]
            if len(self.snapshots) > 1:
                self.snapshots.popleft()
            return rows
        if script == AUTO_SCROLL_SCRIPT:
            self.scrolls.append(arg)
            return None
        if script == PAGE_METRICS_SCRIPT:
            if self.metrics_error is not None:
                raise self.metrics_error
            return self.metrics
        return {}


class FakeContext:
    def __init__(self, page):
        self.page = page
        self.closed = False
        self.cdp = FakeCDPSession()

    async def new_page(self):
        return self.page

    async def new_cdp_session(self, page):
        return self.cdp

    async def close(self):
        self.closed = True


class FakeBrowser:
    """Hands out a fresh context per call, each wrapping a page from ``page_factory``."""

    def __init__(self, page_factory=FakePage):
        self.page_factory = page_factory
        self.contexts = []

    async def new_context(self, **kwargs):
        context = FakeContext(self.page_factory())
        self.contexts.append(context)
        return context


@pytest.fixture
def make_record():
    def factory(variant="origin", images_loaded_ms=100, run_index=0, page_id="page1", **overrides):
        fields = dict(
            timestamp_iso="2024-05-01T10:00:00.000Z",
            page_id=page_id,
            variant=variant,
            run_index=run_index,
            images_loaded_ms=images_loaded_ms,
            avg_image_ms=50,
            images_total=4,
            images_failed=0,
            lcp_ms=300,
            ttfb_ms=40,
            timeout=False,
            errors_count=0,
        )
        fields.update(overrides)
        return TrialRecord(**fields)

    return factory


@pytest.fixture
def scenario_a_records(make_record):
    """Three trials per variant: origin [100, 120, 110], cdn [80, 85, 90]."""
    records = []
    for i, (origin_ms, cdn_ms) in enumerate(zip([100, 120, 110], [80, 85, 90])):
        records.append(make_record("origin", origin_ms, run_index=i))
        records.append(make_record("cdn", cdn_ms, run_index=i))
    return records
