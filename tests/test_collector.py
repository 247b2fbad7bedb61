import asyncio

import pytest
from playwright.async_api import Error as PlaywrightError

from cdnbench.collector import build_snapshot, collect_image_timings, host_allowed, match_host
from cdnbench.errors import MetricsCollectionFailure

from conftest import image_row, timing


@pytest.mark.parametrize(
    "host,pattern,expected",
    [
        ("a.cdn.example.com", "*.cdn.example.com", True),
        ("cdn.example.com", "*.cdn.example.com", False),
        ("img.example.com", "img.example.com", True),
        ("img.example.com.evil", "img.example.com", False),
        ("img1.static.example.com", "img*.example.com", True),
        ("static.example.com", "img*.example.com", False),
        ("eu.img.example.net", "*img*", True),
        ("a.b.c", "a*b*c", True),
        ("a.c.b", "a*b*c", False),
        ("anything", "*", True),
        ("", "*", False),
    ],
)
def test_match_host(host, pattern, expected):
    assert match_host(host, pattern) is expected


def test_empty_allow_list_admits_everything():
    assert host_allowed("whatever.example.org", [])
    assert host_allowed("whatever.example.org", ["nope.example.org", "*.example.org"])
    assert not host_allowed("whatever.example.org", ["nope.example.org"])


def test_allow_list_filters_qualifying_images():
    rows = [
        image_row("https://a.cdn.example.com/1.jpg", "a.cdn.example.com", timing=timing(300, 100)),
        image_row("https://cdn.example.com/2.jpg", "cdn.example.com", timing=timing(400, 100)),
        image_row("https://origin.example.com/3.jpg", "origin.example.com", timing=timing(500, 100)),
    ]

    everything = build_snapshot(rows)
    assert everything.total == 3

    only_cdn = build_snapshot(rows, allow_hosts=["*.cdn.example.com"])
    assert only_cdn.urls == ["https://a.cdn.example.com/1.jpg"]
    assert only_cdn.hosts == ["a.cdn.example.com"]


def test_ignored_hosts_never_qualify():
    rows = [
        image_row("https://ad.adriver.ru/pixel.gif", "ad.adriver.ru", timing=timing(50, 10)),
        image_row("https://img.example.com/1.jpg", timing=timing(300, 100)),
    ]
    snapshot = build_snapshot(rows)
    assert snapshot.total == 1
    assert "ad.adriver.ru" not in snapshot.hosts


def test_broken_image_with_timing_counts_as_failed():
    rows = [
        image_row("https://img.example.com/broken.jpg", natural_width=0, timing=timing(300, 100)),
        image_row("https://img.example.com/ok.jpg", timing=timing(500, 200)),
    ]
    snapshot = build_snapshot(rows)

    assert snapshot.failed_urls == ["https://img.example.com/broken.jpg"]
    assert [t.url for t in snapshot.timings] == ["https://img.example.com/ok.jpg"]
    assert snapshot.loaded == 1
    assert snapshot.failed == 1


def test_pending_images_are_not_loaded():
    rows = [
        image_row("https://img.example.com/slow.jpg", complete=False, natural_width=0),
        image_row("https://img.example.com/ok.jpg", timing=timing(500, 200)),
    ]
    snapshot = build_snapshot(rows)

    assert snapshot.pending_urls == ["https://img.example.com/slow.jpg"]
    assert snapshot.failed == 0
    assert snapshot.loaded == 1
    assert snapshot.loaded + snapshot.failed + snapshot.pending == snapshot.total


def test_images_only_span_and_averages():
    rows = [
        image_row("https://img.example.com/1.jpg", timing=timing(response_end=500, duration=300)),
        image_row("https://img.example.com/2.jpg", timing=timing(response_end=900, duration=400)),
    ]
    snapshot = build_snapshot(rows)

    # first request starts at 200, last response ends at 900
    assert snapshot.max_response_end == 900
    assert snapshot.images_only_ms == 700
    assert snapshot.avg_image_ms == 350
    assert snapshot.sum_image_ms == 700


def test_no_timing_images_are_loaded_but_excluded_from_durations():
    rows = [
        image_row("https://other.example.net/x.jpg", "other.example.net"),
        image_row("https://img.example.com/1.jpg", timing=timing(response_end=600, duration=100)),
    ]
    snapshot = build_snapshot(rows)

    assert snapshot.loaded == 2
    assert [t.no_timing for t in snapshot.timings] == [True, False]
    assert snapshot.images_only_ms == 100
    assert snapshot.avg_image_ms == 100


def test_only_no_timing_images_have_no_durations():
    snapshot = build_snapshot([image_row("https://other.example.net/x.jpg", "other.example.net")])
    assert snapshot.loaded == 1
    assert snapshot.images_only_ms is None
    assert snapshot.avg_image_ms is None


def test_collect_image_timings_wraps_page_errors():
    class BrokenPage:
        async def evaluate(self, script, arg=None):
            raise PlaywrightError("Execution context was destroyed")

    with pytest.raises(MetricsCollectionFailure) as exc_info:
        asyncio.run(collect_image_timings(BrokenPage()))
    assert exc_info.value.reason == "stats_error"
