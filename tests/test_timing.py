from datetime import datetime, timedelta, timezone

from cdnbench.timing import TimingContext, make_run_id, utc_timestamp


def test_timing_context_freezes_at_exit():
    with TimingContext("trial", url="https://example.com/p") as timer:
        running = timer.elapsed_ms
        assert running >= 0

    frozen = timer.elapsed_ms
    assert frozen >= running
    assert timer.elapsed_ms == frozen

    record = timer.stop()
    assert record is timer.stop()
    assert record.name == "trial"
    assert record.metadata == {"url": "https://example.com/p"}
    assert record.duration_ms == frozen
    assert record.duration_ns == record.end_ns - record.start_ns


def test_utc_timestamp_format():
    moscow = timezone(timedelta(hours=3))
    now = datetime(2024, 5, 1, 13, 0, 0, 123456, tzinfo=moscow)
    assert utc_timestamp(now) == "2024-05-01T10:00:00.123Z"


def test_make_run_id():
    assert make_run_id(datetime(2024, 5, 1, 10, 0, 5)) == "20240501-100005"
