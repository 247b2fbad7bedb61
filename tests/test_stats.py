import asyncio
import random

import pytest

from cdnbench.stats import (
    improvement,
    mean,
    median,
    percentile,
    round_ms,
    shuffle,
    std_dev,
    with_retries,
)


def test_median_odd_and_even():
    assert median([3, 1, 2]) == 2
    assert median([4, 1, 3, 2]) == 2.5
    assert median([]) is None


def test_percentile_nearest_rank():
    values = [10, 20, 30, 40, 50, 60, 70, 80, 90, 100]
    assert percentile(values, 0.9) == 90
    assert percentile(values, 0.5) == 50
    assert percentile(values, 1.0) == 100
    assert percentile([100, 120, 110], 0.9) == 120
    assert percentile([], 0.9) is None


def test_percentile_is_always_an_input_value():
    rng = random.Random(7)
    for _ in range(50):
        values = [rng.randint(0, 1000) for _ in range(rng.randint(1, 15))]
        for p in (0.01, 0.5, 0.9, 0.95, 0.99):
            assert percentile(values, p) in values


def test_percentile_clamps_tiny_p():
    assert percentile([5, 1, 3], 0.0) == 1


def test_percentile_monotone_in_p():
    values = [7, 3, 9, 1, 4, 8]
    results = [percentile(values, p / 10) for p in range(1, 11)]
    assert results == sorted(results)


def test_std_dev_sample():
    assert std_dev([2, 4, 4, 4, 5, 5, 7, 9]) == pytest.approx(2.138, abs=1e-3)
    assert std_dev([5]) is None
    assert mean([1, 2, 3]) == 2
    assert mean([]) is None


def test_improvement():
    assert improvement(110, 85) == pytest.approx(22.727, abs=1e-3)
    assert improvement(100, 120) == pytest.approx(-20.0)
    assert improvement(0, 10) is None
    assert improvement(None, 10) is None
    assert improvement(100, None) is None


def test_round_ms_half_up():
    assert round_ms(2.5) == 3
    assert round_ms(3.5) == 4
    assert round_ms(2.4999) == 2
    assert round_ms(None) is None


def test_shuffle_is_permutation():
    items = ["origin", "cdn", "a", "b", "c"]
    result = shuffle(items, random.Random(1))
    assert sorted(result) == sorted(items)
    assert items == ["origin", "cdn", "a", "b", "c"]


def test_shuffle_covers_both_orders():
    rng = random.Random(3)
    orders = {tuple(shuffle(["origin", "cdn"], rng)) for _ in range(50)}
    assert orders == {("origin", "cdn"), ("cdn", "origin")}


def test_with_retries_always_failing():
    calls = []
    retries = []
    sleeps = []

    async def operation(attempt, total):
        calls.append((attempt, total))
        raise RuntimeError(f"fail {attempt}")

    async def fake_sleep(seconds):
        sleeps.append(seconds)

    def on_retry(attempt, total, error, delay_ms):
        retries.append((attempt, total, str(error), delay_ms))

    with pytest.raises(RuntimeError, match="fail 3"):
        asyncio.run(with_retries(operation, 3, 100, on_retry=on_retry, sleep=fake_sleep))

    assert calls == [(1, 3), (2, 3), (3, 3)]
    assert retries == [(1, 3, "fail 1", 100), (2, 3, "fail 2", 200)]
    assert sleeps == [0.1, 0.2]


def test_with_retries_succeeds_after_failure():
    calls = []

    async def operation(attempt, total):
        calls.append(attempt)
        if attempt == 1:
            raise ValueError("transient")
        return "ok"

    async def fake_sleep(seconds):
        pass

    result = asyncio.run(with_retries(operation, 3, 100, sleep=fake_sleep))

    assert result == "ok"
    assert calls == [1, 2]


def test_with_retries_single_attempt_no_retry():
    retries = []

    async def operation(attempt, total):
        raise RuntimeError("once")

    with pytest.raises(RuntimeError):
        asyncio.run(with_retries(operation, 1, 100, on_retry=lambda *a: retries.append(a)))

    assert retries == []


def test_improvement_sign_and_baseline():
    assert improvement(100, 50) == 50.0
    assert improvement(50, 100) == -100.0
    assert improvement(0, 50) is None


def test_median_within_bounds():
    rng = random.Random(5)
    for _ in range(50):
        values = [rng.uniform(0, 500) for _ in range(rng.randint(1, 12))]
        assert min(values) <= median(values) <= max(values)
        assert percentile(values, 1.0) == max(values)
        assert percentile(values, 0) == min(values)
