"""
Descriptive statistics and retry helpers shared by every benchmark mode.

All functions return None instead of raising when the input cannot produce
a meaningful value (empty lists, a zero baseline, ...).
"""

from __future__ import annotations

import asyncio
import logging
import math
import random
from typing import Any, Awaitable, Callable, Sequence, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

RetryObserver = Callable[[int, int, BaseException, float], None]


def median(values: Sequence[float]) -> float | None:
    """Median of values; the mean of the two middle elements for even lengths."""
    if not values:
        return None
    ordered = sorted(values)
    mid = len(ordered) // 2
    if len(ordered) % 2 == 1:
        return ordered[mid]
    return (ordered[mid - 1] + ordered[mid]) / 2


def percentile(values: Sequence[float], p: float) -> float | None:
    """Nearest-rank percentile, p given as a fraction (0.9 for p90).

    No interpolation: the result is always one of the input values, so small
    samples show step-function behaviour.
    """
    if not values:
        return None
    ordered = sorted(values)
    idx = math.ceil(p * len(ordered)) - 1
    return ordered[max(0, min(len(ordered) - 1, idx))]


def mean(values: Sequence[float]) -> float | None:
    if not values:
        return None
    return sum(values) / len(values)


def std_dev(values: Sequence[float]) -> float | None:
    """Sample standard deviation (n - 1 divisor)."""
    if len(values) < 2:
        return None
    avg = sum(values) / len(values)
    square_diffs = sum((v - avg) ** 2 for v in values)
    return math.sqrt(square_diffs / (len(values) - 1))


def improvement(origin_ms: float | None, cdn_ms: float | None) -> float | None:
    """Percent by which the CDN is faster than origin (negative when slower)."""
    if origin_ms is None or cdn_ms is None or origin_ms == 0:
        return None
    return (origin_ms - cdn_ms) / origin_ms * 100


def round_ms(value: float | None) -> int | None:
    """Round half up to whole milliseconds."""
    if value is None:
        return None
    return int(math.floor(value + 0.5))


def shuffle(items: Sequence[T], rng: random.Random | None = None) -> list[T]:
    """Return a Fisher-Yates shuffled copy of items."""
    rng = rng or random.Random()
    result = list(items)
    for i in range(len(result) - 1, 0, -1):
        j = rng.randint(0, i)
        result[i], result[j] = result[j], result[i]
    return result


async def with_retries(
    operation: Callable[[int, int], Awaitable[T]],
    attempts: int,
    backoff_ms: float,
    on_retry: RetryObserver | None = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> T:
    """Await operation(attempt, total) until it succeeds or attempts run out.

    Before the retry that follows failed attempt k (1-based), on_retry is
    called with (k, total, error, delay_ms) and the helper sleeps for
    backoff_ms * 2 ** (k - 1) milliseconds. The last error is re-raised.
    """
    total = max(1, attempts)
    attempt = 1

    while True:
        try:
            return await operation(attempt, total)
        except Exception as e:
            if attempt >= total:
                raise
            delay_ms = backoff_ms * 2 ** (attempt - 1)
            if on_retry:
                on_retry(attempt, total, e, delay_ms)
            else:
                logger.debug(f"Attempt {attempt}/{total} failed, retrying in {delay_ms:.0f}ms: {e}")
        if delay_ms > 0:
            await sleep(delay_ms / 1000)
        attempt += 1
