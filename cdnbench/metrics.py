"""
Trial records and their per-variant summary.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Iterable, Sequence

from cdnbench.stats import improvement, mean, median, percentile, round_ms, std_dev

VARIANTS = ("origin", "cdn")


@dataclass(frozen=True)
class TrialRecord:
    """One row of the report: a single (page, variant, repeat) measurement."""

    timestamp_iso: str
    page_id: str
    variant: str
    run_index: int
    images_loaded_ms: int | None
    avg_image_ms: int | None
    images_total: int | None
    images_failed: int | None
    lcp_ms: int | None
    ttfb_ms: int | None
    timeout: bool
    errors_count: int
    timeout_reason: str | None = None
    city: str | None = None
    city_geo: str | None = None

    @property
    def key(self) -> tuple[str, str, int]:
        return (self.page_id, self.variant, self.run_index)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class VariantStats:
    """Latency statistics for one arm of the comparison (values rounded to ms)."""

    variant: str
    samples: int
    median_ms: int | None
    p90_ms: int | None
    stddev_ms: int | None
    avg_img_ms: int | None
    errors: int

    @classmethod
    def from_records(cls, variant: str, records: Sequence[TrialRecord]) -> tuple[VariantStats, float | None, float | None]:
        """Build the stats plus the unrounded median and p90 used for improvements."""
        values = [r.images_loaded_ms for r in records if r.images_loaded_ms is not None]
        avg_img = [r.avg_image_ms for r in records if r.avg_image_ms is not None]

        raw_median = median(values)
        raw_p90 = percentile(values, 0.9)

        stats = cls(
            variant=variant,
            samples=len(values),
            median_ms=round_ms(raw_median),
            p90_ms=round_ms(raw_p90),
            stddev_ms=round_ms(std_dev(values)),
            avg_img_ms=round_ms(median(avg_img)),
            errors=sum(r.errors_count or 0 for r in records),
        )
        return stats, raw_median, raw_p90


@dataclass
class Summary:
    """Origin vs CDN comparison across all trials of a run."""

    origin: VariantStats
    cdn: VariantStats
    improvement_median: float | None
    improvement_p90: float | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "origin": asdict(self.origin),
            "cdn": asdict(self.cdn),
            "improvement_median_pct": self.improvement_median,
            "improvement_p90_pct": self.improvement_p90,
        }


def compute_summary(records: Iterable[TrialRecord]) -> Summary:
    """Partition records by variant and compare the two arms.

    Pure function of its input: the same records always yield the same summary.
    """
    records = list(records)
    origin, origin_median, origin_p90 = VariantStats.from_records(
        "origin", [r for r in records if r.variant == "origin"]
    )
    cdn, cdn_median, cdn_p90 = VariantStats.from_records(
        "cdn", [r for r in records if r.variant == "cdn"]
    )
    return Summary(
        origin=origin,
        cdn=cdn,
        improvement_median=improvement(origin_median, cdn_median),
        improvement_p90=improvement(origin_p90, cdn_p90),
    )


class RecordCollector:
    """Ordered, duplicate-free store of the trial records of one run."""

    def __init__(self) -> None:
        self._records: list[TrialRecord] = []
        self._keys: set[tuple[str, str, int]] = set()

    def __len__(self) -> int:
        return len(self._records)

    def add(self, record: TrialRecord) -> None:
        if record.key in self._keys:
            raise ValueError(f"Duplicate trial {record.key}")
        self._keys.add(record.key)
        self._records.append(record)

    def records(self) -> list[TrialRecord]:
        """Records in the order the trials ran."""
        return list(self._records)

    def by_variant(self, variant: str) -> list[TrialRecord]:
        return [r for r in self._records if r.variant == variant]

    def compute_summary(self) -> Summary:
        return compute_summary(self._records)

    def export_json(self, path: Path) -> None:
        """Export all raw records to JSON."""
        data = {"records": [r.to_dict() for r in self._records]}
        with open(path, "w") as f:
            json.dump(data, f, indent=2)


@dataclass
class ImageRunRecord:
    """One direct image fetch in the ``image`` command."""

    timestamp_iso: str
    run_index: int
    total_ms: int | None
    ttfb_ms: int | None
    timeout: bool
    errors_count: int


@dataclass
class ImageStats:
    total_mean_ms: int | None
    total_p50_ms: int | None
    total_p95_ms: int | None
    total_stddev_ms: int | None
    ttfb_mean_ms: int | None
    ttfb_p50_ms: int | None
    ttfb_p95_ms: int | None
    errors: int = 0

    @classmethod
    def from_records(cls, records: Sequence[ImageRunRecord]) -> ImageStats:
        totals = [r.total_ms for r in records if r.total_ms is not None]
        ttfbs = [r.ttfb_ms for r in records if r.ttfb_ms is not None]
        return cls(
            total_mean_ms=round_ms(mean(totals)),
            total_p50_ms=round_ms(percentile(totals, 0.5)),
            total_p95_ms=round_ms(percentile(totals, 0.95)),
            total_stddev_ms=round_ms(std_dev(totals)),
            ttfb_mean_ms=round_ms(mean(ttfbs)),
            ttfb_p50_ms=round_ms(percentile(ttfbs, 0.5)),
            ttfb_p95_ms=round_ms(percentile(ttfbs, 0.95)),
            errors=sum(r.errors_count for r in records),
        )


@dataclass
class UrlFetchRecord:
    """One plain HTTP fetch in the ``urls`` command."""

    timestamp_iso: str
    url: str
    run_index: int
    status_code: int | None
    total_ms: int | None
    ttfb_ms: int | None
    size_bytes: int = 0
    error: str | None = None

    @property
    def failed(self) -> bool:
        return bool(self.error) or (self.status_code is not None and self.status_code >= 400)


@dataclass
class UrlStats:
    url: str
    total_mean_ms: int | None
    total_p50_ms: int | None
    total_p95_ms: int | None
    ttfb_mean_ms: int | None
    ok: int
    errors: int

    @classmethod
    def from_records(cls, url: str, records: Sequence[UrlFetchRecord]) -> UrlStats:
        entries = [r for r in records if r.url == url]
        totals = [r.total_ms for r in entries if r.total_ms is not None]
        ttfbs = [r.ttfb_ms for r in entries if r.ttfb_ms is not None]
        return cls(
            url=url,
            total_mean_ms=round_ms(mean(totals)),
            total_p50_ms=round_ms(percentile(totals, 0.5)),
            total_p95_ms=round_ms(percentile(totals, 0.95)),
            ttfb_mean_ms=round_ms(mean(ttfbs)),
            ok=sum(1 for r in entries if r.status_code == 200),
            errors=sum(1 for r in entries if r.failed),
        )
