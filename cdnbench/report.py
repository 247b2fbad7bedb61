"""
Report generation for benchmark results.

The CSV keeps per-trial and aggregate data in one flat table: one row per
trial followed by exactly one TOTAL row carrying the summary columns.
"""

from __future__ import annotations

import csv
import io
import json
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any, Sequence

from cdnbench.metrics import VARIANTS
from cdnbench.stats import round_ms

if TYPE_CHECKING:
    from cdnbench.metrics import (
        ImageRunRecord,
        ImageStats,
        RecordCollector,
        Summary,
        TrialRecord,
        UrlStats,
    )

logger = logging.getLogger(__name__)

CSV_HEADER = [
    "timestamp",
    "page_id",
    "variant",
    "run",
    "images_ms",
    "avg_img_ms",
    "ttfb_ms",
    "lcp_ms",
    "images_total",
    "images_failed",
    "errors",
    # Summary columns, filled only in the TOTAL row
    "origin_median",
    "origin_p90",
    "origin_avg_img",
    "cdn_median",
    "cdn_p90",
    "cdn_avg_img",
    "improvement_%",
    "improvement_p90_%",
]

TRIAL_COLUMNS = 11
SUMMARY_COLUMNS = len(CSV_HEADER) - TRIAL_COLUMNS

IMAGE_CSV_HEADER = ["run", "total_ms", "ttfb_ms", "errors", "city", "city_geo"]
URLS_CSV_HEADER = ["url", "total_mean", "total_p50", "total_p95", "ttfb_mean", "ok", "errors", "city", "city_geo"]


def _cell(value: Any) -> Any:
    return "" if value is None else value


def _pct(value: float | None) -> str:
    return "" if value is None else f"{value:.1f}"


def format_ms(value: float | None) -> str:
    if value is None:
        return "n/a"
    return f"{round_ms(value)}ms"


def format_percent(value: float | None) -> str:
    if value is None:
        return "n/a"
    sign = "+" if value >= 0 else ""
    return f"{sign}{value:.1f}%"


def record_to_row(record: TrialRecord) -> list[Any]:
    return [
        record.timestamp_iso,
        record.page_id,
        record.variant,
        record.run_index + 1,
        _cell(record.images_loaded_ms),
        _cell(record.avg_image_ms),
        _cell(record.ttfb_ms),
        _cell(record.lcp_ms),
        _cell(record.images_total),
        _cell(record.images_failed),
        _cell(record.errors_count),
    ] + [""] * SUMMARY_COLUMNS


def summary_to_row(summary: Summary, timestamp: str) -> list[Any]:
    return [timestamp, "TOTAL", "-", "-"] + [""] * (TRIAL_COLUMNS - 4) + [
        _cell(summary.origin.median_ms),
        _cell(summary.origin.p90_ms),
        _cell(summary.origin.avg_img_ms),
        _cell(summary.cdn.median_ms),
        _cell(summary.cdn.p90_ms),
        _cell(summary.cdn.avg_img_ms),
        _pct(summary.improvement_median),
        _pct(summary.improvement_p90),
    ]


def write_csv(path: Path, header: Sequence[str], rows: Sequence[Sequence[Any]]) -> None:
    with open(path, "w", newline="") as f:
        writer = csv.writer(f, lineterminator="\n")
        writer.writerow(header)
        writer.writerows(rows)


def write_trial_csv(path: Path, records: Sequence[TrialRecord], summary: Summary, timestamp: str) -> None:
    rows = [record_to_row(r) for r in records]
    rows.append(summary_to_row(summary, timestamp))
    write_csv(path, CSV_HEADER, rows)
    logger.info(f"Wrote {len(records)} trial rows to {path}")


def summary_lines(summary: Summary) -> list[str]:
    def side(label: str, stats) -> str:
        return (
            f"{label} median {format_ms(stats.median_ms)}, p90 {format_ms(stats.p90_ms)}, "
            f"avg/img {format_ms(stats.avg_img_ms)}, errors {stats.errors}"
        )

    return [
        "=== SUMMARY ===",
        side("origin:", summary.origin),
        side("cdn:   ", summary.cdn),
        f"improvement: median {format_percent(summary.improvement_median)}, "
        f"p90 {format_percent(summary.improvement_p90)}",
    ]


def print_summary(summary: Summary) -> None:
    print()
    for line in summary_lines(summary):
        print(line)


class ReportGenerator:
    """Writes every artifact of a page benchmark run."""

    def __init__(
        self,
        output_dir: Path,
        run_id: str,
        collector: RecordCollector,
        summary: Summary,
        meta: dict[str, Any] | None = None,
    ):
        self.output_dir = output_dir
        self.run_id = run_id
        self.collector = collector
        self.summary = summary
        self.meta = meta or {}

    @property
    def csv_path(self) -> Path:
        return self.output_dir / f"{self.run_id}.csv"

    @property
    def summary_path(self) -> Path:
        return self.output_dir / f"{self.run_id}.summary.json"

    @property
    def chart_path(self) -> Path:
        return self.output_dir / "charts" / f"{self.run_id}_latency.png"

    def generate_all(self, timestamp: str) -> Path:
        """Generate all report artifacts and return the CSV path."""
        logger.info("Generating benchmark reports...")

        write_trial_csv(self.csv_path, self.collector.records(), self.summary, timestamp)
        self.generate_summary_json()
        self.collector.export_json(self.output_dir / f"{self.run_id}.raw.json")
        self.generate_latency_chart()

        logger.info("Report generation complete")
        return self.csv_path

    def generate_summary_json(self) -> None:
        data = {"run_id": self.run_id, **self.meta, "summary": self.summary.to_dict()}
        with open(self.summary_path, "w") as f:
            json.dump(data, f, indent=2)
        logger.info(f"Wrote summary to {self.summary_path}")

    def generate_latency_chart(self) -> Path | None:
        """Box plot of images-loaded time per variant."""
        import matplotlib

        matplotlib.use("Agg")  # Non-interactive backend
        import matplotlib.pyplot as plt

        series = {
            variant: [r.images_loaded_ms for r in self.collector.by_variant(variant) if r.images_loaded_ms is not None]
            for variant in VARIANTS
        }
        series = {variant: values for variant, values in series.items() if values}
        if not series:
            logger.warning("No image timings available for latency chart")
            return None

        fig, ax = plt.subplots(figsize=(8, 6))
        ax.boxplot(list(series.values()), showmeans=True)
        ax.set_xticks(range(1, len(series) + 1), list(series.keys()))
        ax.set_ylabel("Images loaded (ms)")
        ax.set_title(f"Image load time by variant ({self.run_id})")
        ax.grid(axis="y", alpha=0.3)

        plt.tight_layout()
        self.chart_path.parent.mkdir(parents=True, exist_ok=True)
        plt.savefig(self.chart_path, dpi=150)
        plt.close(fig)
        logger.info(f"Saved latency chart to {self.chart_path}")
        return self.chart_path


def write_image_report(
    path: Path,
    records: Sequence[ImageRunRecord],
    stats: ImageStats,
    city: str | None,
    city_geo: str | None,
) -> None:
    rows = [
        [r.run_index + 1, _cell(r.total_ms), _cell(r.ttfb_ms), r.errors_count, _cell(city), _cell(city_geo)]
        for r in records
    ]
    rows.append(["TOTAL", _cell(stats.total_p50_ms), _cell(stats.ttfb_p50_ms), stats.errors, _cell(city), _cell(city_geo)])
    write_csv(path, IMAGE_CSV_HEADER, rows)
    logger.info(f"Wrote {len(records)} image runs to {path}")


def image_summary_lines(stats: ImageStats, city: str | None, city_geo: str | None) -> list[str]:
    note = f"city {city or 'n/a'} geo {city_geo or 'n/a'}"
    return [
        f"image total: mean {format_ms(stats.total_mean_ms)} p50 {format_ms(stats.total_p50_ms)} "
        f"p95 {format_ms(stats.total_p95_ms)} stddev {format_ms(stats.total_stddev_ms)} ({note})",
        f"image ttfb:  mean {format_ms(stats.ttfb_mean_ms)} p50 {format_ms(stats.ttfb_p50_ms)} "
        f"p95 {format_ms(stats.ttfb_p95_ms)} ({note})",
    ]


def _quoted(value: str) -> str:
    return '"' + value.replace('"', '""') + '"'


def write_url_report(path: Path, stats: Sequence[UrlStats], city: str | None, city_geo: str | None) -> None:
    """One row per URL; the URL column is always quoted, the rest only when needed."""
    rows = [
        [
            _cell(s.total_mean_ms),
            _cell(s.total_p50_ms),
            _cell(s.total_p95_ms),
            _cell(s.ttfb_mean_ms),
            s.ok,
            s.errors,
            _cell(city),
            _cell(city_geo),
        ]
        for s in stats
    ]
    with open(path, "w", newline="") as f:
        f.write(",".join(URLS_CSV_HEADER) + "\n")
        rest = io.StringIO()
        writer = csv.writer(rest, lineterminator="\n")
        for s, row in zip(stats, rows):
            rest.seek(0)
            rest.truncate()
            writer.writerow(row)
            f.write(f"{_quoted(s.url)},{rest.getvalue()}")
    logger.info(f"Wrote stats for {len(stats)} URLs to {path}")
