"""
CDN vs origin image load benchmark.

This package drives a real browser through pages served straight from the
origin and through a CDN, measures how long the images take to arrive and
reports the per-variant latency and the CDN improvement.

Usage:
    python -m cdnbench run --base-url https://cdntest.example.com --repeats 5
    python -m cdnbench run --image-hosts '*.cdn.example.com' --s3-bucket bench-results
    python -m cdnbench image https://cdn.example.com/photo.jpg --cache-bust
    python -m cdnbench urls --urls https://example.com/urls.txt
"""

from cdnbench.timing import TimingRecord, TimingContext
from cdnbench.stats import median, percentile, improvement, shuffle, with_retries
from cdnbench.collector import ImageSnapshot, ImageTiming, build_snapshot, match_host
from cdnbench.browser import TrialResult, run_page_trial, wait_for_images
from cdnbench.metrics import (
    TrialRecord,
    VariantStats,
    Summary,
    RecordCollector,
    compute_summary,
)
from cdnbench.session import BenchmarkConfig, BenchmarkSession, BenchmarkResult
from cdnbench.client import BenchmarkClient
from cdnbench.report import ReportGenerator, write_trial_csv
from cdnbench.upload import upload_file_s3

__all__ = [
    # Timing primitives
    "TimingRecord",
    "TimingContext",
    # Statistics
    "median",
    "percentile",
    "improvement",
    "shuffle",
    "with_retries",
    # Image collection
    "ImageSnapshot",
    "ImageTiming",
    "build_snapshot",
    "match_host",
    # Trials
    "TrialResult",
    "run_page_trial",
    "wait_for_images",
    # Metrics
    "TrialRecord",
    "VariantStats",
    "Summary",
    "RecordCollector",
    "compute_summary",
    # Session management
    "BenchmarkConfig",
    "BenchmarkSession",
    "BenchmarkResult",
    # HTTP client
    "BenchmarkClient",
    # Reporting and upload
    "ReportGenerator",
    "write_trial_csv",
    "upload_file_s3",
]
