"""
Exception taxonomy for benchmark runs.

Trial-level errors carry the ``reason`` string written to trial results so the
runner never has to spell those strings out by hand.
"""

from __future__ import annotations


class BenchmarkError(Exception):
    """Base class for all cdnbench errors."""

    reason = "error"


class NavigationTimeout(BenchmarkError):
    """Page navigation did not reach DOMContentLoaded within the trial timeout."""

    reason = "navigation_timeout"


class NavigationError(BenchmarkError):
    """Navigation failed outright (DNS, TLS, connection refused, ...)."""

    reason = "navigation_error"


class ImageLoadTimeout(BenchmarkError):
    """Some images never completed within the wait budget."""

    reason = "timeout"


class MetricsCollectionFailure(BenchmarkError):
    """Evaluating a script inside the page failed."""

    reason = "stats_error"


class UploadFailure(BenchmarkError):
    """The object-storage upload was rejected or could not be sent."""

    reason = "upload_failed"


class ConfigError(BenchmarkError):
    """The config file is unreadable or does not validate."""


class UrlListError(BenchmarkError):
    """The remote URL list is unreachable, malformed or empty."""
