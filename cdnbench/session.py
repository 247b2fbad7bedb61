"""
Benchmark session orchestrator.

Manages the full lifecycle of a run: browser launch, warmup, the measured
trials, report generation and the optional upload of the results.
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Awaitable, Callable, Sequence

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import async_playwright

from cdnbench.browser import (
    ImageTrialResult,
    TrialResult,
    launch_browser,
    navigation_failure,
    run_image_trial,
    run_page_trial,
    run_warmup,
)
from cdnbench.client import BenchmarkClient, load_url_list
from cdnbench.config import DEFAULT_BASE_URL, normalize_base_url
from cdnbench.errors import UploadFailure
from cdnbench.metrics import (
    VARIANTS,
    ImageRunRecord,
    ImageStats,
    RecordCollector,
    Summary,
    TrialRecord,
    UrlFetchRecord,
    UrlStats,
)
from cdnbench.report import (
    ReportGenerator,
    image_summary_lines,
    print_summary,
    write_image_report,
    write_url_report,
)
from cdnbench.stats import shuffle, with_retries
from cdnbench.timing import make_run_id, utc_timestamp
from cdnbench.upload import S3Credentials, UploadResult, build_s3_key, upload_file_s3

logger = logging.getLogger(__name__)

PAGES = ("page1", "page2", "page3")
DEFAULT_PATH_TEMPLATE = "/cdntest/{page_id}/{variant}/index.html"

WARMUP_PASSES = 2
WARMUP_TIMEOUT_MS = 15000

UPLOAD_ATTEMPTS = 3
UPLOAD_BACKOFF_MS = 2000
UPLOAD_TIMEOUT_MS = 30000

ProgressCallback = Callable[[int, int, str], None]


@dataclass
class S3Settings:
    """Where and how to upload the CSV; disabled unless bucket and keys are set."""

    bucket: str | None = None
    prefix: str | None = None
    region: str | None = None
    endpoint: str | None = None
    credentials: S3Credentials | None = None

    @property
    def enabled(self) -> bool:
        return bool(self.bucket and self.credentials and self.credentials.complete)


@dataclass
class BenchmarkConfig:
    """Configuration for a page benchmark run."""

    output_dir: Path
    base_url: str = DEFAULT_BASE_URL
    pages: Sequence[str] = PAGES
    variants: Sequence[str] = VARIANTS
    path_template: str = DEFAULT_PATH_TEMPLATE
    repeats: int = 3

    # Browser
    browser: str = "chromium"
    headless: bool = True
    timeout_ms: int = 60000
    delay_ms: int = 1000
    scroll_delay_ms: int | None = 0
    allowed_image_hosts: Sequence[str] = ()
    warmup_passes: int = WARMUP_PASSES

    verbose: bool = False

    # Metadata attached to every record
    city: str | None = None
    city_geo: str | None = None

    s3: S3Settings = field(default_factory=S3Settings)
    proxy: str | None = None

    def __post_init__(self) -> None:
        if isinstance(self.output_dir, str):
            self.output_dir = Path(self.output_dir)
        self.base_url = normalize_base_url(self.base_url)

    def page_url(self, page_id: str, variant: str) -> str:
        return self.base_url + self.path_template.format(page_id=page_id, variant=variant)

    def all_urls(self) -> list[str]:
        return [self.page_url(p, v) for p in self.pages for v in self.variants]


@dataclass
class BenchmarkResult:
    """Result of a benchmark run."""

    run_id: str
    records: list[TrialRecord]
    summary: Summary
    csv_path: Path
    start_time: datetime
    end_time: datetime
    upload: UploadResult | None = None

    @property
    def wall_time_s(self) -> float:
        """Total wall clock time in seconds."""
        return (self.end_time - self.start_time).total_seconds()


@dataclass(frozen=True)
class PlannedTrial:
    page_id: str
    run_index: int
    variant: str


class _RunLog:
    """Per-run DEBUG log file attached to the root logger for the run's duration."""

    def __init__(self, output_dir: Path, run_id: str):
        self.path = output_dir / "logs" / f"{run_id}.log"
        self._handler: logging.FileHandler | None = None

    def __enter__(self) -> _RunLog:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._handler = logging.FileHandler(self.path)
        self._handler.setLevel(logging.DEBUG)
        self._handler.setFormatter(
            logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        )
        logging.getLogger().addHandler(self._handler)
        return self

    def __exit__(self, *args) -> None:
        if self._handler:
            logging.getLogger().removeHandler(self._handler)
            self._handler.close()
            self._handler = None


class BenchmarkSession:
    """Runs the origin vs CDN page benchmark.

    Orchestrates:
    - Warmup (primes DNS, TLS sessions and CDN edge caches)
    - Measured trials, one at a time, variant order shuffled per repeat
    - Report generation
    - Optional upload of the CSV
    """

    def __init__(
        self,
        config: BenchmarkConfig,
        progress_callback: ProgressCallback | None = None,
        trial_runner: Callable[..., Awaitable[TrialResult]] = run_page_trial,
        warmup_runner: Callable[..., Awaitable[None]] = run_warmup,
        uploader: Callable[..., UploadResult] = upload_file_s3,
        rng: random.Random | None = None,
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
    ):
        """Initialize benchmark session.

        Args:
            config: Benchmark configuration
            progress_callback: Optional callback for progress updates.
                              Called with (current, total, message).
            trial_runner, warmup_runner, uploader: Collaborators, replaceable in tests.
            rng: Source of randomness for the variant order.
            sleep: Coroutine used for inter-trial and retry delays.
        """
        self.config = config
        self.collector = RecordCollector()
        self.run_id = make_run_id()
        self._progress_callback = progress_callback
        self._trial_runner = trial_runner
        self._warmup_runner = warmup_runner
        self._uploader = uploader
        self._rng = rng or random.Random()
        self._sleep = sleep

    def _report_progress(self, current: int, total: int, message: str) -> None:
        """Report progress if callback is set."""
        if self._progress_callback:
            self._progress_callback(current, total, message)

    def plan_trials(self) -> list[PlannedTrial]:
        """Page-major, repeat-minor order with the variants shuffled per repeat."""
        plan = []
        for page_id in self.config.pages:
            for run_index in range(self.config.repeats):
                for variant in shuffle(self.config.variants, self._rng):
                    plan.append(PlannedTrial(page_id, run_index, variant))
        return plan

    async def run(self) -> BenchmarkResult:
        """Launch the browser and execute the full benchmark."""
        async with async_playwright() as playwright:
            browser = await launch_browser(playwright, self.config.browser, self.config.headless)
            try:
                return await self.run_with_browser(browser)
            finally:
                await browser.close()

    async def run_with_browser(self, browser) -> BenchmarkResult:
        """Execute warmup, trials and reporting on an already launched browser."""
        start_time = datetime.now()
        self.config.output_dir.mkdir(parents=True, exist_ok=True)

        with _RunLog(self.config.output_dir, self.run_id) as run_log:
            logger.info(f"Starting benchmark {self.run_id} against {self.config.base_url}")
            logger.debug(f"Run log at {run_log.path}")

            plan = self.plan_trials()
            total = len(plan)

            if self.config.warmup_passes > 0:
                self._report_progress(0, total, "Warmup...")
                logger.info(f"Warmup: {self.config.warmup_passes} passes over {len(self.config.all_urls())} URLs")
                await self._warmup_runner(
                    browser,
                    self.config.browser,
                    self.config.all_urls(),
                    passes=self.config.warmup_passes,
                    timeout_ms=WARMUP_TIMEOUT_MS,
                )
                logger.info("Warmup: done")

            for i, trial in enumerate(plan):
                label = f"[{trial.page_id}] {trial.variant} #{trial.run_index + 1}"
                self._report_progress(i, total, label)

                record = await self._run_trial(browser, trial, label)
                self.collector.add(record)

                if i < total - 1 and self.config.delay_ms > 0:
                    await self._sleep(self.config.delay_ms / 1000)

            self._report_progress(total, total, "Generating reports...")
            end_time = datetime.now()

            summary = self.collector.compute_summary()
            generator = ReportGenerator(
                self.config.output_dir,
                self.run_id,
                self.collector,
                summary,
                meta={
                    "base_url": self.config.base_url,
                    "browser": self.config.browser,
                    "repeats": self.config.repeats,
                    "city": self.config.city,
                    "city_geo": self.config.city_geo,
                },
            )
            csv_path = generator.generate_all(utc_timestamp())
            print_summary(summary)

            upload = await self._upload(csv_path) if self.config.s3.enabled else None

        return BenchmarkResult(
            run_id=self.run_id,
            records=self.collector.records(),
            summary=summary,
            csv_path=csv_path,
            start_time=start_time,
            end_time=end_time,
            upload=upload,
        )

    async def _run_trial(self, browser, trial: PlannedTrial, label: str) -> TrialRecord:
        url = self.config.page_url(trial.page_id, trial.variant)
        try:
            result = await self._trial_runner(
                browser,
                self.config.browser,
                url,
                scroll_delay_ms=self.config.scroll_delay_ms,
                allowed_image_hosts=self.config.allowed_image_hosts,
                timeout_ms=self.config.timeout_ms,
                verbose=self.config.verbose,
                log_prefix=label,
            )
        except PlaywrightError as e:
            # The trial failed before a result existed; still one record per trial
            failure = navigation_failure(e)
            logger.error(f"{label} {failure.reason}: {e.message}")
            return TrialRecord(
                timestamp_iso=utc_timestamp(),
                page_id=trial.page_id,
                variant=trial.variant,
                run_index=trial.run_index,
                images_loaded_ms=None,
                avg_image_ms=None,
                images_total=0,
                images_failed=0,
                lcp_ms=None,
                ttfb_ms=None,
                timeout=True,
                errors_count=0,
                timeout_reason=failure.reason,
                city=self.config.city,
                city_geo=self.config.city_geo,
            )

        images = f"{result.images_loaded_ms}ms" if result.images_loaded_ms is not None else "n/a"
        avg_img = f"{result.avg_image_ms}ms" if result.avg_image_ms is not None else "n/a"
        status = "TIMEOUT" if result.timeout else "ok"
        logger.info(f"{label} {status} images={images} avg/img={avg_img} errors={result.errors_count}")

        return TrialRecord(
            timestamp_iso=utc_timestamp(),
            page_id=trial.page_id,
            variant=trial.variant,
            run_index=trial.run_index,
            images_loaded_ms=result.images_loaded_ms,
            avg_image_ms=result.avg_image_ms,
            images_total=result.images_total,
            images_failed=result.images_failed,
            lcp_ms=result.lcp_ms,
            ttfb_ms=result.ttfb_ms,
            timeout=result.timeout,
            errors_count=result.errors_count,
            timeout_reason=result.timeout_reason,
            city=self.config.city,
            city_geo=self.config.city_geo,
        )

    async def _upload(self, csv_path: Path) -> UploadResult | None:
        """Upload the CSV with retries; a final failure is logged, never raised."""
        s3 = self.config.s3
        key = build_s3_key(s3.prefix, self.run_id)

        def on_retry(attempt: int, total: int, error: BaseException, delay_ms: float) -> None:
            logger.warning(f"S3 retry {attempt}/{total} in {delay_ms:.0f}ms: {error}")

        async def attempt_upload(attempt: int, total: int) -> UploadResult:
            return await asyncio.to_thread(
                self._uploader,
                bucket=s3.bucket,
                key=key,
                region=s3.region,
                endpoint=s3.endpoint,
                credentials=s3.credentials,
                file_path=csv_path,
                content_type="text/csv",
                timeout_ms=UPLOAD_TIMEOUT_MS,
                proxy=self.config.proxy,
            )

        try:
            result = await with_retries(
                attempt_upload, UPLOAD_ATTEMPTS, UPLOAD_BACKOFF_MS, on_retry=on_retry, sleep=self._sleep
            )
        except UploadFailure as e:
            logger.error(f"S3 upload failed: {e}")
            return None

        logger.info(f"Uploaded: {result.uri}")
        return result


def cache_bust_token() -> str:
    return f"{int(time.time() * 1000)}{random.randint(0, 999999)}"


def append_cache_bust(url: str, token: str) -> str:
    sep = "&" if "?" in url else "?"
    return f"{url}{sep}nocache={token}"


@dataclass
class ImageBenchmarkConfig:
    """Configuration for repeated direct loads of one image URL."""

    url: str
    output_dir: Path
    repeats: int = 20
    browser: str = "chromium"
    headless: bool = True
    timeout_ms: int = 30000
    delay_ms: int = 0
    cache_bust: bool = False
    city: str | None = None
    city_geo: str | None = None

    def __post_init__(self) -> None:
        if isinstance(self.output_dir, str):
            self.output_dir = Path(self.output_dir)


@dataclass
class ImageBenchmarkResult:
    run_id: str
    records: list[ImageRunRecord]
    stats: ImageStats
    csv_path: Path


class ImageSession:
    """Loads a single image URL repeatedly, each time in a fresh context."""

    def __init__(
        self,
        config: ImageBenchmarkConfig,
        progress_callback: ProgressCallback | None = None,
        trial_runner=run_image_trial,
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
    ):
        self.config = config
        self.run_id = make_run_id()
        self._progress_callback = progress_callback
        self._trial_runner = trial_runner
        self._sleep = sleep

    async def run(self) -> ImageBenchmarkResult:
        async with async_playwright() as playwright:
            browser = await launch_browser(playwright, self.config.browser, self.config.headless)
            try:
                return await self.run_with_browser(browser)
            finally:
                await browser.close()

    async def run_with_browser(self, browser) -> ImageBenchmarkResult:
        cfg = self.config
        cfg.output_dir.mkdir(parents=True, exist_ok=True)
        records: list[ImageRunRecord] = []

        for i in range(cfg.repeats):
            if self._progress_callback:
                self._progress_callback(i, cfg.repeats, f"Image #{i + 1}")
            url = append_cache_bust(cfg.url, cache_bust_token()) if cfg.cache_bust else cfg.url
            try:
                result = await self._trial_runner(browser, cfg.browser, url, timeout_ms=cfg.timeout_ms)
            except PlaywrightError as e:
                failure = navigation_failure(e)
                logger.error(f"#{i + 1} {failure.reason}: {e.message}")
                result = ImageTrialResult(
                    url=url,
                    timeout=True,
                    timeout_reason=failure.reason,
                    errors_count=1,
                    nav_error=e.message,
                )

            records.append(
                ImageRunRecord(
                    timestamp_iso=utc_timestamp(),
                    run_index=i,
                    total_ms=result.total_ms,
                    ttfb_ms=result.ttfb_ms,
                    timeout=result.timeout,
                    errors_count=result.errors_count,
                )
            )
            total = f"{result.total_ms}ms" if result.total_ms is not None else "n/a"
            ttfb = f"{result.ttfb_ms}ms" if result.ttfb_ms is not None else "n/a"
            logger.info(f"#{i + 1} total={total} ttfb={ttfb}")

            if i < cfg.repeats - 1 and cfg.delay_ms > 0:
                await self._sleep(cfg.delay_ms / 1000)

        if self._progress_callback:
            self._progress_callback(cfg.repeats, cfg.repeats, "Done")

        stats = ImageStats.from_records(records)
        print()
        for line in image_summary_lines(stats, cfg.city, cfg.city_geo):
            print(line)

        csv_path = cfg.output_dir / f"{self.run_id}.csv"
        write_image_report(csv_path, records, stats, cfg.city, cfg.city_geo)
        return ImageBenchmarkResult(self.run_id, records, stats, csv_path)


@dataclass
class UrlListConfig:
    """Configuration for the plain HTTP benchmark of a remote URL list."""

    list_url: str
    output_dir: Path
    repeats: int = 20
    timeout_ms: int = 30000
    delay_ms: int = 0
    cache_bust: bool = False
    city: str | None = None
    city_geo: str | None = None

    def __post_init__(self) -> None:
        if isinstance(self.output_dir, str):
            self.output_dir = Path(self.output_dir)


@dataclass
class UrlListResult:
    run_id: str
    urls: list[str]
    records: list[UrlFetchRecord]
    stats: list[UrlStats]
    csv_path: Path


class UrlListSession:
    """Times plain GETs of every URL in a list, no browser involved."""

    def __init__(
        self,
        config: UrlListConfig,
        client: BenchmarkClient,
        progress_callback: ProgressCallback | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config
        self.client = client
        self.run_id = make_run_id()
        self._progress_callback = progress_callback
        self._sleep = sleep

    def run(self) -> UrlListResult:
        cfg = self.config
        urls = load_url_list(self.client, cfg.list_url, cfg.timeout_ms)
        logger.info(f"Loaded {len(urls)} URLs from {cfg.list_url}")
        cfg.output_dir.mkdir(parents=True, exist_ok=True)

        records: list[UrlFetchRecord] = []
        total = len(urls) * cfg.repeats
        done = 0

        for url in urls:
            for i in range(cfg.repeats):
                if self._progress_callback:
                    self._progress_callback(done, total, url)
                request_url = append_cache_bust(url, cache_bust_token()) if cfg.cache_bust else url
                metrics = self.client.fetch_url_metrics(request_url, cfg.timeout_ms)
                records.append(
                    UrlFetchRecord(
                        timestamp_iso=utc_timestamp(),
                        url=url,
                        run_index=i,
                        status_code=metrics.status_code,
                        total_ms=metrics.total_ms,
                        ttfb_ms=metrics.ttfb_ms,
                        size_bytes=metrics.size_bytes,
                        error=metrics.error,
                    )
                )
                done += 1

                status = "ERR" if metrics.error else metrics.status_code
                total_txt = f"{metrics.total_ms}ms" if metrics.total_ms is not None else "n/a"
                logger.info(f"{url} #{i + 1} {status} total={total_txt}")

                if i < cfg.repeats - 1 and cfg.delay_ms > 0:
                    self._sleep(cfg.delay_ms / 1000)

        if self._progress_callback:
            self._progress_callback(total, total, "Done")

        stats = [UrlStats.from_records(url, records) for url in urls]
        csv_path = cfg.output_dir / f"{self.run_id}.csv"
        write_url_report(csv_path, stats, cfg.city, cfg.city_geo)
        return UrlListResult(self.run_id, urls, records, stats, csv_path)
