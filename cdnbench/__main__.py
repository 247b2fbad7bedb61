#!/usr/bin/env python3
"""
CLI entry point for cdnbench.

Usage:
    python -m cdnbench run --base-url https://cdntest.example.com --repeats 5
    python -m cdnbench image https://cdn.example.com/photo.jpg --repeats 20
    python -m cdnbench urls --urls https://example.com/urls.txt
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from rich.console import Console
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskProgressColumn, TextColumn

from cdnbench.browser import BROWSER_NAMES
from cdnbench.client import BenchmarkClient
from cdnbench.config import (
    DEFAULT_BASE_URL,
    DEFAULT_CONFIG_PATH,
    DEFAULT_OUTPUT_DIR,
    FileConfig,
    load_file_config,
    normalize_url,
    parse_host_patterns,
    pick,
    proxy_from_env,
)
from cdnbench.errors import BenchmarkError
from cdnbench.geo import GeoResult, detect_city
from cdnbench.session import (
    BenchmarkConfig,
    BenchmarkSession,
    ImageBenchmarkConfig,
    ImageSession,
    S3Settings,
    UrlListConfig,
    UrlListSession,
)
from cdnbench.upload import S3Credentials, default_s3_region

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False) -> None:
    """Configure logging for the benchmark run."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(levelname)s - %(message)s",
        datefmt="%H:%M:%S",
    )


def create_progress_callback():
    """Create a rich progress bar callback and its cleanup function."""
    console = Console(stderr=True)
    progress = Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        console=console,
        transient=True,
    )

    task_id = None
    started = False

    def callback(current: int, total: int, message: str) -> None:
        nonlocal task_id, started

        if not started:
            progress.start()
            task_id = progress.add_task(message, total=total)
            started = True
        else:
            progress.update(task_id, completed=current, description=message)

        if current >= total:
            progress.stop()

    return callback, lambda: progress.stop() if started else None


def add_common_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "city_positional",
        nargs="?",
        metavar="city",
        help="Meta: city the benchmark runs from",
    )
    parser.add_argument("--config", type=Path, default=DEFAULT_CONFIG_PATH, help="Path to JSON config")
    parser.add_argument("-o", "--output-dir", type=Path, default=DEFAULT_OUTPUT_DIR, help="Output directory")
    parser.add_argument("--city", default=None, help="Meta: city")
    parser.add_argument(
        "--auto-city",
        action=argparse.BooleanOptionalAction,
        default=True,
        help="Auto-detect city via public IP (default: on)",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable verbose logging")


def add_browser_options(parser: argparse.ArgumentParser, timeout_ms: int, delay_ms: int) -> None:
    parser.add_argument("--browser", default="chromium", choices=BROWSER_NAMES)
    parser.add_argument(
        "--headless",
        action=argparse.BooleanOptionalAction,
        default=True,
        help="Run the browser headless (default: on)",
    )
    parser.add_argument("--timeout-ms", type=int, default=timeout_ms, help=f"Timeout per run (default: {timeout_ms})")
    parser.add_argument("--delay-ms", type=int, default=delay_ms, help=f"Delay between runs (default: {delay_ms})")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cdnbench",
        description="Compare image load performance through a CDN versus the origin",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Page benchmark, 5 repeats per variant
    python -m cdnbench run --base-url https://cdntest.example.com --repeats 5

    # Only count images served from the CDN hosts
    python -m cdnbench run --image-hosts '*.cdn.example.com,img.example.com'

    # Single image, bypassing the CDN cache
    python -m cdnbench image https://cdn.example.com/photo.jpg --cache-bust

    # Plain HTTP timing of a remote URL list
    python -m cdnbench urls --urls https://example.com/urls.txt --repeats 10
        """,
    )
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Run the origin vs CDN page benchmark")
    run.add_argument("--base-url", default=DEFAULT_BASE_URL, help=f"Base URL (default: {DEFAULT_BASE_URL})")
    run.add_argument("--repeats", type=int, default=3, help="Repeats per page and variant (default: 3)")
    add_browser_options(run, timeout_ms=60000, delay_ms=1000)
    run.add_argument("--scroll-delay-ms", type=int, default=0, help="Pause at each scroll step (default: 0)")
    run.add_argument("--image-hosts", action="append", help="Image host allowlist, comma-separated wildcards")
    run.add_argument("--warmup", type=int, default=2, help="Warmup passes over all URLs (default: 2)")
    run.add_argument("--s3-bucket", help="S3 bucket for upload")
    run.add_argument("--s3-prefix", help="S3 key prefix")
    run.add_argument("--s3-region", help="S3 region")
    run.add_argument("--s3-endpoint", help="S3 endpoint")
    run.add_argument("--s3-access-key-id", help="S3 access key")
    run.add_argument("--s3-secret-access-key", help="S3 secret key")
    add_common_options(run)

    image = sub.add_parser("image", help="Benchmark a single image URL")
    image.add_argument("url", help="Image URL")
    image.add_argument("--repeats", type=int, default=20)
    add_browser_options(image, timeout_ms=30000, delay_ms=0)
    image.add_argument("--cache-bust", action="store_true", help="Append a nocache param (defeats the CDN cache)")
    add_common_options(image)

    urls = sub.add_parser("urls", help="Benchmark a list of URLs over plain HTTP")
    urls.add_argument("--urls", dest="list_url", required=True, help="HTTP URL of a text file with one URL per line")
    urls.add_argument("--repeats", type=int, default=20)
    urls.add_argument("--timeout-ms", type=int, default=30000)
    urls.add_argument("--delay-ms", type=int, default=0)
    urls.add_argument("--cache-bust", action="store_true", help="Append a nocache param (defeats the CDN cache)")
    add_common_options(urls)

    return parser


def resolve_city(args: argparse.Namespace, file_config: FileConfig) -> str | None:
    return pick(args.city or args.city_positional, file_config.city)


def resolve_geo(args: argparse.Namespace, client: BenchmarkClient) -> GeoResult:
    if not args.auto_city:
        return GeoResult()
    geo = detect_city(client, timeout_ms=3000)
    where = f"{geo.city} ({geo.source})" if geo.city else "n/a"
    logger.info(f"Auto geo: {where}{f' ip {geo.ip}' if geo.ip else ''}")
    return geo


def resolve_s3(args: argparse.Namespace, file_config: FileConfig) -> S3Settings:
    endpoint = pick(args.s3_endpoint, file_config.s3_endpoint)
    access_key = pick(args.s3_access_key_id, file_config.s3_access_key_id)
    secret_key = pick(args.s3_secret_access_key, file_config.s3_secret_access_key)
    credentials = None
    if access_key and secret_key:
        credentials = S3Credentials(access_key, secret_key, file_config.s3_session_token)
    return S3Settings(
        bucket=pick(args.s3_bucket, file_config.s3_bucket),
        prefix=pick(args.s3_prefix, file_config.s3_prefix),
        region=pick(args.s3_region, file_config.s3_region) or default_s3_region(endpoint),
        endpoint=endpoint,
        credentials=credentials,
    )


def cmd_run(args: argparse.Namespace, file_config: FileConfig, geo: GeoResult, proxy: str | None, progress) -> int:
    config = BenchmarkConfig(
        output_dir=args.output_dir,
        base_url=args.base_url,
        repeats=args.repeats,
        browser=args.browser,
        headless=args.headless,
        timeout_ms=args.timeout_ms or 60000,
        delay_ms=args.delay_ms,
        scroll_delay_ms=args.scroll_delay_ms,
        allowed_image_hosts=parse_host_patterns(args.image_hosts),
        warmup_passes=args.warmup,
        verbose=args.verbose,
        city=resolve_city(args, file_config),
        city_geo=geo.city,
        s3=resolve_s3(args, file_config),
        proxy=proxy,
    )

    print("=" * 60)
    print("CDN vs Origin Benchmark")
    print("=" * 60)
    print(f"  Base URL:         {config.base_url}")
    print(f"  Pages:            {', '.join(config.pages)}")
    print(f"  Repeats:          {config.repeats}")
    print(f"  Browser:          {config.browser} (headless={config.headless})")
    print(f"  Timeout:          {config.timeout_ms}ms")
    print(f"  Image hosts:      {', '.join(config.allowed_image_hosts) or 'all'}")
    print(f"  Output directory: {config.output_dir}")
    print(f"  Upload:           {'s3://' + config.s3.bucket if config.s3.enabled else 'off'}")
    print("=" * 60)
    print()

    session = BenchmarkSession(config, progress_callback=progress)
    result = asyncio.run(session.run())

    print()
    print(f"Saved: {result.csv_path}")
    if result.upload:
        print(f"Uploaded: {result.upload.uri}")
    print(f"Wall clock time: {result.wall_time_s:.1f}s")
    return 0


def cmd_image(args: argparse.Namespace, file_config: FileConfig, geo: GeoResult, progress) -> int:
    url = normalize_url(args.url)
    if not url:
        print("Error: Image URL is required", file=sys.stderr)
        return 1

    config = ImageBenchmarkConfig(
        url=url,
        output_dir=args.output_dir,
        repeats=args.repeats or 20,
        browser=args.browser,
        headless=args.headless,
        timeout_ms=args.timeout_ms or 30000,
        delay_ms=args.delay_ms,
        cache_bust=args.cache_bust,
        city=resolve_city(args, file_config),
        city_geo=geo.city,
    )
    result = asyncio.run(ImageSession(config, progress_callback=progress).run())
    print(f"Saved: {result.csv_path}")
    return 0


def cmd_urls(args: argparse.Namespace, file_config: FileConfig, geo: GeoResult, client: BenchmarkClient, progress) -> int:
    config = UrlListConfig(
        list_url=args.list_url,
        output_dir=args.output_dir,
        repeats=args.repeats or 20,
        timeout_ms=args.timeout_ms or 30000,
        delay_ms=args.delay_ms,
        cache_bust=args.cache_bust,
        city=resolve_city(args, file_config),
        city_geo=geo.city,
    )
    result = UrlListSession(config, client, progress_callback=progress).run()
    print()
    print(f"Saved: {result.csv_path}")
    return 0


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the benchmark CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)

    setup_logging(args.verbose)
    proxy = proxy_from_env()

    progress_callback, cleanup = create_progress_callback()

    try:
        file_config = load_file_config(args.config)

        with BenchmarkClient(proxy=proxy) as client:
            geo = resolve_geo(args, client)

            if args.command == "run":
                return cmd_run(args, file_config, geo, proxy, progress_callback)
            if args.command == "image":
                return cmd_image(args, file_config, geo, progress_callback)
            return cmd_urls(args, file_config, geo, client, progress_callback)

    except KeyboardInterrupt:
        print("\nBenchmark interrupted by user")
        return 130

    except BenchmarkError as e:
        logger.debug("Benchmark setup failed", exc_info=True)
        print(f"\nError: {e}", file=sys.stderr)
        return 1

    except Exception as e:
        logging.exception("Benchmark failed with error")
        print(f"\nError: {e}", file=sys.stderr)
        return 1

    finally:
        cleanup()


if __name__ == "__main__":
    sys.exit(main())
