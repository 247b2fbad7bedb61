"""
Upload of finished reports to S3-compatible object storage.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from cdnbench.errors import UploadFailure

logger = logging.getLogger(__name__)

DEFAULT_S3_ENDPOINT = "https://storage.yandexcloud.net"


@dataclass(frozen=True)
class S3Credentials:
    access_key_id: str
    secret_access_key: str
    session_token: str | None = None

    @property
    def complete(self) -> bool:
        return bool(self.access_key_id and self.secret_access_key)


@dataclass(frozen=True)
class UploadResult:
    status: int
    etag: str | None
    bucket: str
    key: str

    @property
    def uri(self) -> str:
        return f"s3://{self.bucket}/{self.key}"


def normalize_endpoint(endpoint: str | None) -> str | None:
    if not endpoint:
        return None
    return endpoint if endpoint.lower().startswith(("http://", "https://")) else f"https://{endpoint}"


def default_s3_region(endpoint: str | None) -> str | None:
    if not endpoint:
        return None
    if "yandexcloud.net" in endpoint.lower():
        return "ru-central1"
    return "us-east-1"


def build_s3_key(prefix: str | None, run_id: str, suffix: str = ".csv") -> str:
    clean_prefix = (prefix or "").strip("/")
    return f"{clean_prefix}/{run_id}{suffix}" if clean_prefix else f"{run_id}{suffix}"


def make_s3_client(
    region: str | None,
    endpoint: str,
    credentials: S3Credentials,
    timeout_ms: float,
    proxy: str | None = None,
):
    config = Config(
        connect_timeout=timeout_ms / 1000,
        read_timeout=timeout_ms / 1000,
        retries={"max_attempts": 1},
        s3={"addressing_style": "path"},
        proxies={"http": proxy, "https": proxy} if proxy else None,
    )
    return boto3.client(
        "s3",
        region_name=region,
        endpoint_url=endpoint,
        aws_access_key_id=credentials.access_key_id,
        aws_secret_access_key=credentials.secret_access_key,
        aws_session_token=credentials.session_token,
        config=config,
    )


def upload_file_s3(
    bucket: str,
    key: str,
    region: str | None,
    endpoint: str | None,
    credentials: S3Credentials,
    file_path: Path,
    content_type: str = "text/csv",
    timeout_ms: float = 30000,
    proxy: str | None = None,
    client_factory: Callable[..., Any] = make_s3_client,
) -> UploadResult:
    """PUT file_path to bucket/key; anything but a 2xx raises UploadFailure."""
    if not credentials.complete:
        raise UploadFailure("S3 credentials incomplete")

    endpoint = normalize_endpoint(endpoint) or DEFAULT_S3_ENDPOINT
    region = region or default_s3_region(endpoint)
    try:
        # botocore rejects malformed endpoints and regions with ValueError
        client = client_factory(region, endpoint, credentials, timeout_ms, proxy)
        with open(file_path, "rb") as f:
            response = client.put_object(Bucket=bucket, Key=key, Body=f, ContentType=content_type)
    except (BotoCoreError, ClientError, ValueError) as e:
        raise UploadFailure(f"S3 upload failed: {e}") from e
    except OSError as e:
        raise UploadFailure(f"Cannot read {file_path}: {e}") from e

    status = response.get("ResponseMetadata", {}).get("HTTPStatusCode", 0)
    if not 200 <= status < 300:
        raise UploadFailure(f"S3 upload failed: {status}")

    etag = response.get("ETag")
    logger.debug(f"Uploaded {file_path} to s3://{bucket}/{key} (status {status}, etag {etag})")
    return UploadResult(
        status=status,
        etag=etag.replace('"', "") if etag else None,
        bucket=bucket,
        key=key,
    )
