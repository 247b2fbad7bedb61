import json
import os
import re
from pathlib import Path
from typing import Mapping

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from cdnbench.errors import ConfigError

# Read from environment, default to the file next to the working directory
DEFAULT_CONFIG_PATH = Path(os.environ.get("CDNBENCH_CONFIG", "bench.config.json"))
DEFAULT_OUTPUT_DIR = Path("results")
DEFAULT_BASE_URL = "https://cdntest.wamba.com"

PROXY_ENV_VARS = ("HTTPS_PROXY", "https_proxy", "HTTP_PROXY", "http_proxy")

_SCHEME_RE = re.compile(r"^https?://", re.IGNORECASE)


class FileConfig(BaseModel):
    """Optional settings read from the JSON config file."""

    model_config = ConfigDict(extra="ignore")

    city: str | None = None
    s3_bucket: str | None = None
    s3_prefix: str | None = None
    s3_endpoint: str | None = None
    s3_region: str | None = None
    s3_access_key_id: str | None = None
    s3_secret_access_key: str | None = None
    s3_session_token: str | None = None

    @field_validator("*", mode="before")
    @classmethod
    def _blank_is_unset(cls, value):
        return non_empty(value) if isinstance(value, str) else value


def load_file_config(path: Path | None) -> FileConfig:
    """Load the JSON config file; a missing file yields an empty config."""
    if path is None:
        return FileConfig()
    try:
        raw = Path(path).read_text(encoding="utf-8")
    except FileNotFoundError:
        return FileConfig()
    except OSError as e:
        raise ConfigError(f"Cannot read config {path}: {e}") from e

    try:
        return FileConfig.model_validate(json.loads(raw))
    except json.JSONDecodeError as e:
        raise ConfigError(f"Config {path} is not valid JSON: {e}") from e
    except ValidationError as e:
        raise ConfigError(f"Config {path} is invalid: {e}") from e


def proxy_from_env(environ: Mapping[str, str] | None = None) -> str | None:
    """First proxy URL set in the environment, read once at startup."""
    environ = os.environ if environ is None else environ
    for name in PROXY_ENV_VARS:
        value = non_empty(environ.get(name))
        if value:
            return value
    return None


def non_empty(value) -> str | None:
    """Stripped string, or None for non-strings and blank strings."""
    if not isinstance(value, str):
        return None
    stripped = value.strip()
    return stripped or None


def pick(cli_value, config_value, default=None):
    """An explicit CLI value wins over the config file, which wins over the default."""
    if isinstance(cli_value, str):
        cli_value = non_empty(cli_value)
    if cli_value is not None:
        return cli_value
    if config_value is not None:
        return config_value
    return default


def normalize_base_url(base_url: str) -> str:
    """Default the scheme to https and strip trailing slashes."""
    trimmed = (base_url or "").strip()
    with_scheme = trimmed if _SCHEME_RE.match(trimmed) else f"https://{trimmed}"
    return with_scheme.rstrip("/")


def normalize_url(url: str | None) -> str | None:
    trimmed = (url or "").strip()
    if not trimmed:
        return None
    return trimmed if _SCHEME_RE.match(trimmed) else f"https://{trimmed}"


def is_http_url(value: str) -> bool:
    return bool(_SCHEME_RE.match(value))


def parse_host_patterns(value) -> list[str]:
    """Split a comma-separated (or list of comma-separated) host pattern option."""
    if not value:
        return []
    raw = ",".join(value) if isinstance(value, (list, tuple)) else str(value)
    return [part.strip() for part in raw.split(",") if part.strip()]
