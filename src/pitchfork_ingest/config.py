# pitchfork_ingest/config.py

"""Shared configuration and environment setup."""

from __future__ import annotations

from dataclasses import dataclass
from os import getenv
from pathlib import Path

from dotenv import load_dotenv

from pitchfork_ingest.errors import ConfigurationError

load_dotenv(override=True)

DEFAULT_BASE_URL = "https://pitchfork.com"
DEFAULT_CONCURRENCY = 8
DEFAULT_THROTTLE_DELAY = 30.0
DEFAULT_ERROR_DELAY = 30.0


def get_project_root() -> Path:
    """Return the project root directory.

    Prefers PITCHFORK_INGEST_PROJECT_ROOT env var. Falls back to current
    working directory.
    """
    if root := getenv("PITCHFORK_INGEST_PROJECT_ROOT"):
        return Path(root).resolve()
    return Path.cwd()


def build_user_agent() -> str:
    app = getenv("USER_AGENT_APP", "pitchfork-ingest")
    version = getenv("USER_AGENT_VERSION", "0.1.0")
    contact = getenv("USER_AGENT_CONTACT", "mailto:you@example.com")
    return f"{app}/{version} ({contact})"


@dataclass(frozen=True, slots=True)
class IngestSettings:
    """Runtime settings for one ingestion run."""

    base_url: str = DEFAULT_BASE_URL
    spotify_client_id: str | None = None
    spotify_client_secret: str | None = None
    concurrency: int = DEFAULT_CONCURRENCY
    throttle_delay: float = DEFAULT_THROTTLE_DELAY
    error_delay: float = DEFAULT_ERROR_DELAY
    max_attempts: int | None = None
    data_dir: Path = Path("data")
    user_agent: str = "pitchfork-ingest/0.1.0"

    @property
    def has_catalog_credentials(self) -> bool:
        return bool(self.spotify_client_id and self.spotify_client_secret)


def load_settings() -> IngestSettings:
    """Build IngestSettings from environment variables."""
    concurrency = _int_from_env("PITCHFORK_CONCURRENCY", DEFAULT_CONCURRENCY)
    if concurrency < 1:
        msg = "PITCHFORK_CONCURRENCY must be >= 1."
        raise ConfigurationError(msg)

    max_attempts_raw = getenv("PITCHFORK_MAX_ATTEMPTS")
    max_attempts: int | None = None
    if max_attempts_raw:
        max_attempts = _int_from_env("PITCHFORK_MAX_ATTEMPTS", 0)
        if max_attempts < 1:
            msg = "PITCHFORK_MAX_ATTEMPTS must be >= 1 when set."
            raise ConfigurationError(msg)

    data_dir_raw = getenv("PITCHFORK_DATA_DIR")
    data_dir = Path(data_dir_raw) if data_dir_raw else get_project_root() / "data"

    return IngestSettings(
        base_url=getenv("PITCHFORK_BASE_URL", DEFAULT_BASE_URL).rstrip("/"),
        spotify_client_id=getenv("SPOTIFY_CLIENT_ID") or None,
        spotify_client_secret=getenv("SPOTIFY_CLIENT_SECRET") or None,
        concurrency=concurrency,
        throttle_delay=_float_from_env("PITCHFORK_THROTTLE_DELAY", DEFAULT_THROTTLE_DELAY),
        error_delay=_float_from_env("PITCHFORK_ERROR_DELAY", DEFAULT_ERROR_DELAY),
        max_attempts=max_attempts,
        data_dir=data_dir,
        user_agent=build_user_agent(),
    )


def _int_from_env(name: str, default: int) -> int:
    raw = getenv(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as exc:
        msg = f"{name} must be an integer, got {raw!r}."
        raise ConfigurationError(msg) from exc


def _float_from_env(name: str, default: float) -> float:
    raw = getenv(name)
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError as exc:
        msg = f"{name} must be a number, got {raw!r}."
        raise ConfigurationError(msg) from exc
    if value < 0:
        msg = f"{name} must not be negative."
        raise ConfigurationError(msg)
    return value
