"""Configuration via environment variables with cloud-native secret support.

Supports:
  - Environment variables (local dev)
  - .env files (python-dotenv)
  - AWS Secrets Manager / GCP Secret Manager references in any secret value
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

from scripts.course_analytics.errors import ConfigurationError
from scripts.course_analytics.secrets import resolve_database_url

WRITE_MODES = ("append", "replace", "upsert")


@dataclass(frozen=True)
class DatabaseConfig:
    url: str
    min_connections: int = 1
    max_connections: int = 4


@dataclass(frozen=True)
class FetchConfig:
    max_retries: int = 3
    backoff_base_s: float = 1.0
    max_backoff_s: float = 60.0
    page_size: int = 100
    max_pages: int = 50  # hard cap against runaway pagination
    timeout_s: float = 30.0


@dataclass(frozen=True)
class PipelineConfig:
    database: DatabaseConfig
    fetch: FetchConfig = field(default_factory=FetchConfig)
    data_dir: Path = Path("data")
    lookback_days: int = 30
    write_mode: str = "upsert"
    save_files: bool = True


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, "")
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from None


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name, "")
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}") from None


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name, "")
    if not raw:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def load_fetch_config() -> FetchConfig:
    config = FetchConfig(
        max_retries=_env_int("FETCH_MAX_RETRIES", 3),
        backoff_base_s=_env_float("FETCH_BACKOFF_BASE_S", 1.0),
        max_backoff_s=_env_float("FETCH_MAX_BACKOFF_S", 60.0),
        page_size=_env_int("FETCH_PAGE_SIZE", 100),
        max_pages=_env_int("FETCH_MAX_PAGES", 50),
        timeout_s=_env_float("FETCH_TIMEOUT_S", 30.0),
    )
    if config.max_retries < 1:
        raise ConfigurationError("FETCH_MAX_RETRIES must be at least 1")
    if config.page_size < 1 or config.max_pages < 1:
        raise ConfigurationError("FETCH_PAGE_SIZE and FETCH_MAX_PAGES must be positive")
    return config


def load_config() -> PipelineConfig:
    """Load configuration from environment variables.

    Source credentials are not part of this object; collectors read them
    through a CredentialProvider when they run.
    """
    load_dotenv()

    database = DatabaseConfig(
        url=resolve_database_url(),
        min_connections=_env_int("DB_MIN_CONNECTIONS", 1),
        max_connections=_env_int("DB_MAX_CONNECTIONS", 4),
    )

    write_mode = os.environ.get("COLLECTION_WRITE_MODE", "upsert").strip().lower()
    if write_mode not in WRITE_MODES:
        raise ConfigurationError(
            f"COLLECTION_WRITE_MODE must be one of {', '.join(WRITE_MODES)}, got {write_mode!r}"
        )

    return PipelineConfig(
        database=database,
        fetch=load_fetch_config(),
        data_dir=Path(os.environ.get("COLLECTION_DATA_DIR", "data")),
        lookback_days=_env_int("COLLECTION_LOOKBACK_DAYS", 30),
        write_mode=write_mode,
        save_files=_env_bool("COLLECTION_SAVE_FILES", True),
    )
