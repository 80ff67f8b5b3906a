"""
Application configuration management.

Load order (each layer overrides the previous):
  1. ``config/default.toml``        committed static defaults
  2. ``config/local.toml``          optional local overrides (gitignored)
  3. ``.env``                       local secrets and env overrides (gitignored)
  4. Environment variables          ``WOW_OSINT_*`` prefix

Entry point: ``load_config(config_path=None) -> AppConfig``

The credential pool, crawl scheduler, workers and CLI all receive an
``AppConfig`` instance. A missing or invalid config is the only fatal
error in the system and is reported at CLI startup.
"""

from __future__ import annotations

import os
import tomllib
from datetime import timedelta
from pathlib import Path
from typing import Any, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, field_validator, model_validator

VALID_REGIONS = frozenset({"us", "eu", "kr", "tw"})

# ── Sub-config models ─────────────────────────────────────────────────────────


class DatabaseConfig(BaseModel):
    """SQLite database connection settings."""

    model_config = ConfigDict(frozen=True)

    db_path: str = "data/db/wow_osint.db"
    wal_mode: bool = True
    busy_timeout_ms: int = 5000


class ApiConfig(BaseModel):
    """Upstream Game Data / Profile API settings."""

    model_config = ConfigDict(frozen=True)

    region: str = "eu"
    locale: str = "en_GB"
    timeout_seconds: float = 30.0
    base_url: str = "https://{region}.api.blizzard.com"
    auth_url: str = "https://{region}.battle.net/oauth/token"

    @field_validator("region")
    @classmethod
    def validate_region(cls, v: str) -> str:
        if v.lower() not in VALID_REGIONS:
            raise ValueError(f"region must be one of {sorted(VALID_REGIONS)}, got '{v}'.")
        return v.lower()

    @field_validator("timeout_seconds")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError(f"timeout_seconds must be positive, got {v}.")
        return v


class CredentialsConfig(BaseModel):
    """Credential pool clearance and circuit-breaker thresholds."""

    model_config = ConfigDict(frozen=True)

    clearance: str = "blizzard"
    managed_tags: list[str] = ["blizzard"]
    error_threshold: int = 200
    cooldown_hours: int = 2
    tracked_status_codes: list[int] = [403, 429]
    take_ttl_minutes: int = 30
    keys_file: str = "config/keys.json"

    @property
    def cooldown(self) -> timedelta:
        return timedelta(hours=self.cooldown_hours)

    @property
    def take_ttl(self) -> timedelta:
        return timedelta(minutes=self.take_ttl_minutes)


class CrawlConfig(BaseModel):
    """Staleness windows and bulk resync parameters."""

    model_config = ConfigDict(frozen=True)

    character_force_update_hours: int = 24
    guild_force_update_hours: int = 4
    auction_offset_minutes: int = 30
    commodity_lock_seconds: int = 600
    item_id_start: int = 0
    item_id_end: int = 250_000
    resync_batch_size: int = 500

    @field_validator("resync_batch_size")
    @classmethod
    def validate_batch_size(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"resync_batch_size must be >= 1, got {v}.")
        return v


class WorkerConfig(BaseModel):
    """Fetch worker concurrency and retry settings."""

    model_config = ConfigDict(frozen=True)

    concurrency: int = 10
    timeout_seconds: float = 60.0
    max_attempts: int = 3
    backoff_seconds: int = 30
    poll_interval_seconds: float = 2.0
    claim_batch_size: int = 50
    lease_seconds: float = 600.0

    @field_validator("concurrency", "max_attempts", "claim_batch_size")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"value must be >= 1, got {v}.")
        return v

    @model_validator(mode="after")
    def lease_outlives_timeout(self) -> "WorkerConfig":
        if self.lease_seconds <= self.timeout_seconds:
            raise ValueError(
                f"lease_seconds ({self.lease_seconds}) must be > "
                f"timeout_seconds ({self.timeout_seconds})."
            )
        return self

    @property
    def lease(self) -> timedelta:
        return timedelta(seconds=self.lease_seconds)


class SchedulerConfig(BaseModel):
    """Daemon cadences, in minutes unless stated otherwise."""

    model_config = ConfigDict(frozen=True)

    tick_seconds: int = 30
    credential_sweep_minutes: int = 5
    realm_resync_minutes: int = 1440
    auction_resync_minutes: int = 10
    commodity_resync_minutes: int = 10
    character_resync_minutes: int = 10080
    guild_resync_minutes: int = 1440


class LoggingConfig(BaseModel):
    """Logging output settings."""

    model_config = ConfigDict(frozen=True)

    level: str = "INFO"
    log_file: str = "data/logs/wow_osint.log"
    json_format: bool = False

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        valid = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in valid:
            raise ValueError(f"Log level must be one of {sorted(valid)}, got '{v}'.")
        return v.upper()


class AppConfig(BaseModel):
    """Complete application configuration, the single source of truth."""

    model_config = ConfigDict(frozen=True)

    database: DatabaseConfig = DatabaseConfig()
    api: ApiConfig = ApiConfig()
    credentials: CredentialsConfig = CredentialsConfig()
    crawl: CrawlConfig = CrawlConfig()
    workers: WorkerConfig = WorkerConfig()
    scheduler: SchedulerConfig = SchedulerConfig()
    logging: LoggingConfig = LoggingConfig()
    debug: bool = False


# ── Loader ────────────────────────────────────────────────────────────────────

_PROJECT_ROOT = Path(__file__).parent.parent


def _find_project_root() -> Path:
    """Walk up from this file to find the project root (contains pyproject.toml)."""
    candidate = Path(__file__).parent
    for _ in range(5):
        if (candidate / "pyproject.toml").exists():
            return candidate
        candidate = candidate.parent
    return _PROJECT_ROOT


def load_config(config_path: Optional[Path] = None) -> AppConfig:
    """Load and merge application configuration.

    Args:
        config_path: Explicit path to a TOML config file. Defaults to
            ``<project_root>/config/default.toml``.

    Returns:
        Fully validated ``AppConfig`` instance.

    Raises:
        FileNotFoundError: If the specified ``config_path`` does not exist.
        pydantic.ValidationError: If merged config values fail validation.
    """
    root = _find_project_root()

    load_dotenv(dotenv_path=root / ".env", override=False)

    if config_path is None:
        config_path = root / "config" / "default.toml"

    config_path = Path(config_path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Config file not found: {config_path}\n"
            "Create config/default.toml or pass --config."
        )

    with open(config_path, "rb") as f:
        raw: dict[str, Any] = tomllib.load(f)

    local_config_path = config_path.parent / "local.toml"
    if local_config_path.exists():
        with open(local_config_path, "rb") as f:
            local_raw: dict[str, Any] = tomllib.load(f)
        raw = _deep_merge(raw, local_raw)

    raw = _apply_env_overrides(raw)

    return _build_app_config(raw)


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge ``override`` into ``base``."""
    result = dict(base)
    for key, val in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(val, dict):
            result[key] = _deep_merge(result[key], val)
        else:
            result[key] = val
    return result


def _apply_env_overrides(raw: dict[str, Any]) -> dict[str, Any]:
    """Apply WOW_OSINT_* env vars to the raw config dict.

    Supported overrides:
      WOW_OSINT_DB_PATH    → raw["database"]["db_path"]
      WOW_OSINT_LOG_LEVEL  → raw["logging"]["level"]
      WOW_OSINT_REGION     → raw["api"]["region"]
      WOW_OSINT_DEBUG      → raw["debug"]
    """
    if db_path := os.environ.get("WOW_OSINT_DB_PATH"):
        raw.setdefault("database", {})["db_path"] = db_path

    if log_level := os.environ.get("WOW_OSINT_LOG_LEVEL"):
        raw.setdefault("logging", {})["level"] = log_level

    if region := os.environ.get("WOW_OSINT_REGION"):
        raw.setdefault("api", {})["region"] = region

    if debug := os.environ.get("WOW_OSINT_DEBUG"):
        raw["debug"] = debug.lower() in ("1", "true", "yes")

    return raw


def _build_app_config(raw: dict[str, Any]) -> AppConfig:
    """Map raw TOML dict to ``AppConfig`` model structure."""
    return AppConfig(
        database=DatabaseConfig(**raw.get("database", {})),
        api=ApiConfig(**raw.get("api", {})),
        credentials=CredentialsConfig(**raw.get("credentials", {})),
        crawl=CrawlConfig(**raw.get("crawl", {})),
        workers=WorkerConfig(**raw.get("workers", {})),
        scheduler=SchedulerConfig(**raw.get("scheduler", {})),
        logging=LoggingConfig(**raw.get("logging", {})),
        debug=raw.get("debug", False),
    )
