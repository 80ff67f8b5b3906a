"""Tests for configuration loading and validation."""

from __future__ import annotations

from datetime import timedelta

import pytest
from pydantic import ValidationError

from wow_osint.config import ApiConfig, AppConfig, LoggingConfig, WorkerConfig, load_config

ENV_VARS = ("WOW_OSINT_DB_PATH", "WOW_OSINT_LOG_LEVEL", "WOW_OSINT_REGION", "WOW_OSINT_DEBUG")


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def _write_config(tmp_path, body: str):
    path = tmp_path / "config.toml"
    path.write_text(body, encoding="utf-8")
    return path


class TestDefaults:
    def test_credential_thresholds(self):
        creds = AppConfig().credentials
        assert creds.error_threshold == 200
        assert creds.cooldown == timedelta(hours=2)
        assert creds.take_ttl == timedelta(minutes=30)
        assert creds.tracked_status_codes == [403, 429]

    def test_crawl_windows(self):
        crawl = AppConfig().crawl
        assert crawl.character_force_update_hours == 24
        assert crawl.guild_force_update_hours == 4

    def test_committed_default_file_loads(self):
        cfg = load_config()
        assert cfg.api.region == "eu"
        assert cfg.workers.max_attempts == 3


class TestLoadConfig:
    def test_file_values_applied(self, tmp_path):
        path = _write_config(tmp_path, '[api]\nregion = "US"\n\n[workers]\nconcurrency = 4\n')
        cfg = load_config(path)
        assert cfg.api.region == "us"
        assert cfg.workers.concurrency == 4
        assert cfg.database.db_path == "data/db/wow_osint.db"

    def test_local_toml_overrides(self, tmp_path):
        path = _write_config(tmp_path, '[api]\nregion = "eu"\nlocale = "en_GB"\n')
        (tmp_path / "local.toml").write_text('[api]\nregion = "kr"\n', encoding="utf-8")
        cfg = load_config(path)
        assert cfg.api.region == "kr"
        assert cfg.api.locale == "en_GB"

    def test_env_overrides(self, tmp_path, monkeypatch):
        path = _write_config(tmp_path, '[logging]\nlevel = "INFO"\n')
        monkeypatch.setenv("WOW_OSINT_DB_PATH", str(tmp_path / "x.db"))
        monkeypatch.setenv("WOW_OSINT_LOG_LEVEL", "debug")
        monkeypatch.setenv("WOW_OSINT_REGION", "tw")
        monkeypatch.setenv("WOW_OSINT_DEBUG", "true")
        cfg = load_config(path)
        assert cfg.database.db_path == str(tmp_path / "x.db")
        assert cfg.logging.level == "DEBUG"
        assert cfg.api.region == "tw"
        assert cfg.debug

    def test_missing_file_raises(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "nope.toml")

    def test_invalid_value_raises(self, tmp_path):
        path = _write_config(tmp_path, '[api]\nregion = "moon"\n')
        with pytest.raises(ValidationError):
            load_config(path)


class TestValidators:
    def test_region(self):
        with pytest.raises(ValidationError):
            ApiConfig(region="cn")

    def test_timeout(self):
        with pytest.raises(ValidationError):
            ApiConfig(timeout_seconds=0)

    def test_log_level(self):
        assert LoggingConfig(level="warning").level == "WARNING"
        with pytest.raises(ValidationError):
            LoggingConfig(level="LOUD")

    def test_worker_counts(self):
        with pytest.raises(ValidationError):
            WorkerConfig(concurrency=0)

    def test_lease_must_outlive_job_timeout(self):
        assert WorkerConfig().lease == timedelta(minutes=10)
        with pytest.raises(ValidationError, match="lease_seconds"):
            WorkerConfig(timeout_seconds=120, lease_seconds=120)

    def test_frozen(self):
        with pytest.raises(ValidationError):
            AppConfig().debug = True
