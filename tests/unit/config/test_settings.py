# tests/unit/config/test_settings.py — v2
"""Tests for config/settings.py — typed Settings and validation rules."""

from __future__ import annotations

from pathlib import Path

import pytest

from stagegate.config.settings import ConfigurationError, Settings, load_settings


class TestSettingsDefaults:
    def test_default_backends(self):
        s = Settings(_env_file=None)
        assert s.checkpoint_backend == "json"
        assert s.project_backend == "sqlite"

    def test_default_resume_thresholds(self):
        s = Settings(_env_file=None)
        assert s.checkpoint_max_retries == 3
        assert s.checkpoint_max_age_hours == 24.0

    def test_default_routing_threshold(self):
        assert Settings(_env_file=None).routing_threshold == 0.85

    def test_default_client(self):
        s = Settings(_env_file=None)
        assert s.client_requests_per_second == 3.0
        assert s.client_max_retries == 5
        assert s.client_base_delay_s == 1.0
        assert s.client_max_delay_s == 60.0
        assert s.client_jitter == 0.25

    def test_default_logging(self):
        s = Settings(_env_file=None)
        assert s.log_level == "INFO"
        assert s.log_format == "json"
        assert s.log_file is None


class TestSettingsValidation:
    def test_redis_without_url(self):
        with pytest.raises(ConfigurationError, match="CHECKPOINT_REDIS_URL"):
            Settings(_env_file=None, checkpoint_backend="redis")

    def test_redis_with_url(self):
        s = Settings(
            _env_file=None,
            checkpoint_backend="redis",
            checkpoint_redis_url="redis://localhost:6379/0",
        )
        assert s.checkpoint_backend == "redis"

    def test_non_positive_rate(self):
        with pytest.raises(ConfigurationError, match="REQUESTS_PER_SECOND"):
            Settings(_env_file=None, client_requests_per_second=0)

    def test_base_delay_above_max(self):
        with pytest.raises(ConfigurationError, match="BASE_DELAY"):
            Settings(_env_file=None, client_base_delay_s=10, client_max_delay_s=5)

    def test_jitter_out_of_range(self):
        with pytest.raises(ConfigurationError, match="JITTER"):
            Settings(_env_file=None, client_jitter=1.0)

    def test_batch_size(self):
        with pytest.raises(ConfigurationError, match="BATCH_SIZE"):
            Settings(_env_file=None, stage_batch_size=0)

    def test_collects_every_problem(self):
        with pytest.raises(ConfigurationError) as exc_info:
            Settings(_env_file=None, stage_batch_size=0, checkpoint_max_age_hours=0)
        assert "BATCH_SIZE" in str(exc_info.value)
        assert "MAX_AGE_HOURS" in str(exc_info.value)

    def test_threshold_out_of_range(self):
        with pytest.raises(ValueError):
            Settings(_env_file=None, routing_threshold=1.5)

    def test_negative_retries(self):
        with pytest.raises(ValueError):
            Settings(_env_file=None, client_max_retries=-1)

    def test_invalid_backend(self):
        with pytest.raises(ValueError):
            Settings(_env_file=None, checkpoint_backend="mongo")


class TestEnvLoading:
    def test_reads_environment(self, monkeypatch):
        monkeypatch.setenv("ROUTING_THRESHOLD", "0.9")
        monkeypatch.setenv("CHECKPOINT_ROOT", "/tmp/cps")
        s = Settings(_env_file=None)
        assert s.routing_threshold == 0.9
        assert s.checkpoint_root == Path("/tmp/cps")

    def test_reads_env_file(self, tmp_path):
        env = tmp_path / ".env"
        env.write_text("STAGE_BATCH_SIZE=25\nLOG_FORMAT=text\nUNRELATED=1\n")
        s = Settings(_env_file=str(env))
        assert s.stage_batch_size == 25
        assert s.log_format == "text"


class TestLoadSettings:
    def test_overrides(self, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)
        s = load_settings(client_max_retries=0, log_level="DEBUG")
        assert s.client_max_retries == 0
        assert s.log_level == "DEBUG"
