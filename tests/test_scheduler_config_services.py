"""Tests for scheduler config services."""

import os
from datetime import timedelta

from app.config import settings
from app.services import scheduler_config


# =============================================================================
# Environment Variable Helper Tests
# =============================================================================


class TestEnvValue:
    """Tests for _env_value helper."""

    def test_returns_value_when_set(self, monkeypatch):
        monkeypatch.setenv("TEST_VAR", "test_value")
        assert scheduler_config._env_value("TEST_VAR") == "test_value"

    def test_returns_none_when_not_set(self):
        os.environ.pop("NONEXISTENT_VAR", None)
        assert scheduler_config._env_value("NONEXISTENT_VAR") is None

    def test_returns_none_for_empty_string(self, monkeypatch):
        monkeypatch.setenv("EMPTY_VAR", "")
        assert scheduler_config._env_value("EMPTY_VAR") is None


class TestEnvBool:
    """Tests for _env_bool helper."""

    def test_true_values(self, monkeypatch):
        for value in ["1", "true", "True", "yes", "ON"]:
            monkeypatch.setenv("BOOL_VAR", value)
            assert scheduler_config._env_bool("BOOL_VAR", False) is True, value

    def test_false_value(self, monkeypatch):
        monkeypatch.setenv("BOOL_VAR", "false")
        assert scheduler_config._env_bool("BOOL_VAR", True) is False

    def test_default_when_unset(self, monkeypatch):
        monkeypatch.delenv("BOOL_VAR", raising=False)
        assert scheduler_config._env_bool("BOOL_VAR", True) is True


# =============================================================================
# Celery Configuration Tests
# =============================================================================


class TestCeleryConfig:
    def test_redis_url_fallback(self, monkeypatch):
        monkeypatch.setattr(
            scheduler_config,
            "settings",
            settings.model_copy(update={"celery_broker_url": "", "celery_result_backend": None}),
        )
        monkeypatch.setenv("REDIS_URL", "redis://cache:6379/2")

        config = scheduler_config.get_celery_config()

        assert config["broker_url"] == "redis://cache:6379/2"
        assert config["result_backend"] == "redis://cache:6379/2"
        assert config["enable_utc"] is True
        assert config["task_acks_late"] is True


class TestBeatSchedule:
    def test_default_schedule(self, monkeypatch):
        monkeypatch.delenv("EXPIRY_SWEEP_ENABLED", raising=False)
        monkeypatch.delenv("VOUCHER_EXPIRY_ENABLED", raising=False)

        schedule = scheduler_config.build_beat_schedule()

        assert schedule["expiry_sweep"]["task"] == "app.tasks.entitlements.run_expiry_sweep"
        assert schedule["expiry_sweep"]["schedule"] == timedelta(
            minutes=settings.expiry_sweep_interval_minutes
        )
        assert schedule["voucher_expiry"]["task"] == "app.tasks.vouchers.expire_stale_vouchers"

    def test_jobs_can_be_disabled(self, monkeypatch):
        monkeypatch.setenv("EXPIRY_SWEEP_ENABLED", "false")
        monkeypatch.setenv("VOUCHER_EXPIRY_ENABLED", "0")

        assert scheduler_config.build_beat_schedule() == {}
