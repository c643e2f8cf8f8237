import logging
import os
from datetime import timedelta

from app.config import settings

logger = logging.getLogger(__name__)


def _env_value(name: str) -> str | None:
    value = os.getenv(name)
    if value is None or value == "":
        return None
    return value


def _env_bool(name: str, default: bool) -> bool:
    raw = _env_value(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def get_celery_config() -> dict:
    broker = settings.celery_broker_url or _env_value("REDIS_URL") or "redis://localhost:6379/0"
    backend = (
        settings.celery_result_backend
        or _env_value("REDIS_URL")
        or "redis://localhost:6379/1"
    )
    return {
        "broker_url": broker,
        "result_backend": backend,
        "timezone": settings.celery_timezone or "UTC",
        "enable_utc": True,
        "task_acks_late": True,
        "worker_prefetch_multiplier": 1,
    }


def build_beat_schedule() -> dict:
    schedule: dict[str, dict] = {}
    if _env_bool("EXPIRY_SWEEP_ENABLED", True):
        schedule["expiry_sweep"] = {
            "task": "app.tasks.entitlements.run_expiry_sweep",
            "schedule": timedelta(minutes=max(settings.expiry_sweep_interval_minutes, 1)),
        }
    if _env_bool("VOUCHER_EXPIRY_ENABLED", True):
        schedule["voucher_expiry"] = {
            "task": "app.tasks.vouchers.expire_stale_vouchers",
            "schedule": timedelta(minutes=max(settings.voucher_expiry_interval_minutes, 1)),
        }
    logger.debug("Beat schedule: %s", sorted(schedule))
    return schedule
