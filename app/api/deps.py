import hmac
import logging

from fastapi import Header, HTTPException

from app.config import settings
from app.db import get_db

logger = logging.getLogger(__name__)


def _key_matches(provided: str | None, expected: str | None) -> bool:
    # An unconfigured key locks the surface rather than opening it.
    if not provided or not expected:
        return False
    return hmac.compare_digest(provided.encode(), expected.encode())


def require_router_key(x_api_key: str | None = Header(default=None)):
    """Shared static key presented by the access point on every poll."""
    if not _key_matches(x_api_key, settings.router_sync_key):
        logger.warning("Rejected router request with missing or invalid API key")
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Invalid or missing API key"},
        )
    return {"actor_type": "router"}


def require_admin_key(x_admin_key: str | None = Header(default=None)):
    if not _key_matches(x_admin_key, settings.admin_api_key):
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Invalid or missing admin key"},
        )
    return {"actor_type": "admin"}


__all__ = [
    "get_db",
    "require_admin_key",
    "require_router_key",
]
