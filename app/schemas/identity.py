from __future__ import annotations

from pydantic import BaseModel, Field

from app.models.access_session import AccessSessionStatus


class ConnectionReport(BaseModel):
    identifier: str = Field(default="", max_length=255)
    detected_mac: str = Field(min_length=1, max_length=32)
    ip: str | None = Field(default=None, max_length=64)
    phone: str | None = Field(default=None, max_length=32)
    pairing_token: str | None = Field(default=None, max_length=32)


class IdentityResolutionRead(BaseModel):
    rule: str | None = None
    ignored: bool = False
    subscriber_id: int | None = None
    username: str | None = None
    mac_updated: bool = False
    session_id: int | None = None
    session_status: AccessSessionStatus | None = None
