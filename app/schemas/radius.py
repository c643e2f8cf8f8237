from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict

from app.models.access_session import AccessSessionStatus


class RadiusAttributeRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    attribute: str
    op: str
    value: str


class RadiusUserRead(BaseModel):
    username: str
    check: list[RadiusAttributeRead]
    reply: list[RadiusAttributeRead]


class RadiusStatsRead(BaseModel):
    users: int
    check_rows: int
    reply_rows: int
    active_subscriptions: int


class AccessSessionRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    subscriber_id: int
    subscription_id: int | None = None
    mac_address: str | None = None
    ip_address: str | None = None
    status: AccessSessionStatus
    started_at: datetime
    connected_at: datetime | None = None
    ended_at: datetime | None = None
    duration_seconds: int | None = None
    terminate_cause: str | None = None
