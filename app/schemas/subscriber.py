from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict

from app.models.subscriber import SubscriberStatus


class SubscriberRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    phone: str | None = None
    username: str
    mac_address: str | None = None
    mac_is_temporary: bool
    device_name: str | None = None
    last_ip: str | None = None
    last_seen_at: datetime | None = None
    status: SubscriberStatus
    created_at: datetime


class PairingTokenRead(BaseModel):
    subscriber_id: int
    pairing_token: str
    expires_at: datetime
