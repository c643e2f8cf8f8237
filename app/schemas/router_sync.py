from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


class CredentialEntry(BaseModel):
    username: str
    secret: str
    profile: str
    rate_limit: str
    mac_address: str | None = None
    end_at: datetime
    comment: str


class CredentialList(BaseModel):
    generated_at: datetime
    count: int
    users: list[CredentialEntry]


class MacBypassEntry(BaseModel):
    mac_address: str
    username: str
    end_at: datetime


class MacBypassList(BaseModel):
    count: int
    entries: list[MacBypassEntry]


class ExpiredEntry(BaseModel):
    username: str
    mac_address: str | None = None
    subscription_id: int
    expired_at: datetime


class ExpiredList(BaseModel):
    window_minutes: int
    count: int
    entries: list[ExpiredEntry]


class DisconnectEvent(BaseModel):
    mac_address: str | None = Field(default=None, max_length=32)
    username: str | None = Field(default=None, max_length=64)
    terminate_cause: str | None = Field(default=None, max_length=64)


class DisconnectRead(BaseModel):
    closed: int
