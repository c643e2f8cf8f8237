from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from app.models.voucher import VoucherStatus
from app.schemas.catalog import SubscriptionRead


class VoucherRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    code: str
    plan_id: int
    status: VoucherStatus
    expires_at: datetime | None = None
    used_at: datetime | None = None
    used_by: int | None = None
    subscription_id: int | None = None
    created_at: datetime


class VoucherBatchCreate(BaseModel):
    plan_id: int
    quantity: int = Field(default=1, ge=1)
    ttl_days: int | None = Field(default=None, ge=1)


class VoucherBatchRead(BaseModel):
    count: int
    items: list[VoucherRead]


class VoucherRedeem(BaseModel):
    code: str = Field(min_length=1, max_length=32)
    phone: str | None = Field(default=None, max_length=32)
    device_name: str | None = Field(default=None, max_length=120)


class VoucherRedemptionRead(BaseModel):
    subscriber_id: int
    username: str
    secret: str
    subscription: SubscriptionRead
    provisioned: bool
    pairing_token: str | None = None


class VoucherCheckRead(BaseModel):
    code: str
    valid: bool
    status: VoucherStatus
    plan_id: int
    plan_name: str | None = None
    expires_at: datetime | None = None


class VoucherExpireRead(BaseModel):
    expired: int
