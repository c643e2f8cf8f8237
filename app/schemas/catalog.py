from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from app.models.catalog import DurationUnit, SubscriptionStatus


class PlanRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    duration_unit: DurationUnit
    duration_value: int
    price: Decimal
    rate_limit: str | None = None
    is_active: bool


class SubscriptionRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    subscriber_id: int
    plan_id: int
    payment_id: int | None = None
    voucher_id: int | None = None
    origin: str
    status: SubscriptionStatus
    start_at: datetime
    end_at: datetime
    expired_at: datetime | None = None
    created_at: datetime


class SubscriptionGrant(BaseModel):
    """Admin grant without a payment or voucher behind it."""

    subscriber_id: int
    plan_id: int


class CurrentSubscriptionRead(BaseModel):
    subscription: SubscriptionRead | None = None
    plan_name: str | None = None
    remaining_seconds: int = 0
    remaining_text: str = "No active subscription"


class RateLimitOverride(BaseModel):
    rate_limit: str = Field(min_length=1, max_length=64, pattern=r"^\S+/\S+$")
