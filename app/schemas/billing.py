from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from app.models.billing import PaymentStatus


class PaymentCreate(BaseModel):
    reference: str = Field(min_length=1, max_length=120)
    plan_id: int
    amount: Decimal | None = Field(default=None, ge=0)
    subscriber_id: int | None = None
    phone: str | None = Field(default=None, max_length=32)
    device_name: str | None = Field(default=None, max_length=120)


class PaymentConfirm(BaseModel):
    reference: str = Field(min_length=1, max_length=120)
    result_code: int
    receipt_code: str | None = Field(default=None, max_length=64)
    amount: Decimal | None = None
    result_description: str | None = Field(default=None, max_length=255)


class PaymentRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    reference: str
    subscriber_id: int
    plan_id: int
    amount: Decimal
    status: PaymentStatus
    receipt_code: str | None = None
    result_code: int | None = None
    confirmed_at: datetime | None = None
    created_at: datetime


class PaymentConfirmRead(BaseModel):
    reference: str
    status: PaymentStatus
    duplicate: bool = False
    subscription_id: int | None = None
    provisioned: bool = False
