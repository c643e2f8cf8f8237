import enum
from datetime import UTC, datetime, timedelta
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db import Base


class DurationUnit(enum.Enum):
    minute = "minute"
    hour = "hour"
    day = "day"
    week = "week"
    month = "month"


# A billing month is a flat 30 days.
DURATION_UNIT_SECONDS = {
    DurationUnit.minute: 60,
    DurationUnit.hour: 3600,
    DurationUnit.day: 86400,
    DurationUnit.week: 7 * 86400,
    DurationUnit.month: 30 * 86400,
}


class SubscriptionStatus(enum.Enum):
    active = "active"
    expired = "expired"
    canceled = "canceled"


class Plan(Base):
    __tablename__ = "plans"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    duration_unit: Mapped[DurationUnit] = mapped_column(
        Enum(DurationUnit), nullable=False
    )
    duration_value: Mapped[int] = mapped_column(Integer, nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0.00"))
    rate_limit: Mapped[str | None] = mapped_column(String(64))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC), onupdate=lambda: datetime.now(UTC)
    )

    subscriptions = relationship("Subscription", back_populates="plan")

    @property
    def duration_seconds(self) -> int:
        return DURATION_UNIT_SECONDS[self.duration_unit] * self.duration_value

    @property
    def duration(self) -> timedelta:
        return timedelta(seconds=self.duration_seconds)


class Subscription(Base):
    __tablename__ = "subscriptions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    subscriber_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("subscribers.id"), nullable=False, index=True
    )
    plan_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("plans.id"), nullable=False
    )
    # Origin: at most one of these is set; unique so a payment or voucher
    # can back a single subscription only.
    payment_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("payments.id"), unique=True
    )
    voucher_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("vouchers.id"), unique=True
    )

    status: Mapped[SubscriptionStatus] = mapped_column(
        Enum(SubscriptionStatus), default=SubscriptionStatus.active, index=True
    )
    start_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, index=True
    )
    expired_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC), onupdate=lambda: datetime.now(UTC)
    )

    subscriber = relationship("Subscriber", back_populates="subscriptions")
    plan = relationship("Plan", back_populates="subscriptions")
    payment = relationship("Payment", foreign_keys=[payment_id])
    voucher = relationship("Voucher", foreign_keys=[voucher_id])

    @property
    def origin(self) -> str:
        if self.payment_id is not None:
            return "payment"
        if self.voucher_id is not None:
            return "voucher"
        return "admin"
