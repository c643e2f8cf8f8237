import enum
from datetime import UTC, datetime

from sqlalchemy import Boolean, DateTime, Enum, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db import Base


class SubscriberStatus(enum.Enum):
    active = "active"
    blocked = "blocked"


class Subscriber(Base):
    """A hotspot customer as seen by the billing ledger and the AAA store.

    ``username`` starts out synthetic and is replaced by a device-derived
    name once the identity resolver pairs real hardware with the account.
    """

    __tablename__ = "subscribers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    phone: Mapped[str | None] = mapped_column(String(32), unique=True)
    username: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    secret: Mapped[str] = mapped_column(String(64), nullable=False)
    mac_address: Mapped[str | None] = mapped_column(String(17), index=True)
    mac_is_temporary: Mapped[bool] = mapped_column(Boolean, default=True)
    pairing_token: Mapped[str | None] = mapped_column(String(32), unique=True)
    pairing_token_expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True)
    )
    device_name: Mapped[str | None] = mapped_column(String(120))
    last_ip: Mapped[str | None] = mapped_column(String(64))
    last_seen_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    status: Mapped[SubscriberStatus] = mapped_column(
        Enum(SubscriberStatus), default=SubscriberStatus.active
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC), onupdate=lambda: datetime.now(UTC)
    )

    subscriptions = relationship("Subscription", back_populates="subscriber")
    sessions = relationship("AccessSession", back_populates="subscriber")

    @property
    def is_blocked(self) -> bool:
        return self.status == SubscriberStatus.blocked
