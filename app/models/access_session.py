import enum
from datetime import UTC, datetime

from sqlalchemy import DateTime, Enum, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db import Base


class AccessSessionStatus(enum.Enum):
    pending = "pending"
    active = "active"
    inactive = "inactive"


OPEN_SESSION_STATUSES = (AccessSessionStatus.pending, AccessSessionStatus.active)


class AccessSession(Base):
    """Connection lifecycle of one subscriber on one entitlement.

    pending: credentials provisioned, device not yet seen by the access point.
    active: the access point reported a connect.
    inactive: closed; ``ended_at`` and ``duration_seconds`` are set.
    """

    __tablename__ = "access_sessions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    subscriber_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("subscribers.id"), nullable=False, index=True
    )
    subscription_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("subscriptions.id"), index=True
    )
    mac_address: Mapped[str | None] = mapped_column(String(17))
    ip_address: Mapped[str | None] = mapped_column(String(64))
    status: Mapped[AccessSessionStatus] = mapped_column(
        Enum(AccessSessionStatus), default=AccessSessionStatus.pending
    )
    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC)
    )
    connected_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    ended_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    duration_seconds: Mapped[int | None] = mapped_column(Integer)
    terminate_cause: Mapped[str | None] = mapped_column(String(64))

    subscriber = relationship("Subscriber", back_populates="sessions")
    subscription = relationship("Subscription")
