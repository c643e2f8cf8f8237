import logging
from datetime import datetime

from sqlalchemy.orm import Session

from app.models.access_session import (
    OPEN_SESSION_STATUSES,
    AccessSession,
    AccessSessionStatus,
)
from app.models.subscriber import Subscriber
from app.models.catalog import Subscription
from app.services.common import (
    apply_ordering,
    apply_pagination,
    as_utc,
    utcnow,
)
from app.services.response import ListResponseMixin

logger = logging.getLogger(__name__)


class AccessSessions(ListResponseMixin):
    """Session lifecycle bookkeeping. Methods flush; callers commit."""

    @staticmethod
    def find_open(
        db: Session,
        subscription_id: int | None = None,
        subscriber_id: int | None = None,
    ) -> list[AccessSession]:
        query = db.query(AccessSession).filter(
            AccessSession.status.in_(OPEN_SESSION_STATUSES)
        )
        if subscription_id is not None:
            query = query.filter(AccessSession.subscription_id == subscription_id)
        if subscriber_id is not None:
            query = query.filter(AccessSession.subscriber_id == subscriber_id)
        return query.order_by(AccessSession.started_at.desc(), AccessSession.id.desc()).all()

    def open_pending(
        self, db: Session, subscriber: Subscriber, subscription: Subscription
    ) -> AccessSession:
        existing = self.find_open(db, subscription_id=subscription.id)
        if existing:
            return existing[0]
        session = AccessSession(
            subscriber_id=subscriber.id,
            subscription_id=subscription.id,
            mac_address=None if subscriber.mac_is_temporary else subscriber.mac_address,
            status=AccessSessionStatus.pending,
            started_at=utcnow(),
        )
        db.add(session)
        db.flush()
        return session

    def connect(
        self,
        db: Session,
        subscriber: Subscriber,
        subscription: Subscription,
        mac_address: str,
        ip_address: str | None,
        now: datetime | None = None,
    ) -> AccessSession:
        """Mark the open session for ``subscription`` connected, opening one if needed."""
        now = now or utcnow()
        existing = self.find_open(db, subscription_id=subscription.id)
        if existing:
            session = existing[0]
        else:
            session = AccessSession(
                subscriber_id=subscriber.id,
                subscription_id=subscription.id,
                started_at=now,
            )
            db.add(session)
        session.mac_address = mac_address
        if ip_address:
            session.ip_address = ip_address
        if session.status != AccessSessionStatus.active:
            session.status = AccessSessionStatus.active
            session.connected_at = now
        db.flush()
        return session

    @staticmethod
    def close(
        db: Session,
        session: AccessSession,
        now: datetime | None = None,
        cause: str | None = None,
    ) -> AccessSession:
        if session.status == AccessSessionStatus.inactive:
            return session
        now = now or utcnow()
        began = as_utc(session.connected_at or session.started_at)
        session.status = AccessSessionStatus.inactive
        session.ended_at = now
        session.duration_seconds = max(0, int((now - began).total_seconds())) if began else 0
        session.terminate_cause = cause
        db.flush()
        return session

    def close_for_subscription(
        self,
        db: Session,
        subscription_id: int,
        now: datetime | None = None,
        cause: str | None = None,
    ) -> int:
        sessions = self.find_open(db, subscription_id=subscription_id)
        for session in sessions:
            self.close(db, session, now=now, cause=cause)
        return len(sessions)

    def disconnect(
        self,
        db: Session,
        mac_address: str | None = None,
        username: str | None = None,
        cause: str | None = None,
    ) -> int:
        """Close open sessions reported gone by the access point."""
        query = db.query(AccessSession).filter(
            AccessSession.status.in_(OPEN_SESSION_STATUSES)
        )
        if mac_address:
            query = query.filter(AccessSession.mac_address == mac_address)
        elif username:
            query = query.join(Subscriber, Subscriber.id == AccessSession.subscriber_id).filter(
                Subscriber.username == username
            )
        else:
            return 0
        now = utcnow()
        sessions = query.all()
        for session in sessions:
            self.close(db, session, now=now, cause=cause or "user-request")
        db.commit()
        if sessions:
            logger.info(
                "Closed %d session(s) on disconnect",
                len(sessions),
                extra={"mac_address": mac_address, "username": username},
            )
        return len(sessions)

    @staticmethod
    def list(
        db: Session,
        subscriber_id: int | None = None,
        status: AccessSessionStatus | None = None,
        open_only: bool = False,
        order_by: str = "started_at",
        order_dir: str = "desc",
        limit: int = 50,
        offset: int = 0,
    ):
        query = db.query(AccessSession)
        if subscriber_id is not None:
            query = query.filter(AccessSession.subscriber_id == subscriber_id)
        if status is not None:
            query = query.filter(AccessSession.status == status)
        if open_only:
            query = query.filter(AccessSession.status.in_(OPEN_SESSION_STATUSES))
        query = apply_ordering(
            query,
            order_by,
            order_dir,
            {"started_at": AccessSession.started_at, "ended_at": AccessSession.ended_at},
        )
        return apply_pagination(query, limit, offset).all()


access_sessions = AccessSessions()
