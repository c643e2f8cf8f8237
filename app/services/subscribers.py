import logging

from sqlalchemy.orm import Session

from app.exceptions import SubscriberNotFound
from app.models.subscriber import Subscriber, SubscriberStatus
from app.services.access_sessions import AccessSessions, access_sessions
from app.services.common import apply_ordering, apply_pagination, get_or_404
from app.services.entitlements import Entitlements, entitlements
from app.services.response import ListResponseMixin

logger = logging.getLogger(__name__)


class Subscribers(ListResponseMixin):
    def __init__(
        self,
        ledger: Entitlements = entitlements,
        sessions: AccessSessions = access_sessions,
    ):
        self.ledger = ledger
        self.sessions = sessions

    @staticmethod
    def get(db: Session, subscriber_id: int) -> Subscriber:
        return get_or_404(db, Subscriber, subscriber_id, SubscriberNotFound)

    def block(self, db: Session, subscriber_id: int) -> Subscriber:
        """Block a subscriber: remove AAA access and close open sessions."""
        subscriber = self.get(db, subscriber_id)
        subscriber.status = SubscriberStatus.blocked
        for session in self.sessions.find_open(db, subscriber_id=subscriber.id):
            self.sessions.close(db, session, cause="admin-reset")
        db.commit()
        self.ledger.provisioner.deprovision(db, subscriber.username)
        db.refresh(subscriber)
        logger.info("Blocked subscriber %s", subscriber.id, extra={"subscriber_id": subscriber.id})
        return subscriber

    def unblock(self, db: Session, subscriber_id: int) -> Subscriber:
        subscriber = self.get(db, subscriber_id)
        subscriber.status = SubscriberStatus.active
        db.commit()
        current = self.ledger.sync_credentials(db, subscriber)
        db.refresh(subscriber)
        logger.info(
            "Unblocked subscriber %s (%s)",
            subscriber.id,
            "re-provisioned" if current else "no active subscription",
            extra={"subscriber_id": subscriber.id},
        )
        return subscriber

    @staticmethod
    def list(
        db: Session,
        status: SubscriberStatus | None = None,
        search: str | None = None,
        order_by: str = "created_at",
        order_dir: str = "desc",
        limit: int = 50,
        offset: int = 0,
    ):
        query = db.query(Subscriber)
        if status is not None:
            query = query.filter(Subscriber.status == status)
        if search:
            like = f"%{search}%"
            query = query.filter(
                Subscriber.username.ilike(like) | Subscriber.phone.ilike(like)
            )
        query = apply_ordering(
            query,
            order_by,
            order_dir,
            {
                "created_at": Subscriber.created_at,
                "username": Subscriber.username,
                "last_seen_at": Subscriber.last_seen_at,
            },
        )
        return apply_pagination(query, limit, offset).all()


subscribers = Subscribers()
