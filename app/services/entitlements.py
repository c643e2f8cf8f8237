"""Entitlement ledger.

Owns the subscription state machine (ACTIVE -> EXPIRED | CANCELED) and the
rule deciding which subscription, if any, a subscriber's AAA credentials
should reflect: the ACTIVE one with the latest ``end_at`` still in the future.
"""

import logging
from datetime import datetime

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.exceptions import (
    ConflictingOrigin,
    DownstreamUnavailable,
    InvalidStateError,
    PlanNotFound,
    SubscriberNotFound,
    SubscriptionNotFound,
)
from app.metrics import AccessMetrics, default_metrics
from app.models.catalog import Plan, Subscription, SubscriptionStatus
from app.models.subscriber import Subscriber
from app.services.access_sessions import AccessSessions, access_sessions
from app.services.common import (
    apply_ordering,
    apply_pagination,
    as_utc,
    get_or_404,
    utcnow,
)
from app.services.radius import (
    PlanProfile,
    RadiusProvisioner,
    profile_for_plan,
    radius_provisioner,
)
from app.services.response import ListResponseMixin

logger = logging.getLogger(__name__)


def format_remaining(seconds: int) -> str:
    if seconds <= 0:
        return "Expired"
    days, rest = divmod(int(seconds), 86400)
    hours, rest = divmod(rest, 3600)
    minutes = rest // 60
    if days:
        return f"{days}d {hours}h remaining"
    if hours:
        return f"{hours}h {minutes}m remaining"
    return f"{max(minutes, 1)}m remaining"


class Entitlements(ListResponseMixin):
    def __init__(
        self,
        provisioner: RadiusProvisioner = radius_provisioner,
        sessions: AccessSessions = access_sessions,
        metrics: AccessMetrics = default_metrics,
    ):
        self.provisioner = provisioner
        self.sessions = sessions
        self.metrics = metrics

    @staticmethod
    def get(db: Session, subscription_id: int) -> Subscription:
        return get_or_404(db, Subscription, subscription_id, SubscriptionNotFound)

    @staticmethod
    def by_origin(
        db: Session, payment_id: int | None = None, voucher_id: int | None = None
    ) -> Subscription | None:
        if payment_id is not None:
            return db.query(Subscription).filter(Subscription.payment_id == payment_id).first()
        if voucher_id is not None:
            return db.query(Subscription).filter(Subscription.voucher_id == voucher_id).first()
        return None

    @staticmethod
    def current_active(
        db: Session, subscriber_id: int, now: datetime | None = None
    ) -> Subscription | None:
        now = now or utcnow()
        return (
            db.query(Subscription)
            .filter(Subscription.subscriber_id == subscriber_id)
            .filter(Subscription.status == SubscriptionStatus.active)
            .filter(Subscription.end_at > now)
            .order_by(Subscription.end_at.desc(), Subscription.id.desc())
            .first()
        )

    def _insert(self, db: Session, subscription: Subscription) -> None:
        db.add(subscription)
        try:
            db.flush()
        except IntegrityError as exc:
            db.rollback()
            raise ConflictingOrigin(
                payment_id=subscription.payment_id, voucher_id=subscription.voucher_id
            ) from exc

    def activate(
        self,
        db: Session,
        subscriber_id: int,
        plan_id: int,
        payment_id: int | None = None,
        voucher_id: int | None = None,
        now: datetime | None = None,
        commit: bool = True,
    ) -> Subscription:
        """Create an ACTIVE subscription ending ``plan.duration`` after now.

        Idempotent per origin: a second call for the same payment or voucher
        returns the subscription created by the first.
        """
        if payment_id is not None and voucher_id is not None:
            raise InvalidStateError("A subscription has a single origin")
        origin = "payment" if payment_id is not None else "voucher" if voucher_id is not None else "admin"

        existing = self.by_origin(db, payment_id=payment_id, voucher_id=voucher_id)
        if existing:
            self.metrics.activation(origin, "duplicate")
            logger.info(
                "Subscription %s already exists for %s origin",
                existing.id,
                origin,
                extra={"payment_id": payment_id, "voucher_id": voucher_id},
            )
            return existing

        subscriber = get_or_404(db, Subscriber, subscriber_id, SubscriberNotFound)
        plan = get_or_404(db, Plan, plan_id, PlanNotFound)
        now = now or utcnow()
        subscription = Subscription(
            subscriber_id=subscriber.id,
            plan_id=plan.id,
            payment_id=payment_id,
            voucher_id=voucher_id,
            status=SubscriptionStatus.active,
            start_at=now,
            end_at=now + plan.duration,
        )
        try:
            self._insert(db, subscription)
        except ConflictingOrigin:
            existing = self.by_origin(db, payment_id=payment_id, voucher_id=voucher_id)
            if existing is None:
                raise
            self.metrics.activation(origin, "duplicate")
            return existing
        if commit:
            db.commit()
            db.refresh(subscription)
        self.metrics.activation(origin, "created")
        logger.info(
            "Activated subscription %s for subscriber %s until %s",
            subscription.id,
            subscriber.id,
            subscription.end_at.isoformat(),
            extra={"subscriber_id": subscriber.id, "plan_id": plan.id, "origin": origin},
        )
        return subscription

    def grant(self, db: Session, subscriber: Subscriber, subscription: Subscription) -> bool:
        """Provision credentials for ``subscription`` and open a pending session.

        Returns whether the AAA write went through. Provisioning failures are
        logged; the subscription stands and the next sweep retries.
        """
        if subscriber.is_blocked:
            logger.warning(
                "Not granting access to blocked subscriber %s",
                subscriber.id,
                extra={"subscriber_id": subscriber.id},
            )
            return False
        current = self.current_active(db, subscriber.id) or subscription
        provisioned = self._provision(db, subscriber, profile_for_plan(current.plan))
        self.sessions.open_pending(db, subscriber, subscription)
        db.commit()
        return provisioned

    def _provision(self, db: Session, subscriber: Subscriber, profile: PlanProfile) -> bool:
        try:
            self.provisioner.provision(db, subscriber, profile)
        except DownstreamUnavailable:
            logger.warning(
                "Provisioning deferred for %s; the next sweep will retry",
                subscriber.username,
                extra={"subscriber_id": subscriber.id},
            )
            return False
        return True

    def sync_credentials(
        self, db: Session, subscriber: Subscriber, now: datetime | None = None
    ) -> Subscription | None:
        """Make the AAA rows for ``subscriber`` match the ledger.

        Re-provisions with the current subscription's plan, or removes the
        credentials when nothing current remains. Raises DownstreamUnavailable.
        """
        current = None if subscriber.is_blocked else self.current_active(db, subscriber.id, now)
        if current is not None:
            self.provisioner.provision(db, subscriber, profile_for_plan(current.plan))
        else:
            self.provisioner.deprovision(db, subscriber.username)
        return current

    def expire(
        self,
        db: Session,
        subscription_id: int,
        now: datetime | None = None,
        cause: str = "session-timeout",
    ) -> Subscription:
        """Move an ACTIVE subscription to EXPIRED; already EXPIRED is a no-op."""
        subscription = self.get(db, subscription_id)
        if subscription.status == SubscriptionStatus.expired:
            return subscription
        if subscription.status == SubscriptionStatus.canceled:
            raise InvalidStateError(
                "Canceled subscriptions cannot expire", subscription_id=subscription_id
            )
        now = now or utcnow()
        claimed = (
            db.query(Subscription)
            .filter(Subscription.id == subscription_id)
            .filter(Subscription.status == SubscriptionStatus.active)
            .update(
                {Subscription.status: SubscriptionStatus.expired, Subscription.expired_at: now},
                synchronize_session=False,
            )
        )
        if not claimed:
            # A concurrent expiry got there first.
            db.rollback()
            db.refresh(subscription)
            return subscription
        closed = self.sessions.close_for_subscription(db, subscription_id, now=now, cause=cause)
        db.commit()
        db.refresh(subscription)
        self.metrics.expiration("expired")

        subscriber = subscription.subscriber
        try:
            remaining = self.sync_credentials(db, subscriber, now)
        except DownstreamUnavailable:
            remaining = None
            logger.warning(
                "Credential cleanup deferred for %s",
                subscriber.username,
                extra={"subscription_id": subscription_id},
            )
        logger.info(
            "Expired subscription %s (closed %d session(s), %s)",
            subscription_id,
            closed,
            f"still covered by {remaining.id}" if remaining else "access revoked",
            extra={"subscription_id": subscription_id, "subscriber_id": subscriber.id},
        )
        return subscription

    def reprovision(self, db: Session, subscriber_id: int) -> Subscription:
        """Rewrite AAA rows from the subscriber's current subscription."""
        subscriber = get_or_404(db, Subscriber, subscriber_id, SubscriberNotFound)
        if subscriber.is_blocked:
            raise InvalidStateError("Subscriber is blocked", subscriber_id=subscriber_id)
        current = self.current_active(db, subscriber.id)
        if current is None:
            raise SubscriptionNotFound(
                "No active subscription to provision", subscriber_id=subscriber_id
            )
        self.provisioner.provision(db, subscriber, profile_for_plan(current.plan))
        return current

    def override_rate_limit(self, db: Session, subscriber_id: int, rate_limit: str) -> bool:
        subscriber = get_or_404(db, Subscriber, subscriber_id, SubscriberNotFound)
        current = self.current_active(db, subscriber.id)
        if current is None:
            raise SubscriptionNotFound(
                "No active subscription to update", subscriber_id=subscriber_id
            )
        base = profile_for_plan(current.plan)
        profile = PlanProfile(
            name=base.name, rate_limit=rate_limit, session_timeout=base.session_timeout
        )
        return self.provisioner.update_profile(db, subscriber.username, profile)

    def current_summary(self, db: Session, subscriber_id: int) -> dict:
        get_or_404(db, Subscriber, subscriber_id, SubscriberNotFound)
        now = utcnow()
        current = self.current_active(db, subscriber_id, now)
        if current is None:
            return {"subscription": None}
        remaining = int((as_utc(current.end_at) - now).total_seconds())
        return {
            "subscription": current,
            "plan_name": current.plan.name,
            "remaining_seconds": max(0, remaining),
            "remaining_text": format_remaining(remaining),
        }

    def aaa_stats(self, db: Session) -> dict:
        stats = self.provisioner.stats(db)
        stats["active_subscriptions"] = (
            db.query(Subscription)
            .filter(Subscription.status == SubscriptionStatus.active)
            .filter(Subscription.end_at > utcnow())
            .count()
        )
        return stats

    @staticmethod
    def list(
        db: Session,
        subscriber_id: int | None = None,
        status: SubscriptionStatus | None = None,
        order_by: str = "created_at",
        order_dir: str = "desc",
        limit: int = 50,
        offset: int = 0,
    ):
        query = db.query(Subscription)
        if subscriber_id is not None:
            query = query.filter(Subscription.subscriber_id == subscriber_id)
        if status is not None:
            query = query.filter(Subscription.status == status)
        query = apply_ordering(
            query,
            order_by,
            order_dir,
            {
                "created_at": Subscription.created_at,
                "end_at": Subscription.end_at,
                "status": Subscription.status,
            },
        )
        return apply_pagination(query, limit, offset).all()


entitlements = Entitlements()
