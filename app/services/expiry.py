"""Expiry reconciler.

Periodic sweep that expires lapsed subscriptions and then repairs any drift
between the ledger and the AAA store left by deferred provisioning. Every
selection is re-read from the store, so overlapping runs converge.
"""

import logging
import time
from datetime import datetime

from sqlalchemy.orm import Session

from app.exceptions import AccessError
from app.metrics import AccessMetrics, default_metrics
from app.models.catalog import Subscription, SubscriptionStatus
from app.models.subscriber import Subscriber, SubscriberStatus
from app.services.common import utcnow
from app.services.entitlements import Entitlements, entitlements
from app.services.radius import profile_for_plan

logger = logging.getLogger(__name__)


class ExpiryReconciler:
    def __init__(
        self,
        ledger: Entitlements = entitlements,
        metrics: AccessMetrics = default_metrics,
    ):
        self.ledger = ledger
        self.metrics = metrics

    @staticmethod
    def _lapsed_ids(db: Session, now: datetime) -> list[int]:
        rows = (
            db.query(Subscription.id)
            .filter(Subscription.status == SubscriptionStatus.active)
            .filter(Subscription.end_at <= now)
            .order_by(Subscription.end_at.asc())
            .all()
        )
        return [row[0] for row in rows]

    def _expire_lapsed(self, db: Session, now: datetime, counts: dict) -> None:
        ids = self._lapsed_ids(db, now)
        counts["scanned"] = len(ids)
        for subscription_id in ids:
            try:
                self.ledger.expire(db, subscription_id, now=now)
                counts["expired"] += 1
            except Exception:
                db.rollback()
                counts["failed"] += 1
                logger.exception(
                    "Failed to expire subscription %s",
                    subscription_id,
                    extra={"subscription_id": subscription_id},
                )

    def _reprovision_missing(self, db: Session, now: datetime, counts: dict) -> None:
        provisioned = self.ledger.provisioner.provisioned_usernames(db)
        live = (
            db.query(Subscriber)
            .join(Subscription, Subscription.subscriber_id == Subscriber.id)
            .filter(Subscription.status == SubscriptionStatus.active)
            .filter(Subscription.end_at > now)
            .filter(Subscriber.status == SubscriberStatus.active)
            .distinct()
            .all()
        )
        for subscriber in live:
            if subscriber.username in provisioned:
                continue
            current = self.ledger.current_active(db, subscriber.id, now)
            if current is None:
                continue
            try:
                self.ledger.provisioner.provision(
                    db, subscriber, profile_for_plan(current.plan)
                )
                counts["reprovisioned"] += 1
            except AccessError:
                counts["failed"] += 1

    def _revoke_orphans(self, db: Session, now: datetime, counts: dict) -> None:
        provisioned = self.ledger.provisioner.provisioned_usernames(db)
        if not provisioned:
            return
        entitled = {
            row[0]
            for row in db.query(Subscriber.username)
            .join(Subscription, Subscription.subscriber_id == Subscriber.id)
            .filter(Subscription.status == SubscriptionStatus.active)
            .filter(Subscription.end_at > now)
            .filter(Subscriber.status == SubscriberStatus.active)
            .all()
        }
        for username in sorted(provisioned - entitled):
            try:
                self.ledger.provisioner.deprovision(db, username)
                counts["revoked"] += 1
                logger.info("Revoked orphaned credentials for %s", username)
            except AccessError:
                counts["failed"] += 1

    def run(self, db: Session, now: datetime | None = None) -> dict:
        now = now or utcnow()
        started = time.monotonic()
        counts = {"scanned": 0, "expired": 0, "failed": 0, "reprovisioned": 0, "revoked": 0}
        status = "success"
        try:
            self._expire_lapsed(db, now, counts)
            self._reprovision_missing(db, now, counts)
            self._revoke_orphans(db, now, counts)
        except Exception:
            status = "error"
            raise
        finally:
            for key in ("expired", "failed", "reprovisioned", "revoked"):
                self.metrics.sweep(key, counts[key])
            self.metrics.job("expiry_sweep", status, time.monotonic() - started)
        logger.info(
            "Expiry sweep: scanned=%d expired=%d failed=%d reprovisioned=%d revoked=%d",
            counts["scanned"],
            counts["expired"],
            counts["failed"],
            counts["reprovisioned"],
            counts["revoked"],
            extra=counts,
        )
        return counts


expiry_reconciler = ExpiryReconciler()
