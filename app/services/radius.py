"""Access control provisioner.

Materialises ledger state as FreeRADIUS ``radcheck``/``radreply`` rows. A
username has at most one live credential set: every write deletes the
existing tuples and inserts the new ones in the same commit.
"""

import logging
import re
from dataclasses import dataclass

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.config import settings
from app.exceptions import DownstreamUnavailable, NotFoundError
from app.metrics import AccessMetrics, default_metrics
from app.models.catalog import DurationUnit, Plan
from app.models.radius import RadCheck, RadReply
from app.models.subscriber import Subscriber

logger = logging.getLogger(__name__)

SESSION_TIMEOUT_ATTRIBUTE = "Session-Timeout"
_TIMED_UNITS = {DurationUnit.minute, DurationUnit.hour}


@dataclass(frozen=True)
class PlanProfile:
    name: str
    rate_limit: str
    session_timeout: int | None = None


def slugify(value: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", (value or "").lower()).strip("-")
    return slug or "default"


def profile_for_plan(plan: Plan) -> PlanProfile:
    # Short plans are also capped by the NAS; longer ones rely on the sweep.
    timeout = plan.duration_seconds if plan.duration_unit in _TIMED_UNITS else None
    return PlanProfile(
        name=slugify(plan.name),
        rate_limit=plan.rate_limit or settings.default_rate_limit,
        session_timeout=timeout,
    )


class RadiusProvisioner:
    def __init__(self, metrics: AccessMetrics = default_metrics):
        self.metrics = metrics

    def _fail(self, db: Session, operation: str, username: str, exc: Exception):
        db.rollback()
        self.metrics.provisioning(operation, "error")
        logger.error(
            "AAA %s failed for %s: %s",
            operation,
            username,
            exc,
            extra={"username": username, "operation": operation},
        )
        raise DownstreamUnavailable(operation=operation, username=username) from exc

    @staticmethod
    def _delete_tuples(db: Session, username: str) -> int:
        removed = (
            db.query(RadCheck)
            .filter(RadCheck.username == username)
            .delete(synchronize_session=False)
        )
        db.query(RadReply).filter(RadReply.username == username).delete(
            synchronize_session=False
        )
        return removed

    def provision(self, db: Session, subscriber: Subscriber, profile: PlanProfile) -> None:
        username = subscriber.username
        try:
            self._delete_tuples(db, username)
            db.add(
                RadCheck(
                    username=username,
                    attribute=settings.radius_password_attribute,
                    op=":=",
                    value=subscriber.secret,
                )
            )
            db.add(
                RadReply(
                    username=username,
                    attribute=settings.radius_rate_limit_attribute,
                    op="=",
                    value=profile.rate_limit,
                )
            )
            if profile.session_timeout:
                db.add(
                    RadReply(
                        username=username,
                        attribute=SESSION_TIMEOUT_ATTRIBUTE,
                        op="=",
                        value=str(profile.session_timeout),
                    )
                )
            db.commit()
        except SQLAlchemyError as exc:
            self._fail(db, "provision", username, exc)
        self.metrics.provisioning("provision", "ok")
        logger.info(
            "Provisioned %s with profile %s",
            username,
            profile.name,
            extra={"username": username, "profile": profile.name},
        )

    def deprovision(self, db: Session, username: str) -> int:
        """Remove every tuple for ``username``; returns check rows removed."""
        try:
            removed = self._delete_tuples(db, username)
            db.commit()
        except SQLAlchemyError as exc:
            self._fail(db, "deprovision", username, exc)
        self.metrics.provisioning("deprovision", "ok")
        if removed:
            logger.info("Deprovisioned %s", username, extra={"username": username})
        return removed

    def update_profile(self, db: Session, username: str, profile: PlanProfile) -> bool:
        """Rewrite the rate-limit reply tuple in place; other tuples are untouched."""
        try:
            updated = (
                db.query(RadReply)
                .filter(RadReply.username == username)
                .filter(RadReply.attribute == settings.radius_rate_limit_attribute)
                .update({RadReply.value: profile.rate_limit}, synchronize_session=False)
            )
            db.commit()
        except SQLAlchemyError as exc:
            self._fail(db, "update_profile", username, exc)
        self.metrics.provisioning("update_profile", "ok" if updated else "missing")
        return bool(updated)

    def rename(self, db: Session, old_username: str, new_username: str) -> int:
        """Move live tuples to a new username. The caller commits."""
        try:
            moved = (
                db.query(RadCheck)
                .filter(RadCheck.username == old_username)
                .update({RadCheck.username: new_username}, synchronize_session=False)
            )
            db.query(RadReply).filter(RadReply.username == old_username).update(
                {RadReply.username: new_username}, synchronize_session=False
            )
            db.flush()
        except SQLAlchemyError as exc:
            self._fail(db, "rename", old_username, exc)
        self.metrics.provisioning("rename", "ok")
        return moved

    @staticmethod
    def has_credentials(db: Session, username: str) -> bool:
        return (
            db.query(RadCheck.id).filter(RadCheck.username == username).first()
            is not None
        )

    @staticmethod
    def provisioned_usernames(db: Session) -> set[str]:
        rows = db.query(RadCheck.username).distinct().all()
        return {row[0] for row in rows}

    @staticmethod
    def get_user(db: Session, username: str) -> dict:
        check = (
            db.query(RadCheck)
            .filter(RadCheck.username == username)
            .order_by(RadCheck.id)
            .all()
        )
        reply = (
            db.query(RadReply)
            .filter(RadReply.username == username)
            .order_by(RadReply.id)
            .all()
        )
        if not check and not reply:
            raise NotFoundError("AAA user not found", username=username)
        return {"username": username, "check": check, "reply": reply}

    @staticmethod
    def stats(db: Session) -> dict:
        return {
            "users": db.query(func.count(func.distinct(RadCheck.username))).scalar() or 0,
            "check_rows": db.query(func.count(RadCheck.id)).scalar() or 0,
            "reply_rows": db.query(func.count(RadReply.id)).scalar() or 0,
        }


radius_provisioner = RadiusProvisioner()
