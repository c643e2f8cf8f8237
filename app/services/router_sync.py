"""Router sync gateway.

Read models served to the access point on its polling interval, plus intake
of the connect/disconnect events it pushes back.
"""

import logging
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from app.config import settings
from app.models.catalog import Plan, Subscription, SubscriptionStatus
from app.models.subscriber import Subscriber, SubscriberStatus
from app.services.access_sessions import AccessSessions, access_sessions
from app.services.common import as_utc, utcnow
from app.services.identity import (
    IdentityResolver,
    identity_resolver,
    is_placeholder_mac,
    normalize_mac,
)
from app.services.radius import profile_for_plan

logger = logging.getLogger(__name__)


def _comment(subscription: Subscription, plan: Plan) -> str:
    end_at = as_utc(subscription.end_at)
    return f"{plan.name} until {end_at:%Y-%m-%d %H:%M} UTC"


def _sanitize_field(value: str) -> str:
    return value.replace(";", ",").replace("\n", " ").replace("\r", " ")


class RouterSync:
    def __init__(
        self,
        resolver: IdentityResolver = identity_resolver,
        sessions: AccessSessions = access_sessions,
    ):
        self.resolver = resolver
        self.sessions = sessions

    @staticmethod
    def _live_rows(db: Session, now: datetime, since: datetime | None = None):
        query = (
            db.query(Subscription, Subscriber, Plan)
            .join(Subscriber, Subscriber.id == Subscription.subscriber_id)
            .join(Plan, Plan.id == Subscription.plan_id)
            .filter(Subscription.status == SubscriptionStatus.active)
            .filter(Subscription.end_at > now)
            .filter(Subscriber.status == SubscriberStatus.active)
            .order_by(Subscriber.id.asc(), Subscription.end_at.desc())
        )
        if since is not None:
            query = query.filter(Subscription.updated_at >= since)
        # Latest end_at per subscriber wins.
        seen: set[int] = set()
        for subscription, subscriber, plan in query.all():
            if subscriber.id in seen:
                continue
            seen.add(subscriber.id)
            yield subscription, subscriber, plan

    def credential_list(self, db: Session, since: datetime | None = None) -> dict:
        now = utcnow()
        users = []
        for subscription, subscriber, plan in self._live_rows(db, now, since):
            profile = profile_for_plan(plan)
            users.append(
                {
                    "username": subscriber.username,
                    "secret": subscriber.secret,
                    "profile": profile.name,
                    "rate_limit": profile.rate_limit,
                    "mac_address": None if subscriber.mac_is_temporary else subscriber.mac_address,
                    "end_at": subscription.end_at,
                    "comment": _comment(subscription, plan),
                }
            )
        return {"generated_at": now, "count": len(users), "users": users}

    def credential_lines(self, db: Session, since: datetime | None = None) -> str:
        """``username;secret;profile;comment`` per line for router scripts."""
        listing = self.credential_list(db, since)
        lines = [
            ";".join(
                _sanitize_field(str(user[key]))
                for key in ("username", "secret", "profile", "comment")
            )
            for user in listing["users"]
        ]
        return "\n".join(lines) + ("\n" if lines else "")

    def mac_bypass(self, db: Session) -> dict:
        now = utcnow()
        entries = [
            {
                "mac_address": subscriber.mac_address,
                "username": subscriber.username,
                "end_at": subscription.end_at,
            }
            for subscription, subscriber, _plan in self._live_rows(db, now)
            if subscriber.mac_address
            and not subscriber.mac_is_temporary
            and not is_placeholder_mac(subscriber.mac_address)
        ]
        return {"count": len(entries), "entries": entries}

    @staticmethod
    def expired(db: Session, window_minutes: int | None = None) -> dict:
        window = window_minutes or settings.expired_list_window_minutes
        since = utcnow() - timedelta(minutes=window)
        rows = (
            db.query(Subscription, Subscriber)
            .join(Subscriber, Subscriber.id == Subscription.subscriber_id)
            .filter(Subscription.status == SubscriptionStatus.expired)
            .filter(Subscription.expired_at >= since)
            .order_by(Subscription.expired_at.desc())
            .all()
        )
        entries = [
            {
                "username": subscriber.username,
                "mac_address": None if subscriber.mac_is_temporary else subscriber.mac_address,
                "subscription_id": subscription.id,
                "expired_at": subscription.expired_at,
            }
            for subscription, subscriber in rows
        ]
        return {"window_minutes": window, "count": len(entries), "entries": entries}

    def connect(
        self,
        db: Session,
        identifier: str | None,
        detected_mac: str,
        ip: str | None = None,
        phone: str | None = None,
        pairing_token: str | None = None,
    ) -> dict:
        result = self.resolver.resolve(
            db,
            identifier,
            detected_mac,
            ip=ip,
            phone=phone,
            pairing_token=pairing_token,
        )
        return result.as_dict()

    def disconnect(
        self,
        db: Session,
        mac_address: str | None = None,
        username: str | None = None,
        terminate_cause: str | None = None,
    ) -> dict:
        mac = normalize_mac(mac_address) if mac_address else None
        closed = self.sessions.disconnect(
            db, mac_address=mac, username=username, cause=terminate_cause
        )
        return {"closed": closed}


router_sync = RouterSync()
