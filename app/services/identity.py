"""Device identity resolver.

Maps an unreliable device signal (hostname, MAC, phone, pairing token) to a
subscriber. Rules run in a fixed priority order and the first match wins;
each rule is a plain function so it can be exercised on its own.
"""

import logging
import re
import secrets
import string
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from app.config import settings
from app.exceptions import DownstreamUnavailable, InvalidIdentity, SubscriberNotFound
from app.metrics import AccessMetrics, default_metrics
from app.models.access_session import AccessSessionStatus
from app.models.subscriber import Subscriber
from app.services.access_sessions import AccessSessions, access_sessions
from app.services.common import as_utc, get_or_404, utcnow
from app.services.entitlements import Entitlements, entitlements
from app.services.radius import RadiusProvisioner, radius_provisioner

logger = logging.getLogger(__name__)

_MAC_HEX = re.compile(r"^[0-9A-F]{12}$")
_HOSTNAME_STRIP = re.compile(r"[^a-z0-9_-]")
_SECRET_ALPHABET = string.ascii_lowercase + string.digits
PAIRING_TOKEN_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
# Hostnames shorter than this are too generic for substring matching.
FUZZY_MIN_LENGTH = 4
SYNTHETIC_USERNAME_PREFIX = "user_"


def normalize_mac(value: str | None) -> str:
    raw = re.sub(r"[:\-.\s]", "", (value or "").upper())
    if not _MAC_HEX.match(raw):
        raise InvalidIdentity("Malformed MAC address", mac=value)
    return ":".join(raw[i : i + 2] for i in range(0, 12, 2))


def is_placeholder_mac(mac: str | None) -> bool:
    if not mac:
        return False
    return mac.upper().startswith(settings.placeholder_mac_prefix)


def generate_placeholder_mac() -> str:
    suffix = ":".join(f"{secrets.randbelow(256):02X}" for _ in range(3))
    return f"{settings.placeholder_mac_prefix}:{suffix}"


def clean_hostname(value: str | None) -> str:
    return _HOSTNAME_STRIP.sub("", (value or "").lower())[: settings.username_max_length]


def normalize_phone(value: str | None) -> str | None:
    digits = re.sub(r"\D", "", value or "")
    if not digits:
        return None
    if digits.startswith("254"):
        return digits
    if len(digits) >= 9:
        return "254" + digits[-9:]
    return digits


def generate_secret(length: int = 8) -> str:
    return "".join(secrets.choice(_SECRET_ALPHABET) for _ in range(length))


def synthesize_username() -> str:
    return f"{SYNTHETIC_USERNAME_PREFIX}{generate_secret(8)}"


def is_synthetic_username(username: str | None) -> bool:
    return bool(username) and username.startswith(SYNTHETIC_USERNAME_PREFIX)


@dataclass
class DeviceSignal:
    hostname: str = ""
    phone: str | None = None
    token: str | None = None
    mac: str | None = None
    device_name: str | None = None
    ip: str | None = None


@dataclass
class IdentityResolution:
    rule: str | None = None
    ignored: bool = False
    subscriber: Subscriber | None = None
    mac_updated: bool = False
    session_id: int | None = None
    session_status: AccessSessionStatus | None = None

    def as_dict(self) -> dict:
        return {
            "rule": self.rule,
            "ignored": self.ignored,
            "subscriber_id": self.subscriber.id if self.subscriber else None,
            "username": self.subscriber.username if self.subscriber else None,
            "mac_updated": self.mac_updated,
            "session_id": self.session_id,
            "session_status": self.session_status,
        }


Rule = Callable[[Session, DeviceSignal, datetime], Subscriber | None]


def _prefix_related(hostname: str, username: str) -> bool:
    if not hostname or not username:
        return False
    if hostname == username:
        return True
    if min(len(hostname), len(username)) < FUZZY_MIN_LENGTH:
        return False
    # Synthesized names carry no device information; they only match exactly.
    if is_synthetic_username(username):
        return False
    return hostname.startswith(username) or username.startswith(hostname)


def match_pairing_token(db: Session, signal: DeviceSignal, now: datetime) -> Subscriber | None:
    if not signal.token:
        return None
    subscriber = (
        db.query(Subscriber).filter(Subscriber.pairing_token == signal.token.upper()).first()
    )
    if subscriber is None:
        return None
    expires_at = as_utc(subscriber.pairing_token_expires_at)
    if expires_at is None or expires_at <= now:
        return None
    return subscriber


def match_phone(db: Session, signal: DeviceSignal, now: datetime) -> Subscriber | None:
    if not signal.phone:
        return None
    return db.query(Subscriber).filter(Subscriber.phone == signal.phone).first()


def match_recent_partial(db: Session, signal: DeviceSignal, now: datetime) -> Subscriber | None:
    since = now - timedelta(minutes=settings.identity_recent_window_minutes)
    candidates = (
        db.query(Subscriber)
        .filter(Subscriber.mac_is_temporary.is_(True))
        .filter(Subscriber.created_at >= since)
        .order_by(Subscriber.created_at.desc(), Subscriber.id.desc())
        .all()
    )
    for candidate in candidates:
        if signal.phone and candidate.phone == signal.phone:
            return candidate
        if _prefix_related(signal.hostname, candidate.username):
            return candidate
    return None


def match_exact_username(db: Session, signal: DeviceSignal, now: datetime) -> Subscriber | None:
    if not signal.hostname:
        return None
    return db.query(Subscriber).filter(Subscriber.username == signal.hostname).first()


def match_fuzzy_username(db: Session, signal: DeviceSignal, now: datetime) -> Subscriber | None:
    hostname = signal.hostname
    if len(hostname) < FUZZY_MIN_LENGTH:
        return None
    since = now - timedelta(hours=settings.identity_fuzzy_window_hours)
    candidates = (
        db.query(Subscriber)
        .filter(Subscriber.mac_is_temporary.is_(True))
        .filter(Subscriber.created_at >= since)
        .order_by(Subscriber.created_at.desc(), Subscriber.id.desc())
        .all()
    )
    for candidate in candidates:
        username = candidate.username
        if len(username) < FUZZY_MIN_LENGTH:
            continue
        if is_synthetic_username(username):
            continue
        if _prefix_related(hostname, username) or hostname in username or username in hostname:
            return candidate
    return None


def match_known_mac(db: Session, signal: DeviceSignal, now: datetime) -> Subscriber | None:
    if not signal.mac:
        return None
    return (
        db.query(Subscriber)
        .filter(Subscriber.mac_address == signal.mac)
        .filter(Subscriber.mac_is_temporary.is_(False))
        .order_by(Subscriber.last_seen_at.desc(), Subscriber.id.desc())
        .first()
    )


REPORT_RULES: list[tuple[str, Rule]] = [
    ("pairing_token", match_pairing_token),
    ("recent_partial", match_recent_partial),
    ("exact_username", match_exact_username),
    ("fuzzy_username", match_fuzzy_username),
    ("known_mac", match_known_mac),
]

HINT_RULES: list[tuple[str, Rule]] = [
    ("phone", match_phone),
    ("recent_partial", match_recent_partial),
    ("exact_username", match_exact_username),
    ("fuzzy_username", match_fuzzy_username),
]


def first_match(
    db: Session, rules: list[tuple[str, Rule]], signal: DeviceSignal, now: datetime
) -> tuple[str, Subscriber] | None:
    for name, rule in rules:
        subscriber = rule(db, signal, now)
        if subscriber is not None:
            return name, subscriber
    return None


class IdentityResolver:
    def __init__(
        self,
        ledger: Entitlements = entitlements,
        provisioner: RadiusProvisioner = radius_provisioner,
        sessions: AccessSessions = access_sessions,
        metrics: AccessMetrics = default_metrics,
        report_rules: list[tuple[str, Rule]] | None = None,
        hint_rules: list[tuple[str, Rule]] | None = None,
    ):
        self.ledger = ledger
        self.provisioner = provisioner
        self.sessions = sessions
        self.metrics = metrics
        self.report_rules = report_rules if report_rules is not None else REPORT_RULES
        self.hint_rules = hint_rules if hint_rules is not None else HINT_RULES

    @staticmethod
    def _username_free(db: Session, username: str, exclude_id: int | None = None) -> bool:
        query = db.query(Subscriber.id).filter(Subscriber.username == username)
        if exclude_id is not None:
            query = query.filter(Subscriber.id != exclude_id)
        return query.first() is None

    @staticmethod
    def _phone_free(db: Session, phone: str | None) -> bool:
        if not phone:
            return False
        return db.query(Subscriber.id).filter(Subscriber.phone == phone).first() is None

    def _new_username(self, db: Session, hostname: str) -> str:
        if hostname and self._username_free(db, hostname):
            return hostname
        while True:
            candidate = synthesize_username()
            if self._username_free(db, candidate):
                return candidate

    def _create(self, db: Session, signal: DeviceSignal, now: datetime) -> Subscriber:
        real_mac = signal.mac is not None
        subscriber = Subscriber(
            username=self._new_username(db, signal.hostname),
            secret=generate_secret(),
            phone=signal.phone if self._phone_free(db, signal.phone) else None,
            mac_address=signal.mac if real_mac else generate_placeholder_mac(),
            mac_is_temporary=not real_mac,
            device_name=signal.device_name,
            created_at=now,
        )
        db.add(subscriber)
        db.flush()
        return subscriber

    def _adopt_hostname(self, db: Session, subscriber: Subscriber, hostname: str) -> None:
        """Replace a synthetic username with the device's cleaned hostname."""
        if not hostname or hostname == subscriber.username:
            return
        if not self._username_free(db, hostname, exclude_id=subscriber.id):
            return
        old = subscriber.username
        try:
            self.provisioner.rename(db, old, hostname)
        except DownstreamUnavailable:
            logger.warning(
                "Keeping username %s for subscriber %s; credential rename failed",
                old,
                subscriber.id,
                extra={"subscriber_id": subscriber.id},
            )
            return
        subscriber.username = hostname
        logger.info(
            "Renamed subscriber %s from %s to %s",
            subscriber.id,
            old,
            hostname,
            extra={"subscriber_id": subscriber.id},
        )

    def resolve(
        self,
        db: Session,
        identifier: str | None,
        detected_mac: str,
        ip: str | None = None,
        phone: str | None = None,
        pairing_token: str | None = None,
        now: datetime | None = None,
    ) -> IdentityResolution:
        """Handle one connection report from the access point."""
        mac = normalize_mac(detected_mac)
        if is_placeholder_mac(mac):
            self.metrics.identity("ignored")
            logger.debug("Ignoring placeholder MAC %s", mac, extra={"identifier": identifier})
            return IdentityResolution(ignored=True)

        now = now or utcnow()
        signal = DeviceSignal(
            hostname=clean_hostname(identifier),
            phone=normalize_phone(phone),
            token=(pairing_token or identifier or "").strip() or None,
            mac=mac,
            device_name=(identifier or "").strip()[:120] or None,
            ip=ip,
        )
        matched = first_match(db, self.report_rules, signal, now)
        if matched is None:
            rule, subscriber = "created", self._create(db, signal, now)
            mac_updated = True
        else:
            rule, subscriber = matched
            mac_updated = subscriber.mac_is_temporary or subscriber.mac_address != mac
            if subscriber.mac_is_temporary:
                self._adopt_hostname(db, subscriber, signal.hostname)
            subscriber.mac_address = mac
            subscriber.mac_is_temporary = False
            if rule == "pairing_token":
                subscriber.pairing_token = None
                subscriber.pairing_token_expires_at = None
            if signal.device_name and not subscriber.device_name:
                subscriber.device_name = signal.device_name
        if ip:
            subscriber.last_ip = ip
        subscriber.last_seen_at = now

        result = IdentityResolution(rule=rule, subscriber=subscriber, mac_updated=mac_updated)
        if not subscriber.is_blocked:
            current = self.ledger.current_active(db, subscriber.id, now)
            if current is not None:
                session = self.sessions.connect(db, subscriber, current, mac, ip, now)
                result.session_id = session.id
                result.session_status = session.status
        db.commit()
        self.metrics.identity(rule)
        logger.info(
            "Connection report %s matched subscriber %s via %s",
            identifier,
            subscriber.id,
            rule,
            extra={"subscriber_id": subscriber.id, "rule": rule, "mac": mac},
        )
        return result

    def resolve_hint(
        self,
        db: Session,
        phone: str | None = None,
        device_name: str | None = None,
        now: datetime | None = None,
    ) -> tuple[Subscriber, str]:
        """Find or create the subscriber behind a payment or voucher intake.

        No MAC is known at this point, so new subscribers get a placeholder
        address that a later connection report replaces.
        """
        now = now or utcnow()
        signal = DeviceSignal(
            hostname=clean_hostname(device_name),
            phone=normalize_phone(phone),
            device_name=(device_name or "").strip()[:120] or None,
        )
        matched = first_match(db, self.hint_rules, signal, now)
        if matched is None:
            rule, subscriber = "created", self._create(db, signal, now)
        else:
            rule, subscriber = matched
            if signal.phone and not subscriber.phone:
                subscriber.phone = signal.phone
            if signal.device_name and not subscriber.device_name:
                subscriber.device_name = signal.device_name
        db.commit()
        self.metrics.identity(f"hint_{rule}")
        return subscriber, rule

    def issue_pairing_token(self, db: Session, subscriber_id: int) -> Subscriber:
        subscriber = get_or_404(db, Subscriber, subscriber_id, SubscriberNotFound)
        while True:
            token = "".join(secrets.choice(PAIRING_TOKEN_ALPHABET) for _ in range(6))
            taken = db.query(Subscriber.id).filter(Subscriber.pairing_token == token).first()
            if taken is None:
                break
        subscriber.pairing_token = token
        subscriber.pairing_token_expires_at = utcnow() + timedelta(
            minutes=settings.pairing_token_ttl_minutes
        )
        db.commit()
        db.refresh(subscriber)
        return subscriber


identity_resolver = IdentityResolver()
