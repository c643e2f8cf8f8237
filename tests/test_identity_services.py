from datetime import timedelta
from unittest.mock import patch

import pytest

from app.config import settings
from app.exceptions import DownstreamUnavailable, InvalidIdentity
from app.models import AccessSession, AccessSessionStatus, RadCheck, Subscriber
from app.services.common import as_utc, utcnow
from app.services.entitlements import entitlements
from app.services.radius import radius_provisioner
from app.services.identity import (
    HINT_RULES,
    PAIRING_TOKEN_ALPHABET,
    REPORT_RULES,
    DeviceSignal,
    IdentityResolver,
    clean_hostname,
    generate_placeholder_mac,
    identity_resolver,
    is_placeholder_mac,
    match_fuzzy_username,
    match_recent_partial,
    normalize_mac,
    normalize_phone,
)


def _activate(db_session, subscriber, plan):
    subscription = entitlements.activate(db_session, subscriber.id, plan.id)
    entitlements.grant(db_session, subscriber, subscription)
    return subscription


def test_normalize_mac_accepts_common_formats():
    assert normalize_mac("aa-bb-cc-11-22-33") == "AA:BB:CC:11:22:33"
    assert normalize_mac("aabb.cc11.2233") == "AA:BB:CC:11:22:33"
    assert normalize_mac("AA:BB:CC:11:22:33") == "AA:BB:CC:11:22:33"


@pytest.mark.parametrize("value", [None, "", "AA:BB:CC", "ZZ:BB:CC:11:22:33"])
def test_normalize_mac_rejects_malformed(value):
    with pytest.raises(InvalidIdentity):
        normalize_mac(value)


def test_placeholder_mac_roundtrip():
    mac = generate_placeholder_mac()
    assert is_placeholder_mac(mac)
    assert mac.startswith(settings.placeholder_mac_prefix)
    assert not is_placeholder_mac("AA:BB:CC:11:22:33")
    assert not is_placeholder_mac(None)


def test_clean_hostname_and_phone():
    assert clean_hostname("John's iPhone") == "johnsiphone"
    assert clean_hostname("Guest_9F2") == "guest_9f2"
    assert len(clean_hostname("x" * 80)) == settings.username_max_length
    assert normalize_phone("+254700000000") == "254700000000"
    assert normalize_phone("0700 000 000") == "254700000000"
    assert normalize_phone("") is None


def test_rule_order():
    assert [name for name, _ in REPORT_RULES] == [
        "pairing_token",
        "recent_partial",
        "exact_username",
        "fuzzy_username",
        "known_mac",
    ]
    assert [name for name, _ in HINT_RULES] == [
        "phone",
        "recent_partial",
        "exact_username",
        "fuzzy_username",
    ]


def test_placeholder_mac_report_is_ignored(db_session, subscriber, metrics):
    resolver = IdentityResolver(metrics=metrics)
    before = subscriber.mac_address

    result = resolver.resolve(db_session, subscriber.username, subscriber.mac_address)

    assert result.ignored is True
    assert result.subscriber is None
    db_session.refresh(subscriber)
    assert subscriber.mac_address == before
    assert subscriber.mac_is_temporary is True
    assert db_session.query(Subscriber).count() == 1
    assert metrics.events == [("identity", "ignored")]


def test_malformed_mac_report_is_rejected(db_session, subscriber):
    with pytest.raises(InvalidIdentity):
        identity_resolver.resolve(db_session, subscriber.username, "not-a-mac")


def test_connect_report_binds_real_mac_and_activates_session(
    db_session, make_subscriber, hour_plan
):
    guest = make_subscriber(username="guest_9f2")
    subscription = _activate(db_session, guest, hour_plan)
    pending = db_session.query(AccessSession).filter_by(subscription_id=subscription.id).one()
    assert pending.status == AccessSessionStatus.pending

    result = identity_resolver.resolve(
        db_session, "guest_9f2", "AA:BB:CC:11:22:33", ip="10.5.50.20"
    )

    assert result.rule == "recent_partial"
    assert result.mac_updated is True
    db_session.refresh(guest)
    assert guest.mac_address == "AA:BB:CC:11:22:33"
    assert guest.mac_is_temporary is False
    assert guest.last_ip == "10.5.50.20"
    db_session.refresh(pending)
    assert pending.status == AccessSessionStatus.active
    assert pending.connected_at is not None
    assert pending.mac_address == "AA:BB:CC:11:22:33"
    assert result.session_id == pending.id


def test_pairing_token_wins_over_hostname(db_session, make_subscriber):
    paired = make_subscriber(username="user_paired01")
    make_subscriber(username="laptop")
    identity_resolver.issue_pairing_token(db_session, paired.id)
    token = paired.pairing_token

    result = identity_resolver.resolve(
        db_session, "laptop", "AA:BB:CC:00:00:01", pairing_token=token.lower()
    )

    assert result.rule == "pairing_token"
    assert result.subscriber.id == paired.id
    db_session.refresh(paired)
    assert paired.pairing_token is None
    assert paired.pairing_token_expires_at is None


def test_expired_pairing_token_is_ignored(db_session, make_subscriber):
    paired = make_subscriber(username="user_paired02", created_at=utcnow() - timedelta(days=3))
    paired.pairing_token = "ABC234"
    paired.pairing_token_expires_at = utcnow() - timedelta(minutes=1)
    db_session.commit()

    result = identity_resolver.resolve(
        db_session, "tablet", "AA:BB:CC:00:00:02", pairing_token="ABC234"
    )

    assert result.rule == "created"
    assert result.subscriber.id != paired.id


def test_exact_username_matches_older_subscriber(db_session, make_subscriber):
    old = make_subscriber(username="kitchen-tv", created_at=utcnow() - timedelta(days=3))

    result = identity_resolver.resolve(db_session, "Kitchen-TV", "AA:BB:CC:00:00:03")

    assert result.rule == "exact_username"
    assert result.subscriber.id == old.id


def test_fuzzy_username_adopts_device_hostname(db_session, make_subscriber, hour_plan):
    candidate = make_subscriber(
        username="johns-iphone", created_at=utcnow() - timedelta(hours=2)
    )
    _activate(db_session, candidate, hour_plan)

    result = identity_resolver.resolve(db_session, "johns-iphone-13", "AA:BB:CC:00:00:04")

    assert result.rule == "fuzzy_username"
    assert result.subscriber.id == candidate.id
    db_session.refresh(candidate)
    assert candidate.username == "johns-iphone-13"
    # Live credentials follow the rename.
    assert db_session.query(RadCheck).filter_by(username="johns-iphone-13").count() == 1
    assert db_session.query(RadCheck).filter_by(username="johns-iphone").count() == 0


def test_fuzzy_username_skips_short_hostnames(db_session, make_subscriber):
    make_subscriber(username="abcdef", created_at=utcnow() - timedelta(hours=2))
    signal = DeviceSignal(hostname="abc")

    assert match_fuzzy_username(db_session, signal, utcnow()) is None


def test_unknown_device_creates_subscriber(db_session, metrics):
    resolver = IdentityResolver(metrics=metrics)

    result = resolver.resolve(db_session, "Living Room", "AA:BB:CC:00:00:05", ip="10.5.50.9")

    assert result.rule == "created"
    created = result.subscriber
    assert created.username == "livingroom"
    assert created.mac_address == "AA:BB:CC:00:00:05"
    assert created.mac_is_temporary is False
    assert created.device_name == "Living Room"
    assert len(created.secret) == 8
    assert result.session_id is None
    assert ("identity", "created") in metrics.events


def test_returning_device_matches_known_mac(db_session, make_subscriber):
    known = make_subscriber(
        username="user_known001",
        mac_address="AA:BB:CC:00:00:06",
        mac_is_temporary=False,
        created_at=utcnow() - timedelta(days=10),
    )

    result = identity_resolver.resolve(db_session, "android-5f1c", "AA:BB:CC:00:00:06")

    assert result.rule == "known_mac"
    assert result.subscriber.id == known.id
    assert result.mac_updated is False
    assert db_session.query(Subscriber).count() == 1


def test_resolve_hint_creates_then_matches_by_phone(db_session, metrics):
    resolver = IdentityResolver(metrics=metrics)

    created, rule = resolver.resolve_hint(db_session, phone="+254700000000")
    assert rule == "created"
    assert created.phone == "254700000000"
    assert created.mac_is_temporary is True
    assert is_placeholder_mac(created.mac_address)
    assert created.username.startswith("user_")

    again, rule = resolver.resolve_hint(db_session, phone="0700000000")
    assert rule == "phone"
    assert again.id == created.id
    assert ("identity", "hint_created") in metrics.events
    assert ("identity", "hint_phone") in metrics.events


def test_resolve_hint_uses_device_name(db_session):
    created, rule = identity_resolver.resolve_hint(db_session, device_name="Amina's Phone")
    assert rule == "created"
    assert created.username == "aminasphone"

    again, rule = identity_resolver.resolve_hint(db_session, device_name="aminasphone")
    assert again.id == created.id
    assert rule == "recent_partial"


def test_issue_pairing_token(db_session, subscriber):
    issued = identity_resolver.issue_pairing_token(db_session, subscriber.id)

    assert len(issued.pairing_token) == 6
    assert set(issued.pairing_token) <= set(PAIRING_TOKEN_ALPHABET)
    remaining = as_utc(issued.pairing_token_expires_at) - utcnow()
    assert timedelta(minutes=14) < remaining <= timedelta(
        minutes=settings.pairing_token_ttl_minutes
    )


@pytest.mark.parametrize("hostname", ["u", "us", "user", "user_"])
def test_short_hostname_does_not_claim_paid_synthetic_subscriber(
    db_session, hour_plan, hostname
):
    paid, _ = identity_resolver.resolve_hint(db_session, phone="+254711000000")
    subscription = _activate(db_session, paid, hour_plan)
    original_username = paid.username

    result = identity_resolver.resolve(db_session, hostname, "AA:BB:CC:DD:EE:01")

    assert result.rule == "created"
    assert result.subscriber.id != paid.id
    assert result.session_id is None
    db_session.refresh(paid)
    assert paid.username == original_username
    assert paid.mac_is_temporary is True
    pending = db_session.query(AccessSession).filter_by(subscription_id=subscription.id).one()
    assert pending.status == AccessSessionStatus.pending


def test_recent_partial_matches_synthetic_names_only_exactly(db_session, make_subscriber):
    synthetic = make_subscriber(username="user_7tnrpdd6")
    now = utcnow()

    assert match_recent_partial(db_session, DeviceSignal(hostname="user_7tnr"), now) is None
    assert (
        match_recent_partial(db_session, DeviceSignal(hostname="user_7tnrpdd6-phone"), now)
        is None
    )
    assert (
        match_recent_partial(db_session, DeviceSignal(hostname="user_7tnrpdd6"), now).id
        == synthetic.id
    )


def test_recent_partial_still_matches_by_phone(db_session, make_subscriber):
    paid = make_subscriber(username="user_ph0ne001", phone="254722000000")

    matched = match_recent_partial(
        db_session, DeviceSignal(hostname="u", phone="254722000000"), utcnow()
    )

    assert matched.id == paid.id


def test_rename_failure_still_binds_device(db_session, make_subscriber, hour_plan):
    paired = make_subscriber(username="user_rename01")
    subscription = _activate(db_session, paired, hour_plan)
    identity_resolver.issue_pairing_token(db_session, paired.id)
    token = paired.pairing_token

    def _unavailable(db, old_username, new_username):
        db.rollback()
        raise DownstreamUnavailable(operation="rename", username=old_username)

    with patch.object(radius_provisioner, "rename", side_effect=_unavailable):
        result = identity_resolver.resolve(
            db_session, "annas-laptop", "AA:BB:CC:00:00:41", pairing_token=token
        )

    assert result.rule == "pairing_token"
    assert result.subscriber.id == paired.id
    db_session.refresh(paired)
    assert paired.username == "user_rename01"
    assert paired.mac_address == "AA:BB:CC:00:00:41"
    assert paired.mac_is_temporary is False
    assert paired.pairing_token is None
    assert db_session.query(RadCheck).filter_by(username="user_rename01").count() == 1
    session = db_session.query(AccessSession).filter_by(subscription_id=subscription.id).one()
    assert session.status == AccessSessionStatus.active
