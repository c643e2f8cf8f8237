import pytest

from app.db import get_db
from app.main import app
from app.models import RadCheck, Subscription, SubscriptionStatus, Voucher
from app.services.entitlements import entitlements


def _granted(db_session, subscriber, plan, now=None):
    subscription = entitlements.activate(db_session, subscriber.id, plan.id, now=now)
    entitlements.grant(db_session, subscriber, subscription)
    return subscription


@pytest.fixture()
def db_calls(client):
    calls = []

    def _tracking_db():
        calls.append(1)
        yield None

    app.dependency_overrides[get_db] = _tracking_db
    return calls


@pytest.mark.parametrize(
    "method, path",
    [
        ("get", "/api/v1/router/sync"),
        ("get", "/api/v1/router/sync.txt"),
        ("get", "/api/v1/router/mac-bypass"),
        ("get", "/api/v1/router/expired"),
        ("post", "/api/v1/identity/events"),
    ],
)
@pytest.mark.parametrize("headers", [{}, {"X-API-Key": "wrong"}])
def test_router_endpoints_reject_bad_key_before_touching_data(
    client, db_calls, method, path, headers
):
    resp = getattr(client, method)(path, headers=headers)

    assert resp.status_code == 401
    assert resp.json()["code"] == "unauthorized"
    assert db_calls == []


def test_router_sync_json(client, router_headers, db_session, subscriber, hour_plan):
    _granted(db_session, subscriber, hour_plan)

    resp = client.get("/api/v1/router/sync", headers=router_headers)

    assert resp.status_code == 200
    body = resp.json()
    assert body["count"] == 1
    assert body["users"][0]["username"] == subscriber.username
    assert body["users"][0]["rate_limit"] == "5M/5M"


def test_router_sync_text(client, router_headers, db_session, subscriber, hour_plan):
    _granted(db_session, subscriber, hour_plan)

    resp = client.get("/api/v1/router/sync.txt", headers=router_headers)

    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/plain")
    assert resp.text.startswith(f"{subscriber.username};{subscriber.secret};1-hour;")


def test_router_expired_window_bounds(client, router_headers):
    resp = client.get(
        "/api/v1/router/expired", params={"window_minutes": 0}, headers=router_headers
    )
    assert resp.status_code == 422


def test_connect_event_ignores_placeholder_mac(client, router_headers, subscriber):
    resp = client.post(
        "/api/v1/router/events/connect",
        json={"identifier": subscriber.username, "detected_mac": subscriber.mac_address},
        headers=router_headers,
    )

    assert resp.status_code == 200
    assert resp.json()["ignored"] is True
    assert resp.json()["subscriber_id"] is None


def test_connect_event_binds_device(client, router_headers, db_session, make_subscriber, hour_plan):
    guest = make_subscriber(username="guest_9f2")
    _granted(db_session, guest, hour_plan)

    resp = client.post(
        "/api/v1/router/events/connect",
        json={"identifier": "guest_9f2", "detected_mac": "AA:BB:CC:11:22:33", "ip": "10.5.50.7"},
        headers=router_headers,
    )

    assert resp.status_code == 200
    body = resp.json()
    assert body["rule"] == "recent_partial"
    assert body["session_status"] == "active"

    resp = client.post(
        "/api/v1/router/events/disconnect",
        json={"mac_address": "AA:BB:CC:11:22:33"},
        headers=router_headers,
    )
    assert resp.json() == {"closed": 1}


def test_identity_event_rejects_malformed_mac(client, router_headers):
    resp = client.post(
        "/api/v1/identity/events",
        json={"identifier": "laptop", "detected_mac": "not-a-mac"},
        headers=router_headers,
    )

    assert resp.status_code == 422
    assert resp.json()["code"] == "invalid_identity"


def test_identity_event_creates_subscriber(client, router_headers):
    resp = client.post(
        "/api/v1/identity/events",
        json={"identifier": "Living Room", "detected_mac": "aa:bb:cc:00:00:30"},
        headers=router_headers,
    )

    assert resp.status_code == 200
    assert resp.json()["rule"] == "created"
    assert resp.json()["username"] == "livingroom"


def test_voucher_redeem_then_reuse(client, db_session, hour_plan):
    db_session.add(Voucher(code="ABCD-EFGH-JKLM", plan_id=hour_plan.id))
    db_session.commit()

    resp = client.post(
        "/api/v1/vouchers/redeem",
        json={"code": "abcd-efgh-jklm", "phone": "+254700000000"},
    )

    assert resp.status_code == 200
    body = resp.json()
    assert body["subscription"]["origin"] == "voucher"
    assert body["subscription"]["status"] == "active"
    assert body["provisioned"] is True
    assert len(body["pairing_token"]) == 6

    again = client.post("/api/v1/vouchers/redeem", json={"code": "ABCD-EFGH-JKLM"})
    assert again.status_code == 409
    assert again.json()["code"] == "voucher_already_used"


def test_voucher_check_unknown(client):
    resp = client.get("/api/v1/vouchers/check/NOPE-NOPE-NOPE")

    assert resp.status_code == 404
    assert resp.json()["code"] == "voucher_not_found"


def test_voucher_admin_endpoints(client, admin_headers, hour_plan):
    assert client.post("/api/v1/vouchers", json={"plan_id": hour_plan.id}).status_code == 401

    created = client.post(
        "/api/v1/vouchers",
        json={"plan_id": hour_plan.id, "quantity": 3},
        headers=admin_headers,
    )
    assert created.status_code == 201
    assert created.json()["count"] == 3

    listing = client.get("/api/v1/vouchers", params={"status": "unused"}, headers=admin_headers)
    assert listing.status_code == 200
    assert listing.json()["count"] == 3

    voucher_id = created.json()["items"][0]["id"]
    deleted = client.delete(f"/api/v1/vouchers/{voucher_id}", headers=admin_headers)
    assert deleted.status_code == 204

    expired = client.post("/api/v1/vouchers/expire", headers=admin_headers)
    assert expired.json() == {"expired": 0}


def test_payment_flow(client, admin_headers, db_session, hour_plan):
    created = client.post(
        "/api/v1/payments",
        json={"reference": "PAY-100", "plan_id": hour_plan.id, "phone": "0700000000"},
        headers=admin_headers,
    )
    assert created.status_code == 201
    assert created.json()["status"] == "pending"

    for _ in range(2):
        resp = client.post(
            "/api/v1/payments/confirm",
            json={"reference": "PAY-100", "result_code": 0, "receipt_code": "QWE123RTY"},
            headers=admin_headers,
        )
        assert resp.status_code == 200

    assert resp.json()["duplicate"] is True
    assert db_session.query(Subscription).filter(Subscription.payment_id.isnot(None)).count() == 1


def test_payment_lookup_endpoints(client, admin_headers, hour_plan):
    client.post(
        "/api/v1/payments",
        json={"reference": "PAY-200", "plan_id": hour_plan.id, "phone": "0711111111"},
        headers=admin_headers,
    )

    assert client.get("/api/v1/payments").status_code == 401

    listing = client.get("/api/v1/payments", params={"status": "pending"}, headers=admin_headers)
    assert listing.status_code == 200
    assert listing.json()["count"] == 1
    assert listing.json()["items"][0]["reference"] == "PAY-200"

    detail = client.get("/api/v1/payments/PAY-200", headers=admin_headers)
    assert detail.status_code == 200
    assert detail.json()["status"] == "pending"
    assert detail.json()["plan_id"] == hour_plan.id

    missing = client.get("/api/v1/payments/PAY-404", headers=admin_headers)
    assert missing.status_code == 404
    assert missing.json()["code"] == "payment_not_found"


def test_subscription_admin_endpoints(client, admin_headers, db_session, subscriber, hour_plan):
    granted = client.post(
        "/api/v1/subscriptions",
        json={"subscriber_id": subscriber.id, "plan_id": hour_plan.id},
        headers=admin_headers,
    )
    assert granted.status_code == 201
    assert granted.json()["origin"] == "admin"
    subscription_id = granted.json()["id"]
    assert db_session.query(RadCheck).filter_by(username=subscriber.username).count() == 1

    current = client.get(f"/api/v1/subscriptions/current/{subscriber.id}", headers=admin_headers)
    assert current.json()["plan_name"] == "1 Hour"

    expired = client.post(f"/api/v1/subscriptions/{subscription_id}/expire", headers=admin_headers)
    assert expired.status_code == 200
    assert expired.json()["status"] == "expired"
    assert db_session.query(RadCheck).filter_by(username=subscriber.username).count() == 0

    missing = client.get("/api/v1/subscriptions/999999", headers=admin_headers)
    assert missing.status_code == 404
    assert missing.json()["code"] == "subscription_not_found"


def test_expire_sweep_endpoint(client, admin_headers, db_session, subscriber, hour_plan, lapsed_start):
    lapsed = _granted(db_session, subscriber, hour_plan, now=lapsed_start)

    resp = client.post("/api/v1/subscriptions/expire-sweep", headers=admin_headers)

    assert resp.status_code == 200
    assert resp.json()["expired"] == 1
    db_session.refresh(lapsed)
    assert lapsed.status == SubscriptionStatus.expired


def test_radius_admin_endpoints(client, admin_headers, db_session, subscriber, hour_plan):
    _granted(db_session, subscriber, hour_plan)

    stats = client.get("/api/v1/radius/stats", headers=admin_headers)
    assert stats.json() == {"users": 1, "check_rows": 1, "reply_rows": 2, "active_subscriptions": 1}

    user = client.get(f"/api/v1/radius/users/{subscriber.username}", headers=admin_headers)
    assert user.status_code == 200
    assert user.json()["check"][0]["op"] == ":="

    override = client.put(
        f"/api/v1/radius/subscribers/{subscriber.id}/rate-limit",
        json={"rate_limit": "2M/2M"},
        headers=admin_headers,
    )
    assert override.json()["updated"] is True

    removed = client.delete(f"/api/v1/radius/users/{subscriber.username}", headers=admin_headers)
    assert removed.json() == {"username": subscriber.username, "removed": 1}

    restored = client.post(
        f"/api/v1/radius/subscribers/{subscriber.id}/provision", headers=admin_headers
    )
    assert restored.status_code == 200
    assert db_session.query(RadCheck).filter_by(username=subscriber.username).count() == 1


def test_radius_session_listing(
    client, admin_headers, router_headers, db_session, make_subscriber, hour_plan
):
    guest = make_subscriber(username="guest_9f2")
    _granted(db_session, guest, hour_plan)

    open_sessions = client.get("/api/v1/radius/sessions", headers=admin_headers)
    assert open_sessions.json()["count"] == 1
    assert open_sessions.json()["items"][0]["status"] == "pending"
    assert client.get("/api/v1/radius/sessions/history", headers=admin_headers).json()["count"] == 0

    client.post(
        "/api/v1/router/events/connect",
        json={"identifier": "guest_9f2", "detected_mac": "AA:BB:CC:11:22:44"},
        headers=router_headers,
    )
    client.post(
        "/api/v1/router/events/disconnect",
        json={"mac_address": "AA:BB:CC:11:22:44"},
        headers=router_headers,
    )

    assert client.get("/api/v1/radius/sessions", headers=admin_headers).json()["count"] == 0
    history = client.get(
        "/api/v1/radius/sessions/history",
        params={"subscriber_id": guest.id},
        headers=admin_headers,
    )
    assert history.status_code == 200
    closed = history.json()["items"]
    assert len(closed) == 1
    assert closed[0]["status"] == "inactive"
    assert closed[0]["mac_address"] == "AA:BB:CC:11:22:44"
    assert closed[0]["duration_seconds"] is not None


def test_subscriber_admin_endpoints(client, admin_headers, subscriber):
    listing = client.get("/api/v1/subscribers", params={"search": "user_test"}, headers=admin_headers)
    assert listing.json()["count"] == 1

    blocked = client.post(f"/api/v1/subscribers/{subscriber.id}/block", headers=admin_headers)
    assert blocked.json()["status"] == "blocked"

    token = client.post(f"/api/v1/subscribers/{subscriber.id}/pairing-token", headers=admin_headers)
    assert len(token.json()["pairing_token"]) == 6


def test_admin_endpoints_reject_router_key(client, router_headers):
    resp = client.get("/api/v1/subscribers", headers={"X-Admin-Key": router_headers["X-API-Key"]})
    assert resp.status_code == 401


def test_health_and_metrics(client):
    assert client.get("/health").json() == {"status": "ok"}

    resp = client.get("/metrics")
    assert resp.status_code == 200
    assert "http_requests_total" in resp.text

