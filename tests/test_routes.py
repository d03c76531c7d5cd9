from datetime import datetime, timedelta
from unittest.mock import Mock

import pytest
import requests

from conftest import payment_webhook
from models import db
from models.audit_log import AuditLog
from models.booking import Booking
from models.payment import PaymentOrder, PaymentWebhookEvent
from models.user import UserSession
from services.cashfree_gateway import CashfreeGateway


def _iso(dt):
    return dt.isoformat()


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.get_json() == {"status": "ok"}
    assert resp.headers["X-Frame-Options"] == "DENY"


def test_register_login_me(client):
    resp = client.post("/auth/register", json={"email": "Neha@Example.test", "password": "long-enough-1", "name": "Neha"})
    assert resp.status_code == 201

    dup = client.post("/auth/register", json={"email": "neha@example.test", "password": "long-enough-1"})
    assert dup.status_code == 409

    bad = client.post("/auth/login", json={"email": "neha@example.test", "password": "wrong-password"})
    assert bad.status_code == 401

    login = client.post("/auth/login", json={"email": "neha@example.test", "password": "long-enough-1"})
    assert login.status_code == 200
    token = login.get_json()["token"]

    me = client.get("/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert me.status_code == 200
    assert me.get_json()["email"] == "neha@example.test"
    assert me.get_json()["roles"] == ["USER"]

    client.post("/auth/logout", headers={"Authorization": f"Bearer {token}"})
    assert client.get("/auth/me", headers={"Authorization": f"Bearer {token}"}).status_code == 401


def test_register_rejects_short_password(client):
    resp = client.post("/auth/register", json={"email": "a@example.test", "password": "short"})
    assert resp.status_code == 400


def test_role_checks_answer_with_error_codes(client, user, auth_headers):
    anonymous = client.post("/pods", json={})
    assert anonymous.status_code == 401
    assert anonymous.get_json()["code"] == "authentication_required"

    customer = client.post("/pods", json={}, headers=auth_headers(user))
    assert customer.status_code == 403
    assert customer.get_json()["code"] == "unauthorized"
    assert "ADMIN" in customer.get_json()["error"]


def test_session_liveness(app, user):
    now = datetime(2026, 11, 2, 12, 0)
    sess = UserSession(
        user_id=user.id,
        token_hash="x" * 64,
        created_at=now - timedelta(hours=1),
        last_seen_at=now - timedelta(minutes=5),
        expires_at=now + timedelta(hours=7),
    )

    assert sess.is_live(now, idle_seconds=1200)
    assert not sess.is_live(now, idle_seconds=300)
    assert not sess.is_live(now + timedelta(hours=8), idle_seconds=10 ** 6)
    sess.revoked = True
    assert not sess.is_live(now, idle_seconds=1200)


def test_cookie_session_needs_csrf_for_writes(client, user, pod, tomorrow):
    login = client.post("/auth/login", json={"email": user.email, "password": "correct-horse-1"})
    assert login.status_code == 200

    body = {"pod_id": pod.id, "check_in": _iso(tomorrow), "check_out": _iso(tomorrow + timedelta(hours=1))}
    assert client.post("/bookings", json=body).status_code == 403

    csrf = client.get_cookie("csrf_token").value
    resp = client.post("/bookings", json=body, headers={"X-CSRF-Token": csrf})
    assert resp.status_code == 201


def test_booking_endpoints(client, make_user, admin, pod, tomorrow, auth_headers):
    owner, other = make_user(), make_user()
    headers = auth_headers(owner)
    body = {
        "pod_id": pod.id,
        "check_in": _iso(tomorrow + timedelta(hours=18)),
        "check_out": _iso(tomorrow + timedelta(hours=20)),
    }

    created = client.post("/bookings", json=body, headers=headers)
    assert created.status_code == 201
    booking = created.get_json()
    assert booking["status"] == "pending"
    assert booking["total_price"] == "200.00"

    clash = client.post("/bookings", json=body, headers=auth_headers(other))
    assert clash.status_code == 409
    assert clash.get_json()["code"] == "slot_conflict"
    assert clash.get_json()["details"]["conflicting_booking_ids"] == [booking["id"]]

    assert client.get(f"/bookings/{booking['id']}", headers=headers).status_code == 200
    assert client.get(f"/bookings/{booking['id']}", headers=auth_headers(other)).status_code == 404
    assert client.get(f"/bookings/{booking['id']}", headers=auth_headers(admin)).status_code == 200

    mine = client.get("/bookings/me", headers=headers).get_json()
    assert [b["id"] for b in mine] == [booking["id"]]

    assert client.post(f"/bookings/{booking['id']}/confirm", headers=headers).status_code == 403
    confirmed = client.post(f"/bookings/{booking['id']}/confirm", headers=auth_headers(admin))
    assert confirmed.get_json()["status"] == "confirmed"

    denied = client.post(f"/bookings/{booking['id']}/cancel", headers=auth_headers(other))
    assert denied.status_code == 403
    assert denied.get_json()["code"] == "unauthorized"

    cancelled = client.post(f"/bookings/{booking['id']}/cancel", json={"reason": "sick"}, headers=headers)
    assert cancelled.status_code == 200
    assert cancelled.get_json()["access_code"]["status"] == "revoked"

    actions = {row.action for row in AuditLog.query.all()}
    assert {"BOOKING_CREATE", "BOOKING_CONFIRM", "BOOKING_CANCEL"} <= actions


def test_booking_validation_errors(client, user, pod, auth_headers):
    headers = auth_headers(user)

    assert client.post("/bookings", json={}, headers=headers).status_code == 400
    resp = client.post(
        "/bookings",
        json={"pod_id": pod.id, "check_in": "tomorrow", "check_out": "2030-01-01T10:00:00"},
        headers=headers,
    )
    assert resp.status_code == 400
    assert resp.get_json()["code"] == "invalid_input"
    assert client.post("/bookings", json={"pod_id": 1}).status_code == 401


def test_pod_admin_and_search(client, user, admin, auth_headers, tomorrow):
    payload = {
        "pod_number": "MG-ROAD-01",
        "price_per_hour": "150.00",
        "latitude": 12.9756,
        "longitude": 77.6050,
        "max_capacity": 2,
    }
    assert client.post("/pods", json=payload, headers=auth_headers(user)).status_code == 403

    created = client.post("/pods", json=payload, headers=auth_headers(admin))
    assert created.status_code == 201
    pod_id = created.get_json()["id"]

    far = dict(payload, pod_number="MYSORE-01", latitude=12.2958, longitude=76.6394)
    client.post("/pods", json=far, headers=auth_headers(admin))

    found = client.get("/pods/search", query_string={"lat": 12.9716, "lng": 77.5946, "range_km": 5}).get_json()
    assert [p["pod_number"] for p in found] == ["MG-ROAD-01"]
    assert 0 < found[0]["distance_km"] < 5

    patched = client.patch(f"/pods/{pod_id}", json={"status": "maintenance"}, headers=auth_headers(admin))
    assert patched.get_json()["status"] == "maintenance"
    assert client.get("/pods/search", query_string={"lat": 12.9716, "lng": 77.5946}).get_json() == []

    assert client.get("/pods/search", query_string={"lat": 91, "lng": 0}).status_code == 400
    assert client.get("/pods/9999").status_code == 404


def test_search_hides_booked_pods(client, user, pod, auth_headers, tomorrow):
    window = {"check_in": _iso(tomorrow), "check_out": _iso(tomorrow + timedelta(hours=2))}
    client.post("/bookings", json=dict(window, pod_id=pod.id), headers=auth_headers(user))

    busy = client.get("/pods/search", query_string=dict(window, lat=pod.latitude, lng=pod.longitude)).get_json()
    assert busy == []

    later = {"check_in": _iso(tomorrow + timedelta(hours=2)), "check_out": _iso(tomorrow + timedelta(hours=3))}
    free = client.get("/pods/search", query_string=dict(later, lat=pod.latitude, lng=pod.longitude)).get_json()
    assert [p["id"] for p in free] == [pod.id]


def test_payment_flow_over_http(client, user, admin, pod, tomorrow, auth_headers, customer, signed_webhook):
    headers = auth_headers(user)
    booking = client.post(
        "/bookings",
        json={"pod_id": pod.id, "check_in": _iso(tomorrow), "check_out": _iso(tomorrow + timedelta(hours=2))},
        headers=headers,
    ).get_json()

    created = client.post(
        "/payments/booking",
        json={"booking_id": booking["id"], "amount": 200, "customer_details": customer},
        headers=headers,
    )
    assert created.status_code == 201
    order_id = created.get_json()["order_id"]

    raw, signature, timestamp = signed_webhook(payment_webhook(order_id, 31337, "SUCCESS", 200))
    hook = client.post(
        "/payments/webhook",
        data=raw,
        content_type="application/json",
        headers={"x-webhook-signature": signature, "x-webhook-timestamp": timestamp},
    )
    assert hook.status_code == 200
    assert hook.get_json()["received"] is True
    assert hook.get_json()["order_status"] == "paid"
    assert db.session.get(Booking, booking["id"]).status == "confirmed"

    history = client.get("/payments/history", headers=headers).get_json()
    assert history["pagination"]["total"] == 1

    by_booking = client.get(f"/payments/booking/{booking['id']}", headers=headers).get_json()
    assert by_booking["total_paid"] == "200.00"

    assert client.post("/payments/refund", json={"order_id": order_id, "amount": 50}, headers=headers).status_code == 403
    refund = client.post("/payments/refund", json={"order_id": order_id, "amount": 50}, headers=auth_headers(admin))
    assert refund.status_code == 201
    assert refund.get_json()["order_status"] == "partially_refunded"

    too_much = client.post("/payments/refund", json={"order_id": order_id, "amount": 151}, headers=auth_headers(admin))
    assert too_much.status_code == 422
    assert too_much.get_json()["code"] == "refund_exceeds_eligible"


def test_webhook_with_bad_signature(client):
    resp = client.post(
        "/payments/webhook",
        data=b'{"type":"PAYMENT_SUCCESS_WEBHOOK"}',
        content_type="application/json",
        headers={"x-webhook-signature": "bm9wZQ==", "x-webhook-timestamp": "1760860800"},
    )
    assert resp.status_code == 401
    assert resp.get_json()["code"] == "invalid_signature"
    assert PaymentWebhookEvent.query.count() == 0
    assert AuditLog.query.filter_by(action="WEBHOOK_PROCESSED").count() == 0


def test_payment_gateway_outage_maps_to_502(client, user, pod, tomorrow, auth_headers, customer, gateway, gateway_error):
    headers = auth_headers(user)
    booking = client.post(
        "/bookings",
        json={"pod_id": pod.id, "check_in": _iso(tomorrow), "check_out": _iso(tomorrow + timedelta(hours=1))},
        headers=headers,
    ).get_json()
    gateway.fail_with = gateway_error()

    resp = client.post(
        "/payments/booking",
        json={"booking_id": booking["id"], "amount": 100, "customer_details": customer},
        headers=headers,
    )

    assert resp.status_code == 502
    assert resp.get_json()["code"] == "payment_creation_failed"


def _live_gateway(app, http):
    gateway = CashfreeGateway("test-client", app.config["CASHFREE_CLIENT_SECRET"], http=http)
    app.extensions["payment_gateway"] = gateway
    return gateway


def test_gateway_error_text_stays_out_of_responses(app, client, user, pod, tomorrow, auth_headers, customer):
    headers = auth_headers(user)
    booking = client.post(
        "/bookings",
        json={"pod_id": pod.id, "check_in": _iso(tomorrow), "check_out": _iso(tomorrow + timedelta(hours=1))},
        headers=headers,
    ).get_json()
    order_id = client.post(
        "/payments/booking",
        json={"booking_id": booking["id"], "amount": 100, "customer_details": customer},
        headers=headers,
    ).get_json()["order_id"]

    http = Mock(spec=requests.Session)
    _live_gateway(app, http)

    http.request.side_effect = requests.ConnectionError(
        "HTTPSConnectionPool(host='sandbox.cashfree.com'): internal-proxy 10.0.3.7:3128 refused"
    )
    resp = client.post(
        "/payments/booking",
        json={"booking_id": booking["id"], "amount": 100, "customer_details": customer},
        headers=headers,
    )
    assert resp.status_code == 502
    assert resp.get_json()["details"] == {"operation": "create_order"}
    assert "10.0.3.7" not in resp.get_data(as_text=True)
    assert "internal-proxy" not in resp.get_data(as_text=True)

    rejected = Mock(status_code=401, text="")
    rejected.json.return_value = {"message": "authentication Failed: x-client-secret mismatch for app 12345"}
    http.request.side_effect = None
    http.request.return_value = rejected
    resp = client.get(f"/payments/status/{order_id}", headers=headers)
    assert resp.status_code == 502
    assert resp.get_json()["code"] == "external_service_error"
    assert resp.get_json()["details"] == {"operation": "get_order"}
    assert "x-client-secret" not in resp.get_data(as_text=True)


@pytest.mark.parametrize("amount", ["1e30", "10000000000"])
def test_oversized_payment_amount_is_rejected(client, user, pod, tomorrow, auth_headers, customer, gateway, amount):
    headers = auth_headers(user)
    booking = client.post(
        "/bookings",
        json={"pod_id": pod.id, "check_in": _iso(tomorrow), "check_out": _iso(tomorrow + timedelta(hours=1))},
        headers=headers,
    ).get_json()

    resp = client.post(
        "/payments/booking",
        json={"booking_id": booking["id"], "amount": amount, "customer_details": customer},
        headers=headers,
    )

    assert resp.status_code == 400
    assert resp.get_json()["code"] == "invalid_input"
    assert gateway.calls == []
    assert PaymentOrder.query.count() == 0
