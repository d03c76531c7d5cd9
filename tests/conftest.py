import json
from datetime import timedelta

import pytest

from app import create_app
from config import TestConfig
from models import db
from models.db import utcnow
from models.pod import Pod
from models.user import Role, User
from security.password import hash_password
from security.session import create_session
from services.cashfree_gateway import CashfreeGateway
from services.errors import ExternalServiceError

WEBHOOK_TIMESTAMP = "1760860800"


class FakeGateway(CashfreeGateway):
    """
    Cashfree client with the network calls replaced by canned answers.
    Signing and verification are the real ones, keyed by the test secret.
    """

    def __init__(self, client_secret):
        super().__init__("test-client", client_secret, http=object())
        self.calls = []
        self.fail_with = None
        self.order_status = "ACTIVE"
        self.refund_status = "PENDING"
        self.live_order = {}
        self.live_payments = []
        self.live_refunds = []

    def _maybe_fail(self, operation):
        if self.fail_with is not None:
            raise self.fail_with
        self.calls.append(operation)

    def create_order(self, order_id, amount, currency, customer_details, **kwargs):
        self._maybe_fail("create_order")
        return {
            "cf_order_id": 900000 + len(self.calls),
            "order_id": order_id,
            "order_amount": float(amount),
            "order_currency": currency,
            "order_status": self.order_status,
            "payment_session_id": f"session_{order_id}",
            "order_expiry_time": "2030-01-01T00:00:00+05:30",
        }

    def get_order(self, order_id):
        self._maybe_fail("get_order")
        return dict({"order_id": order_id, "order_status": self.order_status}, **self.live_order)

    def get_order_payments(self, order_id):
        self._maybe_fail("get_order_payments")
        return list(self.live_payments)

    def get_order_refunds(self, order_id):
        self._maybe_fail("get_order_refunds")
        return list(self.live_refunds)

    def create_payment_link(self, link_id, amount, currency, purpose, customer_details, **kwargs):
        self._maybe_fail("create_payment_link")
        return {
            "link_id": link_id,
            "link_url": f"https://payments.example.test/{link_id}",
            "link_status": "ACTIVE",
        }

    def create_refund(self, order_id, refund_id, amount, note=None, speed="STANDARD"):
        self._maybe_fail("create_refund")
        return {
            "cf_refund_id": f"cf_{refund_id}",
            "refund_id": refund_id,
            "order_id": order_id,
            "refund_amount": float(amount),
            "refund_status": self.refund_status,
        }


@pytest.fixture
def app(tmp_path):
    app = create_app(TestConfig, {"SQLALCHEMY_DATABASE_URI": f"sqlite:///{tmp_path / 'podslot-test.db'}"})
    app.extensions["payment_gateway"] = FakeGateway(app.config["CASHFREE_CLIENT_SECRET"])

    ctx = app.app_context()
    ctx.push()
    yield app
    db.session.remove()
    db.drop_all()
    db.engine.dispose()
    ctx.pop()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def gateway(app):
    return app.extensions["payment_gateway"]


@pytest.fixture
def make_user(app):
    counter = {"n": 0}

    def _make(email=None, password="correct-horse-1", roles=("USER",)):
        counter["n"] += 1
        user = User(
            email=email or f"user{counter['n']}@example.test",
            password_hash=hash_password(password),
            name=f"User {counter['n']}",
            phone_number="9876543210",
        )
        for name in roles:
            user.roles.append(Role.query.filter_by(name=name).one())
        db.session.add(user)
        db.session.commit()
        return user

    return _make


@pytest.fixture
def user(make_user):
    return make_user()


@pytest.fixture
def admin(make_user):
    return make_user(email="admin@example.test", roles=("USER", "ADMIN"))


@pytest.fixture
def make_pod(app):
    counter = {"n": 0}

    def _make(price_per_hour="100.00", **fields):
        counter["n"] += 1
        fields.setdefault("pod_number", f"POD-{counter['n']:03d}")
        fields.setdefault("latitude", 12.9716)
        fields.setdefault("longitude", 77.5946)
        pod = Pod(price_per_hour=price_per_hour, **fields)
        db.session.add(pod)
        db.session.commit()
        return pod

    return _make


@pytest.fixture
def pod(make_pod):
    return make_pod()


@pytest.fixture
def tomorrow():
    """Top of the hour, one day ahead, naive UTC."""
    return utcnow().replace(minute=0, second=0, microsecond=0) + timedelta(days=1)


@pytest.fixture
def auth_headers(app):
    def _headers(user):
        return {"Authorization": f"Bearer {create_session(user.id)}"}

    return _headers


@pytest.fixture
def customer():
    return {
        "customer_name": "Asha Rao",
        "customer_email": "asha@example.test",
        "customer_phone": "9876543210",
    }


@pytest.fixture
def signed_webhook(gateway):
    """Serialize a payload and sign it the way Cashfree does."""

    def _sign(payload, timestamp=WEBHOOK_TIMESTAMP):
        raw = json.dumps(payload).encode("utf-8")
        return raw, gateway.sign_webhook(raw, timestamp), timestamp

    return _sign


def payment_webhook(order_id, cf_payment_id, status="SUCCESS", amount=500, event_type=None):
    event_type = event_type or {
        "SUCCESS": "PAYMENT_SUCCESS_WEBHOOK",
        "FAILED": "PAYMENT_FAILED_WEBHOOK",
        "USER_DROPPED": "PAYMENT_USER_DROPPED_WEBHOOK",
        "PENDING": "PAYMENT_PENDING_WEBHOOK",
    }[status]
    return {
        "type": event_type,
        "event_time": "2026-10-19T12:00:00+05:30",
        "data": {
            "order": {"order_id": order_id, "order_amount": amount, "order_currency": "INR"},
            "payment": {
                "cf_payment_id": cf_payment_id,
                "payment_status": status,
                "payment_amount": amount,
                "payment_currency": "INR",
                "payment_group": "upi",
                "payment_method": {"upi": {"upi_id": "asha@upi"}},
                "bank_reference": "BR123",
                "payment_time": "2026-10-19T12:00:00+05:30",
            },
        },
    }


def refund_webhook(order_id, refund_id, status="SUCCESS"):
    return {
        "type": "REFUND_STATUS_WEBHOOK",
        "data": {
            "refund": {
                "refund_id": refund_id,
                "order_id": order_id,
                "cf_refund_id": f"cf_{refund_id}",
                "refund_status": status,
                "refund_arn": "ARN0001",
                "status_description": "Refund processed" if status == "SUCCESS" else "Bank rejected",
            }
        },
    }


@pytest.fixture
def gateway_error():
    def _error(operation="create_order"):
        return ExternalServiceError("upstream broke", operation=operation, upstream_message="HTTP 500")

    return _error
