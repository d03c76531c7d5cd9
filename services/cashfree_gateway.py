"""
Cashfree PG client.

Thin wrapper over the Cashfree REST API (orders, payment links, refunds)
plus webhook signature verification. Every call is bounded by
``timeout`` seconds and every transport or upstream failure is raised as
``ExternalServiceError`` naming the operation that failed.
"""

import base64
import enum
import hashlib
import hmac
import logging
import time
import uuid

import requests

from services.errors import ExternalServiceError

logger = logging.getLogger(__name__)

BASE_URLS = {
    "sandbox": "https://sandbox.cashfree.com/pg",
    "production": "https://api.cashfree.com/pg",
}


class CashfreeOrderStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    PAID = "PAID"
    EXPIRED = "EXPIRED"
    TERMINATED = "TERMINATED"
    TERMINATION_REQUESTED = "TERMINATION_REQUESTED"
    CANCELLED = "CANCELLED"


class CashfreePaymentStatus(str, enum.Enum):
    SUCCESS = "SUCCESS"
    NOT_ATTEMPTED = "NOT_ATTEMPTED"
    FAILED = "FAILED"
    USER_DROPPED = "USER_DROPPED"
    VOID = "VOID"
    CANCELLED = "CANCELLED"
    PENDING = "PENDING"


class CashfreeRefundStatus(str, enum.Enum):
    SUCCESS = "SUCCESS"
    PENDING = "PENDING"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"
    ONHOLD = "ONHOLD"


class CashfreeWebhookType(str, enum.Enum):
    PAYMENT_SUCCESS = "PAYMENT_SUCCESS_WEBHOOK"
    PAYMENT_FAILED = "PAYMENT_FAILED_WEBHOOK"
    PAYMENT_USER_DROPPED = "PAYMENT_USER_DROPPED_WEBHOOK"
    PAYMENT_PENDING = "PAYMENT_PENDING_WEBHOOK"
    REFUND_STATUS = "REFUND_STATUS_WEBHOOK"


def _millis():
    return int(time.time() * 1000)


class CashfreeGateway:
    provider_id = "cashfree"

    def __init__(self, client_id, client_secret, environment="sandbox",
                 api_version="2023-08-01", timeout=30, http=None):
        self.client_id = client_id
        self.client_secret = client_secret
        self.environment = environment if environment in BASE_URLS else "sandbox"
        self.api_version = api_version
        self.timeout = timeout
        self.http = http or requests.Session()

    @property
    def base_url(self):
        return BASE_URLS[self.environment]

    # ---------- identifiers ----------
    @staticmethod
    def generate_order_id():
        return f"METRO_{_millis()}_{uuid.uuid4().hex[:8].upper()}"

    @staticmethod
    def generate_link_id():
        return f"LINK_{uuid.uuid4().hex.upper()}"

    @staticmethod
    def generate_refund_id():
        return f"REF_{_millis()}_{uuid.uuid4().hex[:8]}"

    # ---------- orders ----------
    def create_order(self, order_id, amount, currency, customer_details,
                     return_url=None, notify_url=None, note=None, tags=None, expiry_time=None):
        body = {
            "order_id": order_id,
            "order_amount": float(amount),
            "order_currency": currency,
            "customer_details": customer_details,
            "order_meta": {
                k: v for k, v in (("return_url", return_url), ("notify_url", notify_url)) if v
            },
        }
        if note:
            body["order_note"] = note
        if tags:
            # Cashfree only accepts string tag values
            body["order_tags"] = {k: str(v) for k, v in tags.items() if v is not None}
        if expiry_time:
            body["order_expiry_time"] = expiry_time
        return self._request("POST", "/orders", "create_order", json=body)

    def get_order(self, order_id):
        return self._request("GET", f"/orders/{order_id}", "get_order")

    def get_order_payments(self, order_id):
        return self._request("GET", f"/orders/{order_id}/payments", "get_order_payments") or []

    # ---------- payment links ----------
    def create_payment_link(self, link_id, amount, currency, purpose, customer_details,
                            expiry_time=None, notes=None, notify=True, return_url=None, notify_url=None):
        body = {
            "link_id": link_id,
            "link_amount": float(amount),
            "link_currency": currency,
            "link_purpose": purpose,
            "customer_details": customer_details,
            "link_notify": {"send_sms": bool(notify), "send_email": bool(notify)},
            "link_meta": {
                k: v for k, v in (("return_url", return_url), ("notify_url", notify_url)) if v
            },
        }
        if expiry_time:
            body["link_expiry_time"] = expiry_time
        if notes:
            body["link_notes"] = {k: str(v) for k, v in notes.items()}
        return self._request("POST", "/links", "create_payment_link", json=body)

    # ---------- refunds ----------
    def create_refund(self, order_id, refund_id, amount, note=None, speed="STANDARD"):
        body = {
            "refund_id": refund_id,
            "refund_amount": float(amount),
            "refund_speed": speed,
        }
        if note:
            body["refund_note"] = note
        return self._request("POST", f"/orders/{order_id}/refunds", "create_refund", json=body)

    def get_order_refunds(self, order_id):
        return self._request("GET", f"/orders/{order_id}/refunds", "get_order_refunds") or []

    # ---------- webhooks ----------
    def verify_webhook_signature(self, signature, raw_body: bytes, timestamp) -> bool:
        """
        Cashfree signs ``timestamp + raw body`` with HMAC-SHA256 keyed by the
        client secret and sends the base64 digest. The body must be the exact
        bytes received; a re-serialized payload will not verify.
        """
        if not signature or not timestamp or raw_body is None or not self.client_secret:
            return False
        if isinstance(raw_body, str):
            raw_body = raw_body.encode("utf-8")

        message = str(timestamp).encode("utf-8") + raw_body
        digest = hmac.new(self.client_secret.encode("utf-8"), message, hashlib.sha256).digest()
        expected = base64.b64encode(digest).decode("ascii")
        return hmac.compare_digest(expected, str(signature))

    def sign_webhook(self, raw_body: bytes, timestamp) -> str:
        digest = hmac.new(
            self.client_secret.encode("utf-8"),
            str(timestamp).encode("utf-8") + raw_body,
            hashlib.sha256,
        ).digest()
        return base64.b64encode(digest).decode("ascii")

    # ---------- transport ----------
    def _headers(self):
        return {
            "x-client-id": self.client_id or "",
            "x-client-secret": self.client_secret or "",
            "x-api-version": self.api_version,
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    def _request(self, method, path, operation, json=None):
        url = f"{self.base_url}{path}"
        try:
            response = self.http.request(method, url, json=json, headers=self._headers(), timeout=self.timeout)
        except requests.Timeout as exc:
            logger.error("Cashfree %s timed out after %ss", operation, self.timeout)
            raise ExternalServiceError(
                f"Payment gateway timed out during {operation}",
                operation=operation,
                upstream_message="timeout",
            ) from exc
        except requests.RequestException as exc:
            logger.error("Cashfree %s failed: %s", operation, exc)
            raise ExternalServiceError(
                f"Payment gateway unreachable during {operation}",
                operation=operation,
                upstream_message=str(exc),
            ) from exc

        if response.status_code >= 400:
            upstream = _upstream_message(response)
            logger.error("Cashfree %s returned %s: %s", operation, response.status_code, upstream)
            raise ExternalServiceError(
                f"Payment gateway rejected {operation}",
                operation=operation,
                upstream_message=upstream,
                upstream_status=response.status_code,
            )

        try:
            return response.json()
        except ValueError as exc:
            raise ExternalServiceError(
                f"Payment gateway sent an unreadable response to {operation}",
                operation=operation,
            ) from exc


def _upstream_message(response):
    try:
        data = response.json()
    except ValueError:
        return (response.text or "").strip()[:200] or f"HTTP {response.status_code}"
    if isinstance(data, dict):
        return data.get("message") or data.get("code") or f"HTTP {response.status_code}"
    return f"HTTP {response.status_code}"


def build_gateway(config):
    """Build the gateway client from a Flask config mapping."""
    return CashfreeGateway(
        client_id=config.get("CASHFREE_CLIENT_ID"),
        client_secret=config.get("CASHFREE_CLIENT_SECRET"),
        environment=config.get("CASHFREE_ENVIRONMENT", "sandbox"),
        api_version=config.get("CASHFREE_API_VERSION", "2023-08-01"),
        timeout=config.get("GATEWAY_TIMEOUT_SECONDS", 30),
    )
