import enum
from dataclasses import dataclass, field
from decimal import Decimal

from models.db import db, utcnow


class OrderStatus(str, enum.Enum):
    CREATED = "created"
    ACTIVE = "active"
    PAID = "paid"
    EXPIRED = "expired"
    CANCELLED = "cancelled"
    PARTIALLY_REFUNDED = "partially_refunded"
    FULLY_REFUNDED = "fully_refunded"


class PaymentStatus(str, enum.Enum):
    INITIATED = "initiated"
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"
    TIMEOUT = "timeout"
    USER_DROPPED = "user_dropped"


class PaymentMethod(str, enum.Enum):
    UPI = "upi"
    CARD = "card"
    NETBANKING = "netbanking"
    WALLET = "wallet"
    EMI = "emi"
    CARDLESS_EMI = "cardless_emi"
    PAYLATER = "paylater"
    BANK_TRANSFER = "bank_transfer"
    CASH = "cash"
    OTHER = "other"


class RefundStatus(str, enum.Enum):
    INITIATED = "initiated"
    PENDING = "pending"
    PROCESSED = "processed"
    SUCCESSFUL = "successful"
    FAILED = "failed"
    CANCELLED = "cancelled"


class RefundType(str, enum.Enum):
    FULL = "full"
    PARTIAL = "partial"
    CANCELLATION = "cancellation"
    DISPUTE = "dispute"
    GOODWILL = "goodwill"


class LinkStatus(str, enum.Enum):
    ACTIVE = "active"
    PAID = "paid"
    EXPIRED = "expired"
    CANCELLED = "cancelled"
    INACTIVE = "inactive"


class WebhookEventStatus(str, enum.Enum):
    RECEIVED = "received"
    PROCESSED = "processed"
    FAILED = "failed"


# statuses an order can only reach once money has been captured
PAID_FAMILY = (
    OrderStatus.PAID.value,
    OrderStatus.PARTIALLY_REFUNDED.value,
    OrderStatus.FULLY_REFUNDED.value,
)

# refunds in these states no longer count against the refundable balance
RELEASED_REFUND_STATUSES = (
    RefundStatus.FAILED.value,
    RefundStatus.CANCELLED.value,
)


@dataclass
class OrderTags:
    """Recognized order tag keys. Anything else rides along in ``extra``."""

    booking_id: int = None
    user_id: int = None
    source: str = None
    extra: dict = field(default_factory=dict)

    def to_dict(self):
        out = dict(self.extra)
        if self.booking_id is not None:
            out["booking_id"] = self.booking_id
        if self.user_id is not None:
            out["user_id"] = self.user_id
        if self.source:
            out["source"] = self.source
        return out

    @classmethod
    def from_dict(cls, data):
        data = dict(data or {})
        booking_id = data.pop("booking_id", None)
        user_id = data.pop("user_id", None)
        source = data.pop("source", None)
        return cls(
            booking_id=_maybe_int(booking_id),
            user_id=_maybe_int(user_id),
            source=source,
            extra=data,
        )


def _maybe_int(value):
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _money(value):
    return str(value) if value is not None else None


class PaymentProvider(db.Model):
    __tablename__ = "payment_providers"

    id = db.Column(db.Integer, primary_key=True)
    provider_id = db.Column(db.String(40), unique=True, nullable=False)  # e.g. cashfree
    provider_name = db.Column(db.String(80), nullable=False)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    is_default = db.Column(db.Boolean, default=False, nullable=False)
    supported_currencies = db.Column(db.JSON, nullable=True)

    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    def summary(self):
        return {"provider_id": self.provider_id, "provider_name": self.provider_name}


class PaymentOrder(db.Model):
    __tablename__ = "payment_orders"

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.String(64), unique=True, nullable=False, index=True)
    internal_order_id = db.Column(db.String(36), unique=True, nullable=False)

    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    booking_id = db.Column(db.Integer, db.ForeignKey("bookings.id"), nullable=True, index=True)
    provider_id = db.Column(db.String(40), db.ForeignKey("payment_providers.provider_id"), nullable=False)

    amount = db.Column(db.Numeric(12, 2), nullable=False)
    currency = db.Column(db.String(3), nullable=False, default="INR")
    status = db.Column(db.String(30), nullable=False, default=OrderStatus.CREATED.value)

    provider_order_id = db.Column(db.String(128), nullable=True)
    payment_session_id = db.Column(db.String(255), nullable=True)

    customer_details = db.Column(db.JSON, nullable=True)
    order_note = db.Column(db.String(255), nullable=True)
    order_tags = db.Column(db.JSON, nullable=True)
    order_meta = db.Column(db.JSON, nullable=True)

    discount_amount = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0"))
    tax_amount = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0"))
    convenience_fee = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0"))

    order_expiry_time = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    user = db.relationship("User")
    provider = db.relationship("PaymentProvider")

    __table_args__ = (
        db.CheckConstraint("amount > 0", name="ck_payment_orders_amount_positive"),
    )

    @property
    def tags(self):
        return OrderTags.from_dict(self.order_tags)

    @property
    def net_amount(self):
        return (
            Decimal(self.amount)
            - Decimal(self.discount_amount or 0)
            + Decimal(self.tax_amount or 0)
            + Decimal(self.convenience_fee or 0)
        )

    def summary(self):
        return {
            "order_id": self.order_id,
            "internal_order_id": self.internal_order_id,
            "booking_id": self.booking_id,
            "user_id": self.user_id,
            "provider_id": self.provider_id,
            "amount": _money(self.amount),
            "net_amount": _money(self.net_amount),
            "currency": self.currency,
            "status": self.status,
            "provider_order_id": self.provider_order_id,
            "payment_session_id": self.payment_session_id,
            "customer_details": self.customer_details,
            "order_note": self.order_note,
            "order_tags": self.order_tags,
            "order_meta": self.order_meta,
            "order_expiry_time": self.order_expiry_time.isoformat() if self.order_expiry_time else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class PaymentTransaction(db.Model):
    __tablename__ = "payment_transactions"

    id = db.Column(db.Integer, primary_key=True)
    transaction_id = db.Column(db.String(80), unique=True, nullable=False)
    order_id = db.Column(db.String(64), db.ForeignKey("payment_orders.order_id"), nullable=False, index=True)
    provider_id = db.Column(db.String(40), nullable=False)

    # deduplication key for webhook redelivery
    provider_payment_id = db.Column(db.String(80), nullable=False)
    provider_transaction_id = db.Column(db.String(128), nullable=True)

    amount = db.Column(db.Numeric(12, 2), nullable=False)
    currency = db.Column(db.String(3), nullable=False, default="INR")
    payment_status = db.Column(db.String(20), nullable=False, default=PaymentStatus.INITIATED.value)
    payment_method = db.Column(db.String(20), nullable=True)
    payment_method_details = db.Column(db.JSON, nullable=True)

    gateway_name = db.Column(db.String(80), nullable=True)
    gateway_transaction_id = db.Column(db.String(128), nullable=True)
    bank_reference_number = db.Column(db.String(128), nullable=True)
    auth_id_code = db.Column(db.String(64), nullable=True)
    payment_message = db.Column(db.String(255), nullable=True)
    failure_reason = db.Column(db.String(255), nullable=True)
    gateway_response = db.Column(db.JSON, nullable=True)

    transaction_time = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        db.UniqueConstraint("provider_payment_id", name="uq_payment_transactions_provider_payment"),
    )

    def summary(self):
        return {
            "transaction_id": self.transaction_id,
            "order_id": self.order_id,
            "provider_payment_id": self.provider_payment_id,
            "amount": _money(self.amount),
            "currency": self.currency,
            "payment_status": self.payment_status,
            "payment_method": self.payment_method,
            "bank_reference_number": self.bank_reference_number,
            "payment_message": self.payment_message,
            "failure_reason": self.failure_reason,
            "transaction_time": self.transaction_time.isoformat() if self.transaction_time else None,
        }


class PaymentRefund(db.Model):
    __tablename__ = "payment_refunds"

    id = db.Column(db.Integer, primary_key=True)
    refund_id = db.Column(db.String(64), unique=True, nullable=False, index=True)
    internal_refund_id = db.Column(db.String(36), unique=True, nullable=False)
    order_id = db.Column(db.String(64), db.ForeignKey("payment_orders.order_id"), nullable=False, index=True)
    transaction_id = db.Column(db.String(80), nullable=True)
    provider_id = db.Column(db.String(40), nullable=False)
    provider_refund_id = db.Column(db.String(128), nullable=True)

    amount = db.Column(db.Numeric(12, 2), nullable=False)
    currency = db.Column(db.String(3), nullable=False, default="INR")
    refund_type = db.Column(db.String(20), nullable=False)
    refund_status = db.Column(db.String(20), nullable=False, default=RefundStatus.INITIATED.value)
    refund_reason = db.Column(db.String(255), nullable=True)
    refund_note = db.Column(db.String(255), nullable=True)
    refund_speed = db.Column(db.String(20), nullable=False, default="STANDARD")
    refund_arn = db.Column(db.String(128), nullable=True)
    provider_response = db.Column(db.JSON, nullable=True)
    failure_reason = db.Column(db.String(255), nullable=True)

    initiated_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    processed_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        db.CheckConstraint("amount > 0", name="ck_payment_refunds_amount_positive"),
    )

    def summary(self):
        return {
            "refund_id": self.refund_id,
            "order_id": self.order_id,
            "provider_refund_id": self.provider_refund_id,
            "amount": _money(self.amount),
            "currency": self.currency,
            "refund_type": self.refund_type,
            "refund_status": self.refund_status,
            "refund_reason": self.refund_reason,
            "refund_speed": self.refund_speed,
            "refund_arn": self.refund_arn,
            "initiated_at": self.initiated_at.isoformat() if self.initiated_at else None,
            "processed_at": self.processed_at.isoformat() if self.processed_at else None,
        }


class PaymentLink(db.Model):
    __tablename__ = "payment_links"

    id = db.Column(db.Integer, primary_key=True)
    link_id = db.Column(db.String(64), unique=True, nullable=False, index=True)
    internal_link_id = db.Column(db.String(36), unique=True, nullable=False)
    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    order_id = db.Column(db.String(64), nullable=True)
    provider_id = db.Column(db.String(40), nullable=False)

    link_url = db.Column(db.String(512), nullable=True)
    purpose = db.Column(db.String(255), nullable=False)
    amount = db.Column(db.Numeric(12, 2), nullable=False)
    currency = db.Column(db.String(3), nullable=False, default="INR")
    status = db.Column(db.String(20), nullable=False, default=LinkStatus.ACTIVE.value)

    customer_details = db.Column(db.JSON, nullable=True)
    link_notes = db.Column(db.JSON, nullable=True)
    link_meta = db.Column(db.JSON, nullable=True)

    expiry_time = db.Column(db.DateTime, nullable=True)
    usage_limit = db.Column(db.Integer, nullable=False, default=1)
    usage_count = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    def summary(self):
        return {
            "link_id": self.link_id,
            "link_url": self.link_url,
            "purpose": self.purpose,
            "amount": _money(self.amount),
            "currency": self.currency,
            "status": self.status,
            "expiry_time": self.expiry_time.isoformat() if self.expiry_time else None,
            "usage_limit": self.usage_limit,
            "usage_count": self.usage_count,
        }


class PaymentWebhookEvent(db.Model):
    __tablename__ = "payment_webhook_events"

    id = db.Column(db.Integer, primary_key=True)
    provider_id = db.Column(db.String(40), nullable=False)
    provider_event_id = db.Column(db.String(128), nullable=True, index=True)
    event_type = db.Column(db.String(80), nullable=False)

    payload = db.Column(db.JSON, nullable=True)
    # exact bytes as received, kept for replay and signature audits
    raw_body = db.Column(db.Text, nullable=False)
    signature = db.Column(db.String(255), nullable=True)
    webhook_timestamp = db.Column(db.String(64), nullable=True)
    order_id = db.Column(db.String(64), nullable=True, index=True)

    status = db.Column(db.String(20), nullable=False, default=WebhookEventStatus.RECEIVED.value)
    processing_error = db.Column(db.Text, nullable=True)
    attempts = db.Column(db.Integer, nullable=False, default=0)
    processed_at = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
