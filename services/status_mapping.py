"""
Gateway status vocabulary -> internal status vocabulary.

Every function here is total: an unknown or missing value is logged and
mapped to the safe default instead of raising, so a new status on the
gateway side never breaks webhook processing.
"""

import logging

from models.payment import LinkStatus, OrderStatus, PaymentMethod, PaymentStatus, RefundStatus
from services.cashfree_gateway import (
    CashfreeOrderStatus,
    CashfreePaymentStatus,
    CashfreeRefundStatus,
)

logger = logging.getLogger(__name__)

ORDER_STATUS_MAP = {
    CashfreeOrderStatus.ACTIVE: OrderStatus.ACTIVE,
    CashfreeOrderStatus.PAID: OrderStatus.PAID,
    CashfreeOrderStatus.EXPIRED: OrderStatus.EXPIRED,
    CashfreeOrderStatus.TERMINATED: OrderStatus.CANCELLED,
    CashfreeOrderStatus.TERMINATION_REQUESTED: OrderStatus.CANCELLED,
    CashfreeOrderStatus.CANCELLED: OrderStatus.CANCELLED,
}

PAYMENT_STATUS_MAP = {
    CashfreePaymentStatus.SUCCESS: PaymentStatus.SUCCESS,
    CashfreePaymentStatus.FAILED: PaymentStatus.FAILED,
    CashfreePaymentStatus.PENDING: PaymentStatus.PENDING,
    CashfreePaymentStatus.USER_DROPPED: PaymentStatus.USER_DROPPED,
    CashfreePaymentStatus.CANCELLED: PaymentStatus.CANCELLED,
    CashfreePaymentStatus.VOID: PaymentStatus.CANCELLED,
}

ORDER_STATUS_FROM_PAYMENT = {
    CashfreePaymentStatus.SUCCESS: OrderStatus.PAID,
    CashfreePaymentStatus.FAILED: OrderStatus.CANCELLED,
    CashfreePaymentStatus.USER_DROPPED: OrderStatus.CANCELLED,
    CashfreePaymentStatus.PENDING: OrderStatus.ACTIVE,
}

REFUND_STATUS_MAP = {
    CashfreeRefundStatus.SUCCESS: RefundStatus.SUCCESSFUL,
    CashfreeRefundStatus.PENDING: RefundStatus.PENDING,
    CashfreeRefundStatus.ONHOLD: RefundStatus.PENDING,
    CashfreeRefundStatus.CANCELLED: RefundStatus.CANCELLED,
    CashfreeRefundStatus.FAILED: RefundStatus.FAILED,
}

PAYMENT_METHOD_MAP = {
    "upi": PaymentMethod.UPI,
    "card": PaymentMethod.CARD,
    "credit_card": PaymentMethod.CARD,
    "debit_card": PaymentMethod.CARD,
    "netbanking": PaymentMethod.NETBANKING,
    "net_banking": PaymentMethod.NETBANKING,
    "wallet": PaymentMethod.WALLET,
    "app": PaymentMethod.WALLET,
    "emi": PaymentMethod.EMI,
    "credit_card_emi": PaymentMethod.EMI,
    "debit_card_emi": PaymentMethod.EMI,
    "cardless_emi": PaymentMethod.CARDLESS_EMI,
    "pay_later": PaymentMethod.PAYLATER,
    "paylater": PaymentMethod.PAYLATER,
    "bank_transfer": PaymentMethod.BANK_TRANSFER,
    "cash": PaymentMethod.CASH,
}


def _lookup(enum_cls, mapping, value, default, kind):
    try:
        key = enum_cls(str(value).strip().upper())
    except ValueError:
        logger.warning("Unknown gateway %s status %r, defaulting to %s", kind, value, default.value)
        return default
    result = mapping.get(key)
    if result is None:
        logger.info("Gateway %s status %s has no internal counterpart, using %s", kind, key.value, default.value)
        return default
    return result


def map_order_status(value) -> OrderStatus:
    return _lookup(CashfreeOrderStatus, ORDER_STATUS_MAP, value, OrderStatus.CREATED, "order")


def map_payment_status(value) -> PaymentStatus:
    return _lookup(CashfreePaymentStatus, PAYMENT_STATUS_MAP, value, PaymentStatus.INITIATED, "payment")


def map_order_status_from_payment(value) -> OrderStatus:
    return _lookup(CashfreePaymentStatus, ORDER_STATUS_FROM_PAYMENT, value, OrderStatus.CREATED, "payment")


def map_refund_status(value) -> RefundStatus:
    return _lookup(CashfreeRefundStatus, REFUND_STATUS_MAP, value, RefundStatus.INITIATED, "refund")


def map_link_status(value) -> LinkStatus:
    try:
        return LinkStatus(str(value).strip().lower())
    except ValueError:
        logger.warning("Unknown gateway link status %r, defaulting to active", value)
        return LinkStatus.ACTIVE


def map_payment_method(payment: dict) -> PaymentMethod:
    """
    Cashfree reports the method as ``payment_group`` or as the single key of
    the ``payment_method`` object, e.g. ``{"upi": {...}}``.
    """
    candidates = [payment.get("payment_group")]
    method = payment.get("payment_method")
    if isinstance(method, dict):
        candidates.extend(method.keys())
    elif isinstance(method, str):
        candidates.append(method)

    for candidate in candidates:
        if candidate and str(candidate).lower() in PAYMENT_METHOD_MAP:
            return PAYMENT_METHOD_MAP[str(candidate).lower()]
    return PaymentMethod.OTHER


# Logical progress of an order. A status is only replaced by one of equal
# or higher rank, so out-of-order deliveries cannot regress a paid order.
ORDER_STATUS_RANK = {
    OrderStatus.CREATED.value: 0,
    OrderStatus.ACTIVE.value: 1,
    OrderStatus.EXPIRED.value: 1,
    OrderStatus.CANCELLED.value: 1,
    OrderStatus.PAID.value: 2,
    OrderStatus.PARTIALLY_REFUNDED.value: 3,
    OrderStatus.FULLY_REFUNDED.value: 4,
}

PAYMENT_STATUS_RANK = {
    PaymentStatus.INITIATED.value: 0,
    PaymentStatus.PENDING.value: 1,
    PaymentStatus.SUCCESS.value: 2,
    PaymentStatus.FAILED.value: 2,
    PaymentStatus.CANCELLED.value: 2,
    PaymentStatus.TIMEOUT.value: 2,
    PaymentStatus.USER_DROPPED.value: 2,
}


def order_status_advances(current, new) -> bool:
    return ORDER_STATUS_RANK.get(new, 0) >= ORDER_STATUS_RANK.get(current, 0)


def payment_status_advances(current, new) -> bool:
    """A settled success is final; anything else may move forward or sideways."""
    current_rank = PAYMENT_STATUS_RANK.get(current, 0)
    new_rank = PAYMENT_STATUS_RANK.get(new, 0)
    if new_rank > current_rank:
        return True
    return new_rank == current_rank and current != PaymentStatus.SUCCESS.value
