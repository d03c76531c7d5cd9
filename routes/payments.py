from flask import Blueprint, request, jsonify, g

from services.factory import get_payment_service
from utils.auth_context import login_required, owner_scope, require_roles
from utils.audit import log_event
from utils.validation import parse_datetime, parse_int

payments_bp = Blueprint("payments", __name__, url_prefix="/payments")


@payments_bp.post("/booking")
@login_required
def create_booking_payment():
    data = request.get_json(silent=True) or {}
    if not data.get("booking_id") or data.get("amount") is None:
        return jsonify(error="booking_id and amount are required"), 400

    order = get_payment_service().create_booking_payment(
        user_id=g.user.id,
        booking_id=parse_int(data.get("booking_id"), "booking_id"),
        amount=data.get("amount"),
        customer_details=data.get("customer_details"),
        return_url=data.get("return_url"),
        notify_url=data.get("notify_url"),
        note=data.get("order_note"),
        tags=data.get("order_tags"),
        discount_amount=data.get("discount_amount", 0),
        tax_amount=data.get("tax_amount", 0),
        convenience_fee=data.get("convenience_fee", 0),
    )

    log_event(
        "PAYMENT_ORDER_CREATE",
        user_id=g.user.id,
        entity="payment_order",
        entity_id=order["order_id"],
        metadata={"booking_id": order["booking_id"], "amount": order["amount"]},
    )
    return jsonify(order), 201


@payments_bp.get("/status/<order_id>")
@login_required
def payment_status(order_id: str):
    user_id = owner_scope()
    return jsonify(get_payment_service().get_payment_status(order_id, user_id=user_id)), 200


@payments_bp.post("/link")
@login_required
def create_payment_link():
    data = request.get_json(silent=True) or {}
    if data.get("amount") is None or not data.get("purpose"):
        return jsonify(error="amount and purpose are required"), 400

    expiry_time = None
    if data.get("expiry_time"):
        expiry_time = parse_datetime(data.get("expiry_time"), "expiry_time")

    link = get_payment_service().create_payment_link(
        user_id=g.user.id,
        amount=data.get("amount"),
        purpose=data.get("purpose"),
        customer_details=data.get("customer_details"),
        expiry_time=expiry_time,
        notes=data.get("link_notes"),
        order_id=data.get("order_id"),
        notify=bool(data.get("notify", True)),
    )

    log_event("PAYMENT_LINK_CREATE", user_id=g.user.id, entity="payment_link", entity_id=link["link_id"])
    return jsonify(link), 201


# ---------- ADMIN: refunds ----------
@payments_bp.post("/refund")
@require_roles("ADMIN")
def create_refund():
    data = request.get_json(silent=True) or {}
    if not data.get("order_id") or data.get("amount") is None:
        return jsonify(error="order_id and amount are required"), 400

    refund = get_payment_service().create_refund(
        data.get("order_id"),
        data.get("amount"),
        reason=data.get("reason"),
        note=data.get("note"),
        speed=data.get("speed", "STANDARD"),
    )

    log_event(
        "PAYMENT_REFUND_CREATE",
        user_id=g.user.id,
        entity="payment_refund",
        entity_id=refund["refund_id"],
        metadata={"order_id": refund["order_id"], "amount": refund["amount"]},
    )
    return jsonify(refund), 201


@payments_bp.get("/history")
@login_required
def payment_history():
    page = request.args.get("page", default=1, type=int)
    limit = request.args.get("limit", default=10, type=int)
    return jsonify(get_payment_service().get_user_payment_history(g.user.id, page=page, limit=limit)), 200


@payments_bp.get("/booking/<int:booking_id>")
@login_required
def payments_by_booking(booking_id: int):
    user_id = owner_scope()
    return jsonify(get_payment_service().get_payments_by_booking(booking_id, user_id=user_id)), 200
