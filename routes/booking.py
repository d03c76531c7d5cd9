from flask import Blueprint, request, jsonify, g

from services.factory import get_booking_service
from utils.auth_context import login_required, owner_scope, require_roles
from utils.audit import log_event
from utils.validation import parse_datetime, parse_int

booking_bp = Blueprint("booking", __name__, url_prefix="/bookings")


# ---------- USERS: book a pod (DOUBLE-BOOKING SAFE) ----------
@booking_bp.post("")
@login_required
def create_booking():
    data = request.get_json(silent=True) or {}
    if not data.get("pod_id") or not data.get("check_in") or not data.get("check_out"):
        return jsonify(error="pod_id, check_in, check_out are required"), 400

    booking = get_booking_service().create_booking(
        g.user.id,
        parse_int(data.get("pod_id"), "pod_id"),
        parse_datetime(data.get("check_in"), "check_in"),
        parse_datetime(data.get("check_out"), "check_out"),
    )

    log_event(
        "BOOKING_CREATE",
        user_id=g.user.id,
        entity="booking",
        entity_id=booking["id"],
        metadata={"pod_id": booking["pod_id"], "total_price": booking["total_price"]},
    )
    return jsonify(booking), 201


# ---------- USERS: view my bookings ----------
@booking_bp.get("/me")
@login_required
def my_bookings():
    status = request.args.get("status")  # pending/confirmed/cancelled
    return jsonify(get_booking_service().list_user_bookings(g.user.id, status=status)), 200


@booking_bp.get("/<int:booking_id>")
@login_required
def get_booking(booking_id: int):
    booking = get_booking_service().get_booking(booking_id)
    if owner_scope() not in (None, booking["user_id"]):
        # same answer as a missing booking
        return jsonify(error="Booking not found", code="not_found"), 404
    return jsonify(booking), 200


# ---------- ADMIN: confirm booking ----------
@booking_bp.post("/<int:booking_id>/confirm")
@require_roles("ADMIN")
def confirm_booking(booking_id: int):
    booking = get_booking_service().confirm_booking(booking_id)

    log_event("BOOKING_CONFIRM", user_id=g.user.id, entity="booking", entity_id=booking_id)
    return jsonify(booking), 200


# ---------- USERS: cancel booking ----------
@booking_bp.post("/<int:booking_id>/cancel")
@login_required
def cancel_booking(booking_id: int):
    data = request.get_json(silent=True) or {}
    reason = (data.get("reason") or "").strip()[:255] or None

    booking = get_booking_service().cancel_booking(booking_id, g.user.id, reason=reason)

    log_event("BOOKING_CANCEL", user_id=g.user.id, entity="booking", entity_id=booking_id, metadata={"reason": reason})
    return jsonify(booking), 200
