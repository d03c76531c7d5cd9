"""Per-request service construction from app config and the scoped session."""

from flask import current_app

from models import db
from services.access_codes import AccessCodeIssuer
from services.booking_service import BookingService
from services.payment_service import PaymentService
from services.pod_service import PodService


def get_access_code_issuer():
    return AccessCodeIssuer(current_app.config["SECRET_KEY"])


def get_booking_service():
    return BookingService(
        db.session,
        get_access_code_issuer(),
        hold_minutes=current_app.config.get("BOOKING_PENDING_HOLD_MINUTES", 30),
    )


def get_pod_service():
    return PodService(
        db.session,
        hold_minutes=current_app.config.get("BOOKING_PENDING_HOLD_MINUTES", 30),
    )


def get_payment_gateway():
    return current_app.extensions["payment_gateway"]


def get_payment_service():
    cfg = current_app.config
    return PaymentService(
        db.session,
        get_payment_gateway(),
        booking_service=get_booking_service(),
        currency=cfg.get("PAYMENT_CURRENCY", "INR"),
        return_url=cfg.get("PAYMENT_RETURN_URL"),
        notify_url=cfg.get("PAYMENT_NOTIFY_URL"),
        source_tag=cfg.get("ORDER_SOURCE_TAG", "metropodz_app"),
    )
