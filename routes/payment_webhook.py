from flask import Blueprint, request, jsonify

from services.factory import get_payment_service
from utils.audit import log_event

webhook_bp = Blueprint("webhook", __name__, url_prefix="/payments")

SIGNATURE_HEADER = "x-webhook-signature"
TIMESTAMP_HEADER = "x-webhook-timestamp"


@webhook_bp.post("/webhook")
def payment_webhook():
    # exact bytes as sent; the signature does not survive re-serialization
    raw_body = request.get_data(cache=True)

    # an invalid signature raises before anything is written
    result = get_payment_service().process_webhook(
        request.get_json(silent=True),
        request.headers.get(SIGNATURE_HEADER),
        request.headers.get(TIMESTAMP_HEADER),
        raw_body,
    )

    log_event(
        "WEBHOOK_PROCESSED",
        entity="payment_order",
        entity_id=result.get("order_id"),
        metadata=result,
    )
    return jsonify(received=True, **result), 200
