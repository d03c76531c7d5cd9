"""
Payment reconciliation engine.

Local payment state (orders, transactions, refunds) is kept in step with
the gateway through three paths: the response to our own calls, status
polling, and signed webhooks. Webhooks are written to the event ledger
before anything else happens, so a crash mid-way leaves a replayable
record rather than lost state.
"""

import json
import logging
import uuid
from decimal import Decimal

from models.booking import Booking, BookingStatus
from models.db import utcnow
from models.payment import (
    OrderStatus,
    OrderTags,
    PAID_FAMILY,
    PaymentLink,
    PaymentOrder,
    PaymentRefund,
    PaymentStatus,
    PaymentWebhookEvent,
    RefundStatus,
    RefundType,
    RELEASED_REFUND_STATUSES,
    WebhookEventStatus,
)
from models.user import User
from repositories.payment_repository import PaymentRepository
from services.cashfree_gateway import CashfreeWebhookType
from services.errors import (
    ExternalServiceError,
    InvalidInput,
    InvalidSignature,
    InvalidTransition,
    NoProviderConfigured,
    NotFound,
    PaymentCreationFailed,
    PlatformError,
    RefundExceedsEligible,
    SlotConflict,
    Unauthorized,
)
from services.status_mapping import (
    map_link_status,
    map_order_status,
    map_order_status_from_payment,
    map_payment_method,
    map_payment_status,
    map_refund_status,
    order_status_advances,
)
from utils.transactions import atomic
from utils.validation import (
    customer_details as clean_customer_details,
    parse_amount,
    parse_gateway_time,
    parse_optional_amount,
)

logger = logging.getLogger(__name__)

REFUND_SPEEDS = ("STANDARD", "INSTANT")
MAX_HISTORY_PAGE_SIZE = 50


class PaymentService:
    def __init__(self, session, gateway, booking_service=None, currency="INR",
                 return_url=None, notify_url=None, source_tag="metropodz_app"):
        self.session = session
        self.repo = PaymentRepository(session)
        self.gateway = gateway
        self.booking_service = booking_service
        self.currency = currency
        self.return_url = return_url
        self.notify_url = notify_url
        self.source_tag = source_tag
        self._hooks = {
            CashfreeWebhookType.PAYMENT_SUCCESS.value: self._on_payment_success,
            CashfreeWebhookType.PAYMENT_FAILED.value: self._on_payment_failed,
            CashfreeWebhookType.PAYMENT_USER_DROPPED.value: self._on_payment_failed,
            CashfreeWebhookType.PAYMENT_PENDING.value: self._on_payment_pending,
        }

    # ------------------------------------------------------------------
    # order creation
    # ------------------------------------------------------------------
    def create_booking_payment(self, user_id, booking_id, amount, customer_details,
                               return_url=None, notify_url=None, note=None, tags=None,
                               discount_amount=0, tax_amount=0, convenience_fee=0):
        amount = parse_amount(amount)
        customer = clean_customer_details(user_id, customer_details)
        discount_amount = parse_optional_amount(discount_amount, "discount_amount")
        tax_amount = parse_optional_amount(tax_amount, "tax_amount")
        convenience_fee = parse_optional_amount(convenience_fee, "convenience_fee")
        if tags is not None and not isinstance(tags, dict):
            raise InvalidInput("tags must be an object")

        # read-only checks; committed before the gateway call so no lock is
        # held while waiting on the network
        with atomic(self.session):
            booking = self.session.get(Booking, booking_id)
            if booking is None:
                raise NotFound("Booking not found")
            if booking.user_id != user_id:
                raise Unauthorized("Booking does not belong to the requesting user")
            if booking.status == BookingStatus.CANCELLED.value:
                raise InvalidInput("Cannot pay for a cancelled booking")

            provider = self.repo.default_provider()
            if provider is None:
                raise NoProviderConfigured("No payment provider configured")
            provider_id = provider.provider_id

        order_id = self.gateway.generate_order_id()
        order_tags = OrderTags(booking_id=booking_id, user_id=user_id, source=self.source_tag, extra=dict(tags or {}))
        order_meta = {
            "return_url": return_url or self.return_url,
            "notify_url": notify_url or self.notify_url,
        }

        try:
            response = self.gateway.create_order(
                order_id=order_id,
                amount=amount,
                currency=self.currency,
                customer_details=customer,
                return_url=order_meta["return_url"],
                notify_url=order_meta["notify_url"],
                note=note,
                tags=order_tags.to_dict(),
            )
        except ExternalServiceError as exc:
            raise PaymentCreationFailed(
                "Failed to create payment order",
                operation="create_order",
                upstream_message=exc.upstream_message or exc.message,
                upstream_status=exc.upstream_status,
            ) from exc

        status = map_order_status(response.get("order_status"))

        try:
            with atomic(self.session):
                order = self.repo.add(PaymentOrder(
                    order_id=order_id,
                    internal_order_id=str(uuid.uuid4()),
                    user_id=user_id,
                    booking_id=booking_id,
                    provider_id=provider_id,
                    amount=amount,
                    currency=self.currency,
                    status=status.value,
                    provider_order_id=_str_or_none(response.get("cf_order_id")),
                    payment_session_id=response.get("payment_session_id"),
                    customer_details=customer,
                    order_note=note,
                    order_tags=order_tags.to_dict(),
                    order_meta=order_meta,
                    discount_amount=discount_amount,
                    tax_amount=tax_amount,
                    convenience_fee=convenience_fee,
                    order_expiry_time=parse_gateway_time(response.get("order_expiry_time")),
                ))
                result = self._order_snapshot(order)
        except PlatformError as exc:
            # the gateway already holds this order; the id is logged for
            # manual reconciliation
            logger.error("Orphan gateway order %s: local persistence failed: %s", order_id, exc)
            raise PaymentCreationFailed(
                "Payment order created with the gateway but could not be saved",
                operation="persist_order",
                order_id=order_id,
            ) from exc

        logger.info("Payment order %s created for booking %s (%s %s)", order_id, booking_id, amount, self.currency)
        return result

    # ------------------------------------------------------------------
    # polling
    # ------------------------------------------------------------------
    def get_payment_status(self, order_id, user_id=None):
        with atomic(self.session):
            order = self.repo.get_order(order_id)
            if order is None:
                raise NotFound("Payment order not found")
            if user_id is not None and order.user_id != user_id:
                raise Unauthorized("Payment order does not belong to the requesting user")

        live = self.gateway.get_order(order_id)
        payments = self.gateway.get_order_payments(order_id)
        refunds = self.gateway.get_order_refunds(order_id)

        with atomic(self.session):
            order = self.repo.lock_order(order_id)
            was_paid = order.status in PAID_FAMILY
            self._apply_order_status(order, map_order_status(live.get("order_status")))
            for payment in payments:
                if payment.get("cf_payment_id") is not None:
                    self._upsert_payment(order, payment, raw=payment)
            # refunds created outside this service are not tracked
            for refund in refunds:
                if self.repo.get_refund(refund.get("refund_id")) is not None:
                    self._apply_refund_update(refund)
            if order.status in PAID_FAMILY and not was_paid:
                self._on_payment_success(order)
            result = self._order_snapshot(order)

        return result

    # ------------------------------------------------------------------
    # webhooks
    # ------------------------------------------------------------------
    def process_webhook(self, payload, signature, timestamp, raw_body):
        """
        Verify, record, then apply a gateway webhook.

        ``raw_body`` must be the exact request bytes; the signature is
        computed over them, not over ``payload``.
        """
        if not self.gateway.verify_webhook_signature(signature, raw_body, timestamp):
            logger.warning("Rejected webhook with invalid signature")
            raise InvalidSignature("Invalid webhook signature")

        if payload is None:
            payload = _parse_json(raw_body)

        event_id = self._record_event(payload, signature, timestamp, raw_body)
        return self._apply_event(event_id)

    def reprocess_pending_webhooks(self, limit=100):
        """Re-drive events that were recorded but never applied."""
        with atomic(self.session):
            event_ids = [e.id for e in self.repo.unprocessed_webhook_events(limit)]

        processed = failed = 0
        for event_id in event_ids:
            try:
                if self._apply_event(event_id) is not None:
                    processed += 1
            except PlatformError as exc:
                logger.warning("Webhook event %s still failing: %s", event_id, exc)
                failed += 1
        logger.info("Webhook replay finished: %s processed, %s failed", processed, failed)
        return {"processed": processed, "failed": failed}

    def _record_event(self, payload, signature, timestamp, raw_body):
        if isinstance(raw_body, bytes):
            raw_text = raw_body.decode("utf-8", errors="replace")
        else:
            raw_text = raw_body or ""

        payload_dict = payload if isinstance(payload, dict) else {}
        data = payload_dict.get("data") or {}
        order_id = (data.get("order") or {}).get("order_id") or (data.get("refund") or {}).get("order_id")

        with atomic(self.session):
            event = self.repo.add(PaymentWebhookEvent(
                provider_id=self.gateway.provider_id,
                provider_event_id=_str_or_none(payload_dict.get("event_id")),
                event_type=payload_dict.get("type") or "UNKNOWN",
                payload=payload if isinstance(payload, dict) else None,
                raw_body=raw_text,
                signature=signature,
                webhook_timestamp=_str_or_none(timestamp),
                order_id=order_id,
                status=WebhookEventStatus.RECEIVED.value,
            ))
            event_id = event.id
            event_type = event.event_type

        logger.info("Webhook event %s recorded (%s, order %s)", event_id, event_type, order_id)
        return event_id

    def _apply_event(self, event_id):
        """
        Apply one recorded event under its row lock. Returns None when
        another worker already processed it.
        """
        try:
            with atomic(self.session):
                event = self.repo.lock_webhook_event(event_id)
                if event.status == WebhookEventStatus.PROCESSED.value:
                    logger.info("Webhook event %s already processed, skipping", event_id)
                    return None
                if event.payload is None:
                    raise InvalidInput("Webhook body is not valid JSON")
                result = self._dispatch(event.payload)
                event.status = WebhookEventStatus.PROCESSED.value
                event.processed_at = utcnow()
                event.processing_error = None
                event.attempts = (event.attempts or 0) + 1
        except Exception as exc:
            logger.error("Webhook event %s failed: %s", event_id, exc)
            try:
                self._mark_event_failed(event_id, exc)
            except PlatformError as mark_exc:
                logger.error("Could not record failure of webhook event %s: %s", event_id, mark_exc)
            raise

        logger.info("Webhook event %s processed", event_id)
        return result

    def _mark_event_failed(self, event_id, exc):
        with atomic(self.session):
            event = self.repo.lock_webhook_event(event_id)
            event.status = WebhookEventStatus.FAILED.value
            event.processing_error = str(exc)[:1000]
            event.attempts = (event.attempts or 0) + 1

    def _dispatch(self, payload):
        event_type = payload.get("type")
        data = payload.get("data") or {}

        if event_type == CashfreeWebhookType.REFUND_STATUS.value:
            return self._apply_refund_update(data.get("refund") or {})

        order_data = data.get("order") or {}
        payment = data.get("payment") or {}
        order_id = order_data.get("order_id")
        if not order_id:
            raise InvalidInput("Webhook payload has no order id")

        order = self.repo.lock_order(order_id)
        if order is None:
            raise NotFound("Payment order not found", order_id=order_id)

        self._apply_order_status(order, map_order_status_from_payment(payment.get("payment_status")))

        txn = None
        if payment.get("cf_payment_id") is not None:
            error_details = data.get("error_details") or payment.get("error_details")
            txn = self._upsert_payment(order, payment, error_details=error_details, raw=data)

        hook = self._hooks.get(event_type)
        if hook is None:
            logger.info("No handler for webhook type %s, state updated only", event_type)
        else:
            hook(order)

        return {
            "order_id": order.order_id,
            "order_status": order.status,
            "transaction_id": txn.transaction_id if txn is not None else None,
            "payment_status": txn.payment_status if txn is not None else None,
        }

    # ------------------------------------------------------------------
    # webhook hooks; each must be safe to run more than once
    # ------------------------------------------------------------------
    def _on_payment_success(self, order):
        booking_id = order.booking_id or order.tags.booking_id
        if booking_id is None or self.booking_service is None:
            return
        try:
            with self.session.begin_nested():
                self.booking_service.confirm_in_transaction(booking_id, strict=False)
        except (InvalidTransition, SlotConflict, NotFound) as exc:
            # money is captured but the slot cannot be honoured; the order
            # stays paid and shows up for a manual refund
            logger.warning("Paid order %s could not confirm booking %s: %s", order.order_id, booking_id, exc)

    def _on_payment_failed(self, order):
        logger.info("Payment for order %s did not complete (status %s)", order.order_id, order.status)

    def _on_payment_pending(self, order):
        logger.info("Payment for order %s is pending", order.order_id)

    # ------------------------------------------------------------------
    # refunds
    # ------------------------------------------------------------------
    def create_refund(self, order_id, amount, reason=None, note=None, speed="STANDARD"):
        amount = parse_amount(amount)
        speed = (speed or "STANDARD").upper()
        if speed not in REFUND_SPEEDS:
            raise InvalidInput("refund speed must be STANDARD or INSTANT")

        # the amount is reserved as an initiated refund before the gateway
        # call, so the order lock is not held across the network
        with atomic(self.session):
            order = self.repo.lock_order(order_id)
            if order is None:
                raise NotFound("Payment order not found")

            eligible = self._paid_amount(order) - self.repo.committed_refund_total(order_id)
            if amount > eligible:
                raise RefundExceedsEligible(
                    "Refund amount exceeds the refundable balance",
                    requested=str(amount),
                    max_refundable=str(eligible),
                )

            refund_id = self.gateway.generate_refund_id()
            self.repo.add(PaymentRefund(
                refund_id=refund_id,
                internal_refund_id=str(uuid.uuid4()),
                order_id=order_id,
                transaction_id=self._settled_transaction_id(order_id),
                provider_id=order.provider_id,
                amount=amount,
                currency=order.currency,
                refund_type=(RefundType.FULL if amount >= Decimal(order.amount) else RefundType.PARTIAL).value,
                refund_status=RefundStatus.INITIATED.value,
                refund_reason=reason,
                refund_note=note,
                refund_speed=speed,
            ))
            self._sync_refund_status(order)

        try:
            response = self.gateway.create_refund(order_id, refund_id, amount, note=note, speed=speed)
        except ExternalServiceError as exc:
            if exc.upstream_status is not None:
                self._release_refund(refund_id, f"rejected by gateway (HTTP {exc.upstream_status})")
            else:
                # no answer: the gateway may hold the refund, so the
                # reservation stays until polling or a webhook settles it
                logger.warning("Refund %s for order %s has unknown gateway state: %s",
                               refund_id, order_id, exc.upstream_message)
            raise

        try:
            with atomic(self.session):
                order = self.repo.lock_order(order_id)
                self._apply_refund_update(dict(response, refund_id=refund_id))
                refund = self.repo.get_refund(refund_id)
                refund.provider_response = response
                result = refund.summary()
                result["order_status"] = order.status
                result["max_refundable"] = str(self._paid_amount(order) - self.repo.committed_refund_total(order_id))
        except PlatformError as exc:
            # the gateway accepted this refund; the id is logged for manual
            # reconciliation and the reservation keeps the amount held
            logger.error("Orphan gateway refund %s for order %s: local persistence failed: %s",
                         refund_id, order_id, exc)
            raise

        logger.info("Refund %s of %s created for order %s", refund_id, amount, order_id)
        return result

    def _release_refund(self, refund_id, reason):
        with atomic(self.session):
            refund = self.repo.get_refund(refund_id)
            order = self.repo.lock_order(refund.order_id)
            refund.refund_status = RefundStatus.FAILED.value
            refund.failure_reason = reason
            self._sync_refund_status(order)
        logger.info("Refund %s released: %s", refund_id, reason)

    def _apply_refund_update(self, data):
        refund = self.repo.get_refund(data.get("refund_id"))
        if refund is None:
            raise NotFound("Refund not found", refund_id=data.get("refund_id"))

        order = self.repo.lock_order(refund.order_id)
        new_status = map_refund_status(data.get("refund_status"))
        settled = (RefundStatus.SUCCESSFUL.value,) + RELEASED_REFUND_STATUSES
        if refund.refund_status in settled and new_status.value not in settled:
            logger.info("Ignoring stale refund status %s for %s", new_status.value, refund.refund_id)
        else:
            refund.refund_status = new_status.value

        refund.provider_refund_id = _str_or_none(data.get("cf_refund_id")) or refund.provider_refund_id
        refund.refund_arn = data.get("refund_arn") or refund.refund_arn
        refund.processed_at = parse_gateway_time(data.get("processed_at")) or refund.processed_at
        if refund.refund_status in RELEASED_REFUND_STATUSES:
            refund.failure_reason = data.get("status_description") or refund.failure_reason
        self.session.flush()

        self._sync_refund_status(order)
        return {
            "order_id": order.order_id,
            "order_status": order.status,
            "refund_id": refund.refund_id,
            "refund_status": refund.refund_status,
        }

    def _sync_refund_status(self, order):
        """Derive paid / partially_refunded / fully_refunded from the refund rows."""
        if order.status not in PAID_FAMILY:
            return
        self.session.flush()
        refunded = self.repo.committed_refund_total(order.order_id)
        paid = self._paid_amount(order)
        if refunded <= 0:
            order.status = OrderStatus.PAID.value
        elif refunded >= paid:
            order.status = OrderStatus.FULLY_REFUNDED.value
        else:
            order.status = OrderStatus.PARTIALLY_REFUNDED.value

    def _paid_amount(self, order) -> Decimal:
        paid = self.repo.paid_amount(order.order_id)
        if paid == 0 and order.status in PAID_FAMILY:
            # paid state learned from the order itself, no payment rows yet
            return Decimal(order.amount)
        return paid

    def _settled_transaction_id(self, order_id):
        for txn in reversed(self.repo.transactions_for_order(order_id)):
            if txn.payment_status == PaymentStatus.SUCCESS.value:
                return txn.transaction_id
        return None

    # ------------------------------------------------------------------
    # payment links
    # ------------------------------------------------------------------
    def create_payment_link(self, user_id, amount, purpose, customer_details,
                            expiry_time=None, notes=None, order_id=None, notify=True):
        amount = parse_amount(amount)
        purpose = (purpose or "").strip()
        if not purpose:
            raise InvalidInput("purpose is required")
        customer = clean_customer_details(user_id, customer_details)

        with atomic(self.session):
            provider = self.repo.default_provider()
            if provider is None:
                raise NoProviderConfigured("No payment provider configured")
            provider_id = provider.provider_id

        link_id = self.gateway.generate_link_id()
        expiry = expiry_time.isoformat() + "Z" if expiry_time is not None else None
        try:
            response = self.gateway.create_payment_link(
                link_id=link_id,
                amount=amount,
                currency=self.currency,
                purpose=purpose,
                customer_details=customer,
                expiry_time=expiry,
                notes=notes,
                notify=notify,
                return_url=self.return_url,
                notify_url=self.notify_url,
            )
        except ExternalServiceError as exc:
            raise PaymentCreationFailed(
                "Failed to create payment link",
                operation="create_payment_link",
                upstream_message=exc.upstream_message or exc.message,
                upstream_status=exc.upstream_status,
            ) from exc

        with atomic(self.session):
            link = self.repo.add(PaymentLink(
                link_id=link_id,
                internal_link_id=str(uuid.uuid4()),
                created_by_user_id=user_id,
                order_id=order_id,
                provider_id=provider_id,
                link_url=response.get("link_url"),
                purpose=purpose,
                amount=amount,
                currency=self.currency,
                status=map_link_status(response.get("link_status")).value,
                customer_details=customer,
                link_notes=notes,
                link_meta=response.get("link_meta"),
                expiry_time=parse_gateway_time(response.get("link_expiry_time")) or expiry_time,
            ))
            result = link.summary()

        logger.info("Payment link %s created by user %s", link_id, user_id)
        return result

    # ------------------------------------------------------------------
    # reads
    # ------------------------------------------------------------------
    def get_user_payment_history(self, user_id, page=1, limit=10):
        if page < 1:
            raise InvalidInput("page must be 1 or greater")
        if not 1 <= limit <= MAX_HISTORY_PAGE_SIZE:
            raise InvalidInput(f"limit must be between 1 and {MAX_HISTORY_PAGE_SIZE}")

        orders, total = self.repo.orders_for_user(user_id, page, limit)
        return {
            "orders": [self._order_snapshot(o) for o in orders],
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "pages": (total + limit - 1) // limit,
            },
        }

    def get_payments_by_booking(self, booking_id, user_id=None):
        booking = self.session.get(Booking, booking_id)
        if booking is None:
            raise NotFound("Booking not found")
        if user_id is not None and booking.user_id != user_id:
            raise Unauthorized("Booking does not belong to the requesting user")

        orders = [self._order_snapshot(o) for o in self.repo.orders_for_booking(booking_id)]
        return {
            "booking_id": booking_id,
            "orders": orders,
            "total_paid": str(sum((Decimal(o["paid_amount"]) for o in orders), Decimal("0.00"))),
            "total_refunded": str(sum((Decimal(o["refunded_amount"]) for o in orders), Decimal("0.00"))),
        }

    def _order_snapshot(self, order):
        out = order.summary()
        out["provider"] = order.provider.summary() if order.provider else None
        user = order.user or self.session.get(User, order.user_id)
        out["user"] = user.summary() if user else None
        out["transactions"] = [t.summary() for t in self.repo.transactions_for_order(order.order_id)]
        out["refunds"] = [r.summary() for r in self.repo.refunds_for_order(order.order_id)]
        out["paid_amount"] = str(self._paid_amount(order))
        out["refunded_amount"] = str(self.repo.committed_refund_total(order.order_id))
        return out

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------
    def _apply_order_status(self, order, new_status):
        if new_status.value == order.status:
            return False
        if not order_status_advances(order.status, new_status.value):
            logger.info(
                "Ignoring stale status %s for order %s (currently %s)",
                new_status.value, order.order_id, order.status,
            )
            return False
        logger.info("Order %s: %s -> %s", order.order_id, order.status, new_status.value)
        order.status = new_status.value
        return True

    def _upsert_payment(self, order, payment, error_details=None, raw=None):
        cf_payment_id = str(payment["cf_payment_id"])
        status = map_payment_status(payment.get("payment_status"))
        gateway_details = payment.get("payment_gateway_details") or {}
        error_details = error_details or {}
        method_details = payment.get("payment_method")

        amount = payment.get("payment_amount")
        return self.repo.upsert_transaction({
            "transaction_id": f"TXN_{cf_payment_id}",
            "order_id": order.order_id,
            "provider_id": order.provider_id,
            "provider_payment_id": cf_payment_id,
            "provider_transaction_id": _str_or_none(gateway_details.get("gateway_payment_id")),
            "amount": parse_amount(amount) if amount is not None else Decimal(order.amount),
            "currency": payment.get("payment_currency") or order.currency,
            "payment_status": status.value,
            "payment_method": map_payment_method(payment).value,
            "payment_method_details": method_details if isinstance(method_details, dict) else None,
            "gateway_name": gateway_details.get("gateway_name"),
            "gateway_transaction_id": _str_or_none(gateway_details.get("gateway_order_id")),
            "bank_reference_number": _str_or_none(payment.get("bank_reference")),
            "auth_id_code": _str_or_none(payment.get("auth_id")),
            "payment_message": payment.get("payment_message"),
            "failure_reason": error_details.get("error_description") or error_details.get("error_reason"),
            "gateway_response": raw,
            "transaction_time": parse_gateway_time(payment.get("payment_time")),
        })


def _str_or_none(value):
    return str(value) if value is not None else None


def _parse_json(raw_body):
    try:
        payload = json.loads(raw_body)
    except (TypeError, ValueError):
        return None
    return payload if isinstance(payload, dict) else None
