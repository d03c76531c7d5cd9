import logging
from decimal import Decimal

from sqlalchemy import and_, case, func, or_
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError

from models.db import utcnow
from models.payment import (
    PaymentOrder,
    PaymentProvider,
    PaymentRefund,
    PaymentStatus,
    PaymentTransaction,
    PaymentWebhookEvent,
    RELEASED_REFUND_STATUSES,
    WebhookEventStatus,
)
from services.status_mapping import PAYMENT_STATUS_RANK, payment_status_advances

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")

# columns left untouched when a redelivered payment updates an existing row
_IMMUTABLE_TXN_COLUMNS = {"id", "transaction_id", "provider_payment_id", "created_at"}


def _payment_rank(column):
    return case(PAYMENT_STATUS_RANK, value=column, else_=0)


class PaymentRepository:
    """Queries, row locks and the idempotent transaction upsert."""

    def __init__(self, session):
        self.session = session

    @property
    def dialect_name(self):
        bind = self.session.get_bind()
        return bind.dialect.name if bind is not None else "sqlite"

    def add(self, row):
        self.session.add(row)
        self.session.flush()
        return row

    # ---------- providers ----------
    def default_provider(self):
        return (
            self.session.query(PaymentProvider)
            .filter_by(is_active=True, is_default=True)
            .order_by(PaymentProvider.id.asc())
            .first()
        )

    # ---------- orders ----------
    def get_order(self, order_id):
        return self.session.query(PaymentOrder).filter_by(order_id=order_id).one_or_none()

    def lock_order(self, order_id):
        return (
            self.session.query(PaymentOrder)
            .filter(PaymentOrder.order_id == order_id)
            .with_for_update()
            .populate_existing()
            .one_or_none()
        )

    def orders_for_user(self, user_id, page=1, limit=10):
        q = self.session.query(PaymentOrder).filter(PaymentOrder.user_id == user_id)
        total = q.count()
        rows = (
            q.order_by(PaymentOrder.created_at.desc(), PaymentOrder.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return rows, total

    def orders_for_booking(self, booking_id):
        return (
            self.session.query(PaymentOrder)
            .filter(PaymentOrder.booking_id == booking_id)
            .order_by(PaymentOrder.created_at.asc(), PaymentOrder.id.asc())
            .all()
        )

    # ---------- transactions ----------
    def transactions_for_order(self, order_id):
        return (
            self.session.query(PaymentTransaction)
            .filter(PaymentTransaction.order_id == order_id)
            .order_by(PaymentTransaction.created_at.asc(), PaymentTransaction.id.asc())
            .all()
        )

    def get_transaction_by_payment_id(self, provider_payment_id):
        return (
            self.session.query(PaymentTransaction)
            .filter(PaymentTransaction.provider_payment_id == provider_payment_id)
            .populate_existing()
            .one_or_none()
        )

    def paid_amount(self, order_id) -> Decimal:
        total = (
            self.session.query(func.coalesce(func.sum(PaymentTransaction.amount), 0))
            .filter(
                PaymentTransaction.order_id == order_id,
                PaymentTransaction.payment_status == PaymentStatus.SUCCESS.value,
            )
            .scalar()
        )
        return Decimal(str(total or 0)).quantize(CENTS)

    def upsert_transaction(self, values: dict):
        """
        Insert a payment row or update the one already keyed by the same
        provider payment id, in a single statement where the dialect allows.
        A row never moves backwards in status (see ``payment_status_advances``).
        """
        values = dict(values)
        values.setdefault("created_at", utcnow())
        values["updated_at"] = utcnow()
        updatable = {k: v for k, v in values.items() if k not in _IMMUTABLE_TXN_COLUMNS}

        dialect = self.dialect_name
        if dialect in ("postgresql", "sqlite"):
            insert = pg_insert if dialect == "postgresql" else sqlite_insert
            table = PaymentTransaction.__table__
            stmt = insert(table).values(**values)
            new_rank = _payment_rank(stmt.excluded.payment_status)
            old_rank = _payment_rank(table.c.payment_status)
            stmt = stmt.on_conflict_do_update(
                index_elements=[table.c.provider_payment_id],
                set_={k: stmt.excluded[k] for k in updatable},
                where=or_(
                    new_rank > old_rank,
                    and_(new_rank == old_rank, table.c.payment_status != PaymentStatus.SUCCESS.value),
                ),
            )
            self.session.execute(stmt)
        else:
            self._upsert_transaction_fallback(values, updatable)

        return self.get_transaction_by_payment_id(values["provider_payment_id"])

    def _upsert_transaction_fallback(self, values, updatable):
        try:
            with self.session.begin_nested():
                self.session.add(PaymentTransaction(**values))
        except IntegrityError:
            logger.debug("Transaction %s exists, updating in place", values["provider_payment_id"])
            row = self.get_transaction_by_payment_id(values["provider_payment_id"])
            if row is not None and payment_status_advances(row.payment_status, values["payment_status"]):
                for key, value in updatable.items():
                    setattr(row, key, value)
        self.session.flush()

    # ---------- refunds ----------
    def refunds_for_order(self, order_id):
        return (
            self.session.query(PaymentRefund)
            .filter(PaymentRefund.order_id == order_id)
            .order_by(PaymentRefund.created_at.asc(), PaymentRefund.id.asc())
            .all()
        )

    def committed_refund_total(self, order_id) -> Decimal:
        total = (
            self.session.query(func.coalesce(func.sum(PaymentRefund.amount), 0))
            .filter(
                PaymentRefund.order_id == order_id,
                PaymentRefund.refund_status.notin_(RELEASED_REFUND_STATUSES),
            )
            .scalar()
        )
        return Decimal(str(total or 0)).quantize(CENTS)

    def get_refund(self, refund_id):
        return self.session.query(PaymentRefund).filter_by(refund_id=refund_id).one_or_none()

    # ---------- webhook events ----------
    def lock_webhook_event(self, event_pk):
        return (
            self.session.query(PaymentWebhookEvent)
            .filter(PaymentWebhookEvent.id == event_pk)
            .with_for_update()
            .populate_existing()
            .one_or_none()
        )

    def unprocessed_webhook_events(self, limit=100):
        return (
            self.session.query(PaymentWebhookEvent)
            .filter(PaymentWebhookEvent.status.in_([
                WebhookEventStatus.RECEIVED.value,
                WebhookEventStatus.FAILED.value,
            ]))
            .order_by(PaymentWebhookEvent.created_at.asc(), PaymentWebhookEvent.id.asc())
            .limit(limit)
            .all()
        )
