import logging
import math
from datetime import datetime, timedelta
from decimal import Decimal

from models.booking import AccessCode, AccessCodeStatus, Booking, BookingStatus
from models.db import utcnow
from models.pod import PodStatus
from models.user import User
from repositories.booking_repository import BookingRepository
from services.errors import (
    InvalidInput,
    InvalidTransition,
    NotFound,
    PodUnavailable,
    SlotConflict,
    Unauthorized,
)
from utils.transactions import atomic
from utils.validation import MAX_AMOUNT

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")


def intervals_overlap(a_start, a_end, b_start, b_end) -> bool:
    """Half-open windows: touching end-to-start is not an overlap."""
    return a_start < b_end and a_end > b_start


def billable_hours(check_in: datetime, check_out: datetime) -> int:
    return math.ceil((check_out - check_in) / timedelta(hours=1))


def calculate_total_price(check_in: datetime, check_out: datetime, price_per_hour) -> Decimal:
    total = Decimal(billable_hours(check_in, check_out)) * Decimal(price_per_hour)
    return total.quantize(CENTS)


def booking_detail(booking: Booking) -> dict:
    return {
        "id": booking.id,
        "user_id": booking.user_id,
        "pod_id": booking.pod_id,
        "status": booking.status,
        "check_in": booking.check_in.isoformat(),
        "check_out": booking.check_out.isoformat(),
        "duration_hours": billable_hours(booking.check_in, booking.check_out),
        "total_price": str(booking.total_price),
        "created_at": booking.created_at.isoformat() if booking.created_at else None,
        "confirmed_at": booking.confirmed_at.isoformat() if booking.confirmed_at else None,
        "cancelled_at": booking.cancelled_at.isoformat() if booking.cancelled_at else None,
        "cancel_reason": booking.cancel_reason,
        "pod": booking.pod.summary() if booking.pod else None,
        "user": booking.user.summary() if booking.user else None,
        "access_code": booking.access_code.summary() if booking.access_code else None,
    }


class BookingService:
    """
    Reservation engine.

    Check-then-insert always runs under the pod row lock so two requests
    for overlapping windows on the same pod cannot both pass the conflict
    check. Pending bookings hold their slot for ``hold_minutes`` (0 keeps
    them blocking until confirmed or cancelled).
    """

    def __init__(self, session, issuer, hold_minutes=30, clock=utcnow):
        self.session = session
        self.repo = BookingRepository(session)
        self.issuer = issuer
        self.hold_minutes = hold_minutes
        self.clock = clock

    def create_booking(self, user_id: int, pod_id: int, check_in: datetime, check_out: datetime) -> dict:
        self._validate_window(check_in, check_out)
        now = self.clock()
        if check_in < now:
            raise InvalidInput("check_in cannot be in the past")

        with atomic(self.session):
            pod = self.repo.lock_pod(pod_id)
            if pod is None or pod.status != PodStatus.AVAILABLE.value:
                raise PodUnavailable("Pod not found or not available", pod_id=pod_id)

            user = self.session.get(User, user_id)
            if user is None:
                raise NotFound("User not found")

            conflicts = self.repo.find_conflicts(pod_id, check_in, check_out, now, self.hold_minutes)
            if conflicts:
                logger.info("Slot conflict on pod %s for %s-%s", pod_id, check_in, check_out)
                raise SlotConflict(
                    "Pod is already booked for the selected time slot",
                    conflicting_booking_ids=[b.id for b in conflicts],
                )

            total_price = calculate_total_price(check_in, check_out, pod.price_per_hour)
            if total_price > MAX_AMOUNT:
                raise InvalidInput("Booking total is too large", total_price=str(total_price))

            booking = self.repo.add(Booking(
                user_id=user_id,
                pod_id=pod_id,
                status=BookingStatus.PENDING.value,
                check_in=check_in,
                check_out=check_out,
                total_price=total_price,
            ))

            pin = self.issuer.generate_pin()
            token = self.issuer.encode_access_payload(booking.id, pin, check_in, check_out)
            self.repo.add(AccessCode(
                booking_id=booking.id,
                access_pin=pin,
                access_qr_code=token,
                status=AccessCodeStatus.ACTIVE.value,
                valid_from=check_in,
                valid_until=check_out,
            ))
            self.session.refresh(booking)
            result = booking_detail(booking)

        logger.info("Booking %s created for user %s on pod %s", result["id"], user_id, pod_id)
        return result

    def get_booking(self, booking_id: int) -> dict:
        booking = self.repo.get_booking(booking_id)
        if booking is None:
            raise NotFound("Booking not found")
        return booking_detail(booking)

    def list_user_bookings(self, user_id: int, status=None) -> list:
        if status is not None and status not in {s.value for s in BookingStatus}:
            raise InvalidInput("Unknown booking status", status=status)
        return [booking_detail(b) for b in self.repo.list_user_bookings(user_id, status)]

    def confirm_booking(self, booking_id: int) -> dict:
        with atomic(self.session):
            booking = self.confirm_in_transaction(booking_id, strict=True)
            result = booking_detail(booking)

        logger.info("Booking %s confirmed", booking_id)
        return result

    def confirm_in_transaction(self, booking_id: int, strict: bool = True) -> Booking:
        """
        Move a booking from pending to confirmed without committing.

        With ``strict=False`` an already confirmed booking is returned as is,
        which lets the payment-success hook run more than once.
        """
        booking = self.repo.lock_booking(booking_id)
        if booking is None:
            raise NotFound("Booking not found")

        if booking.status == BookingStatus.CONFIRMED.value and not strict:
            return booking
        if booking.status != BookingStatus.PENDING.value:
            raise InvalidTransition(
                f"Booking cannot be confirmed from status {booking.status}",
                status=booking.status,
            )

        self.repo.lock_pod(booking.pod_id)
        conflicts = self.repo.find_conflicts(
            booking.pod_id,
            booking.check_in,
            booking.check_out,
            self.clock(),
            self.hold_minutes,
            exclude_booking_id=booking.id,
        )
        if conflicts:
            raise SlotConflict(
                "Another booking now holds this time slot",
                conflicting_booking_ids=[b.id for b in conflicts],
            )

        booking.status = BookingStatus.CONFIRMED.value
        booking.confirmed_at = self.clock()
        self.session.flush()
        return booking

    def cancel_booking(self, booking_id: int, requesting_user_id: int, reason=None) -> dict:
        with atomic(self.session):
            booking = self.repo.lock_booking(booking_id)
            if booking is None:
                raise NotFound("Booking not found")
            if booking.user_id != requesting_user_id:
                raise Unauthorized("Booking does not belong to the requesting user")
            if booking.status == BookingStatus.CANCELLED.value:
                raise InvalidTransition("Booking is already cancelled")

            now = self.clock()
            booking.status = BookingStatus.CANCELLED.value
            booking.cancelled_at = now
            booking.cancel_reason = reason

            code = self.repo.active_access_code(booking.id)
            if code is not None:
                code.status = AccessCodeStatus.REVOKED.value
                code.revoked_at = now

            self.session.flush()
            result = booking_detail(booking)

        logger.info("Booking %s cancelled by user %s", booking_id, requesting_user_id)
        return result

    @staticmethod
    def _validate_window(check_in, check_out):
        if not isinstance(check_in, datetime) or not isinstance(check_out, datetime):
            raise InvalidInput("check_in and check_out must be datetimes")
        if check_in >= check_out:
            raise InvalidInput("check_out must be after check_in")
