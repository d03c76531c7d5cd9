from datetime import timedelta

from sqlalchemy import and_, or_

from models.booking import AccessCode, AccessCodeStatus, Booking, BookingStatus
from models.pod import Pod


class BookingRepository:
    """Queries and row locks for pods, bookings and access codes."""

    def __init__(self, session):
        self.session = session

    # ---------- pods ----------
    def get_pod(self, pod_id):
        return self.session.get(Pod, pod_id)

    def lock_pod(self, pod_id):
        # row lock held until the surrounding transaction ends
        return (
            self.session.query(Pod)
            .filter(Pod.id == pod_id)
            .with_for_update()
            .one_or_none()
        )

    # ---------- bookings ----------
    def get_booking(self, booking_id):
        return self.session.get(Booking, booking_id)

    def lock_booking(self, booking_id):
        return (
            self.session.query(Booking)
            .filter(Booking.id == booking_id)
            .with_for_update()
            .one_or_none()
        )

    def blocking_filter(self, now, hold_minutes):
        """Bookings that hold their slot: confirmed, or pending inside the hold window."""
        pending = Booking.status == BookingStatus.PENDING.value
        if hold_minutes:
            pending = and_(pending, Booking.created_at >= now - timedelta(minutes=hold_minutes))
        return or_(Booking.status == BookingStatus.CONFIRMED.value, pending)

    def find_conflicts(self, pod_id, check_in, check_out, now, hold_minutes, exclude_booking_id=None):
        # half-open windows: [a, b) and [c, d) overlap when a < d and b > c
        q = self.session.query(Booking).filter(
            Booking.pod_id == pod_id,
            Booking.check_in < check_out,
            Booking.check_out > check_in,
            self.blocking_filter(now, hold_minutes),
        )
        if exclude_booking_id is not None:
            q = q.filter(Booking.id != exclude_booking_id)
        return q.all()

    def busy_pod_ids(self, check_in, check_out, now, hold_minutes):
        rows = (
            self.session.query(Booking.pod_id)
            .filter(
                Booking.check_in < check_out,
                Booking.check_out > check_in,
                self.blocking_filter(now, hold_minutes),
            )
            .distinct()
            .all()
        )
        return {r.pod_id for r in rows}

    def list_user_bookings(self, user_id, status=None):
        q = self.session.query(Booking).filter(Booking.user_id == user_id)
        if status:
            q = q.filter(Booking.status == status)
        return q.order_by(Booking.created_at.desc(), Booking.id.desc()).all()

    def add(self, row):
        self.session.add(row)
        self.session.flush()
        return row

    # ---------- access codes ----------
    def active_access_code(self, booking_id):
        return (
            self.session.query(AccessCode)
            .filter_by(booking_id=booking_id, status=AccessCodeStatus.ACTIVE.value)
            .one_or_none()
        )
