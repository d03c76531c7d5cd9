import enum

from models.db import db, utcnow


class BookingStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"


class AccessCodeStatus(str, enum.Enum):
    ACTIVE = "active"
    REVOKED = "revoked"


class Booking(db.Model):
    __tablename__ = "bookings"

    id = db.Column(db.Integer, primary_key=True)

    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    pod_id = db.Column(db.Integer, db.ForeignKey("pods.id"), nullable=False, index=True)

    status = db.Column(db.String(20), nullable=False, default=BookingStatus.PENDING.value)
    # status values: pending, confirmed, cancelled

    check_in = db.Column(db.DateTime, nullable=False)
    check_out = db.Column(db.DateTime, nullable=False)
    total_price = db.Column(db.Numeric(12, 2), nullable=False)

    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow, nullable=False)
    confirmed_at = db.Column(db.DateTime, nullable=True)
    cancelled_at = db.Column(db.DateTime, nullable=True)
    cancel_reason = db.Column(db.String(255), nullable=True)

    pod = db.relationship("Pod")
    user = db.relationship("User")
    access_code = db.relationship("AccessCode", back_populates="booking", uselist=False)

    __table_args__ = (
        db.CheckConstraint("check_out > check_in", name="ck_bookings_window"),
        db.Index("ix_bookings_pod_window", "pod_id", "check_in", "check_out"),
    )


class AccessCode(db.Model):
    __tablename__ = "access_codes"

    id = db.Column(db.Integer, primary_key=True)
    booking_id = db.Column(db.Integer, db.ForeignKey("bookings.id"), nullable=False)

    access_pin = db.Column(db.String(6), nullable=False)
    access_qr_code = db.Column(db.Text, nullable=False)
    status = db.Column(db.String(20), nullable=False, default=AccessCodeStatus.ACTIVE.value)

    valid_from = db.Column(db.DateTime, nullable=False)
    valid_until = db.Column(db.DateTime, nullable=False)

    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    revoked_at = db.Column(db.DateTime, nullable=True)

    booking = db.relationship("Booking", back_populates="access_code")

    __table_args__ = (
        # one access code per booking
        db.UniqueConstraint("booking_id", name="uq_access_codes_booking"),
    )

    def summary(self):
        return {
            "access_pin": self.access_pin,
            "access_qr_code": self.access_qr_code,
            "status": self.status,
            "valid_from": self.valid_from.isoformat(),
            "valid_until": self.valid_until.isoformat(),
        }
