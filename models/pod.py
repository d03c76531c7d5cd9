import enum

from models.db import db, utcnow


class PodStatus(str, enum.Enum):
    AVAILABLE = "available"
    OCCUPIED = "occupied"
    MAINTENANCE = "maintenance"


class Pod(db.Model):
    __tablename__ = "pods"

    id = db.Column(db.Integer, primary_key=True)
    pod_number = db.Column(db.String(40), nullable=False)
    description = db.Column(db.Text, nullable=True)
    address = db.Column(db.String(255), nullable=True)

    # status values: available, occupied, maintenance
    status = db.Column(db.String(20), nullable=False, default=PodStatus.AVAILABLE.value)
    price_per_hour = db.Column(db.Numeric(12, 2), nullable=False)
    max_capacity = db.Column(db.Integer, nullable=False, default=1)

    latitude = db.Column(db.Float, nullable=True)
    longitude = db.Column(db.Float, nullable=True)

    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        db.UniqueConstraint("pod_number", name="uq_pods_pod_number"),
        db.CheckConstraint("price_per_hour > 0", name="ck_pods_price_positive"),
        db.CheckConstraint("max_capacity > 0", name="ck_pods_capacity_positive"),
    )

    def summary(self):
        return {
            "id": self.id,
            "pod_number": self.pod_number,
            "description": self.description,
            "address": self.address,
            "status": self.status,
            "price_per_hour": str(self.price_per_hour),
            "max_capacity": self.max_capacity,
            "latitude": self.latitude,
            "longitude": self.longitude,
        }
