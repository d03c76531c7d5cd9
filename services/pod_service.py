import logging

from geopy.distance import geodesic

from models.db import utcnow
from models.pod import Pod, PodStatus
from repositories.booking_repository import BookingRepository
from services.errors import InvalidInput, NotFound
from utils.transactions import atomic
from utils.validation import parse_amount

logger = logging.getLogger(__name__)

SEARCH_LIMIT = 50
DEFAULT_RANGE_KM = 5.0


def validate_coordinates(latitude, longitude):
    try:
        lat = float(latitude)
        lng = float(longitude)
    except (TypeError, ValueError):
        raise InvalidInput("latitude and longitude must be numbers")
    if not -90 <= lat <= 90:
        raise InvalidInput("latitude must be between -90 and 90")
    if not -180 <= lng <= 180:
        raise InvalidInput("longitude must be between -180 and 180")
    return lat, lng


def distance_km(lat1, lng1, lat2, lng2) -> float:
    return geodesic((lat1, lng1), (lat2, lng2)).km


class PodService:
    """Pod inventory and nearby search."""

    def __init__(self, session, hold_minutes=30, clock=utcnow):
        self.session = session
        self.repo = BookingRepository(session)
        self.hold_minutes = hold_minutes
        self.clock = clock

    def create_pod(self, data: dict) -> dict:
        fields = self._clean(data, partial=False)
        with atomic(self.session):
            pod = Pod(**fields)
            self.session.add(pod)
            self.session.flush()
            result = pod.summary()
        logger.info("Pod %s created", result["pod_number"])
        return result

    def update_pod(self, pod_id: int, data: dict) -> dict:
        fields = self._clean(data, partial=True)
        with atomic(self.session):
            pod = self.repo.lock_pod(pod_id)
            if pod is None:
                raise NotFound("Pod not found")
            for key, value in fields.items():
                setattr(pod, key, value)
            self.session.flush()
            result = pod.summary()
        logger.info("Pod %s updated: %s", pod_id, sorted(fields))
        return result

    def get_pod(self, pod_id: int) -> dict:
        pod = self.repo.get_pod(pod_id)
        if pod is None:
            raise NotFound("Pod not found")
        return pod.summary()

    def list_pods(self, status=None) -> list:
        q = self.session.query(Pod)
        if status:
            q = q.filter(Pod.status == status)
        return [p.summary() for p in q.order_by(Pod.pod_number.asc()).all()]

    def search_nearby(self, latitude, longitude, range_km=DEFAULT_RANGE_KM,
                      check_in=None, check_out=None, capacity=None) -> list:
        """
        Available pods within ``range_km``, nearest first. When a window is
        given, pods holding an overlapping booking are left out.
        """
        lat, lng = validate_coordinates(latitude, longitude)
        try:
            range_km = float(range_km)
        except (TypeError, ValueError):
            raise InvalidInput("range_km must be a number")
        if range_km <= 0:
            raise InvalidInput("range_km must be positive")

        q = self.session.query(Pod).filter(
            Pod.status == PodStatus.AVAILABLE.value,
            Pod.latitude.isnot(None),
            Pod.longitude.isnot(None),
        )
        if capacity:
            q = q.filter(Pod.max_capacity >= int(capacity))

        busy = set()
        if check_in is not None and check_out is not None:
            if check_in >= check_out:
                raise InvalidInput("check_out must be after check_in")
            busy = self.repo.busy_pod_ids(check_in, check_out, self.clock(), self.hold_minutes)

        results = []
        for pod in q.all():
            if pod.id in busy:
                continue
            dist = distance_km(lat, lng, pod.latitude, pod.longitude)
            if dist <= range_km:
                row = pod.summary()
                row["distance_km"] = round(dist, 3)
                results.append(row)

        results.sort(key=lambda r: r["distance_km"])
        return results[:SEARCH_LIMIT]

    @staticmethod
    def _clean(data: dict, partial: bool) -> dict:
        out = {}

        if "pod_number" in data or not partial:
            pod_number = (data.get("pod_number") or "").strip()
            if not pod_number:
                raise InvalidInput("pod_number is required")
            out["pod_number"] = pod_number

        if "price_per_hour" in data or not partial:
            out["price_per_hour"] = parse_amount(data.get("price_per_hour"), "price_per_hour")

        if "max_capacity" in data:
            try:
                capacity = int(data.get("max_capacity"))
            except (TypeError, ValueError):
                raise InvalidInput("max_capacity must be an integer")
            if capacity <= 0:
                raise InvalidInput("max_capacity must be positive")
            out["max_capacity"] = capacity

        if "status" in data:
            status = data.get("status")
            if status not in {s.value for s in PodStatus}:
                raise InvalidInput("Unknown pod status", status=status)
            out["status"] = status

        if "latitude" in data or "longitude" in data:
            out["latitude"], out["longitude"] = validate_coordinates(data.get("latitude"), data.get("longitude"))

        for key in ("description", "address"):
            if key in data:
                out[key] = (data.get(key) or "").strip() or None

        return out
