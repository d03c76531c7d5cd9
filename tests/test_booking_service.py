from datetime import datetime, timedelta
from decimal import Decimal
from unittest.mock import Mock

import pytest
from hypothesis import HealthCheck, given, settings, strategies as st

from models import db
from models.booking import AccessCode, Booking, BookingStatus
from models.pod import PodStatus
from repositories.booking_repository import BookingRepository
from services.access_codes import AccessCodeIssuer
from services.booking_service import (
    BookingService,
    billable_hours,
    calculate_total_price,
    intervals_overlap,
)
from services.errors import (
    InvalidInput,
    InvalidTransition,
    NotFound,
    PodUnavailable,
    SlotConflict,
    Unauthorized,
)
from services.factory import get_booking_service

hours = st.integers(min_value=0, max_value=48)
lengths = st.integers(min_value=1, max_value=12)


@given(hours, lengths, hours, lengths)
def test_overlap_matches_interval_definition(a_start, a_len, b_start, b_len):
    a_end, b_end = a_start + a_len, b_start + b_len
    disjoint = a_end <= b_start or b_end <= a_start

    assert intervals_overlap(a_start, a_end, b_start, b_end) is (not disjoint)
    assert intervals_overlap(a_start, a_end, b_start, b_end) == intervals_overlap(b_start, b_end, a_start, a_end)


def test_touching_windows_do_not_overlap():
    assert not intervals_overlap(10, 12, 12, 14)
    assert not intervals_overlap(12, 14, 10, 12)


def test_price_rounds_partial_hours_up():
    start = datetime(2026, 11, 2, 18, 0)
    assert billable_hours(start, start + timedelta(minutes=61)) == 2
    assert calculate_total_price(start, start + timedelta(hours=2), "100.00") == Decimal("200.00")
    assert calculate_total_price(start, start + timedelta(minutes=30), "99.99") == Decimal("99.99")


@settings(max_examples=40, deadline=None, suppress_health_check=[HealthCheck.function_scoped_fixture])
@given(start=hours, length=lengths)
def test_conflict_query_agrees_with_overlap(app, user, pod, tomorrow, start, length):
    existing = Booking.query.filter_by(pod_id=pod.id).first()
    if existing is None:
        existing = Booking(
            user_id=user.id,
            pod_id=pod.id,
            status=BookingStatus.CONFIRMED.value,
            check_in=tomorrow + timedelta(hours=10),
            check_out=tomorrow + timedelta(hours=14),
            total_price=Decimal("400.00"),
        )
        db.session.add(existing)
        db.session.commit()

    window = (existing.check_in, existing.check_out)
    check_in = tomorrow + timedelta(hours=start)
    check_out = check_in + timedelta(hours=length)
    conflicts = BookingRepository(db.session).find_conflicts(
        pod.id, check_in, check_out, tomorrow - timedelta(days=1), 30,
    )
    db.session.rollback()

    assert bool(conflicts) == intervals_overlap(check_in, check_out, *window)


@settings(max_examples=25, deadline=None, suppress_health_check=[HealthCheck.function_scoped_fixture])
@given(windows=st.lists(st.tuples(hours, lengths), min_size=1, max_size=8))
def test_random_requests_never_double_book(app, user, make_pod, tomorrow, windows):
    pod = make_pod()
    service = get_booking_service()
    accepted, rejected = [], []

    for start, length in windows:
        check_in = tomorrow + timedelta(hours=start)
        check_out = check_in + timedelta(hours=length)
        try:
            booking = service.create_booking(user.id, pod.id, check_in, check_out)
        except SlotConflict:
            rejected.append((check_in, check_out))
            continue
        assert service.confirm_booking(booking["id"])["status"] == "confirmed"
        accepted.append((check_in, check_out))

    for i, a in enumerate(accepted):
        for b in accepted[i + 1:]:
            assert not intervals_overlap(*a, *b)
    for window in rejected:
        assert any(intervals_overlap(*window, *a) for a in accepted)
    assert Booking.query.filter_by(pod_id=pod.id, status="confirmed").count() == len(accepted)


def test_booking_lifecycle(app, make_user, pod, tomorrow):
    owner = make_user()
    service = get_booking_service()
    check_in, check_out = tomorrow + timedelta(hours=18), tomorrow + timedelta(hours=20)

    booking = service.create_booking(owner.id, pod.id, check_in, check_out)

    assert booking["status"] == "pending"
    assert booking["total_price"] == "200.00"
    assert booking["duration_hours"] == 2
    code = booking["access_code"]
    assert code["status"] == "active"
    assert len(code["access_pin"]) == 6
    assert code["valid_from"] == check_in.isoformat()
    assert code["valid_until"] == check_out.isoformat()
    decoded = AccessCodeIssuer(app.config["SECRET_KEY"]).decode_access_payload(code["access_qr_code"])
    assert decoded["booking_id"] == booking["id"]
    assert decoded["access_pin"] == code["access_pin"]

    with pytest.raises(SlotConflict) as excinfo:
        service.create_booking(make_user().id, pod.id, check_in + timedelta(hours=1), check_out + timedelta(hours=1))
    assert excinfo.value.details["conflicting_booking_ids"] == [booking["id"]]

    # back-to-back is fine
    service.create_booking(make_user().id, pod.id, check_out, check_out + timedelta(hours=1))

    confirmed = service.confirm_booking(booking["id"])
    assert confirmed["status"] == "confirmed"
    assert confirmed["confirmed_at"] is not None

    cancelled = service.cancel_booking(booking["id"], owner.id, reason="plans changed")
    assert cancelled["status"] == "cancelled"
    assert cancelled["cancel_reason"] == "plans changed"
    assert cancelled["access_code"]["status"] == "revoked"

    # the slot is free again
    again = service.create_booking(make_user().id, pod.id, check_in, check_out)
    assert again["status"] == "pending"


def test_failed_access_code_leaves_no_booking(app, user, pod, tomorrow):
    issuer = Mock()
    issuer.generate_pin.return_value = "123456"
    issuer.encode_access_payload.side_effect = RuntimeError("signing key unavailable")
    service = BookingService(db.session, issuer)

    with pytest.raises(RuntimeError):
        service.create_booking(user.id, pod.id, tomorrow, tomorrow + timedelta(hours=1))

    assert Booking.query.count() == 0
    assert AccessCode.query.count() == 0


def test_invalid_windows(app, user, pod, tomorrow):
    service = get_booking_service()

    with pytest.raises(InvalidInput):
        service.create_booking(user.id, pod.id, tomorrow, tomorrow)
    with pytest.raises(InvalidInput):
        service.create_booking(user.id, pod.id, tomorrow, tomorrow - timedelta(hours=1))
    with pytest.raises(InvalidInput):
        service.create_booking(user.id, pod.id, tomorrow - timedelta(days=2), tomorrow - timedelta(days=2, hours=-1))
    with pytest.raises(InvalidInput):
        service.create_booking(user.id, pod.id, "2026-11-02T18:00", "2026-11-02T20:00")


def test_unavailable_or_missing_pod(app, user, make_pod, tomorrow):
    service = get_booking_service()
    closed = make_pod(status=PodStatus.MAINTENANCE.value)

    with pytest.raises(PodUnavailable):
        service.create_booking(user.id, closed.id, tomorrow, tomorrow + timedelta(hours=1))
    with pytest.raises(PodUnavailable):
        service.create_booking(user.id, 9999, tomorrow, tomorrow + timedelta(hours=1))


def test_unknown_user(app, pod, tomorrow):
    with pytest.raises(NotFound):
        get_booking_service().create_booking(9999, pod.id, tomorrow, tomorrow + timedelta(hours=1))
    assert Booking.query.count() == 0


def test_cancel_rules(app, make_user, pod, tomorrow):
    owner, stranger = make_user(), make_user()
    service = get_booking_service()
    booking = service.create_booking(owner.id, pod.id, tomorrow, tomorrow + timedelta(hours=1))

    with pytest.raises(Unauthorized):
        service.cancel_booking(booking["id"], stranger.id)
    with pytest.raises(NotFound):
        service.cancel_booking(9999, owner.id)

    service.cancel_booking(booking["id"], owner.id)
    with pytest.raises(InvalidTransition):
        service.cancel_booking(booking["id"], owner.id)
    with pytest.raises(InvalidTransition):
        service.confirm_booking(booking["id"])


def test_confirm_twice_is_rejected_unless_lenient(app, user, pod, tomorrow):
    service = get_booking_service()
    booking = service.create_booking(user.id, pod.id, tomorrow, tomorrow + timedelta(hours=1))
    service.confirm_booking(booking["id"])

    with pytest.raises(InvalidTransition):
        service.confirm_booking(booking["id"])

    same = service.confirm_in_transaction(booking["id"], strict=False)
    db.session.commit()
    assert same.status == "confirmed"


def test_stale_pending_booking_releases_its_slot(app, make_user, pod, tomorrow):
    service = BookingService(db.session, AccessCodeIssuer("k"), hold_minutes=30)
    first = service.create_booking(make_user().id, pod.id, tomorrow, tomorrow + timedelta(hours=2))

    row = db.session.get(Booking, first["id"])
    row.created_at = row.created_at - timedelta(minutes=31)
    db.session.commit()

    second = service.create_booking(make_user().id, pod.id, tomorrow, tomorrow + timedelta(hours=2))
    assert second["status"] == "pending"

    # the stale booking can no longer be confirmed over the new holder
    with pytest.raises(SlotConflict):
        service.confirm_booking(first["id"])


def test_hold_of_zero_keeps_pending_bookings_blocking(app, make_user, pod, tomorrow):
    service = BookingService(db.session, AccessCodeIssuer("k"), hold_minutes=0)
    first = service.create_booking(make_user().id, pod.id, tomorrow, tomorrow + timedelta(hours=2))

    row = db.session.get(Booking, first["id"])
    row.created_at = row.created_at - timedelta(days=3)
    db.session.commit()

    with pytest.raises(SlotConflict):
        service.create_booking(make_user().id, pod.id, tomorrow, tomorrow + timedelta(hours=2))


def test_list_user_bookings(app, make_user, pod, tomorrow):
    owner = make_user()
    service = get_booking_service()
    a = service.create_booking(owner.id, pod.id, tomorrow, tomorrow + timedelta(hours=1))
    b = service.create_booking(owner.id, pod.id, tomorrow + timedelta(hours=2), tomorrow + timedelta(hours=3))
    service.cancel_booking(a["id"], owner.id)

    assert {x["id"] for x in service.list_user_bookings(owner.id)} == {a["id"], b["id"]}
    assert [x["id"] for x in service.list_user_bookings(owner.id, status="pending")] == [b["id"]]
    with pytest.raises(InvalidInput):
        service.list_user_bookings(owner.id, status="bogus")
