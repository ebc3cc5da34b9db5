from datetime import date, datetime, time
from decimal import Decimal

from models import db
from models.booking import CANCELLED, COMPLETED, CONFIRMED, PENDING, Booking
from security.rbac import Role
from services.bookings import BookingLifecycle, can_transition
from services.errors import ErrorKind
from services.pricing import PricingCalculator
from utils.auth_context import Principal

from conftest import ADMIN, CLIENT, MANAGER, OTHER_CLIENT, OTHER_MANAGER

D10 = "2025-03-10"


def test_create_cancel_recreate_scenario(space, lifecycle):
    a = lifecycle.create(CLIENT, space.id, D10, D10, people_count=2)
    assert a.ok
    assert a.value.status == PENDING
    assert a.value.total_price == Decimal("30.00")

    b = lifecycle.create(OTHER_CLIENT, space.id, D10, D10, people_count=3)
    assert not b.ok
    assert b.error.kind == ErrorKind.CONFLICT
    assert [c["id"] for c in b.error.details["conflicts"]] == [a.value.id]

    cancelled = lifecycle.cancel(CLIENT, a.value.id)
    assert cancelled.ok
    assert cancelled.value.status == CANCELLED
    assert cancelled.value.cancelled_at is not None

    c = lifecycle.create(OTHER_CLIENT, space.id, D10, D10, people_count=3)
    assert c.ok
    assert c.value.status == PENDING


def test_update_over_capacity_leaves_booking_unchanged(space, lifecycle):
    booking = lifecycle.create(CLIENT, space.id, D10, D10, people_count=2).value

    result = lifecycle.update(CLIENT, booking.id, {"people_count": 5})
    assert not result.ok
    assert result.error.kind == ErrorKind.CAPACITY_EXCEEDED

    db.session.expire_all()
    assert db.session.get(Booking, booking.id).people_count == 2


def test_create_check_order(space, make_space, lifecycle):
    inactive = make_space(is_active=False, name="Closed")

    assert lifecycle.create(CLIENT, 9999, D10, D10).error.kind == ErrorKind.NOT_FOUND
    assert lifecycle.create(CLIENT, inactive.id, D10, D10).error.kind == ErrorKind.NOT_FOUND
    assert lifecycle.create(CLIENT, space.id, D10, D10, people_count=5).error.kind == ErrorKind.CAPACITY_EXCEEDED
    assert lifecycle.create(CLIENT, space.id, "2025-02-27", "2025-02-27").error.kind == ErrorKind.INVALID_RANGE
    assert lifecycle.create(CLIENT, space.id, "2025-03-12", D10).error.kind == ErrorKind.INVALID_RANGE
    assert lifecycle.create(
        CLIENT, space.id, D10, D10, start_time="11:00", end_time="10:00"
    ).error.kind == ErrorKind.INVALID_RANGE


def test_create_validation_errors(space, lifecycle):
    assert lifecycle.create(CLIENT, space.id, "10/03/2025", D10).error.kind == ErrorKind.VALIDATION_ERROR
    assert lifecycle.create(CLIENT, space.id, D10, D10, people_count=0).error.kind == ErrorKind.VALIDATION_ERROR
    assert lifecycle.create(CLIENT, space.id, D10, D10, start_time="09:00").error.kind == ErrorKind.VALIDATION_ERROR
    assert Booking.query.count() == 0


def test_times_with_utc_offset_are_rejected(space, lifecycle):
    result = lifecycle.create(CLIENT, space.id, D10, D10, start_time="09:00+02:00", end_time="10:00")
    assert result.error.kind == ErrorKind.VALIDATION_ERROR
    assert result.error.details == {"field": "start_time"}

    booking = lifecycle.create(CLIENT, space.id, D10, D10, start_time="09:00", end_time="10:00").value
    patched = lifecycle.update(CLIENT, booking.id, {"end_time": "11:00+00:00"})
    assert patched.error.kind == ErrorKind.VALIDATION_ERROR

    db.session.expire_all()
    assert db.session.get(Booking, booking.id).end_time == time(10, 0)


def test_inactive_principal_is_forbidden(space, lifecycle):
    suspended = Principal(id=5, role=Role.CLIENT, account_status="suspended")
    assert lifecycle.create(suspended, space.id, D10, D10).error.kind == ErrorKind.FORBIDDEN


def test_multi_day_price(make_space, lifecycle):
    space = make_space(price="50.00")
    result = lifecycle.create(CLIENT, space.id, "2025-03-10", "2025-03-12")
    assert result.value.total_price == Decimal("150.00")


def test_timed_bookings_share_a_day(space, lifecycle):
    first = lifecycle.create(CLIENT, space.id, D10, D10, start_time="09:00", end_time="10:00")
    second = lifecycle.create(OTHER_CLIENT, space.id, D10, D10, start_time="10:30", end_time="12:00")
    touching = lifecycle.create(OTHER_CLIENT, space.id, D10, D10, start_time="12:00", end_time="13:00")
    assert first.ok and second.ok
    assert touching.error.kind == ErrorKind.CONFLICT


# ---------- update ----------
def test_update_recomputes_price_on_date_change(space, lifecycle):
    booking = lifecycle.create(CLIENT, space.id, D10, D10).value
    result = lifecycle.update(CLIENT, booking.id, {"end_date": "2025-03-11", "user_id": 42, "status": CONFIRMED})
    assert result.ok
    assert result.value.total_price == Decimal("60.00")
    assert result.value.user_id == CLIENT.id
    assert result.value.status == PENDING


def test_update_does_not_conflict_with_itself(space, lifecycle):
    booking = lifecycle.create(CLIENT, space.id, D10, "2025-03-11").value
    result = lifecycle.update(CLIENT, booking.id, {"start_date": "2025-03-11"})
    assert result.ok
    assert result.value.start_date == date(2025, 3, 11)


def test_update_into_conflict(space, lifecycle):
    lifecycle.create(OTHER_CLIENT, space.id, "2025-03-12", "2025-03-12")
    booking = lifecycle.create(CLIENT, space.id, D10, D10).value
    result = lifecycle.update(CLIENT, booking.id, {"end_date": "2025-03-12"})
    assert result.error.kind == ErrorKind.CONFLICT


def test_client_price_is_dropped_manager_price_kept(space, lifecycle):
    booking = lifecycle.create(CLIENT, space.id, D10, D10).value

    only_price = lifecycle.update(CLIENT, booking.id, {"total_price": "1.00"})
    assert only_price.error.kind == ErrorKind.VALIDATION_ERROR

    staff = lifecycle.update(MANAGER, booking.id, {"total_price": "25.50", "notes": "discount"})
    assert staff.ok
    assert staff.value.total_price == Decimal("25.50")
    assert staff.value.notes == "discount"


def test_update_authorization(space, lifecycle):
    booking = lifecycle.create(CLIENT, space.id, D10, D10).value
    assert lifecycle.update(OTHER_CLIENT, booking.id, {"notes": "x"}).error.kind == ErrorKind.FORBIDDEN
    assert lifecycle.update(OTHER_MANAGER, booking.id, {"notes": "x"}).error.kind == ErrorKind.FORBIDDEN
    assert lifecycle.update(ADMIN, booking.id, {"notes": "x"}).ok
    assert lifecycle.update(CLIENT, 9999, {"notes": "x"}).error.kind == ErrorKind.NOT_FOUND


def test_client_cannot_edit_confirmed_booking(space, lifecycle):
    booking = lifecycle.create(CLIENT, space.id, D10, D10).value
    lifecycle.confirm(booking.id)
    assert lifecycle.update(CLIENT, booking.id, {"notes": "x"}).error.kind == ErrorKind.FORBIDDEN
    assert lifecycle.update(MANAGER, booking.id, {"notes": "x"}).ok


def test_terminal_booking_cannot_be_updated(space, lifecycle):
    booking = lifecycle.create(CLIENT, space.id, D10, D10).value
    lifecycle.cancel(CLIENT, booking.id)
    assert lifecycle.update(MANAGER, booking.id, {"notes": "x"}).error.kind == ErrorKind.INVALID_STATE


# ---------- status transitions ----------
def test_transition_table():
    assert can_transition(PENDING, CONFIRMED)
    assert can_transition(CONFIRMED, COMPLETED)
    assert not can_transition(PENDING, COMPLETED)
    assert not can_transition(CANCELLED, PENDING)
    assert not can_transition(COMPLETED, CANCELLED)


def test_status_is_monotonic(space, lifecycle):
    booking = lifecycle.create(CLIENT, space.id, D10, D10).value
    assert lifecycle.complete(booking.id).error.kind == ErrorKind.INVALID_STATE

    assert lifecycle.confirm(booking.id, principal=MANAGER).ok
    assert lifecycle.confirm(booking.id).error.kind == ErrorKind.INVALID_STATE
    assert lifecycle.complete(booking.id, principal=MANAGER).value.status == COMPLETED

    assert lifecycle.cancel(ADMIN, booking.id).error.kind == ErrorKind.INVALID_STATE
    assert lifecycle.confirm(booking.id).error.kind == ErrorKind.INVALID_STATE


def test_confirm_requires_managing_staff(space, lifecycle):
    booking = lifecycle.create(CLIENT, space.id, D10, D10).value
    assert lifecycle.confirm(booking.id, principal=CLIENT).error.kind == ErrorKind.FORBIDDEN
    assert lifecycle.confirm(booking.id, principal=OTHER_MANAGER).error.kind == ErrorKind.FORBIDDEN
    assert lifecycle.confirm(booking.id, principal=ADMIN).ok


# ---------- cancellation window ----------
def test_client_cancel_inside_cutoff_is_too_late(space, lifecycle, clock):
    booking = lifecycle.create(CLIENT, space.id, D10, D10).value
    clock.now = datetime(2025, 3, 9, 1, 0)

    result = lifecycle.cancel(CLIENT, booking.id)
    assert result.error.kind == ErrorKind.TOO_LATE
    db.session.expire_all()
    assert db.session.get(Booking, booking.id).status == PENDING

    assert lifecycle.cancel(MANAGER, booking.id, reason="maintenance").value.cancellation_reason == "maintenance"


def test_cutoff_uses_start_time(space, lifecycle, clock):
    booking = lifecycle.create(CLIENT, space.id, D10, D10, start_time="18:00", end_time="20:00").value
    clock.now = datetime(2025, 3, 9, 17, 0)
    assert lifecycle.check_cancelable(booking.id, CLIENT.id) is True
    clock.now = datetime(2025, 3, 9, 18, 0)
    assert lifecycle.check_cancelable(booking.id, CLIENT.id) is False


def test_cancelable_predicate(space, lifecycle):
    booking = lifecycle.create(CLIENT, space.id, D10, D10).value
    assert lifecycle.check_cancelable(booking.id, CLIENT.id) is True
    assert lifecycle.check_cancelable(booking.id, OTHER_CLIENT.id) is False
    assert lifecycle.check_cancelable(9999, CLIENT.id) is False
    lifecycle.cancel(CLIENT, booking.id)
    assert lifecycle.check_cancelable(booking.id, CLIENT.id) is False


def test_cancel_rejects_non_string_reason(space, lifecycle):
    booking = lifecycle.create(CLIENT, space.id, D10, D10).value
    assert lifecycle.cancel(CLIENT, booking.id, reason=12).error.kind == ErrorKind.VALIDATION_ERROR


def test_other_client_cannot_cancel(space, lifecycle):
    booking = lifecycle.create(CLIENT, space.id, D10, D10).value
    assert lifecycle.cancel(OTHER_CLIENT, booking.id).error.kind == ErrorKind.FORBIDDEN


# ---------- completion job ----------
def test_complete_elapsed(space, lifecycle, add_booking, clock):
    past = add_booking(space, start=date(2025, 2, 20), status=CONFIRMED)
    today_done = add_booking(
        space, start=date(2025, 3, 1), start_time=time(7, 0), end_time=time(9, 0), status=CONFIRMED
    )
    today_running = add_booking(
        space, start=date(2025, 3, 1), start_time=time(9, 30), end_time=time(11, 0), status=CONFIRMED
    )
    pending_past = add_booking(space, start=date(2025, 2, 21))

    assert lifecycle.complete_elapsed() == [past.id, today_done.id]

    db.session.expire_all()
    assert db.session.get(Booking, today_running.id).status == CONFIRMED
    assert db.session.get(Booking, pending_past.id).status == PENDING


# ---------- reads ----------
def test_get_is_scoped(space, lifecycle):
    booking = lifecycle.create(CLIENT, space.id, D10, D10).value
    assert lifecycle.get(CLIENT, booking.id).ok
    assert lifecycle.get(MANAGER, booking.id).ok
    assert lifecycle.get(OTHER_CLIENT, booking.id).error.kind == ErrorKind.FORBIDDEN
    assert lifecycle.get(OTHER_MANAGER, booking.id).error.kind == ErrorKind.FORBIDDEN


def test_list_is_scoped_by_role(space, make_space, lifecycle):
    other_space = make_space(manager_id=OTHER_MANAGER.id, name="Other")
    mine = lifecycle.create(CLIENT, space.id, D10, D10).value
    lifecycle.create(OTHER_CLIENT, other_space.id, D10, D10)

    assert [b.id for b in lifecycle.list_bookings(CLIENT).value["bookings"]] == [mine.id]
    assert [b.id for b in lifecycle.list_bookings(MANAGER).value["bookings"]] == [mine.id]
    assert lifecycle.list_bookings(ADMIN).value["pagination"]["total"] == 2
    assert lifecycle.list_bookings(ADMIN, only_own=True).value["pagination"]["total"] == 0


def test_list_pagination_and_filters(make_space, lifecycle):
    space = make_space(capacity=10)
    for day in range(10, 15):
        lifecycle.create(CLIENT, space.id, f"2025-03-{day}", f"2025-03-{day}")

    page = lifecycle.list_bookings(CLIENT, page=2, limit=2).value
    assert len(page["bookings"]) == 2
    assert page["pagination"] == {
        "page": 2, "limit": 2, "total": 5, "total_pages": 3, "has_next": True, "has_prev": True,
    }
    assert lifecycle.list_bookings(CLIENT, status=CONFIRMED).value["pagination"]["total"] == 0
    assert lifecycle.list_bookings(CLIENT, status="bogus").error.kind == ErrorKind.VALIDATION_ERROR
    assert lifecycle.list_bookings(CLIENT, limit=1000).value["pagination"]["limit"] == 100


def test_fee_rate_applies_on_create(space, clock):
    lifecycle = BookingLifecycle(pricing=PricingCalculator(fee_rate="0.10"), clock=clock)
    assert lifecycle.create(CLIENT, space.id, D10, D10).value.total_price == Decimal("33.00")


# ---------- upcoming ----------
def test_upcoming_window_and_scope(space, make_space, lifecycle, add_booking):
    other_space = make_space(manager_id=OTHER_MANAGER.id, name="Other")
    soon = add_booking(space, start=date(2025, 3, 1), start_time=time(12, 0), end_time=time(13, 0))
    tomorrow = add_booking(space, start=date(2025, 3, 2))
    add_booking(space, start=date(2025, 3, 1), start_time=time(8, 0), end_time=time(9, 0))
    later = add_booking(space, start=date(2025, 3, 3))
    add_booking(space, start=date(2025, 3, 1), start_time=time(14, 0), end_time=time(15, 0), status=CANCELLED)
    elsewhere = add_booking(
        other_space, user_id=OTHER_CLIENT.id, start=date(2025, 3, 1), start_time=time(15, 0), end_time=time(16, 0)
    )

    assert [b.id for b in lifecycle.upcoming(CLIENT).value] == [soon.id, tomorrow.id]
    assert [b.id for b in lifecycle.upcoming(CLIENT, hours=48).value] == [soon.id, tomorrow.id, later.id]
    assert [b.id for b in lifecycle.upcoming(MANAGER).value] == [soon.id, tomorrow.id]
    assert [b.id for b in lifecycle.upcoming(OTHER_MANAGER).value] == [elsewhere.id]
    assert [b.id for b in lifecycle.upcoming(ADMIN).value] == [soon.id, elsewhere.id, tomorrow.id]


def test_upcoming_hours_bounds(lifecycle):
    assert lifecycle.upcoming(CLIENT, hours=0).error.kind == ErrorKind.VALIDATION_ERROR
    assert lifecycle.upcoming(CLIENT, hours=169).error.kind == ErrorKind.VALIDATION_ERROR
    assert lifecycle.upcoming(CLIENT, hours="abc").error.kind == ErrorKind.VALIDATION_ERROR
    assert lifecycle.upcoming(CLIENT, hours="168").ok


# ---------- availability ----------
def test_quote(space, lifecycle):
    quote = lifecycle.quote(CLIENT, space.id, "2025-03-10", "2025-03-12", people_count=2).value
    assert quote.days == 3
    assert quote.total_price == Decimal("90.00")

    assert lifecycle.quote(CLIENT, 9999, D10, D10).error.kind == ErrorKind.NOT_FOUND
    assert lifecycle.quote(CLIENT, space.id, D10, D10, people_count=5).error.kind == ErrorKind.CAPACITY_EXCEEDED
    assert lifecycle.quote(CLIENT, space.id, "2025-03-12", D10).error.kind == ErrorKind.INVALID_RANGE
    assert lifecycle.quote(CLIENT, space.id, "soon", D10).error.kind == ErrorKind.VALIDATION_ERROR


def test_calendar_and_occupied_slots(space, lifecycle, add_booking):
    add_booking(space, start=date(2025, 3, 10), start_time=time(9, 0), end_time=time(10, 0), people_count=3)
    add_booking(space, start=date(2025, 3, 12), status=CONFIRMED)
    add_booking(space, start=date(2025, 3, 11), status=CANCELLED)

    calendar = lifecycle.availability_calendar(CLIENT, space.id, "2025-03-10", "2025-03-12").value
    assert [d["date"] for d in calendar] == ["2025-03-10", "2025-03-11", "2025-03-12"]
    assert [d["available"] for d in calendar] == [False, True, False]
    assert [d["full_day"] for d in calendar] == [False, False, True]
    assert calendar[0]["slots"] == [{"start_time": "09:00", "end_time": "10:00", "status": "pending", "people_count": 3}]

    slots = lifecycle.occupied_slots(CLIENT, space.id, "2025-03-01", "2025-03-31").value
    assert [s["start_date"] for s in slots] == ["2025-03-10", "2025-03-12"]
    assert slots[0]["people_count"] == 3
    assert all("user_id" not in s for s in slots)


def test_availability_range_errors(space, make_space, lifecycle):
    closed = make_space(is_active=False, name="Closed")
    assert lifecycle.availability_calendar(CLIENT, space.id, "2025-03-12", D10).error.kind == ErrorKind.INVALID_RANGE
    assert lifecycle.availability_calendar(
        CLIENT, space.id, "2025-01-01", "2026-03-01"
    ).error.kind == ErrorKind.INVALID_RANGE
    assert lifecycle.occupied_slots(CLIENT, closed.id, D10, D10).error.kind == ErrorKind.NOT_FOUND
