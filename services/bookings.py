"""
Booking lifecycle: creation, edits and status transitions.

    pending ──> confirmed ──> completed
       │            │
       └────────────┴──> cancelled

``cancelled`` and ``completed`` are terminal. Every public operation returns a
``Result``; checks run in the order existence, authorization, state, business
rule, conflict and stop at the first failure.
"""
from datetime import date, datetime, time, timedelta

from sqlalchemy import and_, or_

from models import db
from models.booking import (
    ACTIVE_STATUSES,
    CANCELLED,
    COMPLETED,
    CONFIRMED,
    PENDING,
    STATUSES,
    Booking,
)
from models.space import Space
from security.rbac import Action, Role, allows, may_act_on
from services.conflicts import ConflictDetector, conflict_summary
from services.errors import (
    BookingFailure,
    ErrorKind,
    forbidden,
    invalid_range,
    invalid_state,
    not_found,
    unit_of_work,
    validation_error,
)
from services.locks import lock_space
from services.pricing import PricingCalculator
from services.space_registry import SpaceRegistry
from services.validation import (
    coerce_date,
    coerce_notes,
    coerce_people_count,
    coerce_price,
    coerce_time,
    require_time_pair,
)
from utils.clock import utcnow

TRANSITIONS = {
    PENDING: frozenset({CONFIRMED, CANCELLED}),
    CONFIRMED: frozenset({COMPLETED, CANCELLED}),
    CANCELLED: frozenset(),
    COMPLETED: frozenset(),
}

CLIENT_PATCH_FIELDS = ("start_date", "end_date", "start_time", "end_time", "people_count", "notes")
STAFF_PATCH_FIELDS = CLIENT_PATCH_FIELDS + ("total_price",)

MAX_PAGE_SIZE = 100
MAX_CALENDAR_DAYS = 366
DEFAULT_UPCOMING_HOURS = 24
MAX_UPCOMING_HOURS = 168


def can_transition(current: str, target: str) -> bool:
    return target in TRANSITIONS.get(current, frozenset())


def assert_transition(current: str, target: str) -> None:
    if not can_transition(current, target):
        raise invalid_state(f"Booking cannot move from {current} to {target}")


def effective_start(booking) -> datetime:
    return datetime.combine(booking.start_date, booking.start_time or time.min)


def effective_end(booking) -> datetime:
    return datetime.combine(booking.end_date, booking.end_time or time.max)


class BookingLifecycle:
    def __init__(
        self,
        registry: SpaceRegistry = None,
        detector: ConflictDetector = None,
        pricing: PricingCalculator = None,
        clock=utcnow,
        cancel_cutoff_hours: int = 24,
    ):
        self.registry = registry or SpaceRegistry()
        self.detector = detector or ConflictDetector()
        self.pricing = pricing or PricingCalculator()
        self.clock = clock
        self.cancel_cutoff = timedelta(hours=cancel_cutoff_hours)

    # ---------- create ----------
    @unit_of_work
    def create(
        self,
        principal,
        space_id,
        start_date,
        end_date,
        start_time=None,
        end_time=None,
        people_count=1,
        notes=None,
    ) -> Booking:
        space_id = _coerce_id(space_id, "space_id")
        start_date = coerce_date(start_date, "start_date")
        end_date = coerce_date(end_date, "end_date")
        start_time = coerce_time(start_time, "start_time")
        end_time = coerce_time(end_time, "end_time")
        require_time_pair(start_time, end_time)
        people_count = coerce_people_count(people_count)
        notes = coerce_notes(notes)

        space = self.registry.get_space(space_id)
        if space is None:
            raise not_found("Space not found")

        self._require_active(principal)
        if not allows(principal.role, Action.BOOKING_CREATE):
            raise forbidden("Not allowed to create bookings")

        self._check_capacity(space, people_count)
        self._check_window(start_date, end_date, start_time, end_time)

        lock_space(space.id)
        self._raise_on_conflicts(space.id, start_date, end_date, start_time, end_time)

        now = self.clock()
        booking = Booking(
            space_id=space.id,
            user_id=principal.id,
            start_date=start_date,
            end_date=end_date,
            start_time=start_time,
            end_time=end_time,
            people_count=people_count,
            status=PENDING,
            total_price=self.pricing.compute(space, start_date, end_date, people_count),
            notes=notes,
            created_at=now,
            updated_at=now,
        )
        db.session.add(booking)
        db.session.commit()
        return booking

    # ---------- update ----------
    @unit_of_work
    def update(self, principal, booking_id, patch) -> Booking:
        if not isinstance(patch, dict):
            raise validation_error("Update payload must be an object")

        booking = self._load(booking_id)
        space = self.registry.get_space(booking.space_id, include_inactive=True)
        manager_id = space.manager_id if space else None

        self._require_active(principal)
        staff = may_act_on(
            principal, None, manager_id,
            managed=Action.BOOKING_UPDATE_MANAGED, any_=Action.BOOKING_UPDATE_ANY,
        )
        if not staff:
            owns = may_act_on(principal, booking.user_id, None, own=Action.BOOKING_UPDATE_OWN)
            if not owns or booking.status != PENDING:
                raise forbidden("Not allowed to modify this booking")

        if booking.status not in ACTIVE_STATUSES:
            raise invalid_state(f"Booking in status {booking.status} cannot be modified")

        # fields outside the role's set are dropped, not rejected
        fields = STAFF_PATCH_FIELDS if allows(principal.role, Action.BOOKING_SET_PRICE) else CLIENT_PATCH_FIELDS
        changes = {k: patch[k] for k in fields if k in patch}
        if not changes:
            raise validation_error("No valid fields to update")

        new_start = coerce_date(changes["start_date"], "start_date") if "start_date" in changes else booking.start_date
        new_end = coerce_date(changes["end_date"], "end_date") if "end_date" in changes else booking.end_date
        new_st = coerce_time(changes["start_time"], "start_time") if "start_time" in changes else booking.start_time
        new_et = coerce_time(changes["end_time"], "end_time") if "end_time" in changes else booking.end_time
        require_time_pair(new_st, new_et)
        new_people = (
            coerce_people_count(changes["people_count"]) if "people_count" in changes else booking.people_count
        )
        explicit_price = coerce_price(changes["total_price"]) if "total_price" in changes else None

        dates_changed = (new_start, new_end) != (booking.start_date, booking.end_date)
        window_changed = dates_changed or (new_st, new_et) != (booking.start_time, booking.end_time)
        people_changed = new_people != booking.people_count

        if people_changed:
            if space is None:
                raise not_found("Space not found")
            self._check_capacity(space, new_people)

        if window_changed:
            self._check_window(new_start, new_end, new_st, new_et)
            lock_space(booking.space_id)
            self._raise_on_conflicts(
                booking.space_id, new_start, new_end, new_st, new_et, exclude_booking_id=booking.id
            )

        booking.start_date, booking.end_date = new_start, new_end
        booking.start_time, booking.end_time = new_st, new_et
        booking.people_count = new_people
        if "notes" in changes:
            booking.notes = coerce_notes(changes["notes"])

        if explicit_price is not None:
            booking.total_price = explicit_price
        elif (dates_changed or people_changed) and space is not None:
            booking.total_price = self.pricing.compute(space, new_start, new_end, new_people)

        booking.updated_at = self.clock()
        db.session.commit()
        return booking

    # ---------- cancel ----------
    @unit_of_work
    def cancel(self, principal, booking_id, reason=None) -> Booking:
        if reason is not None and not isinstance(reason, str):
            raise validation_error("reason must be a string", field="reason")
        reason = (reason or "").strip()[:255] or None

        booking = self._load(booking_id)
        manager_id = self._manager_of(booking)

        self._require_active(principal)
        if not may_act_on(
            principal, booking.user_id, manager_id,
            own=Action.BOOKING_CANCEL_OWN,
            managed=Action.BOOKING_CANCEL_MANAGED,
            any_=Action.BOOKING_CANCEL_ANY,
        ):
            raise forbidden("Not allowed to cancel this booking")

        assert_transition(booking.status, CANCELLED)

        now = self.clock()
        if principal.role == Role.CLIENT and not self._before_cutoff(booking, now):
            hours = int(self.cancel_cutoff.total_seconds() // 3600)
            raise BookingFailure(
                ErrorKind.TOO_LATE,
                f"Cancellation not allowed within {hours} hours of start",
                {"starts_at": effective_start(booking).isoformat()},
            )

        self._transition(
            booking, CANCELLED,
            cancelled_at=now, cancellation_reason=reason, updated_at=now,
        )
        return booking

    def check_cancelable(self, booking_id, requester_id) -> bool:
        """True when the requester owns the booking and is still outside the cutoff window."""
        try:
            booking = db.session.get(Booking, int(booking_id))
        except (TypeError, ValueError):
            return False
        if booking is None or booking.user_id != requester_id:
            return False
        if booking.status not in ACTIVE_STATUSES:
            return False
        return self._before_cutoff(booking, self.clock())

    # ---------- confirm / complete ----------
    @unit_of_work
    def confirm(self, booking_id, principal=None) -> Booking:
        """``principal=None`` is the system actor (payment reconciliation)."""
        booking = self._load(booking_id)
        if principal is not None:
            self._require_active(principal)
            if not may_act_on(
                principal, None, self._manager_of(booking),
                managed=Action.BOOKING_CONFIRM_MANAGED, any_=Action.BOOKING_CONFIRM_ANY,
            ):
                raise forbidden("Not allowed to confirm this booking")

        assert_transition(booking.status, CONFIRMED)
        self._transition(booking, CONFIRMED, updated_at=self.clock())
        return booking

    @unit_of_work
    def complete(self, booking_id, principal=None) -> Booking:
        booking = self._load(booking_id)
        if principal is not None:
            self._require_active(principal)
            if not may_act_on(
                principal, None, self._manager_of(booking),
                managed=Action.BOOKING_COMPLETE_MANAGED, any_=Action.BOOKING_COMPLETE_ANY,
            ):
                raise forbidden("Not allowed to complete this booking")

        assert_transition(booking.status, COMPLETED)
        self._transition(booking, COMPLETED, updated_at=self.clock())
        return booking

    def complete_elapsed(self) -> list:
        """Complete every confirmed booking whose end has passed. Returns the completed ids."""
        now = self.clock()
        today = now.date()
        candidates = (
            Booking.query
            .filter(Booking.status == CONFIRMED)
            .filter(or_(
                Booking.end_date < today,
                and_(Booking.end_date == today, Booking.end_time.isnot(None), Booking.end_time <= now.time()),
            ))
            .order_by(Booking.end_date.asc(), Booking.id.asc())
            .all()
        )
        done = []
        for booking_id in [b.id for b in candidates]:
            if self.complete(booking_id).ok:
                done.append(booking_id)
        return done

    # ---------- reads ----------
    @unit_of_work
    def get(self, principal, booking_id) -> Booking:
        booking = self._load(booking_id)
        self._require_active(principal)
        if not may_act_on(
            principal, booking.user_id, self._manager_of(booking),
            own=Action.BOOKING_READ_OWN,
            managed=Action.BOOKING_READ_MANAGED,
            any_=Action.BOOKING_READ_ANY,
        ):
            raise forbidden("Not allowed to view this booking")
        return booking

    @unit_of_work
    def list_bookings(self, principal, status=None, space_id=None, page=1, limit=20, only_own=False) -> dict:
        self._require_active(principal)

        if status is not None and status not in STATUSES:
            raise validation_error("Unknown booking status", field="status")
        page = _coerce_positive(page, "page")
        limit = min(_coerce_positive(limit, "limit"), MAX_PAGE_SIZE)

        q = Booking.query
        if only_own:
            q = q.filter(Booking.user_id == principal.id)
        elif allows(principal.role, Action.BOOKING_READ_ANY):
            pass
        elif allows(principal.role, Action.BOOKING_READ_MANAGED):
            q = q.join(Space, Booking.space_id == Space.id).filter(
                or_(Space.manager_id == principal.id, Booking.user_id == principal.id)
            )
        elif allows(principal.role, Action.BOOKING_READ_OWN):
            q = q.filter(Booking.user_id == principal.id)
        else:
            raise forbidden("Not allowed to list bookings")

        if status:
            q = q.filter(Booking.status == status)
        if space_id is not None:
            q = q.filter(Booking.space_id == _coerce_id(space_id, "space_id"))

        total = q.count()
        rows = (
            q.order_by(Booking.created_at.desc(), Booking.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        total_pages = (total + limit - 1) // limit
        return {
            "bookings": rows,
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "total_pages": total_pages,
                "has_next": page < total_pages,
                "has_prev": page > 1,
            },
        }

    @unit_of_work
    def upcoming(self, principal, hours=DEFAULT_UPCOMING_HOURS) -> list:
        """Active bookings starting within the next ``hours``, scoped like ``list_bookings``."""
        self._require_active(principal)
        hours = _coerce_positive(hours, "hours")
        if hours > MAX_UPCOMING_HOURS:
            raise validation_error(f"hours must be between 1 and {MAX_UPCOMING_HOURS}", field="hours")

        now = self.clock()
        horizon = now + timedelta(hours=hours)

        q = Booking.query.filter(
            Booking.status.in_(ACTIVE_STATUSES),
            Booking.start_date >= now.date(),
            Booking.start_date <= horizon.date(),
        )
        if allows(principal.role, Action.BOOKING_READ_ANY):
            pass
        elif allows(principal.role, Action.BOOKING_READ_MANAGED):
            q = q.join(Space, Booking.space_id == Space.id).filter(Space.manager_id == principal.id)
        elif allows(principal.role, Action.BOOKING_READ_OWN):
            q = q.filter(Booking.user_id == principal.id)
        else:
            raise forbidden("Not allowed to list bookings")

        rows = q.order_by(Booking.start_date.asc(), Booking.start_time.asc(), Booking.id.asc()).all()
        # date filter above is coarse; the exact window needs the time of day
        return [b for b in rows if now <= effective_start(b) <= horizon]

    # ---------- availability ----------
    @unit_of_work
    def quote(self, principal, space_id, start_date, end_date, people_count=1):
        space_id = _coerce_id(space_id, "space_id")
        start_date = coerce_date(start_date, "start_date")
        end_date = coerce_date(end_date, "end_date")
        people_count = coerce_people_count(people_count)

        space = self._load_space(space_id)
        self._require_availability_access(principal)
        self._check_capacity(space, people_count)
        return self.pricing.quote(space, start_date, end_date, people_count)

    @unit_of_work
    def occupied_slots(self, principal, space_id, from_date, to_date) -> list:
        space_id, from_date, to_date = self._availability_range(principal, space_id, from_date, to_date)
        return self.detector.occupied_slots(space_id, from_date, to_date)

    @unit_of_work
    def availability_calendar(self, principal, space_id, start_date, end_date) -> list:
        space_id, start_date, end_date = self._availability_range(principal, space_id, start_date, end_date)
        return self.detector.availability_calendar(space_id, start_date, end_date)

    # ---------- helpers ----------
    def _load_space(self, space_id):
        space = self.registry.get_space(space_id)
        if space is None:
            raise not_found("Space not found")
        return space

    def _require_availability_access(self, principal):
        self._require_active(principal)
        if not allows(principal.role, Action.CONFLICTS_CHECK):
            raise forbidden("Not allowed to query availability")

    def _availability_range(self, principal, space_id, start_date, end_date):
        space_id = _coerce_id(space_id, "space_id")
        start_date = coerce_date(start_date, "start_date")
        end_date = coerce_date(end_date, "end_date")

        self._load_space(space_id)
        self._require_availability_access(principal)
        if end_date < start_date:
            raise invalid_range("end_date must be on or after start_date")
        if (end_date - start_date).days + 1 > MAX_CALENDAR_DAYS:
            raise invalid_range(f"Date range is limited to {MAX_CALENDAR_DAYS} days")
        return space_id, start_date, end_date

    def _load(self, booking_id) -> Booking:
        booking = db.session.get(Booking, _coerce_id(booking_id, "booking_id"))
        if booking is None:
            raise not_found("Booking not found")
        return booking

    def _manager_of(self, booking):
        space = self.registry.get_space(booking.space_id, include_inactive=True)
        return space.manager_id if space else None

    def _require_active(self, principal):
        if principal is None or not principal.is_active:
            raise forbidden("Account not active")

    def _check_capacity(self, space, people_count: int):
        if people_count > space.capacity:
            raise BookingFailure(
                ErrorKind.CAPACITY_EXCEEDED,
                f"People count ({people_count}) exceeds the space capacity ({space.capacity})",
                {"people_count": people_count, "capacity": space.capacity},
            )

    def _check_window(self, start_date: date, end_date: date, start_time, end_time):
        if start_date < self.clock().date():
            raise invalid_range("Cannot book dates in the past")
        if end_date < start_date:
            raise invalid_range("end_date must be on or after start_date")
        if start_time is not None and end_time is not None and end_time <= start_time:
            raise invalid_range("end_time must be after start_time")

    def _raise_on_conflicts(self, space_id, start_date, end_date, start_time, end_time, exclude_booking_id=None):
        conflicts = self.detector.find_conflicts(
            space_id, start_date, end_date, start_time, end_time, exclude_booking_id=exclude_booking_id
        )
        if conflicts:
            raise BookingFailure(
                ErrorKind.CONFLICT,
                "Space is not available for the selected dates",
                {"conflicts": [conflict_summary(b) for b in conflicts]},
            )

    def _before_cutoff(self, booking, now: datetime) -> bool:
        return effective_start(booking) - now > self.cancel_cutoff

    def _transition(self, booking, target: str, **fields):
        # compare-and-set on the status we read, so racing transitions cannot both apply
        values = {Booking.status: target}
        values.update({getattr(Booking, k): v for k, v in fields.items()})
        updated = (
            Booking.query
            .filter(Booking.id == booking.id, Booking.status == booking.status)
            .update(values, synchronize_session=False)
        )
        if not updated:
            raise invalid_state("Booking was changed by another request")
        db.session.commit()
        db.session.refresh(booking)


def _coerce_id(value, field: str) -> int:
    if isinstance(value, bool):
        raise validation_error(f"{field} must be an integer id", field=field)
    try:
        return int(value)
    except (TypeError, ValueError):
        raise validation_error(f"{field} must be an integer id", field=field)


def _coerce_positive(value, field: str) -> int:
    n = _coerce_id(value, field)
    if n < 1:
        raise validation_error(f"{field} must be >= 1", field=field)
    return n
