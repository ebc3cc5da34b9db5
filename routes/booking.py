from flask import Blueprint, g, jsonify, request

from models.booking import Booking
from security.rate_limit import role_rate_limit
from security.rbac import Action, require_action
from services.factory import build_detector, build_lifecycle
from services.errors import BookingFailure, ErrorKind, invalid_range, validation_error
from services.validation import coerce_date, coerce_time, require_time_pair
from utils.audit import log_event
from utils.auth_context import login_required
from utils.responses import service_error_response

booking_bp = Blueprint("booking", __name__)


def _booking_json(b: Booking) -> dict:
    return {
        "id": b.id,
        "space_id": b.space_id,
        "user_id": b.user_id,
        "start_date": b.start_date.isoformat(),
        "end_date": b.end_date.isoformat(),
        "start_time": b.start_time.isoformat(timespec="minutes") if b.start_time else None,
        "end_time": b.end_time.isoformat(timespec="minutes") if b.end_time else None,
        "people_count": b.people_count,
        "status": b.status,
        "total_price": str(b.total_price),
        "notes": b.notes,
        "created_at": b.created_at.isoformat(),
        "updated_at": b.updated_at.isoformat() if b.updated_at else None,
        "cancelled_at": b.cancelled_at.isoformat() if b.cancelled_at else None,
        "cancellation_reason": b.cancellation_reason,
    }


# ---------- create ----------
@booking_bp.post("/bookings")
@login_required
@role_rate_limit("booking")
def create_booking():
    data = request.get_json(silent=True) or {}

    result = build_lifecycle().create(
        g.user,
        data.get("space_id"),
        data.get("start_date"),
        data.get("end_date"),
        start_time=data.get("start_time"),
        end_time=data.get("end_time"),
        people_count=data.get("people_count", 1),
        notes=data.get("notes"),
    )
    if not result.ok:
        if result.error.kind == ErrorKind.CONFLICT:
            log_event("BOOKING_FAIL_CONFLICT", user_id=g.user.id, entity="space", entity_id=data.get("space_id"))
        return service_error_response(result.error)

    booking = result.value
    log_event(
        "BOOKING_CREATE", user_id=g.user.id, entity="booking", entity_id=booking.id,
        metadata={"space_id": booking.space_id, "total_price": booking.total_price},
    )
    return jsonify(_booking_json(booking)), 201


# ---------- availability ----------
@booking_bp.get("/bookings/conflicts")
@require_action(Action.CONFLICTS_CHECK)
def check_conflicts():
    args = request.args
    space_id = args.get("space_id", type=int)
    if space_id is None:
        return service_error_response(validation_error("space_id is required", field="space_id").error)

    try:
        start_date = coerce_date(args.get("start_date"), "start_date")
        end_date = coerce_date(args.get("end_date"), "end_date")
        start_time = coerce_time(args.get("start_time"), "start_time")
        end_time = coerce_time(args.get("end_time"), "end_time")
        require_time_pair(start_time, end_time)
        if end_date < start_date:
            raise invalid_range("end_date must be on or after start_date")
    except BookingFailure as exc:
        return service_error_response(exc.error)

    report = build_detector().check(
        space_id, start_date, end_date, start_time, end_time,
        exclude_booking_id=args.get("exclude_booking_id", type=int),
    )
    return jsonify(hasConflicts=report["has_conflicts"], conflicts=report["conflicts"]), 200


# ---------- reads ----------
@booking_bp.get("/bookings")
@login_required
def list_bookings():
    result = build_lifecycle().list_bookings(
        g.user,
        status=request.args.get("status") or None,
        space_id=request.args.get("space_id") or None,
        page=request.args.get("page", 1),
        limit=request.args.get("limit", 20),
    )
    if not result.ok:
        return service_error_response(result.error)

    page = result.value
    return jsonify(bookings=[_booking_json(b) for b in page["bookings"]], pagination=page["pagination"]), 200


@booking_bp.get("/bookings/me")
@login_required
def my_bookings():
    result = build_lifecycle().list_bookings(
        g.user,
        status=request.args.get("status") or None,
        page=request.args.get("page", 1),
        limit=request.args.get("limit", 20),
        only_own=True,
    )
    if not result.ok:
        return service_error_response(result.error)

    page = result.value
    return jsonify(bookings=[_booking_json(b) for b in page["bookings"]], pagination=page["pagination"]), 200


@booking_bp.get("/bookings/upcoming")
@login_required
def upcoming_bookings():
    result = build_lifecycle().upcoming(g.user, hours=request.args.get("hours", 24))
    if not result.ok:
        return service_error_response(result.error)
    return jsonify(bookings=[_booking_json(b) for b in result.value]), 200


@booking_bp.get("/bookings/<int:booking_id>")
@login_required
def get_booking(booking_id: int):
    result = build_lifecycle().get(g.user, booking_id)
    if not result.ok:
        return service_error_response(result.error)
    return jsonify(_booking_json(result.value)), 200


# ---------- update ----------
@booking_bp.patch("/bookings/<int:booking_id>")
@login_required
@role_rate_limit("booking")
def update_booking(booking_id: int):
    data = request.get_json(silent=True) or {}

    result = build_lifecycle().update(g.user, booking_id, data)
    if not result.ok:
        return service_error_response(result.error)

    booking = result.value
    log_event(
        "BOOKING_UPDATE", user_id=g.user.id, entity="booking", entity_id=booking.id,
        metadata={"fields": sorted(data)},
    )
    return jsonify(_booking_json(booking)), 200


# ---------- cancel (policy window) ----------
@booking_bp.post("/bookings/<int:booking_id>/cancel")
@login_required
@role_rate_limit("booking")
def cancel_booking(booking_id: int):
    data = request.get_json(silent=True) or {}
    reason = data.get("reason")

    result = build_lifecycle().cancel(g.user, booking_id, reason=reason)
    if not result.ok:
        if result.error.kind == ErrorKind.TOO_LATE:
            log_event("BOOKING_CANCEL_TOO_LATE", user_id=g.user.id, entity="booking", entity_id=booking_id)
        return service_error_response(result.error)

    booking = result.value
    log_event(
        "BOOKING_CANCEL", user_id=g.user.id, entity="booking", entity_id=booking.id,
        metadata={"reason": booking.cancellation_reason},
    )
    return jsonify(_booking_json(booking)), 200


@booking_bp.get("/bookings/<int:booking_id>/cancelable")
@login_required
def booking_cancelable(booking_id: int):
    return jsonify(cancelable=build_lifecycle().check_cancelable(booking_id, g.user.id)), 200


# ---------- STAFF/ADMIN: status changes ----------
@booking_bp.post("/bookings/<int:booking_id>/confirm")
@require_action(Action.BOOKING_CONFIRM_MANAGED, Action.BOOKING_CONFIRM_ANY)
@role_rate_limit("booking")
def confirm_booking(booking_id: int):
    result = build_lifecycle().confirm(booking_id, principal=g.user)
    if not result.ok:
        return service_error_response(result.error)

    log_event("BOOKING_CONFIRM", user_id=g.user.id, entity="booking", entity_id=booking_id)
    return jsonify(_booking_json(result.value)), 200


@booking_bp.post("/bookings/<int:booking_id>/complete")
@require_action(Action.BOOKING_COMPLETE_MANAGED, Action.BOOKING_COMPLETE_ANY)
@role_rate_limit("booking")
def complete_booking(booking_id: int):
    result = build_lifecycle().complete(booking_id, principal=g.user)
    if not result.ok:
        return service_error_response(result.error)

    log_event("BOOKING_COMPLETE", user_id=g.user.id, entity="booking", entity_id=booking_id)
    return jsonify(_booking_json(result.value)), 200

