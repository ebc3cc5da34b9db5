from flask import Blueprint, g, jsonify, request

from security.rbac import Action, require_action
from services.factory import build_lifecycle
from utils.responses import service_error_response

spaces_bp = Blueprint("spaces", __name__, url_prefix="/spaces")


@spaces_bp.get("/<int:space_id>/pricing")
@require_action(Action.CONFLICTS_CHECK)
def price_quote(space_id: int):
    args = request.args
    result = build_lifecycle().quote(
        g.user, space_id, args.get("start_date"), args.get("end_date"),
        people_count=args.get("people_count", 1),
    )
    if not result.ok:
        return service_error_response(result.error)

    q = result.value
    return jsonify(
        space_id=space_id,
        days=q.days,
        price_per_day=str(q.price_per_day),
        base_price=str(q.base_price),
        fees=str(q.fees),
        total_price=str(q.total_price),
    ), 200


@spaces_bp.get("/<int:space_id>/occupied-slots")
@require_action(Action.CONFLICTS_CHECK)
def occupied_slots(space_id: int):
    result = build_lifecycle().occupied_slots(
        g.user, space_id, request.args.get("from_date"), request.args.get("to_date")
    )
    if not result.ok:
        return service_error_response(result.error)
    return jsonify(space_id=space_id, slots=result.value), 200


@spaces_bp.get("/<int:space_id>/calendar")
@require_action(Action.CONFLICTS_CHECK)
def availability_calendar(space_id: int):
    result = build_lifecycle().availability_calendar(
        g.user, space_id, request.args.get("start_date"), request.args.get("end_date")
    )
    if not result.ok:
        return service_error_response(result.error)
    return jsonify(space_id=space_id, calendar=result.value), 200
