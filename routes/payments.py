from flask import Blueprint, current_app, g, jsonify, request

from models.payment import Payment
from security.rate_limit import role_rate_limit
from services.factory import build_payment_service
from services.stripe_gateway import PaymentProviderError
from utils.audit import log_event
from utils.auth_context import login_required
from utils.responses import error_response, service_error_response

payments_bp = Blueprint("payments", __name__, url_prefix="/payments")


def _payment_json(p: Payment) -> dict:
    return {
        "id": p.id,
        "booking_id": p.booking_id,
        "provider": p.provider,
        "intent_id": p.external_intent_id,
        "amount": str(p.amount),
        "currency": p.currency,
        "status": p.status,
        "failure_reason": p.failure_reason,
        "created_at": p.created_at.isoformat(),
        "completed_at": p.completed_at.isoformat() if p.completed_at else None,
    }


@payments_bp.post("/intents")
@login_required
@role_rate_limit("payment")
def start_payment():
    data = request.get_json(silent=True) or {}
    booking_id = data.get("booking_id")
    if booking_id is None:
        return error_response("ValidationError", "booking_id required", 400, {"field": "booking_id"})

    try:
        result = build_payment_service().start_payment(g.user, booking_id)
    except PaymentProviderError as exc:
        current_app.logger.error("payment intent creation failed for booking %s: %s", booking_id, exc)
        return error_response("PaymentProviderError", "Payment provider unavailable", 502)

    if not result.ok:
        return service_error_response(result.error)

    payment = result.value["payment"]
    log_event(
        "PAYMENT_INTENT_CREATED", user_id=g.user.id, entity="payment", entity_id=payment.id,
        metadata={"intent_id": payment.external_intent_id, "booking_id": payment.booking_id},
    )
    return jsonify(payment=_payment_json(payment), client_secret=result.value["client_secret"]), 201


@payments_bp.get("/booking/<int:booking_id>")
@login_required
def booking_payments(booking_id: int):
    service = build_payment_service()
    result = service.list_for_booking(g.user, booking_id)
    if not result.ok:
        return service_error_response(result.error)

    return jsonify(
        booking_id=booking_id,
        paid=service.is_paid(booking_id),
        payments=[_payment_json(p) for p in result.value],
    ), 200
