from flask import Blueprint, current_app, jsonify, request

from services.factory import build_reconciler
from services.stripe_gateway import PaymentProviderError, construct_webhook_event

webhook_bp = Blueprint("webhook", __name__, url_prefix="/webhooks")

# Stripe event type -> reconciler event type
EVENT_MAP = {
    "payment_intent.succeeded": "payment_succeeded",
    "payment_intent.payment_failed": "payment_failed",
    "payment_intent.canceled": "payment_canceled",
}


def _payload(event_type: str, intent: dict) -> dict:
    payload = {"intent_id": intent.get("id")}
    if event_type == "payment_succeeded":
        payload["payment_method"] = {
            "id": intent.get("payment_method"),
            "types": intent.get("payment_method_types"),
        }
    elif event_type == "payment_failed":
        err = intent.get("last_payment_error") or {}
        payload["reason"] = err.get("message") or err.get("code") or "payment failed"
    return payload


@webhook_bp.post("/stripe")
def stripe_webhook():
    sig_header = request.headers.get("Stripe-Signature")
    payload = request.get_data()

    try:
        event = construct_webhook_event(payload, sig_header)
    except PaymentProviderError as exc:
        current_app.logger.error("stripe webhook rejected: %s", exc)
        return jsonify(error="Webhook secret not configured"), 500
    except Exception:
        current_app.logger.warning("stripe webhook with invalid signature")
        return jsonify(error="Invalid webhook signature"), 400

    event_type = EVENT_MAP.get(event.get("type"))
    if event_type is None:
        current_app.logger.info("ignoring stripe event %s", event.get("type"))
        return jsonify(received=True), 200

    intent = event["data"]["object"]
    build_reconciler().handle_provider_event(event_type, _payload(event_type, intent))
    return jsonify(received=True), 200
