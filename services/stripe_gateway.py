from decimal import ROUND_HALF_UP, Decimal

import stripe
from flask import current_app


class PaymentProviderError(RuntimeError):
    pass


def to_minor_units(amount) -> int:
    # Stripe expects the smallest currency unit (cents)
    return int((Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _secret_key() -> str:
    key = current_app.config.get("STRIPE_SECRET_KEY")
    if not key:
        raise PaymentProviderError("Stripe secret key missing (STRIPE_SECRET_KEY)")
    return key


def create_payment_intent(amount, currency: str, metadata: dict, description: str = None) -> dict:
    try:
        intent = stripe.PaymentIntent.create(
            amount=to_minor_units(amount),
            currency=currency.lower(),
            automatic_payment_methods={"enabled": True},
            metadata={k: str(v) for k, v in metadata.items() if v is not None},
            description=description,
            api_key=_secret_key(),
        )
    except stripe.StripeError as exc:
        raise PaymentProviderError(str(exc)) from exc
    return {"id": intent["id"], "client_secret": intent.get("client_secret")}


def construct_webhook_event(payload: bytes, sig_header: str):
    """Verify the Stripe-Signature header; raises on a bad or missing signature."""
    secret = current_app.config.get("STRIPE_WEBHOOK_SECRET")
    if not secret:
        raise PaymentProviderError("Webhook secret not configured")
    return stripe.Webhook.construct_event(payload, sig_header, secret)


def cancel_payment_intent(intent_id: str) -> None:
    try:
        stripe.PaymentIntent.cancel(intent_id, api_key=_secret_key())
    except stripe.StripeError as exc:
        raise PaymentProviderError(str(exc)) from exc
