import json

from flask import current_app

from models import db
from models.booking import PENDING as BOOKING_PENDING
from models.booking import Booking
from models.payment import CANCELED, COMPLETED, FAILED, PENDING, Payment
from security.rbac import Action, may_act_on
from services import stripe_gateway
from services.bookings import BookingLifecycle
from services.errors import forbidden, invalid_state, not_found, unit_of_work, validation_error
from services.locks import lock_space
from services.space_registry import SpaceRegistry
from services.stripe_gateway import PaymentProviderError
from utils.audit import log_event
from utils.clock import utcnow


def is_booking_paid(booking_id) -> bool:
    return (
        Payment.query
        .filter(
            Payment.booking_id == booking_id,
            Payment.status == COMPLETED,
            Payment.deleted_at.is_(None),
        )
        .first()
        is not None
    )


class PaymentService:
    """Starts provider payments for bookings and exposes payment state."""

    def __init__(self, registry: SpaceRegistry = None, clock=utcnow, currency: str = "EUR", gateway=stripe_gateway):
        self.registry = registry or SpaceRegistry()
        self.clock = clock
        self.currency = currency
        self.gateway = gateway

    @unit_of_work
    def start_payment(self, principal, booking_id) -> dict:
        booking = self._load_booking(booking_id)

        if principal is None or not principal.is_active:
            raise forbidden("Account not active")
        if not may_act_on(principal, booking.user_id, None, own=Action.PAYMENT_START_OWN, any_=Action.PAYMENT_START_ANY):
            raise forbidden("Not allowed to pay for this booking")

        # starts for the same space queue here, then see each other's rows
        lock_space(booking.space_id)
        db.session.refresh(booking)

        if booking.status != BOOKING_PENDING:
            raise invalid_state(f"Booking in status {booking.status} is not awaiting payment")
        if is_booking_paid(booking.id):
            raise invalid_state("Booking already paid")
        if booking.total_price is None or booking.total_price <= 0:
            raise invalid_state("Booking has nothing to pay")

        intent = self.gateway.create_payment_intent(
            booking.total_price,
            self.currency,
            metadata={"booking_id": booking.id, "user_id": booking.user_id},
            description=f"Space booking #{booking.id} ({booking.start_date.isoformat()})",
        )
        try:
            payment = self._record_intent(booking, intent)
        except Exception:
            # an intent with no payment row can never be reconciled
            self._cancel_intent(intent["id"])
            raise
        return {"payment": payment, "client_secret": intent.get("client_secret")}

    def _record_intent(self, booking, intent: dict) -> Payment:
        now = self.clock()
        # only the newest payment may confirm the booking
        (
            Payment.query
            .filter(
                Payment.booking_id == booking.id,
                Payment.status == PENDING,
                Payment.deleted_at.is_(None),
            )
            .update({Payment.deleted_at: now, Payment.updated_at: now}, synchronize_session=False)
        )

        payment = Payment(
            booking_id=booking.id,
            provider="stripe",
            external_intent_id=intent["id"],
            amount=booking.total_price,
            currency=self.currency,
            status=PENDING,
            created_at=now,
            updated_at=now,
        )
        db.session.add(payment)
        db.session.commit()
        return payment

    def _cancel_intent(self, intent_id: str) -> None:
        try:
            self.gateway.cancel_payment_intent(intent_id)
        except PaymentProviderError:
            current_app.logger.exception("Could not cancel unrecorded payment intent %s", intent_id)

    @unit_of_work
    def list_for_booking(self, principal, booking_id) -> list:
        booking = self._load_booking(booking_id)
        space = self.registry.get_space(booking.space_id, include_inactive=True)

        if principal is None or not principal.is_active:
            raise forbidden("Account not active")
        if not may_act_on(
            principal, booking.user_id, space.manager_id if space else None,
            own=Action.PAYMENT_READ_OWN,
            managed=Action.PAYMENT_READ_MANAGED,
            any_=Action.PAYMENT_READ_ANY,
        ):
            raise forbidden("Not allowed to view payments for this booking")

        return (
            Payment.query
            .filter(Payment.booking_id == booking.id, Payment.deleted_at.is_(None))
            .order_by(Payment.created_at.desc(), Payment.id.desc())
            .all()
        )

    def is_paid(self, booking_id) -> bool:
        return is_booking_paid(booking_id)

    def _load_booking(self, booking_id) -> Booking:
        try:
            booking_id = int(booking_id)
        except (TypeError, ValueError):
            raise validation_error("booking_id must be an integer id", field="booking_id")
        booking = db.session.get(Booking, booking_id)
        if booking is None:
            raise not_found("Booking not found")
        return booking


class PaymentReconciler:
    """
    Applies provider events to payments and bookings.

    Providers deliver at least once, so every handler is idempotent. Nothing
    is raised to the caller: the webhook must answer 200 whatever happens here,
    otherwise the provider keeps retrying.
    """

    def __init__(self, lifecycle: BookingLifecycle = None, clock=utcnow):
        self.lifecycle = lifecycle or BookingLifecycle(clock=clock)
        self.clock = clock
        self._handlers = {
            "payment_succeeded": self._on_succeeded,
            "payment_failed": self._on_failed,
            "payment_canceled": self._on_canceled,
        }

    def handle_provider_event(self, event_type: str, payload: dict) -> None:
        handler = self._handlers.get(event_type)
        if handler is None:
            current_app.logger.info("ignoring payment event type=%s", event_type)
            return
        try:
            handler(payload or {})
        except Exception:
            db.session.rollback()
            current_app.logger.exception("payment event type=%s failed; payload=%r", event_type, payload)

    def _find(self, event_type: str, payload: dict):
        intent_id = payload.get("intent_id")
        payment = Payment.query.filter_by(external_intent_id=intent_id).first() if intent_id else None
        if payment is None:
            current_app.logger.warning("%s for unknown payment intent %s", event_type, intent_id)
        return payment

    def _on_succeeded(self, payload: dict):
        payment = self._find("payment_succeeded", payload)
        if payment is None:
            return
        if payment.status == COMPLETED:
            current_app.logger.info("duplicate payment_succeeded for intent %s", payment.external_intent_id)
            return

        now = self.clock()
        values = {
            Payment.status: COMPLETED,
            Payment.completed_at: now,
            Payment.updated_at: now,
            Payment.failure_reason: None,
        }
        if payload.get("payment_method"):
            values[Payment.payment_method_json] = json.dumps(payload["payment_method"], default=str)

        # compare-and-set: concurrent deliveries of the same event complete it once
        updated = (
            Payment.query
            .filter(Payment.id == payment.id, Payment.status != COMPLETED)
            .update(values, synchronize_session=False)
        )
        db.session.commit()
        if not updated:
            return

        log_event(
            "PAYMENT_COMPLETED", entity="payment", entity_id=payment.id,
            metadata={"intent_id": payment.external_intent_id, "booking_id": payment.booking_id},
        )

        if payment.deleted_at is not None:
            current_app.logger.warning(
                "superseded payment %s completed; booking %s left unchanged", payment.id, payment.booking_id
            )
            return

        booking = db.session.get(Booking, payment.booking_id)
        if booking is None or booking.status != BOOKING_PENDING:
            return

        result = self.lifecycle.confirm(booking.id)
        if result.ok:
            log_event(
                "BOOKING_CONFIRM", entity="booking", entity_id=booking.id,
                metadata={"source": "payment", "payment_id": payment.id},
            )
        else:
            current_app.logger.info("booking %s not confirmed after payment: %s", booking.id, result.error.message)

    def _on_failed(self, payload: dict):
        self._mark(payload, "payment_failed", FAILED, "PAYMENT_FAILED", reason=payload.get("reason"))

    def _on_canceled(self, payload: dict):
        self._mark(payload, "payment_canceled", CANCELED, "PAYMENT_CANCELED")

    def _mark(self, payload: dict, event_type: str, status: str, action: str, reason=None):
        # the booking is left as it is so the client can retry the payment
        payment = self._find(event_type, payload)
        if payment is None:
            return
        if payment.status == COMPLETED:
            current_app.logger.warning("%s ignored for completed payment %s", event_type, payment.id)
            return
        if payment.status == status:
            return

        now = self.clock()
        values = {Payment.status: status, Payment.updated_at: now}
        if reason is not None:
            values[Payment.failure_reason] = str(reason)[:255]
        updated = (
            Payment.query
            .filter(Payment.id == payment.id, Payment.status != COMPLETED)
            .update(values, synchronize_session=False)
        )
        db.session.commit()
        if updated:
            log_event(
                action, entity="payment", entity_id=payment.id,
                metadata={"intent_id": payment.external_intent_id, "reason": reason},
            )
