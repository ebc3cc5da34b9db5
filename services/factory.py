from decimal import Decimal

from flask import current_app

from services.bookings import BookingLifecycle
from services.conflicts import ConflictDetector
from services.payments import PaymentReconciler, PaymentService
from services.pricing import PricingCalculator
from services.space_registry import SpaceRegistry
from utils.clock import utcnow


def _clock():
    return current_app.config.get("CLOCK") or utcnow


def build_lifecycle() -> BookingLifecycle:
    cfg = current_app.config
    return BookingLifecycle(
        registry=SpaceRegistry(),
        detector=ConflictDetector(allow_back_to_back=cfg.get("ALLOW_BACK_TO_BACK_SLOTS", False)),
        pricing=PricingCalculator(fee_rate=Decimal(str(cfg.get("BOOKING_FEE_RATE", "0")))),
        clock=_clock(),
        cancel_cutoff_hours=cfg.get("CANCEL_CUTOFF_HOURS", 24),
    )


def build_detector() -> ConflictDetector:
    return ConflictDetector(allow_back_to_back=current_app.config.get("ALLOW_BACK_TO_BACK_SLOTS", False))


def build_payment_service() -> PaymentService:
    return PaymentService(
        registry=SpaceRegistry(),
        clock=_clock(),
        currency=current_app.config.get("PAYMENT_CURRENCY", "EUR"),
    )


def build_reconciler() -> PaymentReconciler:
    return PaymentReconciler(lifecycle=build_lifecycle(), clock=_clock())
