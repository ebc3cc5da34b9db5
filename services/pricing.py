from dataclasses import dataclass
from datetime import date
from decimal import ROUND_HALF_UP, Decimal

from services.errors import invalid_range, not_found

CENT = Decimal("0.01")


@dataclass(frozen=True)
class PriceQuote:
    days: int
    price_per_day: Decimal
    base_price: Decimal
    fees: Decimal
    total_price: Decimal


def billable_days(start_date: date, end_date: date) -> int:
    # inclusive: a single-day booking is one day
    return (end_date - start_date).days + 1


class PricingCalculator:
    """
    Prices a booking by calendar day. Time-of-day windows are not prorated.
    ``fee_rate`` is an optional service-fee share added on top of the base price.
    """

    def __init__(self, fee_rate=Decimal("0")):
        self.fee_rate = Decimal(str(fee_rate))
        if self.fee_rate < 0:
            raise ValueError("fee_rate must be >= 0")

    def quote(self, space, start_date: date, end_date: date, people_count=None) -> PriceQuote:
        if space is None:
            raise not_found("Space not found")
        if end_date < start_date:
            raise invalid_range("end_date must be on or after start_date")

        days = billable_days(start_date, end_date)
        per_day = max(Decimal(space.price_per_day or 0), Decimal("0"))
        base = (per_day * days).quantize(CENT, rounding=ROUND_HALF_UP)
        fees = (base * self.fee_rate).quantize(CENT, rounding=ROUND_HALF_UP)
        return PriceQuote(
            days=days,
            price_per_day=per_day,
            base_price=base,
            fees=fees,
            total_price=base + fees,
        )

    def compute(self, space, start_date: date, end_date: date, people_count=None) -> Decimal:
        return self.quote(space, start_date, end_date, people_count).total_price
