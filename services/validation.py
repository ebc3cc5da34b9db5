from datetime import date, datetime, time
from decimal import Decimal, InvalidOperation

from services.errors import validation_error


def coerce_date(value, field: str) -> date:
    # Expect ISO format like "2026-01-20"
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str) and value.strip():
        try:
            return date.fromisoformat(value.strip())
        except ValueError:
            pass
    raise validation_error(f"{field} must be a date (YYYY-MM-DD)", field=field)


def coerce_time(value, field: str):
    if value is None or value == "":
        return None
    parsed = None
    if isinstance(value, time):
        parsed = value
    elif isinstance(value, str):
        try:
            parsed = time.fromisoformat(value.strip())
        except ValueError:
            pass
    if parsed is None:
        raise validation_error(f"{field} must be a time of day (HH:MM)", field=field)
    # stored times are local to the space; an offset cannot be compared with them
    if parsed.tzinfo is not None:
        raise validation_error(f"{field} must not carry a UTC offset", field=field)
    return parsed


def coerce_people_count(value) -> int:
    # bool is an int subclass; reject it explicitly
    if isinstance(value, bool):
        raise validation_error("people_count must be a positive integer", field="people_count")
    try:
        count = int(value)
    except (TypeError, ValueError):
        raise validation_error("people_count must be a positive integer", field="people_count")
    if isinstance(value, float) and value != count:
        raise validation_error("people_count must be a positive integer", field="people_count")
    if count < 1:
        raise validation_error("people_count must be a positive integer", field="people_count")
    return count


def coerce_price(value) -> Decimal:
    try:
        price = Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        raise validation_error("total_price must be a decimal amount", field="total_price")
    if not price.is_finite() or price < 0:
        raise validation_error("total_price must be a non-negative amount", field="total_price")
    return price.quantize(Decimal("0.01"))


def coerce_notes(value):
    if value is None:
        return None
    if not isinstance(value, str):
        raise validation_error("notes must be a string", field="notes")
    return value.strip() or None


def require_time_pair(start_time, end_time):
    if (start_time is None) != (end_time is None):
        raise validation_error("start_time and end_time must be provided together", field="start_time")
