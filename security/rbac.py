from enum import Enum
from functools import wraps

from flask import g

from utils.responses import error_response


class Role(str, Enum):
    CLIENT = "client"
    MANAGER = "manager"
    ADMIN = "admin"

    @classmethod
    def parse(cls, value):
        if isinstance(value, cls):
            return value
        try:
            return cls((value or "").strip().lower())
        except ValueError:
            return None


class Action(str, Enum):
    BOOKING_CREATE = "bookings:create"
    BOOKING_READ_OWN = "bookings:read:own"
    BOOKING_READ_MANAGED = "bookings:read:managed"
    BOOKING_READ_ANY = "bookings:read:any"
    BOOKING_UPDATE_OWN = "bookings:update:own"
    BOOKING_UPDATE_MANAGED = "bookings:update:managed"
    BOOKING_UPDATE_ANY = "bookings:update:any"
    BOOKING_CANCEL_OWN = "bookings:cancel:own"
    BOOKING_CANCEL_MANAGED = "bookings:cancel:managed"
    BOOKING_CANCEL_ANY = "bookings:cancel:any"
    BOOKING_CONFIRM_MANAGED = "bookings:confirm:managed"
    BOOKING_CONFIRM_ANY = "bookings:confirm:any"
    BOOKING_COMPLETE_MANAGED = "bookings:complete:managed"
    BOOKING_COMPLETE_ANY = "bookings:complete:any"
    BOOKING_SET_PRICE = "bookings:set_price"
    CONFLICTS_CHECK = "conflicts:check"
    PAYMENT_START_OWN = "payments:start:own"
    PAYMENT_START_ANY = "payments:start:any"
    PAYMENT_READ_OWN = "payments:read:own"
    PAYMENT_READ_MANAGED = "payments:read:managed"
    PAYMENT_READ_ANY = "payments:read:any"


ROLE_CAPABILITIES = {
    Role.CLIENT: frozenset({
        Action.BOOKING_CREATE,
        Action.BOOKING_READ_OWN,
        Action.BOOKING_UPDATE_OWN,
        Action.BOOKING_CANCEL_OWN,
        Action.CONFLICTS_CHECK,
        Action.PAYMENT_START_OWN,
        Action.PAYMENT_READ_OWN,
    }),
    Role.MANAGER: frozenset({
        Action.BOOKING_CREATE,
        Action.BOOKING_READ_OWN,
        Action.BOOKING_READ_MANAGED,
        Action.BOOKING_UPDATE_MANAGED,
        Action.BOOKING_CANCEL_OWN,
        Action.BOOKING_CANCEL_MANAGED,
        Action.BOOKING_CONFIRM_MANAGED,
        Action.BOOKING_COMPLETE_MANAGED,
        Action.BOOKING_SET_PRICE,
        Action.CONFLICTS_CHECK,
        Action.PAYMENT_READ_MANAGED,
    }),
    Role.ADMIN: frozenset(Action),
}


def allows(role, action: Action) -> bool:
    role = Role.parse(role)
    if role is None:
        return False
    return action in ROLE_CAPABILITIES.get(role, frozenset())


def may_act_on(principal, owner_id, manager_id, own: Action = None, managed: Action = None, any_: Action = None) -> bool:
    """
    Scoped check: ``any_`` grants everything, ``managed`` needs the principal to
    manage the space, ``own`` needs the principal to own the record.
    """
    if principal is None:
        return False
    role = principal.role
    if any_ is not None and allows(role, any_):
        return True
    if managed is not None and allows(role, managed) and manager_id == principal.id:
        return True
    if own is not None and allows(role, own) and owner_id == principal.id:
        return True
    return False


def require_action(*actions: Action):
    """
    Usage: @require_action(Action.BOOKING_CONFIRM_MANAGED, Action.BOOKING_CONFIRM_ANY)
    Passes when the current principal holds at least one of the actions.
    """
    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            user = getattr(g, "user", None)
            if user is None:
                return error_response("Unauthorized", "Authentication required", 401)
            if not user.is_active:
                return error_response("Forbidden", "Account not active", 403)

            if not any(allows(user.role, a) for a in actions):
                return error_response("Forbidden", "Forbidden", 403)

            return fn(*args, **kwargs)
        return wrapper
    return decorator
