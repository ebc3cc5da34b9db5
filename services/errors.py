"""
Error kinds and the result envelope returned by the booking core.

Lifecycle code raises ``BookingFailure`` internally; the public operations
catch it and hand back a ``Result`` so no domain exception leaves the
component.
"""
from dataclasses import dataclass, field
from enum import Enum
from functools import wraps
from typing import Any, Dict, Optional

from models import db


class ErrorKind(str, Enum):
    NOT_FOUND = "NotFound"
    FORBIDDEN = "Forbidden"
    INVALID_RANGE = "InvalidRange"
    CAPACITY_EXCEEDED = "CapacityExceeded"
    CONFLICT = "Conflict"
    INVALID_STATE = "InvalidState"
    TOO_LATE = "TooLate"
    VALIDATION_ERROR = "ValidationError"


@dataclass(frozen=True)
class ServiceError:
    kind: ErrorKind
    message: str
    details: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"kind": self.kind.value, "message": self.message}
        if self.details is not None:
            out["details"] = self.details
        return out


@dataclass(frozen=True)
class Result:
    value: Any = None
    error: Optional[ServiceError] = field(default=None)

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: Any = None) -> "Result":
        return cls(value=value)

    @classmethod
    def failure(cls, error: ServiceError) -> "Result":
        return cls(error=error)


class BookingFailure(Exception):
    def __init__(self, kind: ErrorKind, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.error = ServiceError(kind=kind, message=message, details=details)

    @property
    def kind(self) -> ErrorKind:
        return self.error.kind


def not_found(message: str) -> BookingFailure:
    return BookingFailure(ErrorKind.NOT_FOUND, message)


def forbidden(message: str = "Forbidden") -> BookingFailure:
    return BookingFailure(ErrorKind.FORBIDDEN, message)


def invalid_range(message: str) -> BookingFailure:
    return BookingFailure(ErrorKind.INVALID_RANGE, message)


def invalid_state(message: str) -> BookingFailure:
    return BookingFailure(ErrorKind.INVALID_STATE, message)


def validation_error(message: str, **details: Any) -> BookingFailure:
    return BookingFailure(ErrorKind.VALIDATION_ERROR, message, details or None)


def unit_of_work(fn):
    """
    Run a service operation as one transaction: domain failures roll back and
    come back as ``Result.failure``; anything else rolls back and propagates.
    """
    @wraps(fn)
    def wrapper(*args, **kwargs):
        try:
            return Result.success(fn(*args, **kwargs))
        except BookingFailure as exc:
            db.session.rollback()
            return Result.failure(exc.error)
        except Exception:
            db.session.rollback()
            raise
    return wrapper
