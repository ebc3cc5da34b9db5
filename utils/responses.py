from flask import jsonify

from services.errors import ErrorKind

STATUS_BY_KIND = {
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.INVALID_RANGE: 400,
    ErrorKind.CAPACITY_EXCEEDED: 400,
    ErrorKind.CONFLICT: 409,
    ErrorKind.INVALID_STATE: 409,
    ErrorKind.TOO_LATE: 400,
    ErrorKind.VALIDATION_ERROR: 400,
}


def error_response(kind: str, message: str, status: int, details=None):
    body = {"kind": kind, "message": message}
    if details is not None:
        body["details"] = details
    return jsonify(error=body), status


def service_error_response(error):
    """Map a ServiceError to its HTTP response."""
    return jsonify(error=error.to_dict()), STATUS_BY_KIND.get(error.kind, 400)
