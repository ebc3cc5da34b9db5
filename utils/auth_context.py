from dataclasses import dataclass
from functools import wraps

from flask import current_app, g, request

from security.rbac import Role
from utils.responses import error_response


@dataclass(frozen=True)
class Principal:
    id: int
    role: Role
    account_status: str = "active"

    @property
    def is_active(self) -> bool:
        return self.account_status == "active"


def principal_from_headers(headers):
    """
    The authenticating gateway in front of this service forwards the verified
    identity as headers; anything malformed is treated as anonymous.
    """
    cfg = current_app.config
    raw_id = headers.get(cfg.get("IDENTITY_USER_HEADER", "X-User-Id"))
    raw_role = headers.get(cfg.get("IDENTITY_ROLE_HEADER", "X-User-Role"))
    raw_status = headers.get(cfg.get("IDENTITY_STATUS_HEADER", "X-Account-Status"))

    try:
        user_id = int(raw_id)
    except (TypeError, ValueError):
        return None

    role = Role.parse(raw_role)
    if role is None:
        return None

    status = (raw_status or "active").strip().lower()
    return Principal(id=user_id, role=role, account_status=status)


def load_current_user():
    g.user = principal_from_headers(request.headers)

def login_required(fn):
    @wraps(fn)
    def wrapper(*args, **kwargs):
        user = getattr(g, "user", None)
        if user is None:
            return error_response("Unauthorized", "Authentication required", 401)
        if not user.is_active:
            return error_response("Forbidden", "Account not active", 403)
        return fn(*args, **kwargs)
    return wrapper
