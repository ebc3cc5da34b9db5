from datetime import timedelta
from functools import wraps

from flask import current_app, g
from sqlalchemy.exc import IntegrityError

from models import db
from models.rate_limit import RateLimitBucket
from utils.clock import utcnow
from utils.responses import error_response

DEFAULT_LIMITS = {"client": 100, "manager": 200, "admin": None}

def check_and_increment(key: str, max_requests: int, window_seconds: int, now=None) -> tuple[bool, int]:
    """
    Returns (allowed, retry_after_seconds).
    Simple fixed window per key, persisted so every instance shares it.
    """
    now = now or utcnow()
    row = _bucket_for(key, now)

    window_end = row.window_start + timedelta(seconds=window_seconds)

    # Reset window if expired
    if now >= window_end:
        row.window_start = now
        row.count = 0
        window_end = row.window_start + timedelta(seconds=window_seconds)

    row.count += 1
    db.session.commit()

    if row.count > max_requests:
        retry_after = int((window_end - now).total_seconds())
        return False, max(retry_after, 1)

    return True, 0


def _load_bucket(key: str):
    return RateLimitBucket.query.filter_by(key=key).first()


def _bucket_for(key: str, now) -> RateLimitBucket:
    row = _load_bucket(key)
    if row:
        return row

    row = RateLimitBucket(key=key, window_start=now, count=0)
    db.session.add(row)
    try:
        db.session.flush()
    except IntegrityError:
        # first requests for the same key raced; use the bucket that won
        db.session.rollback()
        row = _load_bucket(key)
    return row


def role_rate_limit(scope: str):
    """
    Per-principal limit whose size depends on the role; a limit of None means unlimited.
    Usage: @role_rate_limit("booking")
    """
    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            user = getattr(g, "user", None)
            if user is None:
                return fn(*args, **kwargs)

            limits = current_app.config.get("BOOKING_RATE_LIMITS", DEFAULT_LIMITS)
            limit = limits.get(user.role.value)
            if limit is None:
                return fn(*args, **kwargs)

            window = current_app.config.get("BOOKING_RATE_WINDOW_SECONDS", 3600)
            now = (current_app.config.get("CLOCK") or utcnow)()
            allowed, retry_after = check_and_increment(f"{scope}:{user.id}", limit, window, now=now)
            if not allowed:
                current_app.logger.warning(
                    "rate limit exceeded scope=%s user=%s role=%s", scope, user.id, user.role.value
                )
                resp, status = error_response(
                    "RateLimited", "Too many requests, try again later", 429, {"retry_after": retry_after}
                )
                resp.headers["Retry-After"] = str(retry_after)
                return resp, status
            return fn(*args, **kwargs)
        return wrapper
    return decorator
