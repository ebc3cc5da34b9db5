import os

BASE_DIR = os.path.abspath(os.path.dirname(__file__))

def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes")

def _env_limit(name: str, default):
    raw = os.getenv(name)
    if raw is None:
        return default
    raw = raw.strip().lower()
    return None if raw in ("", "none", "unlimited") else int(raw)

class Config:
    # Secrets
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-only-change-me")

    # SQLite database file stored next to the app as spacebooking.db
    SQLALCHEMY_DATABASE_URI = os.getenv(
        "DATABASE_URL",
        "sqlite:///" + os.path.join(BASE_DIR, "spacebooking.db")
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Identity headers set by the authenticating gateway
    IDENTITY_USER_HEADER = os.getenv("IDENTITY_USER_HEADER", "X-User-Id")
    IDENTITY_ROLE_HEADER = os.getenv("IDENTITY_ROLE_HEADER", "X-User-Role")
    IDENTITY_STATUS_HEADER = os.getenv("IDENTITY_STATUS_HEADER", "X-Account-Status")

    # Cancellation policy (clients only)
    CANCEL_CUTOFF_HOURS = int(os.getenv("CANCEL_CUTOFF_HOURS", "24"))

    # Pricing: optional service fee share on top of price_per_day x days
    BOOKING_FEE_RATE = os.getenv("BOOKING_FEE_RATE", "0")

    # True: 09:00-10:00 and 10:00-11:00 on the same day do not collide
    ALLOW_BACK_TO_BACK_SLOTS = _env_bool("ALLOW_BACK_TO_BACK_SLOTS")

    # Role rate limit for booking/payment mutations (None = unlimited)
    BOOKING_RATE_LIMITS = {
        "client": _env_limit("RATE_LIMIT_CLIENT", 100),
        "manager": _env_limit("RATE_LIMIT_MANAGER", 200),
        "admin": _env_limit("RATE_LIMIT_ADMIN", None),
    }
    BOOKING_RATE_WINDOW_SECONDS = int(os.getenv("BOOKING_RATE_WINDOW_SECONDS", "3600"))

    # Stripe
    STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY")
    STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET")
    PAYMENT_CURRENCY = os.getenv("PAYMENT_CURRENCY", "EUR")

    # Callable returning naive UTC "now"; tests swap in a frozen clock
    CLOCK = None

    # Basic app settings
    DEBUG = False
