from .db import db
from .audit_log import AuditLog
from .rate_limit import RateLimitBucket
from .space import Space
from .space_lock import SpaceLock
from .booking import Booking
from .payment import Payment
