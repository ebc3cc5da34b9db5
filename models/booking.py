from models.db import db
from utils.clock import utcnow

PENDING = "pending"
CONFIRMED = "confirmed"
CANCELLED = "cancelled"
COMPLETED = "completed"

STATUSES = (PENDING, CONFIRMED, CANCELLED, COMPLETED)

# statuses that occupy the space and take part in conflict checks
ACTIVE_STATUSES = (PENDING, CONFIRMED)

class Booking(db.Model):
    __tablename__ = "bookings"

    id = db.Column(db.Integer, primary_key=True)

    space_id = db.Column(db.Integer, db.ForeignKey("spaces.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, nullable=False, index=True)

    start_date = db.Column(db.Date, nullable=False, index=True)
    end_date = db.Column(db.Date, nullable=False)
    start_time = db.Column(db.Time, nullable=True)
    end_time = db.Column(db.Time, nullable=True)

    people_count = db.Column(db.Integer, nullable=False, default=1)
    status = db.Column(db.String(20), nullable=False, default=PENDING)
    total_price = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow, nullable=False)
    cancelled_at = db.Column(db.DateTime, nullable=True)
    cancellation_reason = db.Column(db.String(255), nullable=True)

    __table_args__ = (
        db.CheckConstraint("end_date >= start_date", name="ck_bookings_date_order"),
        db.CheckConstraint("people_count > 0", name="ck_bookings_people_positive"),
        db.CheckConstraint(
            "status IN ('pending', 'confirmed', 'cancelled', 'completed')",
            name="ck_bookings_status",
        ),
        db.Index("ix_bookings_space_window", "space_id", "status", "start_date", "end_date"),
    )

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES
