from models.db import db
from utils.clock import utcnow

PENDING = "pending"
COMPLETED = "completed"
FAILED = "failed"
CANCELED = "canceled"

class Payment(db.Model):
    __tablename__ = "payments"

    id = db.Column(db.Integer, primary_key=True)
    booking_id = db.Column(db.Integer, db.ForeignKey("bookings.id"), nullable=False, index=True)

    provider = db.Column(db.String(20), nullable=False, default="stripe")
    external_intent_id = db.Column(db.String(255), nullable=False, unique=True, index=True)

    amount = db.Column(db.Numeric(10, 2), nullable=False)
    currency = db.Column(db.String(10), nullable=False, default="EUR")

    status = db.Column(db.String(20), nullable=False, default=PENDING)  # pending, completed, failed, canceled
    payment_method_json = db.Column(db.Text, nullable=True)
    failure_reason = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow, nullable=False)
    completed_at = db.Column(db.DateTime, nullable=True)
    deleted_at = db.Column(db.DateTime, nullable=True)
