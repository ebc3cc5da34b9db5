from models.db import db
from utils.clock import utcnow

class Space(db.Model):
    __tablename__ = "spaces"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)

    # owner of the space; the identity collaborator knows the matching principal
    manager_id = db.Column(db.Integer, nullable=False, index=True)

    capacity = db.Column(db.Integer, nullable=False)
    price_per_day = db.Column(db.Numeric(10, 2), nullable=False, default=0)

    is_active = db.Column(db.Boolean, default=True, nullable=False)
    deleted_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        db.CheckConstraint("capacity > 0", name="ck_spaces_capacity_positive"),
        db.CheckConstraint("price_per_day >= 0", name="ck_spaces_price_non_negative"),
    )
