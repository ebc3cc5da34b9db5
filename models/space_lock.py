from models.db import db

class SpaceLock(db.Model):
    """One row per space; bumping ``version`` serializes booking writers for that space."""

    __tablename__ = "space_booking_locks"

    space_id = db.Column(db.Integer, db.ForeignKey("spaces.id"), primary_key=True, autoincrement=False)
    version = db.Column(db.Integer, nullable=False, default=0)
