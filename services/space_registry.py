from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from models import db
from models.space import Space


@dataclass(frozen=True)
class SpaceInfo:
    id: int
    manager_id: int
    capacity: int
    price_per_day: Decimal
    is_active: bool


class SpaceRegistry:
    """Read-only view of spaces for the booking engine."""

    def get_space(self, space_id, include_inactive: bool = False) -> Optional[SpaceInfo]:
        if space_id is None:
            return None
        row = db.session.get(Space, space_id)
        if row is None or row.deleted_at is not None:
            return None
        if not row.is_active and not include_inactive:
            return None
        return SpaceInfo(
            id=row.id,
            manager_id=row.manager_id,
            capacity=row.capacity,
            price_per_day=Decimal(row.price_per_day or 0),
            is_active=row.is_active,
        )
