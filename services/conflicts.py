"""
Availability checks for a space.

Two reservations collide when they are for the same space, both still occupy
it (pending or confirmed), their inclusive date ranges intersect and, if both
carry a time-of-day window, those windows intersect too. A reservation without
a time window holds the whole day.
"""
from dataclasses import dataclass
from datetime import date, time, timedelta
from typing import List, Optional

from sqlalchemy import and_, or_

from models.booking import ACTIVE_STATUSES, Booking


@dataclass(frozen=True)
class Window:
    start_date: date
    end_date: date
    start_time: Optional[time] = None
    end_time: Optional[time] = None

    @property
    def full_day(self) -> bool:
        return self.start_time is None or self.end_time is None

    @classmethod
    def of(cls, booking) -> "Window":
        return cls(booking.start_date, booking.end_date, booking.start_time, booking.end_time)


def windows_overlap(a: Window, b: Window, strict_times: bool = False) -> bool:
    if not (a.start_date <= b.end_date and a.end_date >= b.start_date):
        return False
    if a.full_day or b.full_day:
        return True
    if strict_times:
        return a.start_time < b.end_time and a.end_time > b.start_time
    return a.start_time <= b.end_time and a.end_time >= b.start_time


def conflict_summary(booking) -> dict:
    return {
        "id": booking.id,
        "start_date": booking.start_date.isoformat(),
        "end_date": booking.end_date.isoformat(),
        "start_time": booking.start_time.isoformat(timespec="minutes") if booking.start_time else None,
        "end_time": booking.end_time.isoformat(timespec="minutes") if booking.end_time else None,
        "status": booking.status,
    }


class ConflictDetector:
    def __init__(self, allow_back_to_back: bool = False):
        # True: 09:00-10:00 and 10:00-11:00 do not collide
        self.allow_back_to_back = allow_back_to_back

    def find_conflicts(
        self,
        space_id: int,
        start_date: date,
        end_date: date,
        start_time: Optional[time] = None,
        end_time: Optional[time] = None,
        exclude_booking_id: Optional[int] = None,
    ) -> List[Booking]:
        q = Booking.query.filter(
            Booking.space_id == space_id,
            Booking.status.in_(ACTIVE_STATUSES),
            Booking.start_date <= end_date,
            Booking.end_date >= start_date,
        )

        if start_time is not None and end_time is not None:
            if self.allow_back_to_back:
                times_clash = and_(Booking.start_time < end_time, Booking.end_time > start_time)
            else:
                times_clash = and_(Booking.start_time <= end_time, Booking.end_time >= start_time)
            q = q.filter(or_(Booking.start_time.is_(None), Booking.end_time.is_(None), times_clash))

        if exclude_booking_id is not None:
            q = q.filter(Booking.id != exclude_booking_id)

        return q.order_by(Booking.start_date.asc(), Booking.start_time.asc(), Booking.id.asc()).all()

    def has_conflict(self, *args, **kwargs) -> bool:
        return len(self.find_conflicts(*args, **kwargs)) > 0

    def check(self, *args, **kwargs) -> dict:
        conflicts = self.find_conflicts(*args, **kwargs)
        return {
            "has_conflicts": len(conflicts) > 0,
            "conflicts": [conflict_summary(b) for b in conflicts],
        }

    def occupied_slots(self, space_id: int, from_date: date, to_date: date) -> List[dict]:
        """Active reservations touching [from_date, to_date], without booker identity."""
        rows = self.find_conflicts(space_id, from_date, to_date)
        return [dict(conflict_summary(b), people_count=b.people_count) for b in rows]

    def availability_calendar(self, space_id: int, start_date: date, end_date: date) -> List[dict]:
        """
        One entry per day in the range. A day is available when no active
        reservation touches it; timed reservations are listed so a client can
        still pick a free window on a partly booked day.
        """
        rows = self.find_conflicts(space_id, start_date, end_date)
        calendar = []
        day = start_date
        while day <= end_date:
            taken = [b for b in rows if b.start_date <= day <= b.end_date]
            calendar.append({
                "date": day.isoformat(),
                "available": not taken,
                "full_day": any(Window.of(b).full_day for b in taken),
                "slots": [
                    {
                        "start_time": b.start_time.isoformat(timespec="minutes") if b.start_time else None,
                        "end_time": b.end_time.isoformat(timespec="minutes") if b.end_time else None,
                        "status": b.status,
                        "people_count": b.people_count,
                    }
                    for b in taken
                ],
            })
            day += timedelta(days=1)
        return calendar
