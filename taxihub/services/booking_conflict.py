"""
Driver / vehicle conflict detection.

Windows are half-open ``[start, end)``: a booking ending at 10:00 and another
starting at 10:00 do not conflict. Only active bookings (scheduled, confirmed)
that are not soft-deleted take part.
"""
from dataclasses import dataclass, asdict
from datetime import datetime
from typing import Optional, List, Dict, Any

from sqlalchemy.orm import Session
from sqlalchemy import and_, not_, or_

from ..models.models import Booking
from .booking_lifecycle import ACTIVE_STATUSES
from .time_rules import to_iso_utc

RESOURCE_COLUMNS = {
    "driver": Booking.driver_id,
    "vehicle": Booking.vehicle_id,
}

# Same cap the availability endpoint has always applied per resource
MAX_CONFLICTS_PER_RESOURCE = 10


@dataclass
class Conflict:
    booking_id: int
    start_time: datetime
    end_time: datetime
    resource: str

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["start_time"] = to_iso_utc(self.start_time)
        data["end_time"] = to_iso_utc(self.end_time)
        return data


def intervals_overlap(start1: datetime, end1: datetime, start2: datetime, end2: datetime) -> bool:
    """Two half-open intervals overlap iff neither ends before the other starts."""
    return not (end1 <= start2 or start1 >= end2)


def overlap_clause(start: datetime, end: datetime):
    """SQL form of ``intervals_overlap`` against the booking window columns."""
    return not_(or_(Booking.end_time <= start, Booking.start_time >= end))


def find_conflicts(
    db: Session,
    resource: str,
    resource_id: Optional[int],
    start: datetime,
    end: datetime,
    exclude_booking_id: Optional[int] = None,
    limit: Optional[int] = MAX_CONFLICTS_PER_RESOURCE,
) -> List[Conflict]:
    """
    Get bookings on a driver or vehicle that overlap a window.

    Args:
        db: Database session
        resource: "driver" or "vehicle"
        resource_id: Driver user id or vehicle id; None means nothing to check
        start: Window start (naive UTC)
        end: Window end (naive UTC), strictly after start
        exclude_booking_id: Booking to ignore (update-in-place checks)
        limit: Maximum conflicts returned, None for all

    Returns:
        List of Conflict, empty when the resource is available
    """
    if resource not in RESOURCE_COLUMNS:
        raise ValueError(f"Unknown resource kind: {resource}")
    if not resource_id:
        return []

    column = RESOURCE_COLUMNS[resource]
    query = db.query(Booking).filter(
        and_(
            column == resource_id,
            Booking.status.in_(ACTIVE_STATUSES),
            Booking.deleted.is_(False),
            overlap_clause(start, end),
        )
    )
    if exclude_booking_id:
        query = query.filter(Booking.id != exclude_booking_id)
    query = query.order_by(Booking.start_time.asc(), Booking.id.asc())
    if limit:
        query = query.limit(limit)

    return [Conflict(b.id, b.start_time, b.end_time, resource) for b in query.all()]


def has_conflict(
    db: Session,
    resource: str,
    resource_id: Optional[int],
    start: datetime,
    end: datetime,
    exclude_booking_id: Optional[int] = None,
) -> bool:
    return bool(find_conflicts(db, resource, resource_id, start, end, exclude_booking_id, limit=1))


def check_availability(
    db: Session,
    start: datetime,
    end: datetime,
    driver_id: Optional[int] = None,
    vehicle_id: Optional[int] = None,
    exclude_booking_id: Optional[int] = None,
) -> Dict[str, Any]:
    """
    Check driver and vehicle independently over one window.

    Only the resources asked about get an ``<kind>_available`` key; the
    conflict list merges both kinds, tagged by ``resource``.
    """
    result: Dict[str, Any] = {}
    conflicts: List[Conflict] = []
    for kind, resource_id in (("driver", driver_id), ("vehicle", vehicle_id)):
        if not resource_id:
            continue
        found = find_conflicts(db, kind, resource_id, start, end, exclude_booking_id)
        result[f"{kind}_available"] = not found
        conflicts.extend(found)
    result["conflicts"] = [c.to_dict() for c in conflicts]
    return result
