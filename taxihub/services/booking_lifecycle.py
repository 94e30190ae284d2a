"""
Booking status lifecycle.

The transition map is advisory: admins may set any status through an update,
and doing so off the map is logged rather than rejected. The only transitions
enforced in code are create -> scheduled, confirm -> confirmed and
decline -> cancelled.
"""
import secrets
from datetime import datetime
from enum import Enum
from typing import Optional, Dict, Set

import structlog

from ..models.models import Booking, utcnow

logger = structlog.get_logger(__name__)


class BookingStatus(str, Enum):
    scheduled = "scheduled"
    confirmed = "confirmed"
    completed = "completed"
    cancelled = "cancelled"
    no_show = "no_show"


class BookingSource(str, Enum):
    email = "email"
    phone = "phone"
    web = "web"


INITIAL_STATUS = BookingStatus.scheduled.value

# Bookings in these states hold their driver and vehicle
ACTIVE_STATUSES = (BookingStatus.scheduled.value, BookingStatus.confirmed.value)

ADVISORY_TRANSITIONS: Dict[str, Set[str]] = {
    "scheduled": {"confirmed", "cancelled"},
    "confirmed": {"completed", "cancelled", "no_show", "scheduled"},
    "completed": set(),
    "cancelled": set(),
    "no_show": set(),
}

# Roles allowed per command. Bearer users carry admin|driver|customer;
# the header secrets resolve to admin or staff.
ACTION_ROLES: Dict[str, Set[str]] = {
    "create": {"admin", "driver", "customer"},
    "list": {"admin", "driver", "customer"},
    "update": {"admin"},
    "confirm": {"admin"},
    "decide": {"admin"},
    "delete": {"admin"},
    "audit": {"admin"},
}


def is_advisory_transition(current: str, target: str) -> bool:
    if current == target:
        return True
    return target in ADVISORY_TRANSITIONS.get(current, set())


def can_perform(role: Optional[str], action: str) -> bool:
    return bool(role) and role in ACTION_ROLES.get(action, set())


def new_token() -> str:
    return secrets.token_urlsafe(24)


def apply_create(booking: Booking) -> None:
    """New bookings are always scheduled, even with a driver pre-assigned."""
    booking.status = INITIAL_STATUS
    booking.move_count = 0
    booking.deleted = False
    if not booking.admin_approve_token:
        booking.admin_approve_token = new_token()


def assign_driver(booking: Booking, driver_id: Optional[int], now: Optional[datetime] = None) -> bool:
    """Assign a driver; returns True when the assignment changed."""
    if driver_id is None or driver_id == booking.driver_id:
        return False
    booking.driver_id = driver_id
    booking.assigned_at = now or utcnow()
    return True


def unassign_driver(booking: Booking) -> bool:
    """Clear the driver; returns True when one was assigned."""
    if booking.driver_id is None:
        return False
    booking.driver_id = None
    booking.assigned_at = None
    if booking.status == BookingStatus.confirmed.value:
        logger.info("booking_confirmed_without_driver", booking_id=booking.id, via="unassign")
    return True


def apply_confirm(booking: Booking, driver_id: Optional[int] = None, now: Optional[datetime] = None) -> None:
    now = now or utcnow()
    previous = booking.status
    assign_driver(booking, driver_id, now)
    booking.status = BookingStatus.confirmed.value
    booking.confirmed_at = now
    if not booking.customer_verify_token:
        booking.customer_verify_token = new_token()
    if booking.driver_id is None:
        logger.info("booking_confirmed_without_driver", booking_id=booking.id, via="confirm")
    if not is_advisory_transition(previous, booking.status):
        logger.info("booking_status_override", booking_id=booking.id, current=previous, target=booking.status, via="confirm")


def apply_decline(booking: Booking) -> None:
    previous = booking.status
    booking.status = BookingStatus.cancelled.value
    if not is_advisory_transition(previous, booking.status):
        logger.info("booking_status_override", booking_id=booking.id, current=previous, target=booking.status, via="decline")


def apply_admin_status(booking: Booking, target: str) -> None:
    """Admin escape hatch: any status is accepted, off-map moves are only logged."""
    previous = booking.status
    if not is_advisory_transition(previous, target):
        logger.info("booking_status_override", booking_id=booking.id, current=previous, target=target, via="update")
    booking.status = target
    if target == BookingStatus.confirmed.value and previous != target and booking.driver_id is None:
        logger.info("booking_confirmed_without_driver", booking_id=booking.id, via="update")


def apply_reschedule(booking: Booking, start: datetime, end: datetime) -> bool:
    """Move the window, keeping the first original window; returns True when it moved."""
    if start == booking.start_time and end == booking.end_time:
        return False
    if booking.original_start_time is None:
        booking.original_start_time = booking.start_time
        booking.original_end_time = booking.end_time
    booking.start_time = start
    booking.end_time = end
    booking.move_count = (booking.move_count or 0) + 1
    return True


def apply_soft_delete(booking: Booking) -> None:
    booking.deleted = True
    booking.status = BookingStatus.cancelled.value
