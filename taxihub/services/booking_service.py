"""
Booking command handlers.

Each command validates, writes the booking and its audit row in one
transaction, commits, and only then hands its notifications to the
side-effect queue. A side effect can never undo or fail a committed command.
"""
import secrets
from datetime import datetime
from typing import Optional, List, Dict, Any

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..config import settings
from ..errors import ValidationError, ReferenceNotFound, NotFoundError, ConflictError, ForbiddenError, ServerError
from ..models.models import Booking, User, Vehicle, utcnow
from ..schemas.bookings import CreateBookingRequest, UpdateBookingRequest, ConfirmBookingRequest, DecisionRequest
from . import calendar_sync
from . import notifications
from .audit import create_booking_audit
from .booking_conflict import check_availability, overlap_clause
from .booking_lifecycle import (
    apply_create,
    apply_confirm,
    apply_decline,
    apply_admin_status,
    apply_reschedule,
    apply_soft_delete,
    assign_driver,
    unassign_driver,
)
from .side_effects import SideEffects
from .time_rules import parse_booking_time, to_iso_utc

logger = structlog.get_logger(__name__)

# Plain columns a partial update may write as-is
UPDATABLE_FIELDS = (
    "service_id",
    "pickup_point",
    "dropoff_point",
    "special_instructions",
    "contact_name",
    "contact_phone",
    "contact_email",
    "estimated_price_cents",
    "admin_note",
)

# Hidden from anyone but admins
ADMIN_ONLY_FIELDS = ("admin_note", "customer_verify_token", "admin_approve_token")

DATETIME_FIELDS = (
    "start_time",
    "end_time",
    "original_start_time",
    "original_end_time",
    "confirmed_at",
    "assigned_at",
    "customer_verified_at",
    "created_at",
    "updated_at",
)


def _blank(value):
    if isinstance(value, str) and not value.strip():
        return None
    return value


# References

def validate_driver(db: Session, driver_id: int) -> User:
    """A driver is assignable only when role=driver and status=active."""
    driver = db.query(User).filter(User.id == driver_id).first()
    if not driver or driver.role != "driver" or not driver.is_active:
        raise ReferenceNotFound("Driver not found or inactive")
    return driver


def validate_vehicle(db: Session, vehicle_id: int) -> Vehicle:
    vehicle = db.query(Vehicle).filter(Vehicle.id == vehicle_id).first()
    if not vehicle or vehicle.status != "active":
        raise ReferenceNotFound("Vehicle not found or inactive")
    return vehicle


def _load_user(db: Session, user_id: Optional[int]) -> Optional[User]:
    if not user_id:
        return None
    return db.query(User).filter(User.id == user_id).first()


def _commit(db: Session, action: str, booking_id: Optional[int] = None) -> None:
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("booking_commit_failed", action=action, booking_id=booking_id, error=str(e))
        raise ServerError() from e


def get_booking_or_404(db: Session, booking_id: int, include_deleted: bool = False) -> Booking:
    query = db.query(Booking).filter(Booking.id == booking_id)
    if not include_deleted:
        query = query.filter(Booking.deleted.is_(False))
    booking = query.first()
    if not booking:
        raise NotFoundError("Booking not found")
    return booking


def ensure_no_conflicts(
    db: Session,
    start: datetime,
    end: datetime,
    driver_id: Optional[int],
    vehicle_id: Optional[int],
    exclude_booking_id: Optional[int] = None,
) -> None:
    """
    Reject assignments that collide with another active booking.

    Only active when ENFORCE_RESOURCE_CONFLICTS is set. This is a plain
    check-then-write: two concurrent requests can both pass it.
    """
    if not settings.enforce_resource_conflicts:
        return
    result = check_availability(db, start, end, driver_id, vehicle_id, exclude_booking_id)
    if result["conflicts"]:
        kinds = sorted({c["resource"] for c in result["conflicts"]})
        raise ConflictError(f"{' and '.join(kinds).capitalize()} already booked in this window", result["conflicts"])


# Serialization

def booking_to_dict(booking: Booking, include_admin: bool = False) -> Dict[str, Any]:
    data = {c.name: getattr(booking, c.name) for c in Booking.__table__.columns}
    for field in DATETIME_FIELDS:
        data[field] = to_iso_utc(data[field])
    if not include_admin:
        for field in ADMIN_ONLY_FIELDS:
            data.pop(field, None)
    return data


# Commands

def create_booking(db: Session, req: CreateBookingRequest, actor: User, effects: SideEffects) -> Booking:
    if req.driver_id is not None:
        validate_driver(db, req.driver_id)
    if req.vehicle_id is not None:
        validate_vehicle(db, req.vehicle_id)

    start, end = req.start_utc(), req.end_utc()
    ensure_no_conflicts(db, start, end, req.driver_id, req.vehicle_id)

    now = utcnow()
    booking = Booking(
        customer_id=req.customer_id,
        service_id=req.service_id,
        source=req.source.value,
        created_by_role=actor.role,
        created_by_name=_blank(req.created_by_name),
        pickup_point=_blank(req.pickup_point),
        dropoff_point=_blank(req.dropoff_point),
        special_instructions=_blank(req.special_instructions),
        contact_name=_blank(req.contact_name),
        contact_phone=_blank(req.contact_phone),
        contact_email=req.contact_email,
        start_time=start,
        end_time=end,
        estimated_price_cents=req.estimated_price_cents,
        admin_note=_blank(req.admin_note),
        driver_id=req.driver_id,
        vehicle_id=req.vehicle_id,
        assigned_at=now if req.driver_id else None,
    )
    apply_create(booking)
    db.add(booking)
    db.flush()
    create_booking_audit(db, booking.id, "create", actor.role, booking.admin_note)
    _commit(db, "create")
    logger.info("booking_created", booking_id=booking.id, actor_role=actor.role, driver_id=booking.driver_id)

    snapshot = notifications.build_booking_snapshot(booking)
    effects.add("notify_admin_new_booking", notifications.notify_admin_new_booking, snapshot)
    effects.add("notify_contact_received", notifications.notify_contact_received, snapshot)
    effects.dispatch()
    return booking


def update_booking(
    db: Session,
    booking_id: int,
    req: UpdateBookingRequest,
    effects: SideEffects,
    actor_role: str = "admin",
) -> Booking:
    booking = get_booking_or_404(db, booking_id)
    changes = req.changes()
    if not changes:
        return booking

    new_driver = None
    if changes.get("driver_id") is not None:
        new_driver = validate_driver(db, changes["driver_id"])
    if changes.get("vehicle_id") is not None:
        validate_vehicle(db, changes["vehicle_id"])

    start = parse_booking_time(changes["start_time"]) if "start_time" in changes else booking.start_time
    end = parse_booking_time(changes["end_time"]) if "end_time" in changes else booking.end_time
    if end <= start:
        raise ValidationError("end_time must be after start_time")

    driver_id = changes["driver_id"] if "driver_id" in changes else booking.driver_id
    vehicle_id = changes["vehicle_id"] if "vehicle_id" in changes else booking.vehicle_id
    ensure_no_conflicts(db, start, end, driver_id, vehicle_id, exclude_booking_id=booking.id)

    previous_driver = _load_user(db, booking.driver_id)
    moved = apply_reschedule(booking, start, end)

    if "driver_id" in changes:
        if changes["driver_id"] is None:
            unassign_driver(booking)
        else:
            assign_driver(booking, changes["driver_id"])
    if "vehicle_id" in changes:
        booking.vehicle_id = changes["vehicle_id"]
    if "status" in changes:
        apply_admin_status(booking, changes["status"])
    for field in UPDATABLE_FIELDS:
        if field in changes:
            setattr(booking, field, _blank(changes[field]))

    create_booking_audit(db, booking.id, "update", actor_role, _blank(changes.get("admin_note")))
    _commit(db, "update", booking.id)
    logger.info("booking_updated", booking_id=booking.id, fields=sorted(changes), moved=moved)

    current_driver = new_driver or _load_user(db, booking.driver_id)
    snapshot = notifications.build_booking_snapshot(booking, current_driver)
    effects.add("calendar_sync", calendar_sync.upsert_calendar_event, booking.id)
    effects.add("notify_contact_updated", notifications.notify_contact_updated, snapshot)
    effects.add("notify_driver_updated", notifications.notify_driver_updated, snapshot)
    if previous_driver and previous_driver.id != booking.driver_id:
        effects.add(
            "notify_driver_unassigned",
            notifications.notify_driver_unassigned,
            snapshot,
            {"id": previous_driver.id, "email": previous_driver.email, "name": previous_driver.display_name},
        )
    effects.dispatch()
    return booking


def confirm_booking(
    db: Session,
    booking_id: int,
    req: Optional[ConfirmBookingRequest],
    effects: SideEffects,
    actor_role: str = "admin",
) -> Booking:
    booking = get_booking_or_404(db, booking_id)
    driver_id = req.driver_id if req else None

    driver = validate_driver(db, driver_id) if driver_id is not None else None
    if settings.require_driver_on_confirm and driver_id is None and booking.driver_id is None:
        raise ValidationError("driver_id is required to confirm a booking")
    ensure_no_conflicts(
        db,
        booking.start_time,
        booking.end_time,
        driver_id or booking.driver_id,
        booking.vehicle_id,
        exclude_booking_id=booking.id,
    )

    apply_confirm(booking, driver_id)
    create_booking_audit(db, booking.id, "confirm", actor_role)
    _commit(db, "confirm", booking.id)
    logger.info("booking_confirmed", booking_id=booking.id, driver_id=booking.driver_id)

    driver = driver or _load_user(db, booking.driver_id)
    snapshot = notifications.build_booking_snapshot(booking, driver)
    effects.add("calendar_sync", calendar_sync.upsert_calendar_event, booking.id)
    effects.add("notify_contact_confirmed", notifications.notify_contact_confirmed, snapshot)
    effects.add("notify_driver_assigned", notifications.notify_driver_assigned, snapshot)
    effects.dispatch()
    return booking


def decide_booking(
    db: Session,
    booking_id: int,
    req: DecisionRequest,
    effects: SideEffects,
    actor_role: str = "admin",
) -> Booking:
    if req.action == "confirm":
        # Same as a plain confirm with an empty body
        return confirm_booking(db, booking_id, None, effects, actor_role)

    booking = get_booking_or_404(db, booking_id)
    apply_decline(booking)
    reason = _blank(req.reason)
    create_booking_audit(db, booking.id, "cancel", actor_role, reason)
    _commit(db, "decline", booking.id)
    logger.info("booking_declined", booking_id=booking.id)

    snapshot = notifications.build_booking_snapshot(booking)
    effects.add("calendar_sync", calendar_sync.upsert_calendar_event, booking.id)
    effects.add("notify_contact_declined", notifications.notify_contact_declined, snapshot, reason)
    effects.dispatch()
    return booking


def delete_booking(db: Session, booking_id: int, effects: SideEffects, actor_role: str = "admin") -> Booking:
    """Soft delete: the row stays for history but drops out of every listing."""
    booking = get_booking_or_404(db, booking_id)
    apply_soft_delete(booking)
    create_booking_audit(db, booking.id, "cancel", actor_role, "deleted")
    _commit(db, "delete", booking.id)
    logger.info("booking_deleted", booking_id=booking.id)

    effects.add("calendar_sync", calendar_sync.upsert_calendar_event, booking.id)
    effects.dispatch()
    return booking


def verify_customer(db: Session, booking_id: int, token: Optional[str]) -> Booking:
    booking = get_booking_or_404(db, booking_id)
    expected = booking.customer_verify_token
    if not token or not expected or not secrets.compare_digest(token, expected):
        raise ForbiddenError("Invalid verification token")
    if booking.customer_verified_at is None:
        booking.customer_verified_at = utcnow()
        create_booking_audit(db, booking.id, "customer_verify", "customer")
        _commit(db, "customer_verify", booking.id)
        logger.info("booking_customer_verified", booking_id=booking.id)
    return booking


# Queries

def list_bookings(
    db: Session,
    status: Optional[str] = None,
    source: Optional[str] = None,
    limit: Optional[int] = None,
) -> List[Booking]:
    query = db.query(Booking).filter(Booking.deleted.is_(False))
    if status:
        query = query.filter(Booking.status == status)
    if source:
        query = query.filter(Booking.source == source)
    return (
        query.order_by(Booking.created_at.desc(), Booking.id.desc())
        .limit(limit or settings.list_limit)
        .all()
    )


def bookings_in_window(
    db: Session,
    start: datetime,
    end: datetime,
    driver_id: Optional[int] = None,
    vehicle_id: Optional[int] = None,
) -> List[Booking]:
    """Calendar feed: every non-deleted booking overlapping the window, any status."""
    query = db.query(Booking).filter(Booking.deleted.is_(False), overlap_clause(start, end))
    if driver_id:
        query = query.filter(Booking.driver_id == driver_id)
    if vehicle_id:
        query = query.filter(Booking.vehicle_id == vehicle_id)
    return query.order_by(Booking.start_time.asc(), Booking.id.asc()).all()
