from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request
from sqlalchemy.orm import Session

from ..db import get_db
from ..auth.security import require_header_action, require_user_action, is_admin_request
from ..models.models import User
from ..schemas.bookings import (
    CreateBookingRequest,
    UpdateBookingRequest,
    ConfirmBookingRequest,
    DecisionRequest,
)
from ..services import booking_service
from ..services.audit import get_booking_audit, audit_to_dict
from ..services.booking_lifecycle import BookingStatus, BookingSource
from ..services.side_effects import SideEffects
from ..services.time_rules import to_iso_utc


router = APIRouter(prefix="/bookings", tags=["bookings"])


@router.post("")
def create_booking(
    payload: CreateBookingRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    user: User = Depends(require_user_action("create")),
):
    booking = booking_service.create_booking(db, payload, user, SideEffects(background_tasks))
    return {"ok": True, "id": booking.id}


@router.get("")
def list_bookings(
    request: Request,
    status: Optional[BookingStatus] = Query(default=None),
    source: Optional[BookingSource] = Query(default=None),
    db: Session = Depends(get_db),
    user: User = Depends(require_user_action("list")),
):
    rows = booking_service.list_bookings(
        db,
        status=status.value if status else None,
        source=source.value if source else None,
    )
    include_admin = is_admin_request(request, user)
    return {"ok": True, "items": [booking_service.booking_to_dict(b, include_admin) for b in rows]}


@router.patch("/{booking_id}")
def update_booking(
    booking_id: int,
    payload: UpdateBookingRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    role: str = Depends(require_header_action("update")),
):
    booking_service.update_booking(db, booking_id, payload, SideEffects(background_tasks), actor_role=role)
    return {"ok": True}


@router.post("/{booking_id}/confirm")
def confirm_booking(
    booking_id: int,
    background_tasks: BackgroundTasks,
    payload: Optional[ConfirmBookingRequest] = None,
    db: Session = Depends(get_db),
    role: str = Depends(require_header_action("confirm")),
):
    booking_service.confirm_booking(db, booking_id, payload, SideEffects(background_tasks), actor_role=role)
    return {"ok": True}


@router.post("/{booking_id}/decision")
def decide_booking(
    booking_id: int,
    payload: DecisionRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    role: str = Depends(require_header_action("decide")),
):
    booking_service.decide_booking(db, booking_id, payload, SideEffects(background_tasks), actor_role=role)
    return {"ok": True}


@router.delete("/{booking_id}")
def delete_booking(
    booking_id: int,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    role: str = Depends(require_header_action("delete")),
):
    booking_service.delete_booking(db, booking_id, SideEffects(background_tasks), actor_role=role)
    return {"ok": True}


@router.get("/{booking_id}/audit")
def booking_audit(
    booking_id: int,
    db: Session = Depends(get_db),
    role: str = Depends(require_header_action("audit")),
):
    booking_service.get_booking_or_404(db, booking_id, include_deleted=True)
    return {"ok": True, "items": [audit_to_dict(a) for a in get_booking_audit(db, booking_id)]}


@router.get("/{booking_id}/customer-verify")
def customer_verify(
    booking_id: int,
    token: Optional[str] = Query(default=None),
    db: Session = Depends(get_db),
):
    booking = booking_service.verify_customer(db, booking_id, token)
    return {"ok": True, "id": booking.id, "verified_at": to_iso_utc(booking.customer_verified_at)}
