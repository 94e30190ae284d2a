from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from ..db import get_db
from ..auth.security import require_user_action, is_admin_request
from ..errors import ValidationError
from ..models.models import User
from ..services import booking_service
from ..services.time_rules import parse_booking_time


router = APIRouter(prefix="/calendar", tags=["calendar"])


@router.get("/bookings")
def calendar_bookings(
    request: Request,
    start_time: str = Query(...),
    end_time: str = Query(...),
    driver_id: Optional[int] = Query(default=None, gt=0),
    vehicle_id: Optional[int] = Query(default=None, gt=0),
    db: Session = Depends(get_db),
    user: User = Depends(require_user_action("list")),
):
    try:
        start, end = parse_booking_time(start_time), parse_booking_time(end_time)
    except ValueError as e:
        raise ValidationError(str(e))
    if end <= start:
        raise ValidationError("end_time must be after start_time")

    # Drivers only see their own runs
    if user.role == "driver":
        driver_id = user.id
    rows = booking_service.bookings_in_window(db, start, end, driver_id=driver_id, vehicle_id=vehicle_id)
    include_admin = is_admin_request(request, user)
    return {"ok": True, "items": [booking_service.booking_to_dict(b, include_admin) for b in rows]}
