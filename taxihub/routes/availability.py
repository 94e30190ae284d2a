from typing import Annotated

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..db import get_db
from ..schemas.bookings import AvailabilityQuery
from ..services.booking_conflict import check_availability
from ..services.time_rules import parse_booking_time


router = APIRouter(tags=["availability"])


def _availability(db: Session, q: AvailabilityQuery) -> dict:
    result = check_availability(
        db,
        parse_booking_time(q.start_time),
        parse_booking_time(q.end_time),
        driver_id=q.driver_id,
        vehicle_id=q.vehicle_id,
        exclude_booking_id=q.exclude_booking_id,
    )
    return {"ok": True, **result}


# No auth: read-only overlap check used by booking forms
@router.get("/availability")
@router.get("/vehicles/availability")
def availability_get(q: Annotated[AvailabilityQuery, Query()], db: Session = Depends(get_db)):
    return _availability(db, q)


@router.post("/availability")
@router.post("/vehicles/availability")
def availability_post(q: AvailabilityQuery, db: Session = Depends(get_db)):
    return _availability(db, q)


@router.get("/vehicles/{vehicle_id}/availability")
def vehicle_availability(
    vehicle_id: int,
    start_time: str = Query(...),
    end_time: str = Query(...),
    db: Session = Depends(get_db),
):
    q = AvailabilityQuery(start_time=start_time, end_time=end_time, vehicle_id=vehicle_id)
    return _availability(db, q)
