from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import or_
from sqlalchemy.orm import Session
import structlog

from ..db import get_db
from ..auth.security import get_current_user, require_roles
from ..errors import NotFoundError, ValidationError
from ..models.models import Vehicle, User
from ..schemas.fleet import VehicleCreate, VehicleUpdate, VehicleResponse, VehicleStatus
from ..services.booking_conflict import has_conflict
from ..services.time_rules import parse_booking_time


router = APIRouter(prefix="/vehicles", tags=["fleet"])
logger = structlog.get_logger(__name__)


def _vehicle_out(v: Vehicle) -> dict:
    return VehicleResponse.model_validate(v).to_api()


@router.get("")
def list_vehicles(
    status: Optional[VehicleStatus] = Query(default=None),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    q = db.query(Vehicle)
    if status:
        q = q.filter(Vehicle.status == status.value)
    rows = q.order_by(Vehicle.name.asc(), Vehicle.id.asc()).all()
    return {"ok": True, "items": [_vehicle_out(v) for v in rows]}


@router.get("/search")
def search_vehicles(
    q: Optional[str] = Query(default=None, max_length=100),
    start_time: Optional[str] = Query(default=None),
    end_time: Optional[str] = Query(default=None),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Active vehicles matching ``q``; with a window, only those free in it."""
    if bool(start_time) != bool(end_time):
        raise ValidationError("start_time and end_time must be given together")
    start = end = None
    if start_time and end_time:
        try:
            start, end = parse_booking_time(start_time), parse_booking_time(end_time)
        except ValueError as e:
            raise ValidationError(str(e))
        if end <= start:
            raise ValidationError("end_time must be after start_time")

    query = db.query(Vehicle).filter(Vehicle.status == VehicleStatus.active.value)
    if q:
        like = f"%{q.strip()}%"
        query = query.filter(or_(
            Vehicle.name.ilike(like),
            Vehicle.make.ilike(like),
            Vehicle.model.ilike(like),
            Vehicle.plate.ilike(like),
        ))
    vehicles = query.order_by(Vehicle.name.asc(), Vehicle.id.asc()).all()
    if start is not None:
        vehicles = [v for v in vehicles if not has_conflict(db, "vehicle", v.id, start, end)]
    return {"ok": True, "items": [_vehicle_out(v) for v in vehicles]}


@router.post("")
def create_vehicle(
    payload: VehicleCreate,
    db: Session = Depends(get_db),
    user: User = Depends(require_roles("admin")),
):
    v = Vehicle(**payload.model_dump(mode="json"))
    db.add(v)
    db.commit()
    logger.info("vehicle_created", vehicle_id=v.id, by=user.id)
    return {"ok": True, "id": v.id}


@router.patch("/{vehicle_id}")
def update_vehicle(
    vehicle_id: int,
    payload: VehicleUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(require_roles("admin")),
):
    v = db.query(Vehicle).filter(Vehicle.id == vehicle_id).first()
    if not v:
        raise NotFoundError("Vehicle not found")
    for field, value in payload.model_dump(exclude_unset=True, mode="json").items():
        if value is None and field in ("name", "status"):
            continue
        setattr(v, field, value)
    db.commit()
    logger.info("vehicle_updated", vehicle_id=v.id, by=user.id)
    return {"ok": True}
