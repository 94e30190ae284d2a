from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..db import get_db
from ..auth.security import get_current_user
from ..models.models import User
from ..schemas.fleet import DriverResponse


router = APIRouter(prefix="/drivers", tags=["users"])


@router.get("")
def list_drivers(db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    """Drivers that can currently be assigned to a booking."""
    rows = (
        db.query(User)
        .filter(User.role == "driver", User.status == "active")
        .order_by(User.email.asc())
        .all()
    )
    items = [
        DriverResponse(
            id=d.id,
            email=d.email,
            phone=d.phone,
            name=d.display_name,
            status=d.status,
            license_number=d.driver_profile.license_number if d.driver_profile else None,
        ).model_dump()
        for d in rows
    ]
    return {"ok": True, "items": items}
