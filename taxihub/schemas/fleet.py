from datetime import datetime
from typing import Optional
from enum import Enum

from pydantic import BaseModel, Field, ConfigDict

from ..services.time_rules import to_iso_utc


class VehicleStatus(str, Enum):
    active = "active"
    inactive = "inactive"


class VehicleBase(BaseModel):
    name: str = Field(min_length=1, max_length=150)
    make: Optional[str] = Field(default=None, max_length=100)
    model: Optional[str] = Field(default=None, max_length=100)
    year: Optional[int] = Field(default=None, ge=1900, le=2100)
    color: Optional[str] = Field(default=None, max_length=50)
    plate: Optional[str] = Field(default=None, max_length=50)
    vin: Optional[str] = Field(default=None, max_length=100)
    capacity: Optional[int] = Field(default=None, gt=0)
    status: VehicleStatus = VehicleStatus.active
    image_url: Optional[str] = Field(default=None, max_length=500)


class VehicleCreate(VehicleBase):
    pass


class VehicleUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=150)
    color: Optional[str] = Field(default=None, max_length=50)
    plate: Optional[str] = Field(default=None, max_length=50)
    capacity: Optional[int] = Field(default=None, gt=0)
    status: Optional[VehicleStatus] = None
    image_url: Optional[str] = Field(default=None, max_length=500)


class VehicleResponse(VehicleBase):
    model_config = ConfigDict(from_attributes=True)

    id: int
    status: str
    created_at: Optional[datetime] = None

    def to_api(self) -> dict:
        data = self.model_dump()
        data["created_at"] = to_iso_utc(self.created_at)
        return data


class DriverResponse(BaseModel):
    id: int
    email: str
    phone: Optional[str] = None
    name: str
    status: str
    license_number: Optional[str] = None
