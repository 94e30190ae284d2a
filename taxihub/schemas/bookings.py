from datetime import datetime
from typing import Optional, Literal

from pydantic import BaseModel, EmailStr, Field, field_validator, model_validator

from ..services.booking_lifecycle import BookingStatus, BookingSource
from ..services.time_rules import parse_booking_time, parse_local_datetime, local_to_utc


def _blank_to_none(v):
    if isinstance(v, str) and not v.strip():
        return None
    return v


def _check_window(start: Optional[str], end: Optional[str]) -> None:
    if start and end and parse_booking_time(end) <= parse_booking_time(start):
        raise ValueError("end_time must be after start_time")


class BookingTimeMixin(BaseModel):
    @field_validator("start_time", "end_time", mode="after", check_fields=False)
    @classmethod
    def _time_pattern(cls, v: Optional[str], info):
        if v is None:
            return v
        try:
            local = parse_local_datetime(v)
        except ValueError:
            raise ValueError(f"{info.field_name} must be ISO-like e.g. 2025-09-22T10:00:00")
        local_to_utc(local)
        return v


class CreateBookingRequest(BookingTimeMixin):
    customer_id: Optional[int] = Field(default=None, gt=0)
    service_id: int = Field(gt=0)
    start_time: str
    end_time: str
    source: BookingSource
    driver_id: Optional[int] = Field(default=None, gt=0)
    vehicle_id: Optional[int] = Field(default=None, gt=0)
    pickup_point: Optional[str] = Field(default=None, max_length=255)
    dropoff_point: Optional[str] = Field(default=None, max_length=255)
    special_instructions: Optional[str] = Field(default=None, max_length=5000)
    contact_name: Optional[str] = Field(default=None, max_length=150)
    contact_phone: Optional[str] = Field(default=None, max_length=50)
    contact_email: Optional[EmailStr] = Field(default=None, max_length=255)
    estimated_price_cents: Optional[int] = Field(default=None, ge=0)
    admin_note: Optional[str] = Field(default=None, max_length=5000)
    created_by_name: Optional[str] = Field(default=None, max_length=150)

    @field_validator("contact_email", mode="before")
    @classmethod
    def _empty_email(cls, v):
        return _blank_to_none(v)

    @model_validator(mode="after")
    def _window(self):
        _check_window(self.start_time, self.end_time)
        return self

    def start_utc(self) -> datetime:
        return parse_booking_time(self.start_time)

    def end_utc(self) -> datetime:
        return parse_booking_time(self.end_time)


class UpdateBookingRequest(BookingTimeMixin):
    """Partial update: only the fields present in the body are applied."""
    service_id: Optional[int] = Field(default=None, gt=0)
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    driver_id: Optional[int] = Field(default=None, gt=0)
    vehicle_id: Optional[int] = Field(default=None, gt=0)
    pickup_point: Optional[str] = Field(default=None, max_length=255)
    dropoff_point: Optional[str] = Field(default=None, max_length=255)
    special_instructions: Optional[str] = Field(default=None, max_length=5000)
    contact_name: Optional[str] = Field(default=None, max_length=150)
    contact_phone: Optional[str] = Field(default=None, max_length=50)
    contact_email: Optional[EmailStr] = Field(default=None, max_length=255)
    estimated_price_cents: Optional[int] = Field(default=None, ge=0)
    status: Optional[BookingStatus] = None
    admin_note: Optional[str] = Field(default=None, max_length=5000)

    @field_validator("contact_email", mode="before")
    @classmethod
    def _empty_email(cls, v):
        return _blank_to_none(v)

    @field_validator("service_id", "status", "start_time", "end_time")
    @classmethod
    def _not_null(cls, v, info):
        # These columns are NOT NULL; explicit null is rejected rather than written
        if v is None:
            raise ValueError(f"{info.field_name} cannot be null")
        return v

    @model_validator(mode="after")
    def _window(self):
        _check_window(self.start_time, self.end_time)
        return self

    def changes(self) -> dict:
        return self.model_dump(exclude_unset=True, mode="json")


class ConfirmBookingRequest(BaseModel):
    driver_id: Optional[int] = Field(default=None, gt=0)


class DecisionRequest(BaseModel):
    action: Literal["confirm", "decline"]
    reason: Optional[str] = Field(default=None, max_length=2000)


class AvailabilityQuery(BookingTimeMixin):
    start_time: str
    end_time: str
    driver_id: Optional[int] = Field(default=None, gt=0)
    vehicle_id: Optional[int] = Field(default=None, gt=0)
    exclude_booking_id: Optional[int] = Field(default=None, gt=0)

    @model_validator(mode="after")
    def _window(self):
        _check_window(self.start_time, self.end_time)
        return self
