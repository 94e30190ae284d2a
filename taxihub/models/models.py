from datetime import date, datetime
from typing import Optional

from sqlalchemy import (
    String,
    DateTime,
    Date,
    Boolean,
    ForeignKey,
    Integer,
    Text,
    Index,
)
from sqlalchemy.orm import relationship, Mapped, mapped_column

from ..db import Base


def int_pk() -> Mapped[int]:
    return mapped_column(Integer, primary_key=True, autoincrement=True)


def utcnow() -> datetime:
    # Stored timestamps are naive UTC
    return datetime.utcnow().replace(microsecond=0)


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = int_pk()
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    phone: Mapped[Optional[str]] = mapped_column(String(50))
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[str] = mapped_column(String(20), nullable=False, index=True)  # admin|driver|customer
    status: Mapped[str] = mapped_column(String(20), default="active", index=True)  # active|inactive|suspended
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime, onupdate=utcnow)
    last_login_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    profile = relationship("Profile", back_populates="user", uselist=False, cascade="all, delete-orphan")
    driver_profile = relationship("DriverProfile", back_populates="user", uselist=False, cascade="all, delete-orphan")

    @property
    def is_active(self) -> bool:
        return self.status == "active"

    @property
    def display_name(self) -> str:
        p = self.profile
        name = " ".join(x for x in [(p.first_name or "").strip(), (p.last_name or "").strip()] if x) if p else ""
        return name or self.email


class Profile(Base):
    __tablename__ = "profiles"

    id: Mapped[int] = int_pk()
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False)
    first_name: Mapped[Optional[str]] = mapped_column(String(100))
    last_name: Mapped[Optional[str]] = mapped_column(String(100))
    address: Mapped[Optional[str]] = mapped_column(String(500))

    user = relationship("User", back_populates="profile")


class DriverProfile(Base):
    __tablename__ = "driver_profiles"

    id: Mapped[int] = int_pk()
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False)
    license_number: Mapped[str] = mapped_column(String(50), nullable=False)
    license_expiry: Mapped[Optional[date]] = mapped_column(Date)
    id_proof_url: Mapped[Optional[str]] = mapped_column(String(500))
    work_permit_url: Mapped[Optional[str]] = mapped_column(String(500))
    # Informational only; assignment is gated on users.status
    employment_status: Mapped[str] = mapped_column(String(20), default="active")  # active|inactive|suspended

    user = relationship("User", back_populates="driver_profile")


class Vehicle(Base):
    __tablename__ = "vehicles"

    id: Mapped[int] = int_pk()
    name: Mapped[str] = mapped_column(String(150), nullable=False)  # e.g. Toyota Prius 2018
    make: Mapped[Optional[str]] = mapped_column(String(100))
    model: Mapped[Optional[str]] = mapped_column(String(100))
    year: Mapped[Optional[int]] = mapped_column(Integer)
    color: Mapped[Optional[str]] = mapped_column(String(50))
    plate: Mapped[Optional[str]] = mapped_column(String(50), index=True)
    vin: Mapped[Optional[str]] = mapped_column(String(100))
    capacity: Mapped[Optional[int]] = mapped_column(Integer)  # seats
    status: Mapped[str] = mapped_column(String(20), default="active", index=True)  # active|inactive
    image_url: Mapped[Optional[str]] = mapped_column(String(500))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime, onupdate=utcnow)


class Booking(Base):
    __tablename__ = "bookings"

    id: Mapped[int] = int_pk()
    # Weak references: no FK constraint, a booking outlives edits to users/vehicles
    customer_id: Mapped[Optional[int]] = mapped_column(Integer, index=True)
    driver_id: Mapped[Optional[int]] = mapped_column(Integer, index=True)
    vehicle_id: Mapped[Optional[int]] = mapped_column(Integer, index=True)
    service_id: Mapped[int] = mapped_column(Integer, nullable=False)

    source: Mapped[str] = mapped_column(String(10), nullable=False)  # email|phone|web
    created_by_role: Mapped[str] = mapped_column(String(20), nullable=False)
    created_by_name: Mapped[Optional[str]] = mapped_column(String(150))

    pickup_point: Mapped[Optional[str]] = mapped_column(String(255))
    dropoff_point: Mapped[Optional[str]] = mapped_column(String(255))
    special_instructions: Mapped[Optional[str]] = mapped_column(Text)

    # Contact snapshot taken at creation; independent of the live customer record
    contact_name: Mapped[Optional[str]] = mapped_column(String(150))
    contact_phone: Mapped[Optional[str]] = mapped_column(String(50))
    contact_email: Mapped[Optional[str]] = mapped_column(String(255))

    start_time: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    end_time: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    original_start_time: Mapped[Optional[datetime]] = mapped_column(DateTime)
    original_end_time: Mapped[Optional[datetime]] = mapped_column(DateTime)
    move_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    estimated_price_cents: Mapped[Optional[int]] = mapped_column(Integer)
    status: Mapped[str] = mapped_column(String(20), default="scheduled", nullable=False, index=True)
    admin_note: Mapped[Optional[str]] = mapped_column(Text)  # never shown to customers

    confirmed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    assigned_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    customer_verified_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    outlook_event_id: Mapped[Optional[str]] = mapped_column(String(255))
    customer_verify_token: Mapped[Optional[str]] = mapped_column(String(128))
    admin_approve_token: Mapped[Optional[str]] = mapped_column(String(128))

    deleted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    # Indexes for conflict checking
    __table_args__ = (
        Index("idx_bookings_driver_window", "driver_id", "status", "start_time", "end_time"),
        Index("idx_bookings_vehicle_window", "vehicle_id", "status", "start_time", "end_time"),
    )


class BookingAudit(Base):
    """Append-only booking history; rows are never updated or deleted"""
    __tablename__ = "bookings_audit"

    id: Mapped[int] = int_pk()
    booking_id: Mapped[int] = mapped_column(Integer, ForeignKey("bookings.id"), nullable=False, index=True)
    actor_role: Mapped[str] = mapped_column(String(20), nullable=False)  # admin|staff|driver|customer|system
    action: Mapped[str] = mapped_column(String(30), nullable=False)  # create|update|confirm|cancel|customer_verify
    note: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False, index=True)
    integrity_hash: Mapped[Optional[str]] = mapped_column(String(64))  # SHA256


class Notification(Base):
    """Outbox record of every email attempt made for a booking"""
    __tablename__ = "notifications"

    id: Mapped[int] = int_pk()
    booking_id: Mapped[Optional[int]] = mapped_column(Integer, index=True)
    channel: Mapped[str] = mapped_column(String(20), nullable=False, default="email")
    template_key: Mapped[Optional[str]] = mapped_column(String(100))
    recipient: Mapped[str] = mapped_column(String(255), nullable=False)
    subject: Mapped[Optional[str]] = mapped_column(String(255))
    status: Mapped[str] = mapped_column(String(20), default="pending")  # pending|sent|simulated|failed|skipped
    error_message: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    __table_args__ = (
        Index("idx_notifications_booking_status", "booking_id", "status"),
    )
