"""
Seed the local database with an admin, a driver, a customer and a vehicle.

Usage:
  python scripts/seed_test_data.py

This script is idempotent: running it multiple times will upsert the same
records based on unique fields (email for users, plate for vehicles).
"""

import os
import sys
from datetime import date

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from taxihub.db import SessionLocal, Base, engine
from taxihub.models.models import User, Profile, DriverProfile, Vehicle
from taxihub.auth.security import get_password_hash


def ensure_user(session, email: str, password: str, role: str, first_name: str, last_name: str, phone: str = None) -> User:
    email = email.lower()
    user = session.query(User).filter(User.email == email).first()
    if user:
        user.role = role
        user.status = "active"
        if phone:
            user.phone = phone
        if not getattr(user, "password_hash", None):
            user.password_hash = get_password_hash(password)
    else:
        user = User(
            email=email,
            phone=phone,
            password_hash=get_password_hash(password),
            role=role,
            status="active",
        )
        session.add(user)
        session.flush()
    if not user.profile:
        user.profile = Profile(first_name=first_name, last_name=last_name)
    else:
        user.profile.first_name = first_name
        user.profile.last_name = last_name
    return user


def ensure_driver_profile(session, user: User, license_number: str, license_expiry: date) -> DriverProfile:
    dp = user.driver_profile
    if not dp:
        dp = DriverProfile(license_number=license_number, license_expiry=license_expiry)
        user.driver_profile = dp
    else:
        dp.license_number = license_number
        dp.license_expiry = license_expiry
    dp.employment_status = "active"
    return dp


def ensure_vehicle(session, plate: str, **fields) -> Vehicle:
    vehicle = session.query(Vehicle).filter(Vehicle.plate == plate).first()
    if not vehicle:
        vehicle = Vehicle(plate=plate, **fields)
        session.add(vehicle)
    else:
        for k, v in fields.items():
            setattr(vehicle, k, v)
    session.flush()
    return vehicle


def main():
    if os.getenv("DATABASE_URL", "sqlite:///./var/dev.db").startswith("sqlite:///./"):
        os.makedirs("var", exist_ok=True)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        admin = ensure_user(session, "admin@taxihub.example.com", "admin123", "admin", "Ada", "Admin")
        driver = ensure_user(session, "driver@taxihub.example.com", "driver123", "driver", "Dan", "Driver", phone="+15550100")
        ensure_driver_profile(session, driver, "D1234567", date(2030, 12, 31))
        customer = ensure_user(session, "customer@taxihub.example.com", "customer123", "customer", "Cleo", "Customer", phone="+15550111")
        vehicle = ensure_vehicle(
            session,
            "TAXI-001",
            name="Toyota Prius 2018",
            make="Toyota",
            model="Prius",
            year=2018,
            color="White",
            capacity=4,
            status="active",
        )
        session.commit()
        print("Seed complete:")
        print(f"  admin    id={admin.id} {admin.email} / admin123")
        print(f"  driver   id={driver.id} {driver.email} / driver123")
        print(f"  customer id={customer.id} {customer.email} / customer123")
        print(f"  vehicle  id={vehicle.id} plate={vehicle.plate}")
    finally:
        session.close()


if __name__ == "__main__":
    main()
