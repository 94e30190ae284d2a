"""
Booking email notifications.
Every attempt is recorded in the notifications table; sending itself is
best-effort and runs outside the booking transaction.
"""
from html import escape
from typing import Optional, Dict, Any

import structlog
from sqlalchemy.orm import Session

from ..config import settings
from ..db import SessionLocal
from ..models.models import Booking, Notification, User, utcnow
from . import mailer
from .time_rules import to_iso_utc, format_local

logger = structlog.get_logger(__name__)


def build_booking_snapshot(booking: Booking, driver: Optional[User] = None) -> Dict[str, Any]:
    """Plain-data copy of what the emails need; safe to hand to background jobs."""
    verify_url = None
    if booking.customer_verify_token:
        verify_url = (
            f"{settings.public_base_url}/bookings/{booking.id}/customer-verify"
            f"?token={booking.customer_verify_token}"
        )
    return {
        "id": booking.id,
        "customer_id": booking.customer_id,
        "service_id": booking.service_id,
        "status": booking.status,
        "created_by_role": booking.created_by_role,
        "created_by_name": booking.created_by_name,
        "pickup_point": booking.pickup_point,
        "dropoff_point": booking.dropoff_point,
        "contact_name": booking.contact_name,
        "contact_phone": booking.contact_phone,
        "contact_email": booking.contact_email,
        "start_time": to_iso_utc(booking.start_time),
        "end_time": to_iso_utc(booking.end_time),
        "window": f"{format_local(booking.start_time)} to {format_local(booking.end_time)}",
        "verify_url": verify_url,
        "driver": {
            "id": driver.id,
            "email": driver.email,
            "name": driver.display_name,
        } if driver else None,
    }


def should_send_email() -> bool:
    return settings.enable_email


def record_and_send(
    booking_id: Optional[int],
    template_key: str,
    to: Optional[str],
    subject: str,
    html: str,
    session_factory=None,
) -> Optional[Notification]:
    """
    Create a notification record, attempt delivery, store the outcome.

    Returns None without touching the database when there is no recipient.
    """
    if not to:
        logger.info("notification_skipped_no_recipient", booking_id=booking_id, template=template_key)
        return None

    factory = session_factory or SessionLocal
    db: Session = factory()
    try:
        row = Notification(
            booking_id=booking_id,
            channel="email",
            template_key=template_key,
            recipient=to,
            subject=subject,
            status="pending",
        )
        db.add(row)
        db.commit()

        if not should_send_email():
            row.status = "skipped"
        else:
            try:
                outcome = mailer.send_email(to, subject, html)
            except Exception as e:
                outcome = mailer.FAILED
                row.error_message = str(e)
            row.status = outcome
            if outcome in (mailer.SENT, mailer.SIMULATED):
                row.sent_at = utcnow()
        db.commit()
        return row
    finally:
        db.close()


# Templates

def _details(snapshot: Dict[str, Any]) -> str:
    return (
        "<ul>"
        f"<li>When: {escape(snapshot['window'])}</li>"
        f"<li>Pickup: {escape(snapshot.get('pickup_point') or '')}</li>"
        f"<li>Dropoff: {escape(snapshot.get('dropoff_point') or '')}</li>"
        "</ul>"
    )


def notify_admin_new_booking(snapshot: Dict[str, Any]) -> Optional[Notification]:
    to = settings.admin_notify_to or settings.smtp_username
    contact = " ".join(
        escape(snapshot.get(k) or "") for k in ("contact_name", "contact_phone", "contact_email")
    ).strip()
    html = (
        f"<p>A new booking was created by {escape(snapshot['created_by_role'])} "
        f"{escape(snapshot.get('created_by_name') or '')}.</p>"
        "<ul>"
        f"<li>Customer ID: {snapshot.get('customer_id') or ''}</li>"
        f"<li>Service ID: {snapshot['service_id']}</li>"
        f"<li>When: {escape(snapshot['window'])}</li>"
        f"<li>Pickup: {escape(snapshot.get('pickup_point') or '')}</li>"
        f"<li>Dropoff: {escape(snapshot.get('dropoff_point') or '')}</li>"
        f"<li>Contact: {contact}</li>"
        "</ul>"
        f"<p>Approve in admin panel at {escape(settings.public_base_url)}/bookings</p>"
    )
    return record_and_send(
        snapshot["id"], "booking_created_admin", to,
        f"New booking (id {snapshot['id']}) pending approval", html,
    )


def notify_contact_received(snapshot: Dict[str, Any]) -> Optional[Notification]:
    html = (
        "<p>Thank you for your request. This is an acknowledgement only; confirmation is pending.</p>"
        + _details(snapshot)
    )
    return record_and_send(
        snapshot["id"], "booking_received_contact", snapshot.get("contact_email"),
        "We received your booking request (pending confirmation)", html,
    )


def notify_contact_confirmed(snapshot: Dict[str, Any]) -> Optional[Notification]:
    verify_url = snapshot.get("verify_url")
    if not verify_url:
        return None
    html = (
        "<p>Your booking has been confirmed. Please verify the details:</p>"
        + _details(snapshot)
        + f'<p>Click to verify: <a href="{escape(verify_url)}">{escape(verify_url)}</a></p>'
    )
    return record_and_send(
        snapshot["id"], "booking_confirmed_contact", snapshot.get("contact_email"),
        "Booking confirmed - please verify details", html,
    )


def notify_driver_assigned(snapshot: Dict[str, Any]) -> Optional[Notification]:
    driver = snapshot.get("driver")
    if not driver:
        return None
    html = (
        f"<p>Hello {escape(driver.get('name') or '')},</p>"
        "<p>You have been assigned a booking.</p>"
        + _details(snapshot)
    )
    return record_and_send(
        snapshot["id"], "booking_driver_assigned", driver.get("email"),
        f"New assignment: Booking #{snapshot['id']}", html,
    )


def notify_contact_updated(snapshot: Dict[str, Any]) -> Optional[Notification]:
    html = "<p>Your booking has been updated by admin.</p>" + _details(snapshot)
    return record_and_send(
        snapshot["id"], "booking_updated_contact", snapshot.get("contact_email"),
        f"Booking updated (#{snapshot['id']})", html,
    )


def notify_driver_updated(snapshot: Dict[str, Any], driver: Optional[Dict[str, Any]] = None) -> Optional[Notification]:
    driver = driver or snapshot.get("driver")
    if not driver:
        return None
    html = "<p>A booking assigned to you has been updated.</p>" + _details(snapshot)
    return record_and_send(
        snapshot["id"], "booking_updated_driver", driver.get("email"),
        f"Assigned booking updated (#{snapshot['id']})", html,
    )


def notify_driver_unassigned(snapshot: Dict[str, Any], driver: Dict[str, Any]) -> Optional[Notification]:
    html = "<p>You are no longer assigned to this booking.</p>" + _details(snapshot)
    return record_and_send(
        snapshot["id"], "booking_driver_unassigned", driver.get("email"),
        f"Booking reassigned (#{snapshot['id']})", html,
    )


def notify_contact_declined(snapshot: Dict[str, Any], reason: Optional[str] = None) -> Optional[Notification]:
    html = "<p>We are sorry, but your booking could not be accommodated.</p>"
    if reason:
        html += f"<p>Reason: {escape(reason)}</p>"
    html += f"<p>Window: {escape(snapshot['window'])}</p>"
    return record_and_send(
        snapshot["id"], "booking_declined_contact", snapshot.get("contact_email"),
        f"Booking declined (#{snapshot['id']})", html,
    )
