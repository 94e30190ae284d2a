"""
Booking audit service.
Append-only audit log with integrity hashing.
"""
import hashlib
import json
from typing import Optional, List, Dict, Any
from sqlalchemy.orm import Session

from ..models.models import BookingAudit, utcnow
from ..config import settings
from .time_rules import to_iso_utc

AUDIT_ACTIONS = ("create", "update", "confirm", "cancel", "customer_verify")


def compute_integrity_hash(
    booking_id: int,
    action: str,
    actor_role: str,
    note: Optional[str],
    timestamp_iso: str,
    integrity_secret: Optional[str] = None,
) -> Optional[str]:
    secret = settings.jwt_secret if integrity_secret is None else integrity_secret
    if not secret:
        return None
    canonical_data = {
        "booking_id": booking_id,
        "action": action,
        "actor_role": actor_role,
        "note": note,
        "timestamp": timestamp_iso,
    }
    # Remove None values and sort keys for consistency
    canonical_data = {k: v for k, v in canonical_data.items() if v is not None}
    canonical_json = json.dumps(canonical_data, sort_keys=True, default=str)
    return hashlib.sha256(f"{canonical_json}:{secret}".encode()).hexdigest()


def create_booking_audit(
    db: Session,
    booking_id: int,
    action: str,
    actor_role: str,
    note: Optional[str] = None,
) -> BookingAudit:
    """
    Stage an audit row in the caller's transaction.

    The caller commits, so the audit entry and the booking change land
    together or not at all.

    Args:
        db: Database session
        booking_id: Booking the action applies to
        action: create|update|confirm|cancel|customer_verify
        actor_role: admin|staff|driver|customer
        note: Optional free text (admin note, decline reason)
    """
    if action not in AUDIT_ACTIONS:
        raise ValueError(f"Unknown audit action: {action}")
    note = note or None
    created_at = utcnow()
    row = BookingAudit(
        booking_id=booking_id,
        actor_role=actor_role,
        action=action,
        note=note,
        created_at=created_at,
        integrity_hash=compute_integrity_hash(booking_id, action, actor_role, note, created_at.isoformat()),
    )
    db.add(row)
    return row


def verify_audit_row(row: BookingAudit, integrity_secret: Optional[str] = None) -> bool:
    expected = compute_integrity_hash(
        row.booking_id, row.action, row.actor_role, row.note, row.created_at.isoformat(), integrity_secret
    )
    return expected == row.integrity_hash


def get_booking_audit(db: Session, booking_id: int, limit: int = 200) -> List[BookingAudit]:
    return (
        db.query(BookingAudit)
        .filter(BookingAudit.booking_id == booking_id)
        .order_by(BookingAudit.created_at.asc(), BookingAudit.id.asc())
        .limit(limit)
        .all()
    )


def audit_to_dict(row: BookingAudit) -> Dict[str, Any]:
    return {
        "id": row.id,
        "booking_id": row.booking_id,
        "actor_role": row.actor_role,
        "action": row.action,
        "note": row.note,
        "created_at": to_iso_utc(row.created_at),
        "valid": verify_audit_row(row),
    }
