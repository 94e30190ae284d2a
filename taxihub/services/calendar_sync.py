"""
Calendar sync stub.

Bookings are meant to mirror into an Outlook calendar (event id kept in
``bookings.outlook_event_id``). Until the Graph integration exists this only
logs the upsert so the call sites and their failure handling are in place.
"""
import structlog

from ..config import settings

logger = structlog.get_logger(__name__)


def upsert_calendar_event(booking_id: int) -> bool:
    if not settings.enable_calendar_sync:
        logger.info("calendar_sync_disabled", booking_id=booking_id)
        return False
    # TODO: call Microsoft Graph and persist the returned event id on the booking
    logger.info("calendar_upsert", booking_id=booking_id)
    return True
