"""Key paths and reads/writes of a rider's private booking history."""
import logging
from typing import List

from pydantic import ValidationError

from rideshare.config import settings
from rideshare.exceptions import AbortUpdate, HistoryFetchError, RecordStoreError
from rideshare.models import BookingStatus, StoredBooking
from rideshare.store.base import RecordStore

logger = logging.getLogger(__name__)


def history_path(user_id: str) -> str:
    return f"{settings.HISTORY_ROOT}/{user_id}"


def booking_path(user_id: str, booking_id: str) -> str:
    return f"{settings.HISTORY_ROOT}/{user_id}/{booking_id}"


def trip_path(trip_id: str) -> str:
    return f"{settings.TRIPS_ROOT}/{trip_id}"


def driver_path(driver_id: str) -> str:
    return f"{settings.DRIVERS_ROOT}/{driver_id}"


async def fetch_history(store: RecordStore, user_id: str) -> List[StoredBooking]:
    try:
        raw = await store.get(history_path(user_id))
    except RecordStoreError as exc:
        logger.error("Unable to read booking history for user %s", user_id)
        raise HistoryFetchError(str(exc)) from exc
    if not isinstance(raw, dict):
        return []
    bookings = []
    for booking_id, record in raw.items():
        if not isinstance(record, dict):
            continue
        try:
            bookings.append(StoredBooking.model_validate({"bookingId": booking_id, **record}))
        except ValidationError:
            logger.warning("Skipping malformed history record %s for user %s", booking_id, user_id)
    return bookings


async def write_booking(store: RecordStore, user_id: str, booking: StoredBooking) -> None:
    await store.set(booking_path(user_id, booking.booking_id), booking.to_record())


async def transition_booking(store: RecordStore, user_id: str, booking_id: str, target: BookingStatus) -> None:
    """Move a stored booking to a terminal status.

    Raises ``InvalidStatusTransition`` when the record is already terminal,
    so a cancelled booking can never be written back to ``booked``.
    """

    def _transition(current):
        if not isinstance(current, dict):
            raise AbortUpdate(f"booking {booking_id} not found")
        status = BookingStatus(current.get("status") or BookingStatus.BOOKED.value)
        current["status"] = status.transition_to(target).value
        return current

    await store.atomic_update(booking_path(user_id, booking_id), _transition)
