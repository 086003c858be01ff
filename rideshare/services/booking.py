import logging
from typing import Any, Dict, List, Optional, Sequence
from uuid import uuid4

from rideshare.exceptions import RecordStoreError, SeatUnavailable, TripStateChanged
from rideshare.models import DEFAULT_SEAT_LAYOUT, BookingStatus, LiveTrip, StoredBooking, TripStatus
from rideshare.services.clock import Clock, to_millis, utcnow
from rideshare.services.history import driver_path, trip_path, write_booking
from rideshare.store.base import RecordStore

logger = logging.getLogger(__name__)


class SeatBookingService:
    def __init__(self, store: RecordStore, clock: Clock = utcnow):
        self.store = store
        self.clock = clock

    async def book_seats(
        self,
        user_id: Optional[str],
        trip_id: str,
        seat_ids: Sequence[str],
        payment_type: str = "cash",
        full_name: Optional[str] = None,
        phone: Optional[str] = None,
        selected_stop: Optional[str] = None,
    ) -> List[StoredBooking]:
        """Reserve seats on a live trip and record one history entry per seat.

        All requested seats are taken in one atomic update or none are.
        """
        if not user_id:
            return []
        seat_ids = list(dict.fromkeys(seat_ids))
        if not seat_ids:
            raise ValueError("At least one seat is required")
        now_ms = to_millis(self.clock())
        committed: Dict[str, Any] = {}

        def _occupy(current):
            trip = LiveTrip.from_record(trip_id, current)
            if trip is None:
                raise TripStateChanged(trip_id, "trip no longer exists")
            if trip.status is not TripStatus.UPCOMING:
                raise TripStateChanged(trip_id)
            for seat_id in seat_ids:
                if not trip.occupancy.is_free(seat_id):
                    raise SeatUnavailable(trip_id, seat_id)
            passenger = {
                "userId": user_id,
                "phone": phone,
                "fullName": full_name,
                "bookedAt": now_ms,
                "paymentType": payment_type,
                "selectedStop": selected_stop,
                "fees": trip.price_per_passenger,
            }
            passenger = {k: v for k, v in passenger.items() if v is not None}
            for seat_id in seat_ids:
                trip.occupancy.occupy(seat_id, dict(passenger))
            trip.touch(now_ms)
            committed.clear()
            committed.update(trip.record)
            return trip.record

        await self.store.atomic_update(trip_path(trip_id), _occupy)
        trip = LiveTrip(trip_id, committed)
        logger.info("User %s booked seats %s on trip %s", user_id, seat_ids, trip_id)

        driver_name = await self._driver_name(trip.driver_id)
        bookings = []
        for seat_id in seat_ids:
            booking = StoredBooking(
                booking_id=uuid4().hex,
                trip_id=trip_id,
                seat_id=seat_id,
                seat_name=DEFAULT_SEAT_LAYOUT.get(seat_id, seat_id),
                trip_price=trip.price_per_passenger,
                trip_date_time=trip.date_time or "",
                departure_city_value=trip.record.get("startPoint", ""),
                arrival_city_value=trip.record.get("destination", ""),
                driver_id=trip.driver_id or "",
                driver_name_snapshot=driver_name,
                booked_at=now_ms,
                user_id=user_id,
                status=BookingStatus.BOOKED,
                payment_type=payment_type,
                full_name_snapshot=full_name,
                phone_snapshot=phone,
                selected_stop=selected_stop,
                fees=trip.price_per_passenger,
            )
            await write_booking(self.store, user_id, booking)
            bookings.append(booking)
        return bookings

    async def _driver_name(self, driver_id: Optional[str]) -> str:
        if not driver_id:
            return ""
        try:
            profile = await self.store.get(driver_path(driver_id))
        except RecordStoreError:
            logger.warning("Could not fetch driver profile %s", driver_id, exc_info=True)
            return ""
        return (profile or {}).get("fullName", "") if isinstance(profile, dict) else ""
