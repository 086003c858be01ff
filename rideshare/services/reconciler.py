import asyncio
import logging
from datetime import datetime
from typing import Dict, Iterable, List, NamedTuple, Optional

from rideshare.exceptions import InvalidStatusTransition, RecordStoreError
from rideshare.metrics import RECONCILE_LATENCY, SELF_HEALS
from rideshare.models import BookingStatus, DisplayableBooking, DisplayStatus, GroupedTrip, LiveTrip, StoredBooking
from rideshare.services.clock import Clock, parse_iso, utcnow
from rideshare.services.formatter import ArabicDisplayFormatter, DisplayFormatter
from rideshare.services.grouper import group_bookings
from rideshare.services.history import driver_path, fetch_history, transition_booking, trip_path
from rideshare.services.side_effects import SideEffects, side_effects as default_side_effects
from rideshare.services.status import derive_display_status
from rideshare.store.base import RecordStore

logger = logging.getLogger(__name__)


class TripLookup(NamedTuple):
    trip: Optional[LiveTrip]
    failed: bool = False


class TripStatusReconciler:
    """Turns a rider's stored bookings into display records checked against the live trips.

    Stale ``booked`` records are corrected to ``system-cancelled`` in the
    background; the returned records already show the corrected status.
    """

    def __init__(
        self,
        store: RecordStore,
        formatter: Optional[DisplayFormatter] = None,
        side_effects: Optional[SideEffects] = None,
        clock: Clock = utcnow,
    ):
        self.store = store
        self.formatter = formatter or ArabicDisplayFormatter()
        self.side_effects = side_effects or default_side_effects
        self.clock = clock

    async def reconcile(self, user_id: Optional[str]) -> List[GroupedTrip]:
        if not user_id:
            return []
        bookings = await self.reconcile_bookings(user_id)
        return group_bookings(bookings, self.clock())

    async def reconcile_bookings(self, user_id: Optional[str]) -> List[DisplayableBooking]:
        if not user_id:
            return []
        with RECONCILE_LATENCY.time():
            stored = await fetch_history(self.store, user_id)
            now = self.clock()
            trips = await self._fetch_trips({b.trip_id for b in stored})
            driver_ids = {b.driver_id for b in stored if b.driver_id}
            driver_ids.update(t.trip.driver_id for t in trips.values() if t.trip and t.trip.driver_id)
            drivers = await self._fetch_drivers(driver_ids)
            return [self._display(user_id, b, trips[b.trip_id], drivers, now) for b in stored]

    async def _fetch_trips(self, trip_ids: Iterable[str]) -> Dict[str, TripLookup]:
        async def _get(trip_id):
            try:
                return trip_id, TripLookup(LiveTrip.from_record(trip_id, await self.store.get(trip_path(trip_id))))
            except RecordStoreError:
                logger.warning("Could not fetch live trip %s", trip_id, exc_info=True)
                return trip_id, TripLookup(None, failed=True)

        return dict(await asyncio.gather(*[_get(t) for t in trip_ids]))

    async def _fetch_drivers(self, driver_ids: Iterable[str]) -> Dict[str, dict]:
        async def _get(driver_id):
            try:
                profile = await self.store.get(driver_path(driver_id))
            except RecordStoreError:
                logger.warning("Could not fetch driver profile %s", driver_id, exc_info=True)
                profile = None
            return driver_id, profile if isinstance(profile, dict) else {}

        return dict(await asyncio.gather(*[_get(d) for d in driver_ids]))

    def _display(
        self,
        user_id: str,
        booking: StoredBooking,
        lookup: TripLookup,
        drivers: Dict[str, dict],
        now: datetime,
    ) -> DisplayableBooking:
        trip = lookup.trip
        status = booking.status
        if lookup.failed and not status.is_terminal:
            display = DisplayStatus.ARCHIVED_UNKNOWN
        else:
            occupied = trip is not None and trip.occupancy.is_occupied_by(booking.seat_id, user_id)
            derived = derive_display_status(
                status,
                trip.raw_status if trip else None,
                occupied,
                parse_iso(booking.trip_date_time),
                now,
            )
            display = derived.display
            if derived.self_heal:
                status = BookingStatus.SYSTEM_CANCELLED
                self._self_heal(user_id, booking, reason="seat-lost" if trip else "trip-vanished")

        driver_id = booking.driver_id or (trip.driver_id if trip else "") or ""
        driver = drivers.get(driver_id, {})
        fmt = self.formatter
        data = booking.model_dump()
        data.update(
            status=status,
            trip_date_display=fmt.format_date(booking.trip_date_time),
            trip_time_display=fmt.format_time(booking.trip_date_time),
            day_of_week_display=fmt.day_of_week(booking.trip_date_time),
            departure_city_display=fmt.city_name(booking.departure_city_value),
            arrival_city_display=fmt.city_name(booking.arrival_city_value),
            current_trip_status_display=display,
            original_trip_exists=trip is not None,
            original_actual_trip_status=trip.raw_status if trip else None,
            original_trip_lookup_failed=lookup.failed,
            driver_name_snapshot=booking.driver_name_snapshot or driver.get("fullName", ""),
            driver_phone_number_snapshot=driver.get("phone") or driver.get("phoneNumber"),
            driver_car_model_snapshot=driver.get("vehicleMakeModel"),
            driver_car_number_snapshot=driver.get("vehiclePlateNumber"),
            driver_car_color_snapshot=driver.get("vehicleColor"),
        )
        return DisplayableBooking.model_validate(data)

    def _self_heal(self, user_id: str, booking: StoredBooking, reason: str) -> None:
        SELF_HEALS.labels(reason=reason).inc()
        logger.info(
            "Booking %s on trip %s no longer valid (%s); marking system-cancelled",
            booking.booking_id,
            booking.trip_id,
            reason,
        )
        self.side_effects.schedule(
            "self-heal",
            self._mark_system_cancelled(user_id, booking.booking_id),
        )

    async def _mark_system_cancelled(self, user_id: str, booking_id: str) -> None:
        try:
            await transition_booking(self.store, user_id, booking_id, BookingStatus.SYSTEM_CANCELLED)
        except InvalidStatusTransition:
            # cancelled by someone else in the meantime; nothing to correct
            logger.info("Booking %s already terminal, self-heal skipped", booking_id)
