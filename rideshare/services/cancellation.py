import logging
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Sequence, Tuple

from rideshare.config import settings
from rideshare.exceptions import AbortUpdate, EmptyCancellationBatch, RecordStoreError, TripStateChanged, SeatNotOccupied
from rideshare.metrics import REFUNDS, SEAT_CANCELLATIONS
from rideshare.models import BookingStatus, DisplayableBooking, GroupedTrip, LiveTrip, TripStatus
from rideshare.schemas.cancellation import CancellationResult, SeatError
from rideshare.services.clock import Clock, from_millis, to_millis, utcnow
from rideshare.services.history import driver_path, transition_booking, trip_path
from rideshare.services.side_effects import SideEffects, side_effects as default_side_effects
from rideshare.store.base import RecordStore

logger = logging.getLogger(__name__)


REFUND_ALL_OR_NOTHING = "all-or-nothing"
REFUND_PER_BOOKING = "per-booking"


def cancellation_block(booking: DisplayableBooking, now: datetime, window: timedelta) -> Optional[Tuple[str, str]]:
    """Return ``(code, reason)`` when the booking may not be cancelled, else ``None``."""
    if booking.status is not BookingStatus.BOOKED:
        return "not-booked", "booking is no longer active"
    if TripStatus.parse(booking.original_actual_trip_status) is not TripStatus.UPCOMING:
        return "trip-not-upcoming", "trip is no longer upcoming"
    if now - from_millis(booking.booked_at) >= window:
        minutes = int(window.total_seconds() // 60)
        return "window-expired", f"cancellation is only possible within {minutes} minutes of booking"
    return None


def cancellation_window() -> timedelta:
    return timedelta(minutes=settings.CANCELLATION_WINDOW_MINUTES)


def initiate_cancellation(group: GroupedTrip, now: Optional[datetime] = None, window: Optional[timedelta] = None) -> List[DisplayableBooking]:
    """The bookings of ``group`` the rider may still cancel. No I/O."""
    now = now or utcnow()
    window = window or cancellation_window()
    return [b for b in group.bookings if cancellation_block(b, now, window) is None]


def _seat_error(booking: DisplayableBooking, code: str, reason: str) -> SeatError:
    return SeatError(
        booking_id=booking.booking_id,
        seat_id=booking.seat_id,
        seat_name=booking.seat_name,
        code=code,
        reason=reason,
    )


class CancellationOrchestrator:
    """Cancels a rider's seats: validate, pre-flight, release each seat atomically, refund the owner.

    Bookings are processed one after another so every failure is attributed
    to exactly one seat.
    """

    def __init__(
        self,
        store: RecordStore,
        side_effects: Optional[SideEffects] = None,
        clock: Clock = utcnow,
        window: Optional[timedelta] = None,
        refund_policy: Optional[str] = None,
    ):
        self.store = store
        self.side_effects = side_effects or default_side_effects
        self.clock = clock
        self.window = window or cancellation_window()
        self.refund_policy = refund_policy or settings.REFUND_POLICY
        if self.refund_policy not in (REFUND_ALL_OR_NOTHING, REFUND_PER_BOOKING):
            raise ValueError(f"Unknown refund policy: {self.refund_policy}")

    async def execute(self, user_id: Optional[str], bookings: Sequence[DisplayableBooking]) -> CancellationResult:
        if not user_id:
            return CancellationResult(succeeded=False, warnings=["Not signed in."])
        if not bookings:
            raise EmptyCancellationBatch("No bookings selected for cancellation")
        now = self.clock()

        blocked = self._check_eligibility(bookings, now)
        if blocked:
            return self._rejected(blocked)

        stale = await self._preflight(bookings)
        if stale:
            return self._rejected(stale)

        refunds: Dict[str, float] = defaultdict(float)
        failures: List[SeatError] = []
        cancelled: List[str] = []
        for booking in bookings:
            try:
                fee, owner_id = await self._release_seat(user_id, booking, to_millis(now))
            except AbortUpdate as exc:
                logger.info("Seat %s on trip %s not released: %s", booking.seat_id, booking.trip_id, exc)
                failures.append(_seat_error(booking, exc.code, str(exc)))
                SEAT_CANCELLATIONS.labels(result=exc.code).inc()
                continue
            except RecordStoreError:
                logger.warning("Store error releasing seat %s on trip %s", booking.seat_id, booking.trip_id, exc_info=True)
                failures.append(_seat_error(booking, "store-error", "could not reach the server"))
                SEAT_CANCELLATIONS.labels(result="store-error").inc()
                continue
            SEAT_CANCELLATIONS.labels(result="released").inc()
            refunds[owner_id] += fee
            cancelled.append(booking.booking_id)
            # seat is already free; a failure here leaves history saying "booked"
            # until the next reconciliation notices the seat is gone
            await self.side_effects.run(
                "history-status",
                transition_booking(self.store, user_id, booking.booking_id, BookingStatus.USER_CANCELLED),
                level=logging.ERROR,
            )

        if failures and self.refund_policy == REFUND_ALL_OR_NOTHING and refunds:
            logger.warning("Discarding refund of %s for batch with %s failed seat(s)", dict(refunds), len(failures))
            refunds.clear()

        refunded, warnings = await self._refund_owners(refunds, now)
        return CancellationResult(
            succeeded=not failures,
            per_seat_errors=failures,
            cancelled_booking_ids=cancelled,
            refunded_amount=refunded,
            warnings=warnings,
        )

    def _check_eligibility(self, bookings: Sequence[DisplayableBooking], now: datetime) -> List[SeatError]:
        errors = []
        for booking in bookings:
            block = cancellation_block(booking, now, self.window)
            if block:
                errors.append(_seat_error(booking, *block))
        return errors

    async def _preflight(self, bookings: Sequence[DisplayableBooking]) -> List[SeatError]:
        """Re-read every targeted trip; any trip missing or not upcoming fails the whole batch."""
        bad: Dict[str, Tuple[str, str]] = {}
        for trip_id in dict.fromkeys(b.trip_id for b in bookings):
            try:
                trip = LiveTrip.from_record(trip_id, await self.store.get(trip_path(trip_id)))
            except RecordStoreError:
                logger.warning("Pre-flight read of trip %s failed", trip_id, exc_info=True)
                bad[trip_id] = ("store-error", "could not reach the server")
                continue
            if trip is None or trip.status is not TripStatus.UPCOMING:
                logger.info("Pre-flight: trip %s is %s", trip_id, trip.raw_status if trip else "missing")
                bad[trip_id] = (TripStateChanged.code, "trip state changed")
        return [_seat_error(b, *bad[b.trip_id]) for b in bookings if b.trip_id in bad]

    def _rejected(self, errors: List[SeatError]) -> CancellationResult:
        for error in errors:
            SEAT_CANCELLATIONS.labels(result=error.code).inc()
        return CancellationResult(succeeded=False, per_seat_errors=errors)

    async def _release_seat(self, user_id: str, booking: DisplayableBooking, now_ms: int) -> Tuple[float, str]:
        released = {}

        def _release(current):
            trip = LiveTrip.from_record(booking.trip_id, current)
            if trip is None:
                raise TripStateChanged(booking.trip_id)
            if trip.status is not TripStatus.UPCOMING:
                raise TripStateChanged(booking.trip_id)
            if not trip.occupancy.is_occupied_by(booking.seat_id, user_id):
                raise SeatNotOccupied(booking.trip_id, booking.seat_id)
            # overwritten on every retry so only the committed attempt counts
            released["fee"] = trip.occupancy.fee_for(booking.seat_id)
            released["owner_id"] = trip.driver_id
            trip.occupancy.release(booking.seat_id)
            trip.touch(now_ms)
            return trip.record

        await self.store.atomic_update(trip_path(booking.trip_id), _release)
        fee = released["fee"]
        if fee is None:
            logger.warning("No usable fee on trip %s seat %s; refunding booked fee", booking.trip_id, booking.seat_id)
            fee = booking.fees or 0
        return fee, released["owner_id"] or booking.driver_id

    async def _refund_owners(self, refunds: Dict[str, float], now: datetime) -> Tuple[float, List[str]]:
        refunded = 0.0
        warnings = []
        for owner_id, amount in refunds.items():
            if not amount:
                continue
            if not owner_id:
                logger.critical("Cannot refund %s: trip has no owner", amount)
                REFUNDS.labels(result="failed").inc()
                warnings.append("Refund to the driver could not be recorded.")
                continue
            try:
                await self._refund(owner_id, amount, now)
            except RecordStoreError:
                logger.critical("Refund of %s to driver %s failed", amount, owner_id, exc_info=True)
                REFUNDS.labels(result="failed").inc()
                warnings.append("Refund to the driver could not be recorded.")
                continue
            REFUNDS.labels(result="applied").inc()
            refunded += amount
        return refunded, warnings

    async def _refund(self, owner_id: str, amount: float, now: datetime) -> None:
        # plain read-then-write; concurrent refunds to one driver can race
        path = driver_path(owner_id)
        profile = await self.store.get(path) or {}
        balance = float(profile.get("walletBalance") or 0)
        await self.store.update(path, {"walletBalance": balance + amount, "updatedAt": to_millis(now)})
        logger.info("Refunded %s to driver %s", amount, owner_id)
