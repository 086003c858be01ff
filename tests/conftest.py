"""Shared fixtures: a fixed clock, an in-memory record store and record factories."""
from datetime import datetime, timedelta, timezone

import pytest

from rideshare.exceptions import RecordStoreError
from rideshare.services.clock import to_millis, utcnow
from rideshare.services.side_effects import SideEffects
from rideshare.store.memory import InMemoryRecordStore

NOW = datetime(2025, 5, 20, 10, 0, tzinfo=timezone.utc)
USER = "rider-1"
OTHER_USER = "rider-2"
DRIVER = "driver-1"
TRIP = "trip-T"


def iso(dt: datetime) -> str:
    return dt.strftime("%Y-%m-%dT%H:%M:%S.000Z")


def minutes_ago(now: datetime, minutes: int) -> int:
    return to_millis(now - timedelta(minutes=minutes))


class FlakyStore(InMemoryRecordStore):
    """In-memory store that raises ``RecordStoreError`` for selected operations and path prefixes."""

    def __init__(self, data=None, fail_on=()):
        super().__init__(data)
        self.fail_on = set(fail_on)

    def _check(self, op, path):
        for failing_op, prefix in self.fail_on:
            if failing_op == op and path.startswith(prefix):
                raise RecordStoreError(f"simulated {op} failure on {path}")

    async def get(self, path):
        self._check("get", path)
        return await super().get(path)

    async def set(self, path, value):
        self._check("set", path)
        return await super().set(path, value)

    async def update(self, path, partial):
        self._check("update", path)
        return await super().update(path, partial)

    async def atomic_update(self, path, fn):
        self._check("atomic_update", path)
        return await super().atomic_update(path, fn)


class Factory:
    user = USER
    other_user = OTHER_USER
    driver_id = DRIVER
    trip_id = TRIP

    def __init__(self, now: datetime):
        self.now = now

    def passenger(self, user_id=USER, fees=10.0, minutes=5):
        return {
            "userId": user_id,
            "phone": "0790000000",
            "fullName": "Rider One",
            "bookedAt": minutes_ago(self.now, minutes),
            "paymentType": "cash",
            "fees": fees,
        }

    def config_trip(self, seats, status="upcoming", days_ahead=1, driver_id=DRIVER):
        return {
            "driverId": driver_id,
            "dateTime": iso(self.now + timedelta(days=days_ahead)),
            "status": status,
            "pricePerPassenger": 10,
            "startPoint": "amman",
            "destination": "irbid",
            "offeredSeatsConfig": seats,
        }

    def list_trip(self, free, details, status="upcoming", days_ahead=1, driver_id=DRIVER):
        return {
            "driverId": driver_id,
            "dateTime": iso(self.now + timedelta(days=days_ahead)),
            "status": status,
            "pricePerPassenger": 10,
            "startPoint": "amman",
            "destination": "irbid",
            "offeredSeatIds": list(free),
            "passengerDetails": details,
        }

    def booking(self, booking_id, seat_id, seat_name, trip_id=TRIP, status="booked", minutes=5, days_ahead=1, user_id=USER):
        return {
            "bookingId": booking_id,
            "tripId": trip_id,
            "seatId": seat_id,
            "seatName": seat_name,
            "tripPrice": 10,
            "tripDateTime": iso(self.now + timedelta(days=days_ahead)),
            "departureCityValue": "amman",
            "arrivalCityValue": "irbid",
            "driverId": DRIVER,
            "driverNameSnapshot": "Driver One",
            "bookedAt": minutes_ago(self.now, minutes),
            "userId": user_id,
            "status": status,
            "fees": 10,
        }

    def driver(self, balance=100.0):
        return {
            "fullName": "Driver One",
            "phone": "0791111111",
            "vehicleMakeModel": "Kia Rio",
            "vehiclePlateNumber": "12-34567",
            "vehicleColor": "white",
            "walletBalance": balance,
        }

    def data(self, bookings, trips, balance=100.0, user_id=USER):
        return {
            "history": {user_id: {b["bookingId"]: b for b in bookings}},
            "trips": trips,
            "drivers": {DRIVER: self.driver(balance)},
        }


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def clock(now):
    return lambda: now


@pytest.fixture
def factory(now):
    return Factory(now)


@pytest.fixture
def side_effects():
    return SideEffects()


@pytest.fixture
def make_store():
    def _make(data=None, fail_on=()):
        if fail_on:
            return FlakyStore(data, fail_on=fail_on)
        return InMemoryRecordStore(data)

    return _make


@pytest.fixture
def live_factory():
    # requests go through the app's wall clock, so build records relative to it
    return Factory(utcnow())
