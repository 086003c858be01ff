from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Dict, Optional


class TripStatus(str, Enum):
    UPCOMING = "upcoming"
    ONGOING = "ongoing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @classmethod
    def parse(cls, value) -> Optional["TripStatus"]:
        try:
            return cls(value)
        except ValueError:
            return None


# passenger seats of the standard car layout
DEFAULT_SEAT_LAYOUT = {
    "front_passenger": "مقعد أمامي",
    "back_left": "خلفي يسار",
    "back_middle": "خلفي وسط",
    "back_right": "خلفي يمين",
}


class SeatOccupancy(ABC):
    """Seat occupancy of a live trip record, whichever legacy shape it is stored in.

    Operates in place on the raw record so unrelated fields survive a write.
    """

    shape = "none"

    def __init__(self, record: Dict[str, Any]):
        self.record = record

    @abstractmethod
    def occupant(self, seat_id: str) -> Optional[Dict[str, Any]]:
        raise NotImplementedError()

    @abstractmethod
    def is_free(self, seat_id: str) -> bool:
        raise NotImplementedError()

    @abstractmethod
    def release(self, seat_id: str) -> None:
        raise NotImplementedError()

    @abstractmethod
    def occupy(self, seat_id: str, passenger: Dict[str, Any]) -> None:
        raise NotImplementedError()

    def is_occupied_by(self, seat_id: str, user_id: str) -> bool:
        occupant = self.occupant(seat_id)
        return occupant is not None and occupant.get("userId") == user_id

    def fee_for(self, seat_id: str) -> Optional[float]:
        occupant = self.occupant(seat_id) or {}
        try:
            return float(occupant["fees"])
        except (KeyError, TypeError, ValueError):
            # missing or unparseable; callers fall back to the booking's own fee
            return None


class SeatConfigOccupancy(SeatOccupancy):
    """``offeredSeatsConfig``: seat id -> ``true`` when free, passenger object when taken."""

    shape = "config"

    @property
    def _config(self) -> Dict[str, Any]:
        return self.record.setdefault("offeredSeatsConfig", {})

    def occupant(self, seat_id):
        entry = self._config.get(seat_id)
        return entry if isinstance(entry, dict) else None

    def is_free(self, seat_id):
        return self._config.get(seat_id) is True

    def release(self, seat_id):
        self._config[seat_id] = True

    def occupy(self, seat_id, passenger):
        self._config[seat_id] = passenger


class SeatListOccupancy(SeatOccupancy):
    """``offeredSeatIds`` lists free seats; ``passengerDetails`` maps taken seats to passengers."""

    shape = "list"

    @property
    def _free_ids(self) -> list:
        if not isinstance(self.record.get("offeredSeatIds"), list):
            self.record["offeredSeatIds"] = []
        return self.record["offeredSeatIds"]

    @property
    def _details(self) -> Dict[str, Any]:
        if not isinstance(self.record.get("passengerDetails"), dict):
            self.record["passengerDetails"] = {}
        return self.record["passengerDetails"]

    def occupant(self, seat_id):
        entry = (self.record.get("passengerDetails") or {}).get(seat_id)
        return entry if isinstance(entry, dict) else None

    def is_free(self, seat_id):
        return seat_id in (self.record.get("offeredSeatIds") or []) and self.occupant(seat_id) is None

    def release(self, seat_id):
        self._details.pop(seat_id, None)
        if seat_id not in self._free_ids:
            self._free_ids.append(seat_id)

    def occupy(self, seat_id, passenger):
        while seat_id in self._free_ids:
            self._free_ids.remove(seat_id)
        self._details[seat_id] = passenger


class NoSeatOccupancy(SeatOccupancy):
    """A record with neither shape offers no seats at all."""

    def occupant(self, seat_id):
        return None

    def is_free(self, seat_id):
        return False

    def release(self, seat_id):
        pass

    def occupy(self, seat_id, passenger):
        raise ValueError(f"Trip offers no seats; cannot occupy {seat_id}")


def seat_occupancy(record: Dict[str, Any]) -> SeatOccupancy:
    if isinstance(record.get("offeredSeatsConfig"), dict):
        return SeatConfigOccupancy(record)
    if "offeredSeatIds" in record or "passengerDetails" in record:
        return SeatListOccupancy(record)
    return NoSeatOccupancy(record)


class LiveTrip:
    """The shared trip record at ``trips/{trip_id}``."""

    def __init__(self, trip_id: str, record: Dict[str, Any]):
        self.trip_id = trip_id
        self.record = record
        self.occupancy = seat_occupancy(record)

    @classmethod
    def from_record(cls, trip_id: str, record: Any) -> Optional["LiveTrip"]:
        if not isinstance(record, dict):
            return None
        return cls(trip_id, record)

    @property
    def raw_status(self) -> str:
        return str(self.record.get("status") or "")

    @property
    def status(self) -> Optional[TripStatus]:
        return TripStatus.parse(self.raw_status)

    @property
    def driver_id(self) -> Optional[str]:
        return self.record.get("driverId")

    @property
    def date_time(self) -> Optional[str]:
        return self.record.get("dateTime")

    @property
    def price_per_passenger(self) -> float:
        return float(self.record.get("pricePerPassenger") or 0)

    def touch(self, now_ms: int) -> None:
        self.record["updatedAt"] = now_ms
