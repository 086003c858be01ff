from .booking import *
from .trip import *

__all__ = [
    "BookingStatus",
    "DisplayStatus",
    "HeaderStatus",
    "StoredBooking",
    "DisplayableBooking",
    "GroupedTrip",
    "TripStatus",
    "DEFAULT_SEAT_LAYOUT",
    "SeatOccupancy",
    "SeatConfigOccupancy",
    "SeatListOccupancy",
    "NoSeatOccupancy",
    "seat_occupancy",
    "LiveTrip",
]
