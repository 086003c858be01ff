class RecordStoreError(Exception):
    """The record store could not complete a read or write."""


class AbortUpdate(Exception):
    """Raised from inside an atomic update function to reject the write.

    The store never commits when this is raised and re-raises it unchanged.
    """

    code = "aborted"


class TripStateChanged(AbortUpdate):
    code = "trip-state-changed"

    def __init__(self, trip_id: str, detail: str = "trip state changed"):
        super().__init__(detail)
        self.trip_id = trip_id
        self.detail = detail


class SeatNotOccupied(AbortUpdate):
    code = "seat-not-occupied"

    def __init__(self, trip_id: str, seat_id: str):
        super().__init__("seat not occupied by you")
        self.trip_id = trip_id
        self.seat_id = seat_id


class SeatUnavailable(AbortUpdate):
    code = "seat-unavailable"

    def __init__(self, trip_id: str, seat_id: str):
        super().__init__(f"seat {seat_id} is not available")
        self.trip_id = trip_id
        self.seat_id = seat_id


class InvalidStatusTransition(AbortUpdate):
    code = "invalid-transition"

    def __init__(self, current: str, target: str):
        super().__init__(f"cannot move booking from {current} to {target}")
        self.current = current
        self.target = target


class HistoryFetchError(Exception):
    """The user's own booking history could not be read."""


class EmptyCancellationBatch(ValueError):
    pass
