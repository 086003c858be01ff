from typing import List

from pydantic import Field

from rideshare.models import GroupedTrip
from rideshare.models.booking import CamelModel


class CancelRequest(CamelModel):
    booking_ids: List[str]


class SeatError(CamelModel):
    booking_id: str
    seat_id: str
    seat_name: str
    code: str
    reason: str


class CancellationResult(CamelModel):
    succeeded: bool
    per_seat_errors: List[SeatError] = Field(default_factory=list)
    cancelled_booking_ids: List[str] = Field(default_factory=list)
    refunded_amount: float = 0
    warnings: List[str] = Field(default_factory=list)

    @property
    def message(self) -> str:
        """One summary line for the whole attempt."""
        if self.succeeded:
            count = len(self.cancelled_booking_ids)
            text = f"Cancelled {count} seat{'s' if count != 1 else ''}."
        else:
            failed = ", ".join(f"{e.seat_name or e.seat_id} ({e.reason})" for e in self.per_seat_errors)
            text = f"Cancellation failed for: {failed}."
        if self.warnings:
            text += " " + " ".join(self.warnings)
        return text


class CancellationResponse(CamelModel):
    result: CancellationResult
    message: str
    trips: List[GroupedTrip]
