from typing import List, Optional

from pydantic import Field

from rideshare.models import StoredBooking
from rideshare.models.booking import CamelModel


class BookSeatsRequest(CamelModel):
    seat_ids: List[str] = Field(..., min_length=1)
    payment_type: str = Field("cash", description="one of: cash, cliq")
    full_name: Optional[str] = None
    phone: Optional[str] = None
    selected_stop: Optional[str] = None


class BookSeatsResponse(CamelModel):
    trip_id: str
    bookings: List[StoredBooking]
