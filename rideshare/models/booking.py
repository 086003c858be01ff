from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from rideshare.exceptions import InvalidStatusTransition


class BookingStatus(str, Enum):
    """Lifecycle of one reserved seat. Both cancelled states are terminal."""

    BOOKED = "booked"
    USER_CANCELLED = "user-cancelled"
    SYSTEM_CANCELLED = "system-cancelled"

    @property
    def is_terminal(self) -> bool:
        return self is not BookingStatus.BOOKED

    def transition_to(self, target: "BookingStatus") -> "BookingStatus":
        if self.is_terminal or not target.is_terminal:
            raise InvalidStatusTransition(self.value, target.value)
        return target


class DisplayStatus(str, Enum):
    UPCOMING = "قادمة"
    ONGOING = "حالية"
    COMPLETED = "مكتملة"
    CANCELLED = "ملغاة"
    USER_CANCELLED = "ملغاة (بواسطتك)"
    SYSTEM_CANCELLED = "ملغاة (النظام)"
    ARCHIVED_UNKNOWN = "مؤرشفة (غير معروفة)"


class HeaderStatus(str, Enum):
    UPCOMING = "قادمة"
    ONGOING = "حالية"
    COMPLETED = "مكتملة"
    CANCELLED = "ملغاة"
    CANCELLED_BY_YOU = "ملغاة (بواسطتك)"
    CANCELLED_BY_SYSTEM = "ملغاة (النظام)"
    MIXED = "متعدد الحالات"
    ARCHIVED = "مؤرشفة"


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class StoredBooking(CamelModel):
    """One seat reserved by one rider, as kept under ``history/{user_id}/{booking_id}``."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    booking_id: str
    trip_id: str
    seat_id: str
    seat_name: str = ""
    trip_price: float = 0
    trip_date_time: str
    departure_city_value: str = ""
    arrival_city_value: str = ""
    driver_id: str = ""
    driver_name_snapshot: str = ""
    booked_at: int = Field(..., description="Epoch milliseconds")
    user_id: str = ""
    status: BookingStatus = BookingStatus.BOOKED
    payment_type: Optional[str] = None
    full_name_snapshot: Optional[str] = None
    phone_snapshot: Optional[str] = None
    selected_stop: Optional[str] = None
    fees: Optional[float] = None

    @field_validator("status", mode="before")
    @classmethod
    def _missing_status_is_booked(cls, value):
        # records written before the status field existed carry no status
        return BookingStatus.BOOKED if value is None else value

    def to_record(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


class DisplayableBooking(StoredBooking):
    trip_date_display: str = ""
    trip_time_display: str = ""
    day_of_week_display: str = ""
    departure_city_display: str = ""
    arrival_city_display: str = ""
    current_trip_status_display: DisplayStatus = DisplayStatus.ARCHIVED_UNKNOWN
    original_trip_exists: bool = False
    original_actual_trip_status: Optional[str] = None
    original_trip_lookup_failed: bool = False
    driver_phone_number_snapshot: Optional[str] = None
    driver_car_model_snapshot: Optional[str] = None
    driver_car_number_snapshot: Optional[str] = None
    driver_car_color_snapshot: Optional[str] = None


class GroupedTrip(CamelModel):
    trip_id: str
    trip_date_time: str
    trip_date_display: str = ""
    trip_time_display: str = ""
    day_of_week_display: str = ""
    departure_city_display: str = ""
    arrival_city_display: str = ""
    driver_name_snapshot: str = ""
    driver_phone_number_snapshot: Optional[str] = None
    driver_car_model_snapshot: Optional[str] = None
    driver_car_number_snapshot: Optional[str] = None
    driver_car_color_snapshot: Optional[str] = None
    overall_trip_status: str = "unknown"
    original_trip_exists: bool = False
    bookings: List[DisplayableBooking] = Field(default_factory=list)
    header_status: HeaderStatus = HeaderStatus.ARCHIVED
    can_cancel_any_booking_in_group: bool = False
