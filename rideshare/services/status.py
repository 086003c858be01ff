"""Status derivation shared by the reconciler and the grouper.

Everything here is pure: the same inputs always give the same display
status, so a booking card and its trip header can never disagree.
"""
from datetime import datetime
from typing import Iterable, NamedTuple, Optional

from rideshare.models import BookingStatus, DisplayStatus, HeaderStatus, TripStatus


class Derivation(NamedTuple):
    display: DisplayStatus
    # stored booking is stale and should become system-cancelled
    self_heal: bool


LIVE_TO_DISPLAY = {
    TripStatus.UPCOMING: DisplayStatus.UPCOMING,
    TripStatus.ONGOING: DisplayStatus.ONGOING,
    TripStatus.COMPLETED: DisplayStatus.COMPLETED,
    TripStatus.CANCELLED: DisplayStatus.CANCELLED,
}

DISPLAY_TO_HEADER = {
    DisplayStatus.UPCOMING: HeaderStatus.UPCOMING,
    DisplayStatus.ONGOING: HeaderStatus.ONGOING,
    DisplayStatus.COMPLETED: HeaderStatus.COMPLETED,
    DisplayStatus.CANCELLED: HeaderStatus.CANCELLED,
    DisplayStatus.USER_CANCELLED: HeaderStatus.CANCELLED_BY_YOU,
    DisplayStatus.SYSTEM_CANCELLED: HeaderStatus.CANCELLED_BY_SYSTEM,
    DisplayStatus.ARCHIVED_UNKNOWN: HeaderStatus.ARCHIVED,
}


def derive_display_status(
    stored_status: BookingStatus,
    live_trip_status: Optional[str],
    seat_occupied_by_user: bool,
    trip_date_time: Optional[datetime],
    now: datetime,
) -> Derivation:
    """Decide what a booking currently is.

    ``live_trip_status`` is ``None`` when the live trip no longer exists; any
    other unrecognised value means the trip exists in an unknown state.
    """
    if stored_status is BookingStatus.USER_CANCELLED:
        return Derivation(DisplayStatus.USER_CANCELLED, False)
    if stored_status is BookingStatus.SYSTEM_CANCELLED:
        return Derivation(DisplayStatus.SYSTEM_CANCELLED, False)

    if live_trip_status is None:
        if trip_date_time is None:
            return Derivation(DisplayStatus.ARCHIVED_UNKNOWN, False)
        if trip_date_time < now:
            return Derivation(DisplayStatus.COMPLETED, False)
        # a future trip that vanished
        return Derivation(DisplayStatus.SYSTEM_CANCELLED, True)

    live = TripStatus.parse(live_trip_status)
    if live is TripStatus.UPCOMING and not seat_occupied_by_user:
        return Derivation(DisplayStatus.SYSTEM_CANCELLED, True)
    return Derivation(LIVE_TO_DISPLAY.get(live, DisplayStatus.ARCHIVED_UNKNOWN), False)


def trip_header_status(live_trip_status: Optional[str], trip_date_time: Optional[datetime], now: datetime) -> HeaderStatus:
    derived = derive_display_status(BookingStatus.BOOKED, live_trip_status, True, trip_date_time, now)
    return DISPLAY_TO_HEADER[derived.display]


def group_header_status(
    member_statuses: Iterable[BookingStatus],
    live_trip_status: Optional[str],
    trip_date_time: Optional[datetime],
    now: datetime,
) -> HeaderStatus:
    statuses = list(member_statuses)
    base = trip_header_status(live_trip_status, trip_date_time, now)
    if statuses and all(s is BookingStatus.USER_CANCELLED for s in statuses):
        return HeaderStatus.CANCELLED_BY_YOU
    if statuses and all(s is BookingStatus.SYSTEM_CANCELLED for s in statuses):
        return HeaderStatus.CANCELLED_BY_SYSTEM
    if any(s.is_terminal for s in statuses):
        return HeaderStatus.MIXED
    live = TripStatus.parse(live_trip_status)
    if live is not None and live is not TripStatus.UPCOMING:
        return DISPLAY_TO_HEADER[LIVE_TO_DISPLAY[live]]
    return base


def can_cancel_any(member_statuses: Iterable[BookingStatus], live_trip_status: Optional[str]) -> bool:
    if TripStatus.parse(live_trip_status) is not TripStatus.UPCOMING:
        return False
    return any(s is BookingStatus.BOOKED for s in member_statuses)
