from datetime import datetime, timezone
from typing import Dict, Iterable, List

from rideshare.models import DisplayableBooking, GroupedTrip
from rideshare.services.clock import parse_iso
from rideshare.services.status import can_cancel_any, group_header_status

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def group_bookings(bookings: Iterable[DisplayableBooking], now: datetime) -> List[GroupedTrip]:
    """Fold per-seat display records into one card per trip, most recent trip first."""
    by_trip: Dict[str, List[DisplayableBooking]] = {}
    for booking in bookings:
        by_trip.setdefault(booking.trip_id, []).append(booking)
    groups = [build_group(trip_id, members, now) for trip_id, members in by_trip.items()]
    groups.sort(key=lambda g: parse_iso(g.trip_date_time) or _EPOCH, reverse=True)
    return groups


def build_group(trip_id: str, members: List[DisplayableBooking], now: datetime) -> GroupedTrip:
    members = sorted(members, key=lambda b: b.seat_name)
    first = members[0]
    exists = any(b.original_trip_exists for b in members)
    lookup_failed = any(b.original_trip_lookup_failed for b in members)
    live_status = next((b.original_actual_trip_status for b in members if b.original_actual_trip_status is not None), None)
    if live_status is None and lookup_failed:
        # trip state unknown rather than gone
        live_status = ""
    statuses = [b.status for b in members]
    driver = next((b for b in members if b.driver_phone_number_snapshot or b.driver_car_model_snapshot), first)
    return GroupedTrip(
        trip_id=trip_id,
        trip_date_time=first.trip_date_time,
        trip_date_display=first.trip_date_display,
        trip_time_display=first.trip_time_display,
        day_of_week_display=first.day_of_week_display,
        departure_city_display=first.departure_city_display,
        arrival_city_display=first.arrival_city_display,
        driver_name_snapshot=first.driver_name_snapshot,
        driver_phone_number_snapshot=driver.driver_phone_number_snapshot,
        driver_car_model_snapshot=driver.driver_car_model_snapshot,
        driver_car_number_snapshot=driver.driver_car_number_snapshot,
        driver_car_color_snapshot=driver.driver_car_color_snapshot,
        overall_trip_status=live_status or "unknown",
        original_trip_exists=exists,
        bookings=members,
        header_status=group_header_status(statuses, live_status, parse_iso(first.trip_date_time), now),
        can_cancel_any_booking_in_group=can_cancel_any(statuses, live_status),
    )
