from fastapi import APIRouter, Depends, HTTPException, status

from rideshare.auth.deps import require_user_id
from rideshare.exceptions import RecordStoreError, SeatUnavailable, TripStateChanged
from rideshare.schemas.booking import BookSeatsRequest, BookSeatsResponse
from rideshare.services.booking import SeatBookingService
from rideshare.services.history import trip_path
from rideshare.store.base import RecordStore
from rideshare.store.session import get_store

router = APIRouter()


@router.get("/{trip_id}")
async def get_trip(trip_id: str, store: RecordStore = Depends(get_store)):
    try:
        record = await store.get(trip_path(trip_id))
    except RecordStoreError:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Trip store unavailable")
    if not isinstance(record, dict):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Trip not found")
    return {**record, "id": trip_id}


@router.post("/{trip_id}/bookings", response_model=BookSeatsResponse)
async def book_seats(trip_id: str, req: BookSeatsRequest, user_id: str = Depends(require_user_id), store: RecordStore = Depends(get_store)):
    """Reserve one or more seats on an upcoming trip."""
    service = SeatBookingService(store)
    try:
        bookings = await service.book_seats(
            user_id,
            trip_id,
            req.seat_ids,
            payment_type=req.payment_type,
            full_name=req.full_name,
            phone=req.phone,
            selected_stop=req.selected_stop,
        )
    except (TripStateChanged, SeatUnavailable) as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    except RecordStoreError:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Trip store unavailable")
    return BookSeatsResponse(trip_id=trip_id, bookings=bookings)
