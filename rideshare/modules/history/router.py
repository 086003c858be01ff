import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, status

from rideshare.auth.deps import require_user_id
from rideshare.exceptions import EmptyCancellationBatch, HistoryFetchError
from rideshare.models import DisplayableBooking, GroupedTrip
from rideshare.schemas.cancellation import CancellationResponse, CancelRequest
from rideshare.services.cancellation import CancellationOrchestrator, initiate_cancellation
from rideshare.services.reconciler import TripStatusReconciler
from rideshare.store.base import RecordStore
from rideshare.store.session import get_store

logger = logging.getLogger(__name__)

router = APIRouter()

HISTORY_UNAVAILABLE = "Could not load your trips. Please try again."


def get_reconciler(store: RecordStore = Depends(get_store)) -> TripStatusReconciler:
    return TripStatusReconciler(store)


def get_orchestrator(store: RecordStore = Depends(get_store)) -> CancellationOrchestrator:
    return CancellationOrchestrator(store)


async def _reconcile(reconciler: TripStatusReconciler, user_id: str) -> List[GroupedTrip]:
    try:
        return await reconciler.reconcile(user_id)
    except HistoryFetchError:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=HISTORY_UNAVAILABLE)


@router.get("/", response_model=List[GroupedTrip])
async def list_history(user_id: str = Depends(require_user_id), reconciler: TripStatusReconciler = Depends(get_reconciler)):
    """The signed-in rider's trips, one card per trip, reconciled against the live trips."""
    return await _reconcile(reconciler, user_id)


@router.get("/{trip_id}/cancellable", response_model=List[DisplayableBooking])
async def cancellable_bookings(trip_id: str, user_id: str = Depends(require_user_id), reconciler: TripStatusReconciler = Depends(get_reconciler)):
    groups = await _reconcile(reconciler, user_id)
    group = next((g for g in groups if g.trip_id == trip_id), None)
    if group is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Trip not found in your history")
    return initiate_cancellation(group)


@router.post("/cancel", response_model=CancellationResponse)
async def cancel_bookings(
    req: CancelRequest,
    user_id: str = Depends(require_user_id),
    reconciler: TripStatusReconciler = Depends(get_reconciler),
    orchestrator: CancellationOrchestrator = Depends(get_orchestrator),
):
    """Cancel the selected seats, then return the freshly reconciled history."""
    try:
        bookings = await reconciler.reconcile_bookings(user_id)
    except HistoryFetchError:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=HISTORY_UNAVAILABLE)
    by_id = {b.booking_id: b for b in bookings}
    unknown = [i for i in req.booking_ids if i not in by_id]
    if unknown:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Unknown bookings: {', '.join(unknown)}")
    selected = [by_id[i] for i in dict.fromkeys(req.booking_ids)]

    try:
        result = await orchestrator.execute(user_id, selected)
    except EmptyCancellationBatch as exc:
        raise HTTPException(status_code=422, detail=str(exc))

    # live state may have moved whatever the outcome
    try:
        trips = await reconciler.reconcile(user_id)
    except HistoryFetchError:
        # seats may already be released and refunded; the result must still reach the rider
        logger.warning("Could not reload history for user %s after cancellation", user_id)
        result.warnings.append(HISTORY_UNAVAILABLE)
        trips = []
    return CancellationResponse(result=result, message=result.message, trips=trips)
