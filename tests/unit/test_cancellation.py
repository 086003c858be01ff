import asyncio
from datetime import timedelta

import pytest

from rideshare.exceptions import EmptyCancellationBatch
from rideshare.models import BookingStatus, DisplayStatus
from rideshare.services.cancellation import CancellationOrchestrator, initiate_cancellation
from rideshare.services.reconciler import TripStatusReconciler


@pytest.fixture
def setup(factory, make_store, clock, side_effects):
    """Build a store, reconcile it, and return the store plus reconciled groups."""

    async def _setup(bookings, trips, fail_on=(), balance=100.0):
        store = make_store(factory.data(bookings, trips, balance=balance), fail_on=fail_on)
        reconciler = TripStatusReconciler(store, side_effects=side_effects, clock=clock)
        groups = await reconciler.reconcile(factory.user)
        await side_effects.drain()
        return store, reconciler, groups

    return _setup


def _orchestrator(store, clock, side_effects, **kwargs):
    return CancellationOrchestrator(store, side_effects=side_effects, clock=clock, **kwargs)


async def _balance(store, factory):
    return await store.get(f"drivers/{factory.driver_id}/walletBalance")


async def test_eligibility_window(factory, setup, now):
    bookings = [
        factory.booking("recent", "front_passenger", "F1", minutes=5),
        factory.booking("stale", "back_left", "R1", minutes=20),
    ]
    trip = factory.config_trip({"front_passenger": factory.passenger(minutes=5), "back_left": factory.passenger(minutes=20)})
    _, _, groups = await setup(bookings, {factory.trip_id: trip})

    eligible = initiate_cancellation(groups[0], now=now)

    assert [b.booking_id for b in eligible] == ["recent"]


async def test_initiate_skips_cancelled_and_non_upcoming(factory, setup, now):
    bookings = [
        factory.booking("done", "front_passenger", "F1", status="user-cancelled"),
        factory.booking("live", "back_left", "R1"),
    ]
    trip = factory.config_trip({"back_left": factory.passenger()}, status="ongoing")
    _, _, groups = await setup(bookings, {factory.trip_id: trip})

    assert initiate_cancellation(groups[0], now=now) == []


async def test_happy_path(factory, setup, clock, side_effects):
    trip = factory.config_trip({"front_passenger": factory.passenger(fees=10.0), "back_left": True})
    store, reconciler, groups = await setup([factory.booking("f1", "front_passenger", "F1")], {factory.trip_id: trip})

    result = await _orchestrator(store, clock, side_effects).execute(factory.user, groups[0].bookings)

    assert result.succeeded
    assert result.per_seat_errors == []
    assert result.cancelled_booking_ids == ["f1"]
    assert result.refunded_amount == 10.0
    assert await store.get(f"trips/{factory.trip_id}/offeredSeatsConfig/front_passenger") is True
    assert await store.get(f"history/{factory.user}/f1/status") == "user-cancelled"
    assert await _balance(store, factory) == 110.0
    assert await store.get(f"trips/{factory.trip_id}/updatedAt") is not None

    after = await reconciler.reconcile(factory.user)
    assert after[0].bookings[0].current_trip_status_display is DisplayStatus.USER_CANCELLED


async def test_list_shape_release(factory, setup, clock, side_effects):
    trip = factory.list_trip(["back_left"], {"back_right": factory.passenger(fees=7.5)})
    store, _, groups = await setup([factory.booking("r2", "back_right", "R2")], {factory.trip_id: trip})

    result = await _orchestrator(store, clock, side_effects).execute(factory.user, groups[0].bookings)

    assert result.succeeded
    live = await store.get(f"trips/{factory.trip_id}")
    assert live["offeredSeatIds"] == ["back_left", "back_right"]
    assert "back_right" not in (live.get("passengerDetails") or {})
    assert await _balance(store, factory) == 107.5


async def test_preflight_aborts_whole_batch_when_trip_state_changed(factory, setup, clock, side_effects):
    bookings = [factory.booking("f1", "front_passenger", "F1"), factory.booking("r2", "back_right", "R2")]
    trip = factory.config_trip({"front_passenger": factory.passenger(), "back_right": factory.passenger()})
    store, _, groups = await setup(bookings, {factory.trip_id: trip})
    # trip completes between reconciliation and cancellation
    await store.set(f"trips/{factory.trip_id}/status", "completed")
    writes = store.writes

    result = await _orchestrator(store, clock, side_effects).execute(factory.user, groups[0].bookings)

    assert not result.succeeded
    assert store.writes == writes
    assert {e.seat_name for e in result.per_seat_errors} == {"F1", "R2"}
    assert {e.reason for e in result.per_seat_errors} == {"trip state changed"}
    assert await _balance(store, factory) == 100.0
    assert await store.get(f"history/{factory.user}/f1/status") == "booked"


async def test_preflight_aborts_when_trip_vanished(factory, setup, clock, side_effects):
    trip = factory.config_trip({"front_passenger": factory.passenger()})
    store, _, groups = await setup([factory.booking("f1", "front_passenger", "F1")], {factory.trip_id: trip})
    await store.set(f"trips/{factory.trip_id}", None)

    result = await _orchestrator(store, clock, side_effects).execute(factory.user, groups[0].bookings)

    assert not result.succeeded
    assert result.per_seat_errors[0].code == "trip-state-changed"


async def test_concurrent_cancel_of_same_seat_releases_once(factory, setup, clock, side_effects):
    trip = factory.config_trip({"front_passenger": factory.passenger(fees=10.0)})
    store, _, groups = await setup([factory.booking("f1", "front_passenger", "F1")], {factory.trip_id: trip})
    booking = groups[0].bookings

    first, second = await asyncio.gather(
        _orchestrator(store, clock, side_effects).execute(factory.user, booking),
        _orchestrator(store, clock, side_effects).execute(factory.user, booking),
    )

    results = [first, second]
    assert sum(r.succeeded for r in results) == 1
    loser = next(r for r in results if not r.succeeded)
    assert loser.per_seat_errors[0].code == "seat-not-occupied"
    assert loser.per_seat_errors[0].reason == "seat not occupied by you"
    assert await _balance(store, factory) == 110.0
    assert await store.get(f"history/{factory.user}/f1/status") == "user-cancelled"


async def test_failed_seat_discards_whole_refund(factory, setup, clock, side_effects):
    bookings = [factory.booking("f1", "front_passenger", "F1"), factory.booking("r2", "back_right", "R2")]
    trip = factory.config_trip({"front_passenger": factory.passenger(), "back_right": factory.passenger()})
    store, _, groups = await setup(bookings, {factory.trip_id: trip})
    selected = groups[0].bookings
    # R2 is handed to another rider after the user loaded the page
    await store.set(f"trips/{factory.trip_id}/offeredSeatsConfig/back_right", factory.passenger(user_id=factory.other_user))

    result = await _orchestrator(store, clock, side_effects).execute(factory.user, selected)

    assert not result.succeeded
    assert [(e.seat_name, e.code) for e in result.per_seat_errors] == [("R2", "seat-not-occupied")]
    assert result.cancelled_booking_ids == ["f1"]
    assert result.refunded_amount == 0
    assert await _balance(store, factory) == 100.0
    assert await store.get(f"trips/{factory.trip_id}/offeredSeatsConfig/front_passenger") is True
    assert await store.get(f"history/{factory.user}/f1/status") == "user-cancelled"


async def test_per_booking_policy_refunds_released_seats(factory, setup, clock, side_effects):
    bookings = [factory.booking("f1", "front_passenger", "F1"), factory.booking("r2", "back_right", "R2")]
    trip = factory.config_trip({"front_passenger": factory.passenger(fees=10.0), "back_right": factory.passenger()})
    store, _, groups = await setup(bookings, {factory.trip_id: trip})
    selected = groups[0].bookings
    await store.set(f"trips/{factory.trip_id}/offeredSeatsConfig/back_right", True)

    result = await _orchestrator(store, clock, side_effects, refund_policy="per-booking").execute(factory.user, selected)

    assert not result.succeeded
    assert result.refunded_amount == 10.0
    assert await _balance(store, factory) == 110.0


async def test_ineligible_booking_rejects_batch_without_writes(factory, setup, clock, side_effects):
    bookings = [factory.booking("f1", "front_passenger", "F1"), factory.booking("r1", "back_left", "R1", minutes=30)]
    trip = factory.config_trip({"front_passenger": factory.passenger(), "back_left": factory.passenger(minutes=30)})
    store, _, groups = await setup(bookings, {factory.trip_id: trip})
    writes = store.writes

    result = await _orchestrator(store, clock, side_effects).execute(factory.user, groups[0].bookings)

    assert not result.succeeded
    assert [(e.seat_name, e.code) for e in result.per_seat_errors] == [("R1", "window-expired")]
    assert store.writes == writes


async def test_refund_failure_is_a_warning(factory, setup, clock, side_effects):
    trip = factory.config_trip({"front_passenger": factory.passenger()})
    store, _, groups = await setup(
        [factory.booking("f1", "front_passenger", "F1")],
        {factory.trip_id: trip},
        fail_on=[("update", "drivers/")],
    )

    result = await _orchestrator(store, clock, side_effects).execute(factory.user, groups[0].bookings)

    assert result.succeeded
    assert result.refunded_amount == 0
    assert result.warnings
    assert "could not be recorded" in result.message
    assert await store.get(f"history/{factory.user}/f1/status") == "user-cancelled"


async def test_history_write_failure_is_healed_by_next_reconciliation(factory, make_store, clock, side_effects):
    trip = factory.config_trip({"front_passenger": factory.passenger()})
    store = make_store(
        factory.data([factory.booking("f1", "front_passenger", "F1")], {factory.trip_id: trip}),
        fail_on=[("atomic_update", "history/")],
    )
    reconciler = TripStatusReconciler(store, side_effects=side_effects, clock=clock)
    groups = await reconciler.reconcile(factory.user)

    result = await _orchestrator(store, clock, side_effects).execute(factory.user, groups[0].bookings)

    assert result.succeeded
    assert await store.get(f"trips/{factory.trip_id}/offeredSeatsConfig/front_passenger") is True
    assert await store.get(f"history/{factory.user}/f1/status") == "booked"

    store.fail_on.clear()
    healed = await reconciler.reconcile(factory.user)
    await side_effects.drain()
    assert healed[0].bookings[0].status is BookingStatus.SYSTEM_CANCELLED
    assert await store.get(f"history/{factory.user}/f1/status") == "system-cancelled"


async def test_store_error_during_release_is_reported_per_seat(factory, setup, clock, side_effects):
    trip = factory.config_trip({"front_passenger": factory.passenger()})
    store, _, groups = await setup(
        [factory.booking("f1", "front_passenger", "F1")],
        {factory.trip_id: trip},
        fail_on=[("atomic_update", "trips/")],
    )

    result = await _orchestrator(store, clock, side_effects).execute(factory.user, groups[0].bookings)

    assert not result.succeeded
    assert result.per_seat_errors[0].code == "store-error"
    assert await _balance(store, factory) == 100.0


async def test_empty_batch_is_rejected(make_store, clock, side_effects, factory):
    with pytest.raises(EmptyCancellationBatch):
        await _orchestrator(make_store(), clock, side_effects).execute(factory.user, [])


async def test_signed_out_user_is_inert(factory, setup, clock, side_effects):
    trip = factory.config_trip({"front_passenger": factory.passenger()})
    store, _, groups = await setup([factory.booking("f1", "front_passenger", "F1")], {factory.trip_id: trip})
    writes = store.writes

    result = await _orchestrator(store, clock, side_effects).execute(None, groups[0].bookings)

    assert not result.succeeded
    assert store.writes == writes


def test_unknown_refund_policy_is_rejected(make_store):
    with pytest.raises(ValueError):
        CancellationOrchestrator(make_store(), refund_policy="sometimes")


async def test_window_boundary_uses_booking_time(factory, setup, now, clock, side_effects):
    trip = factory.config_trip({"front_passenger": factory.passenger(minutes=14)})
    store, _, groups = await setup([factory.booking("f1", "front_passenger", "F1", minutes=14)], {factory.trip_id: trip})

    assert len(initiate_cancellation(groups[0], now=now)) == 1
    assert initiate_cancellation(groups[0], now=now + timedelta(minutes=2)) == []


async def test_garbled_seat_fee_falls_back_to_booked_fee(factory, setup, clock, side_effects):
    trip = factory.config_trip({
        "front_passenger": dict(factory.passenger(), fees="ten"),
        "back_left": factory.passenger(fees=10.0),
    })
    bookings = [
        factory.booking("f1", "front_passenger", "F1"),
        factory.booking("l1", "back_left", "L1"),
    ]
    store, _, groups = await setup(bookings, {factory.trip_id: trip})

    result = await _orchestrator(store, clock, side_effects).execute(factory.user, groups[0].bookings)

    assert result.succeeded
    assert sorted(result.cancelled_booking_ids) == ["f1", "l1"]
    assert result.refunded_amount == 20.0
    assert await _balance(store, factory) == 120.0
