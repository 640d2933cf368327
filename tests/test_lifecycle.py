"""
Ride lifecycle tests against a real (SQLite) database.

Covers request / offer fan-out, accept, reject + redistribution, pickup,
completion and expiry, plus the guard errors for each transition.
"""

from __future__ import annotations

import pytest

from ride_dispatch.domain.enums import RideStatus
from ride_dispatch.domain.errors import InvalidState, NotFound
from ride_dispatch.messaging.messages import (
    RejectConfirmed,
    RideCompletedNotice,
    RideExpired,
    RideFilled,
    RideLifecycleUpdate,
    RideOffer,
)


# ── Request & fan-out ────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_request_with_no_pullers_waits_for_expiry(
    request_ride, notifier, scheduler
):
    ride = await request_ride()

    assert ride.status == RideStatus.SEARCHING
    assert ride.puller is None
    assert ride.rejected_by_pullers == []
    assert notifier.sent(RideOffer) == []
    assert scheduler.scheduled == [(ride.id, 60.0)]
    (update,) = notifier.broadcast_of(RideLifecycleUpdate)
    assert update.ride.id == ride.id


@pytest.mark.asyncio
async def test_offers_go_to_nearest_ten(request_ride, make_puller, notifier):
    pullers = [await make_puller(f"P{i}", i * 20.0) for i in range(1, 13)]
    await make_puller("Offline", 1.0, online=False)
    await make_puller("Suspended", 1.0, active=False)
    await make_puller("NoFix")

    ride = await request_ride()

    assert notifier.recipients(RideOffer) == [p.id for p in pullers[:10]]
    offer = notifier.sent(RideOffer, pullers[0].id)[0]
    assert offer.ride_id == ride.id
    assert offer.distance == 20
    assert offer.estimated_points == 10
    assert offer.pickup_block.block_id == "cuet-gate"
    assert offer.destination_block.block_id == "pahartali"
    assert offer.expires_at > offer.timestamp


@pytest.mark.asyncio
async def test_far_puller_gets_lower_estimate(request_ride, make_puller, notifier):
    far = await make_puller("Far", 250.0)
    await request_ride()
    (offer,) = notifier.sent(RideOffer, far.id)
    assert offer.estimated_points == 8


@pytest.mark.asyncio
async def test_unknown_block_is_not_found(lifecycle, blocks, scheduler):
    with pytest.raises(NotFound):
        await lifecycle.request_ride("nowhere", "pahartali")
    with pytest.raises(NotFound):
        await lifecycle.request_ride("cuet-gate", "nowhere")
    assert scheduler.scheduled == []


@pytest.mark.asyncio
async def test_request_links_rider(request_ride, rider):
    ride = await request_ride(rider_id=rider.id)
    assert ride.rider_id == rider.id


@pytest.mark.asyncio
async def test_unknown_rider_is_not_found(request_ride):
    with pytest.raises(NotFound):
        await request_ride(rider_id=999)


# ── Accept ───────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_accept_assigns_puller(request_ride, make_puller, lifecycle, notifier):
    puller = await make_puller("Karim", 10.0)
    ride = await request_ride()

    accepted = await lifecycle.accept(ride.id, puller.id)

    assert accepted.status == RideStatus.ACCEPTED
    assert accepted.puller.id == puller.id
    assert accepted.accept_time is not None
    (filled,) = notifier.broadcast_of(RideFilled)
    assert filled.ride_id == ride.id
    assert filled.puller_name == "Karim"


@pytest.mark.asyncio
async def test_second_accept_is_rejected(request_ride, make_puller, lifecycle):
    first = await make_puller("First", 10.0)
    second = await make_puller("Second", 20.0)
    ride = await request_ride()

    await lifecycle.accept(ride.id, first.id)
    with pytest.raises(InvalidState):
        await lifecycle.accept(ride.id, second.id)

    assert (await lifecycle.get_ride(ride.id)).puller.id == first.id


@pytest.mark.asyncio
async def test_accept_unknown_ride_or_puller(request_ride, make_puller, lifecycle):
    puller = await make_puller("A", 10.0)
    ride = await request_ride()
    with pytest.raises(NotFound):
        await lifecycle.accept(999, puller.id)
    with pytest.raises(NotFound):
        await lifecycle.accept(ride.id, 999)


# ── Expiry ───────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_unaccepted_ride_expires(
    request_ride, make_puller, lifecycle, notifier, scheduler
):
    idle = await make_puller("Idle")  # online but no location yet
    await make_puller("Away", 10.0, online=False)
    ride = await request_ride()

    await scheduler.fire_all()

    assert (await lifecycle.get_ride(ride.id)).status == RideStatus.EXPIRED
    assert notifier.recipients(RideExpired) == [idle.id]
    assert len(notifier.broadcast_of(RideExpired)) == 1


@pytest.mark.asyncio
async def test_expiry_after_accept_is_a_noop(
    request_ride, make_puller, lifecycle, notifier, scheduler
):
    puller = await make_puller("A", 10.0)
    ride = await request_ride()
    await lifecycle.accept(ride.id, puller.id)

    assert await lifecycle.expire(ride.id) is False
    await scheduler.fire_all()

    assert (await lifecycle.get_ride(ride.id)).status == RideStatus.ACCEPTED
    assert notifier.sent(RideExpired) == []
    assert notifier.broadcast_of(RideExpired) == []


@pytest.mark.asyncio
async def test_expired_ride_cannot_be_accepted(
    request_ride, make_puller, lifecycle, scheduler
):
    puller = await make_puller("Late", 10.0)
    ride = await request_ride()
    await scheduler.fire_all()

    with pytest.raises(InvalidState):
        await lifecycle.accept(ride.id, puller.id)


@pytest.mark.asyncio
async def test_expire_missing_ride_does_nothing(lifecycle):
    assert await lifecycle.expire(12345) is False


# ── Reject & redistribution ──────────────────────────────────────────


@pytest.mark.asyncio
async def test_reject_reoffers_to_nearest_non_rejecter(
    request_ride, make_puller, lifecycle, notifier
):
    a = await make_puller("A", 10.0)
    b = await make_puller("B", 50.0)
    c = await make_puller("C", 220.0)
    ride = await request_ride()
    notifier.clear()

    outcome = await lifecycle.reject(ride.id, a.id)
    assert outcome.recorded is True
    assert outcome.reoffered_to == b.id
    assert notifier.recipients(RideOffer) == [b.id]
    assert notifier.recipients(RejectConfirmed) == [a.id]

    notifier.clear()
    outcome = await lifecycle.reject(ride.id, b.id)
    # A is still excluded, not just the latest rejecter.
    assert outcome.reoffered_to == c.id
    assert notifier.recipients(RideOffer) == [c.id]

    notifier.clear()
    outcome = await lifecycle.reject(ride.id, c.id)
    assert outcome.reoffered_to is None
    assert notifier.sent(RideOffer) == []

    snapshot = await lifecycle.get_ride(ride.id)
    assert snapshot.status == RideStatus.SEARCHING
    assert snapshot.rejected_by_pullers == [a.id, b.id, c.id]


@pytest.mark.asyncio
async def test_duplicate_reject_is_idempotent(
    request_ride, make_puller, lifecycle, notifier
):
    a = await make_puller("A", 10.0)
    await make_puller("B", 50.0)
    ride = await request_ride()
    await lifecycle.reject(ride.id, a.id)
    notifier.clear()

    outcome = await lifecycle.reject(ride.id, a.id)

    assert outcome.recorded is False
    assert outcome.reoffered_to is None
    assert notifier.direct == []
    assert notifier.broadcasts == []
    assert (await lifecycle.get_ride(ride.id)).rejected_by_pullers == [a.id]


@pytest.mark.asyncio
async def test_rejecter_cannot_accept(request_ride, make_puller, lifecycle):
    a = await make_puller("A", 10.0)
    ride = await request_ride()
    await lifecycle.reject(ride.id, a.id)

    with pytest.raises(InvalidState):
        await lifecycle.accept(ride.id, a.id)


@pytest.mark.asyncio
async def test_reject_after_accept_is_invalid(request_ride, make_puller, lifecycle):
    a = await make_puller("A", 10.0)
    b = await make_puller("B", 20.0)
    ride = await request_ride()
    await lifecycle.accept(ride.id, a.id)

    with pytest.raises(InvalidState):
        await lifecycle.reject(ride.id, b.id)
    assert (await lifecycle.get_ride(ride.id)).rejected_by_pullers == []


# ── Pickup & completion ──────────────────────────────────────────────


@pytest.mark.asyncio
async def test_full_ride(request_ride, make_puller, lifecycle, blocks, notifier):
    puller = await make_puller("A", 10.0)
    ride = await request_ride()
    await lifecycle.accept(ride.id, puller.id)

    active = await lifecycle.pickup(ride.id)
    assert active.status == RideStatus.ACTIVE

    dest = blocks["destination"]
    done = await lifecycle.complete(ride.id, dest.latitude, dest.longitude)

    assert done.status == RideStatus.COMPLETED
    assert done.points_awarded == 10
    assert done.request_time <= done.accept_time <= done.pickup_time <= done.completion_time

    (notice,) = notifier.sent(RideCompletedNotice, puller.id)
    assert notice.points_awarded == 10
    assert notice.distance_from_destination == 0
    assert len(notifier.broadcast_of(RideCompletedNotice)) == 1


@pytest.mark.asyncio
async def test_pickup_requires_accepted(request_ride, lifecycle):
    ride = await request_ride()
    with pytest.raises(InvalidState):
        await lifecycle.pickup(ride.id)


@pytest.mark.asyncio
async def test_complete_requires_active(request_ride, make_puller, lifecycle, blocks):
    puller = await make_puller("A", 10.0)
    ride = await request_ride()
    await lifecycle.accept(ride.id, puller.id)

    dest = blocks["destination"]
    with pytest.raises(InvalidState):
        await lifecycle.complete(ride.id, dest.latitude, dest.longitude)


@pytest.mark.asyncio
async def test_completed_ride_is_terminal(request_ride, make_puller, lifecycle, blocks):
    puller = await make_puller("A", 10.0)
    ride = await request_ride()
    await lifecycle.accept(ride.id, puller.id)
    await lifecycle.pickup(ride.id)
    dest = blocks["destination"]
    await lifecycle.complete(ride.id, dest.latitude, dest.longitude)

    with pytest.raises(InvalidState):
        await lifecycle.complete(ride.id, dest.latitude, dest.longitude)
    with pytest.raises(InvalidState):
        await lifecycle.pickup(ride.id)
    assert await lifecycle.expire(ride.id) is False


# ── Queries ──────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_get_unknown_ride(lifecycle):
    with pytest.raises(NotFound):
        await lifecycle.get_ride(404)


@pytest.mark.asyncio
async def test_list_rides_filters_by_status(request_ride, make_puller, lifecycle):
    puller = await make_puller("A", 10.0)
    first = await request_ride()
    second = await request_ride()
    await lifecycle.accept(first.id, puller.id)

    searching, total = await lifecycle.list_rides(RideStatus.SEARCHING)
    assert total == 1
    assert [r.id for r in searching] == [second.id]

    everything, total = await lifecycle.list_rides(page=1, limit=1)
    assert total == 2
    assert len(everything) == 1


# ── Suspension ───────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_suspended_puller_is_left_out_of_dispatch(
    request_ride, make_puller, lifecycle, services, notifier, scheduler
):
    suspended = await make_puller("Suspended", 5.0)
    available = await make_puller("Available", 40.0)
    await services.pullers.suspend(suspended.id, reason="fare dispute")

    ride = await request_ride()
    assert notifier.recipients(RideOffer) == [available.id]

    await scheduler.fire_all()
    assert (await lifecycle.get_ride(ride.id)).status == RideStatus.EXPIRED
    assert notifier.recipients(RideExpired) == [available.id]


@pytest.mark.asyncio
async def test_reactivated_puller_gets_offers_again(
    request_ride, make_puller, services, notifier
):
    puller = await make_puller("Back", 5.0)
    await services.pullers.suspend(puller.id)
    await services.pullers.unsuspend(puller.id)
    # Suspension also took the puller offline; the app reports back in.
    await services.pullers.set_online_status(puller.id, True)

    await request_ride()
    assert notifier.recipients(RideOffer) == [puller.id]
