"""
Ride Lifecycle Service
======================

State machine
-------------
::

    SEARCHING --accept--> ACCEPTED --pickup--> ACTIVE --complete--> COMPLETED
        |
        +--expire (60 s)--> EXPIRED

Concurrency safety
------------------
* Every transition is a **compare-and-set** on ``rides.status``.  When
  several pullers race to accept, the database row count picks exactly
  one winner; everybody else gets ``InvalidState``.
* The expiration callback is never cancelled.  It re-checks the status
  at fire time through the same compare-and-set, so a ride that was
  accepted in the meantime is left untouched.
* Completion runs the settlement ledger inside one transaction.

Ordering
--------
Each operation commits first and only then notifies.  Notification
failures are the sink's problem (see ``FanoutNotifier``) and never roll
back a committed transition.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ride_dispatch.config import settings
from ride_dispatch.domain.entities import check_assignment, check_transition
from ride_dispatch.domain.enums import RideStatus
from ride_dispatch.domain.errors import InvalidState, NotFound
from ride_dispatch.infrastructure.repositories import (
    LocationBlockRepository,
    PullerRepository,
    RideRepository,
    RiderRepository,
)
from ride_dispatch.messaging.messages import (
    RejectConfirmed,
    RideCompletedNotice,
    RideExpired,
    RideFilled,
    RideLifecycleUpdate,
    RideSnapshot,
    utcnow,
)
from ride_dispatch.messaging.notifiers import Notifier
from ride_dispatch.services.dispatch import OfferDistributor
from ride_dispatch.services.settlement import PointsLedger
from ride_dispatch.workers.expiration import ExpirationScheduler

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RejectOutcome:
    ride_id: int
    puller_id: int
    recorded: bool
    message: str
    reoffered_to: Optional[int] = None


class RideLifecycleService:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        notifier: Notifier,
        scheduler: ExpirationScheduler,
        *,
        distributor: Optional[OfferDistributor] = None,
        ledger: Optional[PointsLedger] = None,
        expiry_seconds: float = settings.ride_expiry_seconds,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session_factory = session_factory
        self.notifier = notifier
        self.scheduler = scheduler
        self.distributor = distributor or OfferDistributor(
            session_factory, notifier, clock=clock
        )
        self.ledger = ledger or PointsLedger(session_factory)
        self.expiry_seconds = expiry_seconds
        self.clock = clock
        scheduler.bind(self.expire)

    # ── Request ───────────────────────────────────────────────────

    async def request_ride(
        self,
        start_block_id: str,
        destination_block_id: str,
        rider_id: Optional[int] = None,
    ) -> RideSnapshot:
        """Create a SEARCHING ride from a hardware request and dispatch it."""
        async with self.session_factory() as session:
            blocks = LocationBlockRepository(session)
            start = await blocks.get_by_block_id(start_block_id)
            if start is None:
                raise NotFound(f"Location block {start_block_id} not found")
            destination = await blocks.get_by_block_id(destination_block_id)
            if destination is None:
                raise NotFound(f"Location block {destination_block_id} not found")

            rider = None
            if rider_id is not None:
                rider = await RiderRepository(session).get_by_id(rider_id)
                if rider is None:
                    raise NotFound(f"Rider {rider_id} not found")

            ride = await RideRepository(session).create_ride(
                start_block=start,
                destination_block=destination,
                rider=rider,
                request_time=self.clock(),
            )
            # Armed before commit: if the commit fails the timer finds no
            # ride and does nothing.
            await self.scheduler.schedule(ride.id, self.expiry_seconds)
            await session.commit()
            snapshot = RideSnapshot.from_model(ride)

        logger.info(
            "Ride %s requested %s -> %s", ride.id, start_block_id, destination_block_id
        )
        await self.notifier.broadcast(RideLifecycleUpdate(ride=snapshot))
        await self.distributor.distribute(snapshot)
        return snapshot

    # ── Transitions ───────────────────────────────────────────────

    async def accept(self, ride_id: int, puller_id: int) -> RideSnapshot:
        async with self.session_factory() as session:
            rides = RideRepository(session)
            ride = await self._get_ride(rides, ride_id)
            puller = await PullerRepository(session).get_by_id(puller_id)
            if puller is None:
                raise NotFound(f"Puller {puller_id} not found")

            check_transition(ride.status, RideStatus.ACCEPTED, ride_id)
            if await rides.has_rejected(ride_id, puller_id):
                raise InvalidState(
                    f"Puller {puller_id} already rejected ride {ride_id}"
                )

            won = await rides.compare_and_set_status(
                ride_id,
                RideStatus.SEARCHING,
                RideStatus.ACCEPTED,
                puller_id=puller_id,
                accept_time=self.clock(),
            )
            if not won:
                raise InvalidState(f"Ride {ride_id} is not in SEARCHING status")
            await session.commit()

            snapshot = await self._snapshot(rides, ride_id)

        logger.info("Ride %s accepted by puller %s", ride_id, puller_id)
        await self.notifier.broadcast(
            RideFilled(ride_id=ride_id, puller_id=puller.id, puller_name=puller.name)
        )
        await self.notifier.broadcast(RideLifecycleUpdate(ride=snapshot))
        return snapshot

    async def reject(self, ride_id: int, puller_id: int) -> RejectOutcome:
        async with self.session_factory() as session:
            rides = RideRepository(session)
            ride = await self._get_ride(rides, ride_id)
            if await PullerRepository(session).get_by_id(puller_id) is None:
                raise NotFound(f"Puller {puller_id} not found")
            if ride.status != RideStatus.SEARCHING:
                raise InvalidState(f"Ride {ride_id} is not in SEARCHING status")

            try:
                recorded = await rides.add_rejection(ride_id, puller_id)
                await session.commit()
            except IntegrityError:
                # A concurrent reject from the same puller got there first.
                await session.rollback()
                recorded = False

            if not recorded:
                return RejectOutcome(
                    ride_id=ride_id,
                    puller_id=puller_id,
                    recorded=False,
                    message="Ride already rejected by this puller",
                )

            rejected = await rides.rejected_puller_ids(ride_id)
            snapshot = await self._snapshot(rides, ride_id, rejected)

        logger.info("Ride %s rejected by puller %s", ride_id, puller_id)
        await self.notifier.broadcast(RideLifecycleUpdate(ride=snapshot))
        await self.notifier.send_to_puller(puller_id, RejectConfirmed(ride_id=ride_id))

        reoffered_to = None
        if snapshot.status == RideStatus.SEARCHING:
            candidate = await self.distributor.redistribute(snapshot, rejected)
            reoffered_to = candidate.puller_id if candidate else None

        return RejectOutcome(
            ride_id=ride_id,
            puller_id=puller_id,
            recorded=True,
            message="Ride rejection recorded successfully",
            reoffered_to=reoffered_to,
        )

    async def pickup(self, ride_id: int) -> RideSnapshot:
        async with self.session_factory() as session:
            rides = RideRepository(session)
            ride = await self._get_ride(rides, ride_id)
            check_transition(ride.status, RideStatus.ACTIVE, ride_id)
            check_assignment(ride.status, ride.puller_id, ride_id)

            moved = await rides.compare_and_set_status(
                ride_id,
                RideStatus.ACCEPTED,
                RideStatus.ACTIVE,
                pickup_time=self.clock(),
            )
            if not moved:
                raise InvalidState(f"Ride {ride_id} is not in ACCEPTED status")
            await session.commit()

            snapshot = await self._snapshot(rides, ride_id)

        logger.info("Ride %s picked up", ride_id)
        await self.notifier.broadcast(RideLifecycleUpdate(ride=snapshot))
        return snapshot

    async def complete(
        self, ride_id: int, final_lat: float, final_lon: float
    ) -> RideSnapshot:
        async with self.session_factory() as session:
            rides = RideRepository(session)
            ride = await self._get_ride(rides, ride_id)
            if ride.status != RideStatus.ACTIVE:
                raise InvalidState(f"Ride {ride_id} is not in ACTIVE status")
            check_assignment(ride.status, ride.puller_id, ride_id)

            try:
                settlement = await self.ledger.settle(
                    session, ride, final_lat, final_lon, self.clock()
                )
                await session.commit()
            except Exception:
                await session.rollback()
                raise

            snapshot = await self._snapshot(rides, ride_id)

        logger.info(
            "Ride %s completed by puller %s: %d points (%.1fm from destination)",
            ride_id, settlement.puller_id, settlement.points, settlement.miss_distance_m,
        )
        notice = RideCompletedNotice(
            ride_id=ride_id,
            points_awarded=settlement.points,
            puller_id=settlement.puller_id,
            distance_from_destination=round(settlement.miss_distance_m),
        )
        await self.notifier.broadcast(RideLifecycleUpdate(ride=snapshot))
        await self.notifier.broadcast(notice)
        await self.notifier.send_to_puller(settlement.puller_id, notice)
        return snapshot

    async def expire(self, ride_id: int) -> bool:
        """Expiration callback.  Returns True if the ride was expired now."""
        async with self.session_factory() as session:
            rides = RideRepository(session)
            expired = await rides.compare_and_set_status(
                ride_id, RideStatus.SEARCHING, RideStatus.EXPIRED
            )
            if not expired:
                logger.debug("Ride %s no longer searching; expiry is a no-op", ride_id)
                return False
            await session.commit()

            snapshot = await self._snapshot(rides, ride_id)
            online = await PullerRepository(session).get_online()

        logger.info("Ride %s expired; notifying %d online pullers", ride_id, len(online))
        notice = RideExpired(ride_id=ride_id)
        for puller in online:
            await self.notifier.send_to_puller(puller.id, notice)
        await self.notifier.broadcast(notice)
        await self.notifier.broadcast(RideLifecycleUpdate(ride=snapshot))
        return True

    # ── Queries ───────────────────────────────────────────────────

    async def get_ride(self, ride_id: int) -> RideSnapshot:
        async with self.session_factory() as session:
            rides = RideRepository(session)
            await self._get_ride(rides, ride_id)
            return await self._snapshot(rides, ride_id)

    async def list_rides(
        self, status: Optional[RideStatus] = None, page: int = 1, limit: int = 10
    ) -> tuple[list[RideSnapshot], int]:
        async with self.session_factory() as session:
            rides = RideRepository(session)
            rows, total = await rides.list_rides(status, page, limit)
            snapshots = [
                RideSnapshot.from_model(r, await rides.rejected_puller_ids(r.id))
                for r in rows
            ]
        return snapshots, total

    # ── Internals ─────────────────────────────────────────────────

    @staticmethod
    async def _get_ride(rides: RideRepository, ride_id: int):
        ride = await rides.get_by_id(ride_id)
        if ride is None:
            raise NotFound(f"Ride {ride_id} not found")
        return ride

    @staticmethod
    async def _snapshot(
        rides: RideRepository, ride_id: int, rejected: Optional[list[int]] = None
    ) -> RideSnapshot:
        ride = await rides.get_by_id(ride_id, refresh=True)
        if rejected is None:
            rejected = await rides.rejected_puller_ids(ride_id)
        return RideSnapshot.from_model(ride, rejected)
