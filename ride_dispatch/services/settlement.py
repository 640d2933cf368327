"""
Points Settlement Ledger
========================

The only multi-row transaction in the engine.  Completing a ride writes
three rows that must commit together or not at all:

1. ``rides``          -- ACTIVE -> COMPLETED, completion time, points
2. ``pullers``        -- ``points_balance += points`` (in-database increment)
3. ``points_history`` -- RIDE_COMPLETION entry linked to puller and ride

``settle`` runs inside the caller's session and never commits; the
caller commits or rolls back the whole unit.  ``adjust_points`` is the
administrative path: it reuses steps 2-3 with MANUAL_ADJUSTMENT and an
arbitrary signed delta, independent of any ride state.

Invariant: for every puller ``points_balance == sum(points_change)``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ride_dispatch.domain.enums import PointReason, RideStatus
from ride_dispatch.domain.errors import InvalidState, MissingAssignment, NotFound
from ride_dispatch.domain.points import settle_points
from ride_dispatch.infrastructure.models import RideModel
from ride_dispatch.infrastructure.repositories import (
    PointsHistoryRepository,
    PullerRepository,
    RideRepository,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Settlement:
    ride_id: int
    puller_id: int
    points: int
    miss_distance_m: float


@dataclass(frozen=True)
class LedgerEntry:
    id: int
    puller_id: int
    ride_id: Optional[int]
    points_change: int
    reason: PointReason
    balance_after: int


class PointsLedger:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def settle(
        self,
        session: AsyncSession,
        ride: RideModel,
        final_lat: float,
        final_lon: float,
        completed_at: datetime,
    ) -> Settlement:
        if ride.puller_id is None:
            raise MissingAssignment(f"Ride {ride.id} has no assigned puller")

        dest = ride.destination_block
        points, miss = settle_points(final_lat, final_lon, dest.latitude, dest.longitude)

        completed = await RideRepository(session).compare_and_set_status(
            ride.id,
            RideStatus.ACTIVE,
            RideStatus.COMPLETED,
            completion_time=completed_at,
            points_awarded=points,
        )
        if not completed:
            raise InvalidState(f"Ride {ride.id} is not in ACTIVE status")

        if not await PullerRepository(session).add_points(ride.puller_id, points):
            raise NotFound(f"Puller {ride.puller_id} not found")

        await PointsHistoryRepository(session).append(
            puller_id=ride.puller_id,
            points_change=points,
            reason=PointReason.RIDE_COMPLETION,
            ride_id=ride.id,
        )
        return Settlement(
            ride_id=ride.id,
            puller_id=ride.puller_id,
            points=points,
            miss_distance_m=miss,
        )

    async def adjust_points(
        self, puller_id: int, delta: int, ride_id: Optional[int] = None
    ) -> LedgerEntry:
        """Administrative adjustment; deliberately has no ride-state guard."""
        async with self.session_factory() as session:
            pullers = PullerRepository(session)
            if await pullers.get_by_id(puller_id) is None:
                raise NotFound(f"Puller {puller_id} not found")
            if ride_id is not None and await RideRepository(session).get_by_id(ride_id) is None:
                raise NotFound(f"Ride {ride_id} not found")

            try:
                await pullers.add_points(puller_id, delta)
                entry = await PointsHistoryRepository(session).append(
                    puller_id=puller_id,
                    points_change=delta,
                    reason=PointReason.MANUAL_ADJUSTMENT,
                    ride_id=ride_id,
                )
                await session.commit()
            except Exception:
                await session.rollback()
                raise

            puller = await pullers.get_by_id(puller_id, refresh=True)

        logger.info(
            "Manual adjustment of %+d points for puller %s (balance %d)",
            delta, puller_id, puller.points_balance,
        )
        return LedgerEntry(
            id=entry.id,
            puller_id=puller_id,
            ride_id=ride_id,
            points_change=delta,
            reason=PointReason.MANUAL_ADJUSTMENT,
            balance_after=puller.points_balance,
        )

    async def history(self, puller_id: int) -> list[LedgerEntry]:
        async with self.session_factory() as session:
            puller = await PullerRepository(session).get_by_id(puller_id)
            if puller is None:
                raise NotFound(f"Puller {puller_id} not found")
            rows = await PointsHistoryRepository(session).for_puller(puller_id)

        running = 0
        entries = []
        for row in rows:
            running += row.points_change
            entries.append(
                LedgerEntry(
                    id=row.id,
                    puller_id=row.puller_id,
                    ride_id=row.ride_id,
                    points_change=row.points_change,
                    reason=PointReason(row.reason),
                    balance_after=running,
                )
            )
        return entries
