"""
Repository Pattern -- abstracts DB access so domain logic stays DB-agnostic.

Each repository receives an ``AsyncSession`` (unit-of-work) and exposes
domain-relevant queries only.  Ride transitions are written as
conditional updates (``UPDATE ... WHERE status = :expected``) so the row
count, not an earlier read, decides who wins a race.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .models import (
    LocationBlockModel,
    PointsHistoryModel,
    PullerModel,
    RideModel,
    RideRejectionModel,
    RiderModel,
)
from ride_dispatch.domain.enums import PointReason, RideStatus


class RideRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create_ride(
        self,
        *,
        start_block: LocationBlockModel,
        destination_block: LocationBlockModel,
        request_time: datetime,
        rider: Optional[RiderModel] = None,
        status: RideStatus = RideStatus.SEARCHING,
    ) -> RideModel:
        ride = RideModel(
            start_block=start_block,
            destination_block=destination_block,
            rider=rider,
            puller=None,
            status=status,
            request_time=request_time,
        )
        self.session.add(ride)
        await self.session.flush()
        return ride

    async def get_by_id(
        self, ride_id: int, *, refresh: bool = False
    ) -> Optional[RideModel]:
        return await self.session.get(
            RideModel, ride_id, populate_existing=refresh
        )

    async def compare_and_set_status(
        self,
        ride_id: int,
        expected: RideStatus,
        new_status: RideStatus,
        **values: Any,
    ) -> bool:
        """Atomically move *ride_id* from *expected* to *new_status*.

        Returns False when the ride was not in *expected* at write time.
        """
        result = await self.session.execute(
            update(RideModel)
            .where(RideModel.id == ride_id, RideModel.status == expected)
            .values(status=new_status, **values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def has_rejected(self, ride_id: int, puller_id: int) -> bool:
        result = await self.session.execute(
            select(RideRejectionModel.id).where(
                RideRejectionModel.ride_id == ride_id,
                RideRejectionModel.puller_id == puller_id,
            )
        )
        return result.first() is not None

    async def add_rejection(self, ride_id: int, puller_id: int) -> bool:
        """Record a rejection.  Returns False if it was already recorded."""
        if await self.has_rejected(ride_id, puller_id):
            return False
        self.session.add(RideRejectionModel(ride_id=ride_id, puller_id=puller_id))
        await self.session.flush()
        return True

    async def rejected_puller_ids(self, ride_id: int) -> list[int]:
        result = await self.session.execute(
            select(RideRejectionModel.puller_id)
            .where(RideRejectionModel.ride_id == ride_id)
            .order_by(RideRejectionModel.id)
        )
        return list(result.scalars().all())

    async def rides_rejected_by(self, puller_id: int) -> set[int]:
        result = await self.session.execute(
            select(RideRejectionModel.ride_id).where(
                RideRejectionModel.puller_id == puller_id
            )
        )
        return set(result.scalars().all())

    async def get_searching_rides(self) -> list[RideModel]:
        result = await self.session.execute(
            select(RideModel)
            .where(RideModel.status == RideStatus.SEARCHING)
            .order_by(RideModel.request_time)
        )
        return list(result.unique().scalars().all())

    async def list_rides(
        self,
        status: Optional[RideStatus] = None,
        page: int = 1,
        limit: int = 10,
    ) -> tuple[list[RideModel], int]:
        query = select(RideModel)
        count_query = select(func.count()).select_from(RideModel)
        if status is not None:
            query = query.where(RideModel.status == status)
            count_query = count_query.where(RideModel.status == status)

        result = await self.session.execute(
            query.order_by(RideModel.request_time.desc(), RideModel.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        total = (await self.session.execute(count_query)).scalar() or 0
        return list(result.unique().scalars().all()), total


class PullerRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(
        self, puller_id: int, *, refresh: bool = False
    ) -> Optional[PullerModel]:
        return await self.session.get(
            PullerModel, puller_id, populate_existing=refresh
        )

    async def get_online(self) -> list[PullerModel]:
        result = await self.session.execute(
            select(PullerModel)
            .where(
                PullerModel.is_online.is_(True),
                PullerModel.is_active.is_(True),
            )
            .order_by(PullerModel.id)
        )
        return list(result.scalars().all())

    async def get_dispatchable(self) -> list[PullerModel]:
        """Online, active pullers that have reported a location."""
        result = await self.session.execute(
            select(PullerModel)
            .where(
                PullerModel.is_online.is_(True),
                PullerModel.is_active.is_(True),
                PullerModel.last_known_lat.is_not(None),
                PullerModel.last_known_lon.is_not(None),
            )
            .order_by(PullerModel.id)
        )
        return list(result.scalars().all())

    async def add_points(self, puller_id: int, delta: int) -> bool:
        """Increment the balance in the database, not from a stale read."""
        result = await self.session.execute(
            update(PullerModel)
            .where(PullerModel.id == puller_id)
            .values(points_balance=PullerModel.points_balance + delta)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1


class LocationBlockRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_block_id(self, block_id: str) -> Optional[LocationBlockModel]:
        result = await self.session.execute(
            select(LocationBlockModel).where(LocationBlockModel.block_id == block_id)
        )
        return result.scalar_one_or_none()


class RiderRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, rider_id: int) -> Optional[RiderModel]:
        return await self.session.get(RiderModel, rider_id)


class PointsHistoryRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def append(
        self,
        *,
        puller_id: int,
        points_change: int,
        reason: PointReason,
        ride_id: Optional[int] = None,
    ) -> PointsHistoryModel:
        entry = PointsHistoryModel(
            puller_id=puller_id,
            ride_id=ride_id,
            points_change=points_change,
            reason=reason,
        )
        self.session.add(entry)
        await self.session.flush()
        return entry

    async def for_puller(self, puller_id: int) -> list[PointsHistoryModel]:
        result = await self.session.execute(
            select(PointsHistoryModel)
            .where(PointsHistoryModel.puller_id == puller_id)
            .order_by(PointsHistoryModel.id)
        )
        return list(result.scalars().all())

    async def total_for_puller(self, puller_id: int) -> int:
        result = await self.session.execute(
            select(func.coalesce(func.sum(PointsHistoryModel.points_change), 0))
            .where(PointsHistoryModel.puller_id == puller_id)
        )
        return int(result.scalar() or 0)
