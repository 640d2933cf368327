"""Puller presence (location, online status, suspension) and per-puller ride feed."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ride_dispatch.domain.distance import haversine_m
from ride_dispatch.domain.errors import NotFound
from ride_dispatch.domain.points import estimate_offer_points
from ride_dispatch.infrastructure.models import PullerModel
from ride_dispatch.infrastructure.repositories import PullerRepository, RideRepository
from ride_dispatch.messaging.messages import PullerStatusChanged, RideSnapshot
from ride_dispatch.messaging.notifiers import Notifier

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OpenRide:
    ride: RideSnapshot
    distance_m: float
    estimated_points: int


class PullerService:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        notifier: Notifier,
    ):
        self.session_factory = session_factory
        self.notifier = notifier

    async def get_puller(self, puller_id: int) -> PullerModel:
        async with self.session_factory() as session:
            return await self._require(PullerRepository(session), puller_id)

    async def update_location(self, puller_id: int, lat: float, lon: float) -> PullerModel:
        async with self.session_factory() as session:
            puller = await self._require(PullerRepository(session), puller_id)
            puller.last_known_lat = lat
            puller.last_known_lon = lon
            await session.commit()
        logger.debug("Puller %s at (%.6f, %.6f)", puller_id, lat, lon)
        return puller

    async def set_online_status(self, puller_id: int, is_online: bool) -> PullerModel:
        async with self.session_factory() as session:
            puller = await self._require(PullerRepository(session), puller_id)
            puller.is_online = is_online
            await session.commit()

        logger.info("Puller %s is now %s", puller_id, "online" if is_online else "offline")
        await self.notifier.broadcast(
            PullerStatusChanged(
                puller_id=puller_id, is_online=is_online, is_active=puller.is_active
            )
        )
        return puller

    async def suspend(self, puller_id: int, reason: Optional[str] = None) -> PullerModel:
        """Take a puller out of dispatch: inactive and offline."""
        async with self.session_factory() as session:
            puller = await self._require(PullerRepository(session), puller_id)
            puller.is_active = False
            puller.is_online = False
            await session.commit()

        logger.info("Puller %s suspended (%s)", puller_id, reason or "no reason given")
        await self.notifier.broadcast(
            PullerStatusChanged(puller_id=puller_id, is_online=False, is_active=False)
        )
        return puller

    async def unsuspend(self, puller_id: int) -> PullerModel:
        """Reactivate a puller.  Online status is left for the app to report."""
        async with self.session_factory() as session:
            puller = await self._require(PullerRepository(session), puller_id)
            puller.is_active = True
            await session.commit()

        logger.info("Puller %s reactivated", puller_id)
        await self.notifier.broadcast(
            PullerStatusChanged(
                puller_id=puller_id, is_online=puller.is_online, is_active=True
            )
        )
        return puller

    async def ride_requests_for(self, puller_id: int) -> list[OpenRide]:
        """SEARCHING rides nearest to the puller, minus ones it rejected."""
        async with self.session_factory() as session:
            puller = await self._require(PullerRepository(session), puller_id)
            if puller.last_known_lat is None or puller.last_known_lon is None:
                return []

            rides = RideRepository(session)
            rejected = await rides.rides_rejected_by(puller_id)
            open_rides = []
            for ride in await rides.get_searching_rides():
                if ride.id in rejected:
                    continue
                distance = haversine_m(
                    puller.last_known_lat, puller.last_known_lon,
                    ride.start_block.latitude, ride.start_block.longitude,
                )
                open_rides.append(
                    OpenRide(
                        ride=RideSnapshot.from_model(
                            ride, await rides.rejected_puller_ids(ride.id)
                        ),
                        distance_m=distance,
                        estimated_points=estimate_offer_points(distance),
                    )
                )

        open_rides.sort(key=lambda o: (o.distance_m, o.ride.id))
        return open_rides

    @staticmethod
    async def _require(pullers: PullerRepository, puller_id: int) -> PullerModel:
        puller = await pullers.get_by_id(puller_id)
        if puller is None:
            raise NotFound(f"Puller {puller_id} not found")
        return puller
