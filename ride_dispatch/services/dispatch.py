"""
Offer Distribution
==================

* **Initial fan-out** -- run once when a ride enters SEARCHING: rank every
  dispatchable puller by distance to the pickup block and offer the ride
  to the nearest ``fanout`` (10) of them.
* **Redistribution** -- run after each new rejection: rank again,
  excluding *every* puller who has ever rejected the ride, and offer it
  to the single nearest survivor.

The candidate scan reads a moving set of online pullers.  A puller going
offline between selection and delivery is tolerated; offers are
best-effort and the ride-level expiration is the only corrective step.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable, Iterable, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ride_dispatch.config import settings
from ride_dispatch.domain.entities import Candidate, Location
from ride_dispatch.domain.matching import nearest_candidate, rank_candidates
from ride_dispatch.domain.points import estimate_offer_points
from ride_dispatch.infrastructure.repositories import PullerRepository
from ride_dispatch.messaging.messages import RideOffer, RideSnapshot, utcnow
from ride_dispatch.messaging.notifiers import Notifier

logger = logging.getLogger(__name__)


class OfferDistributor:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        notifier: Notifier,
        *,
        fanout: int = settings.offer_fanout,
        offer_ttl_seconds: int = settings.offer_display_ttl_seconds,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session_factory = session_factory
        self.notifier = notifier
        self.fanout = fanout
        self.offer_ttl = timedelta(seconds=offer_ttl_seconds)
        self.clock = clock

    def build_offer(self, ride: RideSnapshot, candidate: Candidate) -> RideOffer:
        now = self.clock()
        return RideOffer(
            ride_id=ride.id,
            pickup_block=ride.start_block,
            destination_block=ride.destination_block,
            estimated_points=estimate_offer_points(candidate.distance_m),
            distance=round(candidate.distance_m),
            expires_at=now + self.offer_ttl,
            timestamp=now,
        )

    async def distribute(self, ride: RideSnapshot) -> list[Candidate]:
        """Offer *ride* to the nearest ``fanout`` pullers.  Returns who was offered."""
        pullers = await self._dispatchable_pullers()
        selected = rank_candidates(pullers, _pickup(ride), limit=self.fanout)
        if not selected:
            logger.info("Ride %s: no dispatchable pullers, waiting for expiry", ride.id)
            return []

        logger.info(
            "Ride %s: offering to %d of %d dispatchable pullers",
            ride.id, len(selected), len(pullers),
        )
        for candidate in selected:
            await self.notifier.send_to_puller(
                candidate.puller_id, self.build_offer(ride, candidate)
            )
            logger.debug(
                "Ride %s offered to puller %s (%dm away)",
                ride.id, candidate.puller_id, round(candidate.distance_m),
            )
        return selected

    async def redistribute(
        self, ride: RideSnapshot, rejected_by: Iterable[int]
    ) -> Optional[Candidate]:
        """Offer *ride* to the nearest puller who has not rejected it."""
        pullers = await self._dispatchable_pullers()
        candidate = nearest_candidate(pullers, _pickup(ride), exclude=rejected_by)
        if candidate is None:
            logger.info("Ride %s: no pullers left to re-offer to", ride.id)
            return None

        await self.notifier.send_to_puller(
            candidate.puller_id, self.build_offer(ride, candidate)
        )
        logger.info("Ride %s re-offered to puller %s", ride.id, candidate.puller_id)
        return candidate

    async def _dispatchable_pullers(self):
        async with self.session_factory() as session:
            return await PullerRepository(session).get_dispatchable()


def _pickup(ride: RideSnapshot) -> Location:
    return Location(ride.start_block.center_lat, ride.start_block.center_lon)
