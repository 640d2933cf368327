"""
Proximity Matching
==================

1. **Eligibility** -- a puller is a candidate only when it is online,
   active and has reported a location.
2. **Exclusion**   -- pullers who already rejected the ride are dropped
   (cumulative, never just the latest rejecter).
3. **Ranking**     -- ascending haversine distance to the pickup block,
   ties broken by puller id so the order is deterministic.
4. **Bounding**    -- only the first ``limit`` candidates are returned.

Complexity
----------
Let P = pullers scanned.  Filtering is O(P), ranking O(P log P).
The fan-out bound keeps message volume at O(limit) per ride regardless
of P.
"""

from __future__ import annotations

from typing import Iterable, Optional, Protocol

from .distance import haversine_m
from .entities import Candidate, Location


class PullerLike(Protocol):
    id: int
    name: str
    is_online: bool
    is_active: bool
    last_known_lat: Optional[float]
    last_known_lon: Optional[float]


def is_dispatchable(puller: PullerLike) -> bool:
    return (
        bool(puller.is_online)
        and bool(puller.is_active)
        and puller.last_known_lat is not None
        and puller.last_known_lon is not None
    )


def rank_candidates(
    pullers: Iterable[PullerLike],
    pickup: Location,
    *,
    exclude: Iterable[int] = (),
    limit: Optional[int] = None,
) -> list[Candidate]:
    """Return the nearest eligible pullers to *pickup*, closest first."""
    excluded = set(exclude)
    ranked = [
        Candidate(
            puller_id=p.id,
            name=p.name,
            distance_m=haversine_m(
                p.last_known_lat, p.last_known_lon,
                pickup.latitude, pickup.longitude,
            ),
        )
        for p in pullers
        if is_dispatchable(p) and p.id not in excluded
    ]
    ranked.sort(key=lambda c: (c.distance_m, c.puller_id))
    if limit is not None:
        return ranked[:limit]
    return ranked


def nearest_candidate(
    pullers: Iterable[PullerLike],
    pickup: Location,
    *,
    exclude: Iterable[int] = (),
) -> Optional[Candidate]:
    ranked = rank_candidates(pullers, pickup, exclude=exclude, limit=1)
    return ranked[0] if ranked else None
