"""
Unit tests for proximity matching.

Pure domain logic -- pullers are plain stand-ins, no DB required.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from ride_dispatch.domain.entities import Location
from ride_dispatch.domain.matching import (
    is_dispatchable,
    nearest_candidate,
    rank_candidates,
)

PICKUP = Location(22.4600, 91.9700)
METRES_PER_DEG_LAT = 111_194.93


@dataclass
class FakePuller:
    id: int
    name: str = "puller"
    is_online: bool = True
    is_active: bool = True
    last_known_lat: Optional[float] = None
    last_known_lon: Optional[float] = None


def _at(puller_id: int, metres: float, **kw) -> FakePuller:
    return FakePuller(
        id=puller_id,
        name=f"P{puller_id}",
        last_known_lat=PICKUP.latitude + metres / METRES_PER_DEG_LAT,
        last_known_lon=PICKUP.longitude,
        **kw,
    )


class TestEligibility:
    def test_online_active_located_is_dispatchable(self):
        assert is_dispatchable(_at(1, 10))

    def test_offline_is_not(self):
        assert not is_dispatchable(_at(1, 10, is_online=False))

    def test_inactive_is_not(self):
        assert not is_dispatchable(_at(1, 10, is_active=False))

    def test_no_location_is_not(self):
        assert not is_dispatchable(FakePuller(id=1))


class TestRanking:
    def test_sorted_by_distance(self):
        pullers = [_at(1, 300), _at(2, 50), _at(3, 120)]
        ranked = rank_candidates(pullers, PICKUP)
        assert [c.puller_id for c in ranked] == [2, 3, 1]
        assert ranked[0].distance_m < ranked[1].distance_m < ranked[2].distance_m

    def test_limit_bounds_the_fanout(self):
        pullers = [_at(i, i * 10) for i in range(1, 16)]
        ranked = rank_candidates(pullers, PICKUP, limit=10)
        assert len(ranked) == 10
        assert [c.puller_id for c in ranked] == list(range(1, 11))

    def test_ties_broken_by_id(self):
        pullers = [_at(7, 40), _at(3, 40)]
        assert [c.puller_id for c in rank_candidates(pullers, PICKUP)] == [3, 7]

    def test_excluded_pullers_are_dropped(self):
        pullers = [_at(1, 10), _at(2, 20), _at(3, 30)]
        ranked = rank_candidates(pullers, PICKUP, exclude=[1, 2])
        assert [c.puller_id for c in ranked] == [3]

    def test_ineligible_pullers_are_dropped(self):
        pullers = [
            _at(1, 10, is_online=False),
            FakePuller(id=2),
            _at(3, 500),
        ]
        assert [c.puller_id for c in rank_candidates(pullers, PICKUP)] == [3]

    def test_candidate_carries_name(self):
        (candidate,) = rank_candidates([_at(4, 25)], PICKUP)
        assert candidate.name == "P4"


class TestNearest:
    def test_nearest_non_rejecter(self):
        pullers = [_at(1, 10), _at(2, 20), _at(3, 30)]
        candidate = nearest_candidate(pullers, PICKUP, exclude={1})
        assert candidate.puller_id == 2

    def test_none_when_everyone_rejected(self):
        pullers = [_at(1, 10), _at(2, 20)]
        assert nearest_candidate(pullers, PICKUP, exclude={1, 2}) is None

    def test_none_when_no_pullers(self):
        assert nearest_candidate([], PICKUP) is None
