"""
Point Rewards
=============

Two formulas, both driven by haversine distance in metres:

* **Offer estimate** (shown before acceptance, courtesy only)::

      estimate = max(5, 10 - floor(distance_to_pickup / 100))

* **Completion award** (settled by the ledger)::

      award = max(0, floor(10 - distance_to_destination / 10))

Complexity: O(1) per calculation.
"""

from __future__ import annotations

import math

from .distance import haversine_m

BASE_POINTS = 10
MIN_OFFER_POINTS = 5
OFFER_PENALTY_STEP_M = 100.0  # -1 estimated point per 100 m to pickup
COMPLETION_PENALTY_STEP_M = 10.0  # -1 awarded point per 10 m of miss


def estimate_offer_points(distance_m: float) -> int:
    penalty = math.floor(distance_m / OFFER_PENALTY_STEP_M)
    return max(MIN_OFFER_POINTS, BASE_POINTS - penalty)


def completion_points(miss_distance_m: float) -> int:
    return max(0, math.floor(BASE_POINTS - miss_distance_m / COMPLETION_PENALTY_STEP_M))


def settle_points(
    final_lat: float, final_lon: float, dest_lat: float, dest_lon: float
) -> tuple[int, float]:
    """Return ``(points, miss_distance_m)`` for a ride ending at the final fix."""
    miss = haversine_m(final_lat, final_lon, dest_lat, dest_lon)
    return completion_points(miss), miss
