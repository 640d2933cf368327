"""
Domain value objects and the ride state-machine guard.

Patterns used
-------------
- **State Pattern** on rides: ``check_transition`` enforces the lifecycle
  (SEARCHING -> ACCEPTED -> ACTIVE -> COMPLETED, SEARCHING -> EXPIRED).
  Persistence applies the same edge as a compare-and-set on ``status``.
- ``Candidate`` is the ranked result of the proximity matcher.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .enums import ASSIGNED_STATUSES, RIDE_TRANSITIONS, RideStatus
from .errors import InvalidState, MissingAssignment


def check_transition(
    current: RideStatus, new_status: RideStatus, ride_id: Optional[int] = None
) -> None:
    """Raise ``InvalidState`` unless *current* -> *new_status* is an edge."""
    allowed = RIDE_TRANSITIONS.get(RideStatus(current), set())
    if new_status not in allowed:
        label = f"Ride {ride_id}" if ride_id is not None else "Ride"
        raise InvalidState(
            f"{label} cannot move from {RideStatus(current).value} "
            f"to {new_status.value}"
        )


def check_assignment(
    status: RideStatus, puller_id: Optional[int], ride_id: Optional[int] = None
) -> None:
    """ACCEPTED, ACTIVE and COMPLETED rides must carry a puller."""
    if RideStatus(status) in ASSIGNED_STATUSES and puller_id is None:
        raise MissingAssignment(f"Ride {ride_id} has no assigned puller")


# ── Value Objects ─────────────────────────────────────────────────────


@dataclass(frozen=True)
class Location:
    latitude: float
    longitude: float


@dataclass(frozen=True)
class Candidate:
    puller_id: int
    name: str
    distance_m: float
