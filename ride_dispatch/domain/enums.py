"""Domain enumerations and state-transition rules."""

import enum


class RideStatus(str, enum.Enum):
    SEARCHING = "SEARCHING"
    ACCEPTED = "ACCEPTED"
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    EXPIRED = "EXPIRED"
    CANCELLED = "CANCELLED"


# State machine: maps current status -> set of valid next statuses
RIDE_TRANSITIONS: dict[RideStatus, set[RideStatus]] = {
    RideStatus.SEARCHING: {
        RideStatus.ACCEPTED,
        RideStatus.EXPIRED,
        RideStatus.CANCELLED,
    },
    RideStatus.ACCEPTED: {RideStatus.ACTIVE, RideStatus.CANCELLED},
    RideStatus.ACTIVE: {RideStatus.COMPLETED, RideStatus.CANCELLED},
    RideStatus.COMPLETED: set(),
    RideStatus.EXPIRED: set(),
    RideStatus.CANCELLED: set(),
}

# Statuses in which a ride must carry an assigned puller
ASSIGNED_STATUSES = frozenset(
    {RideStatus.ACCEPTED, RideStatus.ACTIVE, RideStatus.COMPLETED}
)


class PointReason(str, enum.Enum):
    RIDE_COMPLETION = "RIDE_COMPLETION"
    MANUAL_ADJUSTMENT = "MANUAL_ADJUSTMENT"
    REDEMPTION = "REDEMPTION"
    FRAUD_REVERSAL = "FRAUD_REVERSAL"
