"""
Tagged message types crossing the engine boundary.

Every payload has a fixed schema and a literal ``type`` tag, so sinks and
clients can switch on the tag instead of duck-typing a dict.

Outbound
--------
``RideOffer``, ``RejectConfirmed``, ``RideFilled``, ``RideExpired``,
``RideLifecycleUpdate``, ``RideCompletedNotice``, ``PullerStatusChanged``.
Each knows its topic ``event`` suffix for the pub/sub transport.

Inbound
-------
``RideRequested`` (hardware) and the puller-app events ``AcceptRide``,
``RejectRide``, ``ConfirmPickup``, ``CompleteRide``, ``UpdateLocation``,
``UpdateStatus``.  ``parse_inbound`` validates a raw frame into one of
them using the ``type`` discriminator.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated, ClassVar, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter

from ride_dispatch.domain.enums import RideStatus


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── Shared summaries ──────────────────────────────────────────────────


class BlockSummary(BaseModel):
    block_id: str
    name: str
    center_lat: float
    center_lon: float

    @classmethod
    def from_model(cls, block) -> "BlockSummary":
        return cls(
            block_id=block.block_id,
            name=block.name,
            center_lat=block.latitude,
            center_lon=block.longitude,
        )


class PullerSummary(BaseModel):
    id: int
    name: str


class RideSnapshot(BaseModel):
    id: int
    status: RideStatus
    request_time: datetime
    accept_time: Optional[datetime] = None
    pickup_time: Optional[datetime] = None
    completion_time: Optional[datetime] = None
    points_awarded: Optional[int] = None
    rejected_by_pullers: list[int] = []
    start_block: BlockSummary
    destination_block: BlockSummary
    puller: Optional[PullerSummary] = None
    rider_id: Optional[int] = None

    @classmethod
    def from_model(cls, ride, rejected_by: list[int] | None = None) -> "RideSnapshot":
        return cls(
            id=ride.id,
            status=RideStatus(ride.status),
            request_time=ride.request_time,
            accept_time=ride.accept_time,
            pickup_time=ride.pickup_time,
            completion_time=ride.completion_time,
            points_awarded=ride.points_awarded,
            rejected_by_pullers=list(rejected_by or []),
            start_block=BlockSummary.from_model(ride.start_block),
            destination_block=BlockSummary.from_model(ride.destination_block),
            puller=(
                PullerSummary(id=ride.puller.id, name=ride.puller.name)
                if ride.puller is not None
                else None
            ),
            rider_id=ride.rider_id,
        )


# ── Outbound ──────────────────────────────────────────────────────────


class OutboundMessage(BaseModel):
    event: ClassVar[str]

    type: str
    timestamp: datetime = Field(default_factory=utcnow)

    def broadcast_topic(self, prefix: str) -> str:
        return f"{prefix}/rides/{self.ride_id}/{self.event}"

    def puller_topic(self, prefix: str, puller_id: int) -> str:
        return f"{prefix}/pullers/{puller_id}/{self.event}"

    def envelope(self) -> dict:
        return {"event": self.type, "data": self.model_dump(mode="json")}


class RideOffer(OutboundMessage):
    event: ClassVar[str] = "ride-request"

    type: Literal["ride_offer"] = "ride_offer"
    ride_id: int
    pickup_block: BlockSummary
    destination_block: BlockSummary
    estimated_points: int
    distance: int  # metres, rounded
    expires_at: datetime  # advisory only


class RejectConfirmed(OutboundMessage):
    event: ClassVar[str] = "ride-rejected"

    type: Literal["reject_confirmed"] = "reject_confirmed"
    ride_id: int
    message: str = "Ride rejection recorded"


class RideFilled(OutboundMessage):
    event: ClassVar[str] = "filled"

    type: Literal["ride_filled"] = "ride_filled"
    ride_id: int
    puller_id: int
    puller_name: str
    status: RideStatus = RideStatus.ACCEPTED


class RideExpired(OutboundMessage):
    event: ClassVar[str] = "expired"

    type: Literal["ride_expired"] = "ride_expired"
    ride_id: int
    message: str = "Ride request expired before anyone accepted it"


class RideLifecycleUpdate(OutboundMessage):
    event: ClassVar[str] = "status"

    type: Literal["ride_update"] = "ride_update"
    ride: RideSnapshot

    @property
    def ride_id(self) -> int:
        return self.ride.id


class RideCompletedNotice(OutboundMessage):
    event: ClassVar[str] = "completed"

    type: Literal["ride_completed"] = "ride_completed"
    ride_id: int
    status: RideStatus = RideStatus.COMPLETED
    points_awarded: int
    puller_id: int
    distance_from_destination: int  # metres, rounded


class PullerStatusChanged(OutboundMessage):
    event: ClassVar[str] = "status"

    type: Literal["puller_status_update"] = "puller_status_update"
    puller_id: int
    is_online: bool
    is_active: bool = True

    def broadcast_topic(self, prefix: str) -> str:
        return f"{prefix}/pullers/{self.puller_id}/{self.event}"


# ── Inbound ───────────────────────────────────────────────────────────


class RideRequested(BaseModel):
    type: Literal["ride_requested"] = "ride_requested"
    start_block_id: str
    destination_block_id: str
    rider_id: Optional[int] = None


class AcceptRide(BaseModel):
    type: Literal["accept_ride"] = "accept_ride"
    ride_id: int
    puller_id: int


class RejectRide(BaseModel):
    type: Literal["reject_ride"] = "reject_ride"
    ride_id: int
    puller_id: int


class ConfirmPickup(BaseModel):
    type: Literal["confirm_pickup"] = "confirm_pickup"
    ride_id: int


class CompleteRide(BaseModel):
    type: Literal["complete_ride"] = "complete_ride"
    ride_id: int
    final_lat: float = Field(..., ge=-90, le=90)
    final_lon: float = Field(..., ge=-180, le=180)


class UpdateLocation(BaseModel):
    type: Literal["update_location"] = "update_location"
    puller_id: int
    lat: float = Field(..., ge=-90, le=90)
    lon: float = Field(..., ge=-180, le=180)


class UpdateStatus(BaseModel):
    type: Literal["update_status"] = "update_status"
    puller_id: int
    is_online: bool


InboundEvent = Annotated[
    Union[
        RideRequested,
        AcceptRide,
        RejectRide,
        ConfirmPickup,
        CompleteRide,
        UpdateLocation,
        UpdateStatus,
    ],
    Field(discriminator="type"),
]

_inbound_adapter: TypeAdapter[InboundEvent] = TypeAdapter(InboundEvent)


def parse_inbound(raw: dict) -> InboundEvent:
    """Validate a raw client frame; raises ``pydantic.ValidationError``."""
    return _inbound_adapter.validate_python(raw)
