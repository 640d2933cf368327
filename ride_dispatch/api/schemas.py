"""Pydantic request / response schemas for the REST API.

Ride payloads reuse ``RideSnapshot`` from the messaging layer so the
HTTP response and the lifecycle broadcast share one shape.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from ride_dispatch.domain.enums import PointReason
from ride_dispatch.messaging.messages import RideSnapshot


# ── Requests ──────────────────────────────────────────────────────────


class RideCreateRequest(BaseModel):
    start_block_id: str = Field(..., max_length=100)
    destination_block_id: str = Field(..., max_length=100)
    rider_id: Optional[int] = None


class PullerActionRequest(BaseModel):
    puller_id: int


class RideCompleteRequest(BaseModel):
    final_lat: float = Field(..., ge=-90, le=90)
    final_lon: float = Field(..., ge=-180, le=180)


class LocationUpdateRequest(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lon: float = Field(..., ge=-180, le=180)


class StatusUpdateRequest(BaseModel):
    is_online: bool


class SuspendRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class PointsAdjustmentRequest(BaseModel):
    points: int = Field(..., description="Signed delta applied to the balance.")
    ride_id: Optional[int] = Field(
        None, description="Optional ride the adjustment relates to."
    )


# ── Responses ─────────────────────────────────────────────────────────


class RideListResponse(BaseModel):
    rides: list[RideSnapshot]
    total: int
    page: int
    limit: int


class RejectResponse(BaseModel):
    success: bool = True
    message: str
    ride_id: int
    reoffered_to: Optional[int] = None


class PullerResponse(BaseModel):
    id: int
    name: str
    points_balance: int
    is_online: bool
    is_active: bool
    last_known_lat: Optional[float] = None
    last_known_lon: Optional[float] = None

    model_config = {"from_attributes": True}


class OpenRideResponse(BaseModel):
    ride: RideSnapshot
    distance_m: float
    estimated_points: int

    model_config = {"from_attributes": True}


class LedgerEntryResponse(BaseModel):
    id: int
    puller_id: int
    ride_id: Optional[int] = None
    points_change: int
    reason: PointReason
    balance_after: int

    model_config = {"from_attributes": True}


class HealthResponse(BaseModel):
    status: str = "ok"
    timestamp: Optional[datetime] = None


class ErrorResponse(BaseModel):
    detail: str
