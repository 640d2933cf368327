"""
Puller endpoints
================

PATCH /api/v1/pullers/{puller_id}/location       -- report GPS fix
PATCH /api/v1/pullers/{puller_id}/status         -- go online / offline
GET   /api/v1/pullers/{puller_id}/ride-requests  -- open rides, nearest first
GET   /api/v1/pullers/{puller_id}/points-history -- ledger with running balance
"""

from fastapi import APIRouter, Depends, Request

from ride_dispatch.api.dependencies import get_ledger, get_pullers
from ride_dispatch.api.middleware import RATE_LIMIT, limiter
from ride_dispatch.api.schemas import (
    ErrorResponse,
    LedgerEntryResponse,
    LocationUpdateRequest,
    OpenRideResponse,
    PullerResponse,
    StatusUpdateRequest,
)
from ride_dispatch.services.pullers import PullerService
from ride_dispatch.services.settlement import PointsLedger

router = APIRouter(prefix="/pullers", tags=["pullers"])


@router.patch(
    "/{puller_id}/location",
    response_model=PullerResponse,
    responses={404: {"model": ErrorResponse}},
)
@limiter.limit(RATE_LIMIT)
async def update_location(
    request: Request,
    puller_id: int,
    body: LocationUpdateRequest,
    pullers: PullerService = Depends(get_pullers),
):
    return await pullers.update_location(puller_id, body.lat, body.lon)


@router.patch(
    "/{puller_id}/status",
    response_model=PullerResponse,
    responses={404: {"model": ErrorResponse}},
)
@limiter.limit(RATE_LIMIT)
async def update_status(
    request: Request,
    puller_id: int,
    body: StatusUpdateRequest,
    pullers: PullerService = Depends(get_pullers),
):
    return await pullers.set_online_status(puller_id, body.is_online)


@router.get(
    "/{puller_id}/ride-requests",
    response_model=list[OpenRideResponse],
    summary="Searching rides ordered by distance from the puller",
    responses={404: {"model": ErrorResponse}},
)
@limiter.limit(RATE_LIMIT)
async def ride_requests(
    request: Request,
    puller_id: int,
    pullers: PullerService = Depends(get_pullers),
):
    return await pullers.ride_requests_for(puller_id)


@router.get(
    "/{puller_id}/points-history",
    response_model=list[LedgerEntryResponse],
    responses={404: {"model": ErrorResponse}},
)
@limiter.limit(RATE_LIMIT)
async def points_history(
    request: Request,
    puller_id: int,
    ledger: PointsLedger = Depends(get_ledger),
):
    return await ledger.history(puller_id)
