"""
Ride endpoints
==============

POST /api/v1/rides                      -- hardware ride request (SEARCHING)
GET  /api/v1/rides                      -- list rides, newest first
GET  /api/v1/rides/{ride_id}            -- ride snapshot
POST /api/v1/rides/{ride_id}/accept     -- puller accepts (race-safe)
POST /api/v1/rides/{ride_id}/reject     -- puller rejects; ride is re-offered
POST /api/v1/rides/{ride_id}/pickup     -- passenger picked up
POST /api/v1/rides/{ride_id}/complete   -- finish and settle points
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from ride_dispatch.api.dependencies import get_lifecycle
from ride_dispatch.api.middleware import RATE_LIMIT, limiter
from ride_dispatch.api.schemas import (
    ErrorResponse,
    PullerActionRequest,
    RejectResponse,
    RideCompleteRequest,
    RideCreateRequest,
    RideListResponse,
)
from ride_dispatch.domain.enums import RideStatus
from ride_dispatch.messaging.messages import RideSnapshot
from ride_dispatch.services.lifecycle import RideLifecycleService

router = APIRouter(prefix="/rides", tags=["rides"])

_ERRORS = {404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}}


@router.post(
    "",
    status_code=201,
    response_model=RideSnapshot,
    summary="Create a ride from a hardware request",
    responses={404: {"model": ErrorResponse}},
)
@limiter.limit(RATE_LIMIT)
async def create_ride(
    request: Request,
    body: RideCreateRequest,
    lifecycle: RideLifecycleService = Depends(get_lifecycle),
):
    return await lifecycle.request_ride(
        body.start_block_id, body.destination_block_id, body.rider_id
    )


@router.get("", response_model=RideListResponse, summary="List rides")
@limiter.limit(RATE_LIMIT)
async def list_rides(
    request: Request,
    status: Optional[RideStatus] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    lifecycle: RideLifecycleService = Depends(get_lifecycle),
):
    rides, total = await lifecycle.list_rides(status, page, limit)
    return RideListResponse(rides=rides, total=total, page=page, limit=limit)


@router.get(
    "/{ride_id}",
    response_model=RideSnapshot,
    summary="Get a ride",
    responses={404: {"model": ErrorResponse}},
)
@limiter.limit(RATE_LIMIT)
async def get_ride(
    request: Request,
    ride_id: int,
    lifecycle: RideLifecycleService = Depends(get_lifecycle),
):
    return await lifecycle.get_ride(ride_id)


@router.post(
    "/{ride_id}/accept",
    response_model=RideSnapshot,
    summary="Accept a searching ride",
    description="Exactly one concurrent accept wins; the others get 409.",
    responses=_ERRORS,
)
@limiter.limit(RATE_LIMIT)
async def accept_ride(
    request: Request,
    ride_id: int,
    body: PullerActionRequest,
    lifecycle: RideLifecycleService = Depends(get_lifecycle),
):
    return await lifecycle.accept(ride_id, body.puller_id)


@router.post(
    "/{ride_id}/reject",
    response_model=RejectResponse,
    summary="Reject a searching ride",
    responses=_ERRORS,
)
@limiter.limit(RATE_LIMIT)
async def reject_ride(
    request: Request,
    ride_id: int,
    body: PullerActionRequest,
    lifecycle: RideLifecycleService = Depends(get_lifecycle),
):
    outcome = await lifecycle.reject(ride_id, body.puller_id)
    return RejectResponse(
        message=outcome.message,
        ride_id=outcome.ride_id,
        reoffered_to=outcome.reoffered_to,
    )


@router.post(
    "/{ride_id}/pickup",
    response_model=RideSnapshot,
    summary="Confirm passenger pickup",
    responses=_ERRORS,
)
@limiter.limit(RATE_LIMIT)
async def pickup_ride(
    request: Request,
    ride_id: int,
    lifecycle: RideLifecycleService = Depends(get_lifecycle),
):
    return await lifecycle.pickup(ride_id)


@router.post(
    "/{ride_id}/complete",
    response_model=RideSnapshot,
    summary="Complete a ride and settle points",
    responses=_ERRORS,
)
@limiter.limit(RATE_LIMIT)
async def complete_ride(
    request: Request,
    ride_id: int,
    body: RideCompleteRequest,
    lifecycle: RideLifecycleService = Depends(get_lifecycle),
):
    return await lifecycle.complete(ride_id, body.final_lat, body.final_lon)
