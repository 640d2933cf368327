"""
Admin / observability endpoints
===============================

POST /api/v1/admin/pullers/{puller_id}/points    -- manual points adjustment
POST /api/v1/admin/pullers/{puller_id}/suspend   -- take a puller out of dispatch
POST /api/v1/admin/pullers/{puller_id}/unsuspend -- reactivate a puller
GET  /api/v1/admin/health                        -- simple health check
"""

from typing import Optional

from fastapi import APIRouter, Depends, Request

from ride_dispatch.api.dependencies import get_ledger, get_pullers
from ride_dispatch.api.middleware import RATE_LIMIT, limiter
from ride_dispatch.api.schemas import (
    ErrorResponse,
    HealthResponse,
    LedgerEntryResponse,
    PointsAdjustmentRequest,
    PullerResponse,
    SuspendRequest,
)
from ride_dispatch.messaging.messages import utcnow
from ride_dispatch.services.pullers import PullerService
from ride_dispatch.services.settlement import PointsLedger

router = APIRouter(prefix="/admin", tags=["admin"])


@router.post(
    "/pullers/{puller_id}/points",
    status_code=201,
    response_model=LedgerEntryResponse,
    summary="Manually adjust a puller's points",
    description=(
        "Applies a signed delta to the balance and appends a "
        "MANUAL_ADJUSTMENT ledger row.  No ride-state checks are made."
    ),
    responses={404: {"model": ErrorResponse}},
)
@limiter.limit(RATE_LIMIT)
async def adjust_points(
    request: Request,
    puller_id: int,
    body: PointsAdjustmentRequest,
    ledger: PointsLedger = Depends(get_ledger),
):
    return await ledger.adjust_points(puller_id, body.points, body.ride_id)


@router.post(
    "/pullers/{puller_id}/suspend",
    response_model=PullerResponse,
    summary="Suspend a puller",
    description="Marks the puller inactive and offline; it receives no offers until reactivated.",
    responses={404: {"model": ErrorResponse}},
)
@limiter.limit(RATE_LIMIT)
async def suspend_puller(
    request: Request,
    puller_id: int,
    body: Optional[SuspendRequest] = None,
    pullers: PullerService = Depends(get_pullers),
):
    return await pullers.suspend(puller_id, body.reason if body else None)


@router.post(
    "/pullers/{puller_id}/unsuspend",
    response_model=PullerResponse,
    summary="Reactivate a suspended puller",
    responses={404: {"model": ErrorResponse}},
)
@limiter.limit(RATE_LIMIT)
async def unsuspend_puller(
    request: Request,
    puller_id: int,
    pullers: PullerService = Depends(get_pullers),
):
    return await pullers.unsuspend(puller_id)


@router.get("/health", response_model=HealthResponse, summary="Health check")
async def health():
    return HealthResponse(timestamp=utcnow())
