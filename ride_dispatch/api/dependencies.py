"""FastAPI dependency injection helpers."""

from fastapi import Depends, Request

from ride_dispatch.services.lifecycle import RideLifecycleService
from ride_dispatch.services.pullers import PullerService
from ride_dispatch.services.settlement import PointsLedger
from ride_dispatch.wiring import DispatchServices


def get_services(request: Request) -> DispatchServices:
    """The engine wired onto ``app.state`` by the application factory."""
    return request.app.state.services


def get_lifecycle(
    services: DispatchServices = Depends(get_services),
) -> RideLifecycleService:
    return services.lifecycle


def get_pullers(services: DispatchServices = Depends(get_services)) -> PullerService:
    return services.pullers


def get_ledger(services: DispatchServices = Depends(get_services)) -> PointsLedger:
    return services.ledger
