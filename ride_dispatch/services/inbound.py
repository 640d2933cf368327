"""
Inbound event routing.

Both push channels -- the puller app WebSocket and the hardware pub/sub
bus -- deliver raw JSON frames.  ``handle_frame`` validates a frame into a
tagged event, runs the matching service operation and returns a reply
envelope ``{"event": ..., "data": ...}``.  Guard violations come back as
an ``error`` envelope instead of tearing the connection down.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Optional, Union

from ride_dispatch.domain.errors import DispatchError
from ride_dispatch.messaging.messages import (
    AcceptRide,
    CompleteRide,
    ConfirmPickup,
    InboundEvent,
    RejectRide,
    RideRequested,
    UpdateLocation,
    UpdateStatus,
    parse_inbound,
)

if TYPE_CHECKING:
    from ride_dispatch.wiring import DispatchServices

logger = logging.getLogger(__name__)


def _reply(event: str, data) -> dict:
    return {"event": event, "data": data}


def error_reply(message: str) -> dict:
    return _reply("error", {"message": message})


async def handle_inbound(services: "DispatchServices", event: InboundEvent) -> dict:
    lifecycle = services.lifecycle

    if isinstance(event, AcceptRide):
        ride = await lifecycle.accept(event.ride_id, event.puller_id)
        return _reply("ride_accepted", ride.model_dump(mode="json"))

    if isinstance(event, RejectRide):
        outcome = await lifecycle.reject(event.ride_id, event.puller_id)
        return _reply(
            "ride_rejected", {"success": True, "message": outcome.message}
        )

    if isinstance(event, ConfirmPickup):
        ride = await lifecycle.pickup(event.ride_id)
        return _reply("pickup_confirmed", ride.model_dump(mode="json"))

    if isinstance(event, CompleteRide):
        ride = await lifecycle.complete(event.ride_id, event.final_lat, event.final_lon)
        return _reply("ride_completed", ride.model_dump(mode="json"))

    if isinstance(event, RideRequested):
        ride = await lifecycle.request_ride(
            event.start_block_id, event.destination_block_id, event.rider_id
        )
        return _reply("ride_created", ride.model_dump(mode="json"))

    if isinstance(event, UpdateLocation):
        await services.pullers.update_location(event.puller_id, event.lat, event.lon)
        return _reply("location_updated", {"success": True})

    if isinstance(event, UpdateStatus):
        await services.pullers.set_online_status(event.puller_id, event.is_online)
        return _reply("status_updated", {"success": True})

    raise TypeError(f"Unhandled inbound event {type(event).__name__}")


async def handle_frame(
    services: "DispatchServices",
    raw: Union[str, bytes, dict],
    *,
    puller_id: Optional[int] = None,
) -> dict:
    """Route one frame.

    *puller_id* binds the frame to an authenticated channel: a frame that
    names a different puller is refused instead of acting on its behalf.
    """
    try:
        data = raw if isinstance(raw, dict) else json.loads(raw)
        event = parse_inbound(data)
    except ValueError as exc:  # JSONDecodeError and pydantic ValidationError
        logger.warning("Rejected malformed frame: %s", exc)
        return error_reply(f"Invalid message: {exc}")

    claimed = getattr(event, "puller_id", None)
    if puller_id is not None and claimed is not None and claimed != puller_id:
        logger.warning(
            "Puller %s sent a %s frame for puller %s", puller_id, event.type, claimed
        )
        return error_reply(f"Frame puller_id {claimed} does not match this connection")

    try:
        return await handle_inbound(services, event)
    except DispatchError as exc:
        return error_reply(str(exc))
