"""
Puller app push channel
=======================

WS /ws/pullers/{puller_id}

On connect the socket is bound in the ``ConnectionRegistry`` and the
puller is marked online; on disconnect it is unbound and marked offline.
Every frame the app sends is routed through ``handle_frame`` and answered
with a reply envelope.  Offers and notices reach the app through the
``WebSocketNotifier``.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from ride_dispatch.domain.errors import NotFound
from ride_dispatch.services.inbound import error_reply, handle_frame
from ride_dispatch.wiring import DispatchServices

logger = logging.getLogger(__name__)

router = APIRouter()


@router.websocket("/ws/pullers/{puller_id}")
async def puller_socket(websocket: WebSocket, puller_id: int):
    services: DispatchServices = websocket.app.state.services
    await websocket.accept()

    try:
        await services.pullers.set_online_status(puller_id, True)
    except NotFound as exc:
        await websocket.send_json(error_reply(str(exc)))
        await websocket.close(code=4404)
        return

    replaced = await services.registry.register(puller_id, websocket)
    if replaced is not None:
        logger.info("Puller %s reconnected; previous socket replaced", puller_id)
    await websocket.send_json(
        {"event": "puller_registered", "data": {"puller_id": puller_id, "is_online": True}}
    )

    try:
        while True:
            raw = await websocket.receive_text()
            reply = await handle_frame(services, raw, puller_id=puller_id)
            await websocket.send_json(reply)
    except WebSocketDisconnect:
        logger.info("Puller %s disconnected", puller_id)
    finally:
        if await services.registry.unregister(puller_id, websocket):
            try:
                await services.pullers.set_online_status(puller_id, False)
            except NotFound:
                logger.warning("Puller %s vanished before going offline", puller_id)
