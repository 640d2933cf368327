"""
Hardware bus listener.

IoT blocks and puller handsets publish on the low-QoS pub/sub bus:

* ``<prefix>/requests/<start_block_id>/<destination_block_id>`` -- a
  rider pressed the request button; the payload is ignored.
* ``<prefix>/pullers/<puller_id>/location`` -- ``{"lat": .., "lon": ..}``.

Each message is translated into an inbound frame and routed through
``handle_frame``.  Failures are logged; nothing is acknowledged or
retried (at-most-once).
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import TYPE_CHECKING, Optional

import redis.asyncio as aioredis

from ride_dispatch.services.inbound import handle_frame

if TYPE_CHECKING:
    from ride_dispatch.wiring import DispatchServices

logger = logging.getLogger(__name__)


def to_frame(prefix: str, channel: str, data: str) -> Optional[dict]:
    """Translate a bus message to an inbound frame, or None if unrecognised."""
    parts = channel.split("/")
    if len(parts) != 4 or parts[0] != prefix:
        return None

    _, kind, first, second = parts
    if kind == "requests":
        return {
            "type": "ride_requested",
            "start_block_id": first,
            "destination_block_id": second,
        }

    if kind == "pullers" and second == "location":
        try:
            payload = json.loads(data) if data else {}
            puller_id = int(first)
        except ValueError:
            return None
        if not isinstance(payload, dict):
            return None
        return {
            "type": "update_location",
            "puller_id": puller_id,
            "lat": payload.get("lat", payload.get("latitude")),
            "lon": payload.get("lon", payload.get("longitude")),
        }

    return None


class HardwareListener:
    def __init__(
        self,
        client: aioredis.Redis,
        services: "DispatchServices",
        prefix: str = "aeras",
    ):
        self.redis = client
        self.services = services
        self.prefix = prefix
        self._pubsub = None
        self._task: Optional[asyncio.Task] = None

    @property
    def patterns(self) -> list[str]:
        return [f"{self.prefix}/requests/*/*", f"{self.prefix}/pullers/*/location"]

    async def start(self) -> None:
        self._pubsub = self.redis.pubsub()
        await self._pubsub.psubscribe(*self.patterns)
        self._task = asyncio.create_task(self._loop())
        logger.info("Hardware listener subscribed to %s", ", ".join(self.patterns))

    async def stop(self) -> None:
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        if self._pubsub is not None:
            await self._pubsub.punsubscribe()
            await self._pubsub.aclose()
        logger.info("Hardware listener stopped")

    async def _loop(self) -> None:
        async for message in self._pubsub.listen():
            if message.get("type") != "pmessage":
                continue
            try:
                await self.handle(message["channel"], message["data"])
            except Exception:
                logger.exception("Error handling hardware message on %s", message["channel"])

    async def handle(self, channel: str, data: str) -> Optional[dict]:
        frame = to_frame(self.prefix, channel, data)
        if frame is None:
            logger.warning("Ignoring hardware message on %s", channel)
            return None
        reply = await handle_frame(self.services, frame)
        if reply["event"] == "error":
            logger.warning("Hardware message on %s failed: %s", channel, reply["data"]["message"])
        return reply
