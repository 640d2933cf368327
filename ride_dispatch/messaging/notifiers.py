"""
Notification sinks.

The engine only needs two capabilities: *send to one puller* and
*broadcast to every observer*.  Concrete sinks:

* ``RedisPubSubNotifier`` -- hardware / dashboard channel.  One JSON
  publish per message on ``<prefix>/pullers/<id>/<event>`` or
  ``<prefix>/rides/<id>/<event>``.  At-most-once, nothing is retried.
* ``WebSocketNotifier``   -- puller-app push channel, addressed through
  the ``ConnectionRegistry``.
* ``FanoutNotifier``      -- delivers to several sinks.  A failing sink is
  logged and skipped; a committed ride transition is never undone
  because a message could not be sent.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Iterable

import redis.asyncio as aioredis

from .messages import OutboundMessage
from .registry import ConnectionRegistry

logger = logging.getLogger(__name__)


class Notifier(ABC):
    @abstractmethod
    async def send_to_puller(self, puller_id: int, message: OutboundMessage) -> None: ...

    @abstractmethod
    async def broadcast(self, message: OutboundMessage) -> None: ...


class RedisPubSubNotifier(Notifier):
    def __init__(self, client: aioredis.Redis, prefix: str = "aeras"):
        self.redis = client
        self.prefix = prefix

    async def send_to_puller(self, puller_id: int, message: OutboundMessage) -> None:
        topic = message.puller_topic(self.prefix, puller_id)
        await self.redis.publish(topic, message.model_dump_json())
        logger.debug("Published %s to %s", message.type, topic)

    async def broadcast(self, message: OutboundMessage) -> None:
        topic = message.broadcast_topic(self.prefix)
        await self.redis.publish(topic, message.model_dump_json())
        logger.debug("Published %s to %s", message.type, topic)


class WebSocketNotifier(Notifier):
    def __init__(self, registry: ConnectionRegistry):
        self.registry = registry

    async def send_to_puller(self, puller_id: int, message: OutboundMessage) -> None:
        connection = await self.registry.lookup(puller_id)
        if connection is None:
            logger.debug("Puller %s has no live socket; %s dropped", puller_id, message.type)
            return
        await connection.send_json(message.envelope())

    async def broadcast(self, message: OutboundMessage) -> None:
        envelope = message.envelope()
        for puller_id, connection in await self.registry.snapshot():
            try:
                await connection.send_json(envelope)
            except Exception:
                logger.exception("Broadcast of %s to puller %s failed", message.type, puller_id)


class FanoutNotifier(Notifier):
    def __init__(self, sinks: Iterable[Notifier]):
        self.sinks = list(sinks)

    async def send_to_puller(self, puller_id: int, message: OutboundMessage) -> None:
        for sink in self.sinks:
            try:
                await sink.send_to_puller(puller_id, message)
            except Exception:
                logger.exception(
                    "%s failed to deliver %s to puller %s",
                    type(sink).__name__, message.type, puller_id,
                )

    async def broadcast(self, message: OutboundMessage) -> None:
        for sink in self.sinks:
            try:
                await sink.broadcast(message)
            except Exception:
                logger.exception(
                    "%s failed to broadcast %s", type(sink).__name__, message.type
                )
