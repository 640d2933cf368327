"""
Service assembly.

``build_services`` wires the engine from its three collaborators -- a
session factory, a notifier and an expiration scheduler -- so the API,
the WebSocket channel and the tests all share one construction path.
"""

from __future__ import annotations

from dataclasses import dataclass

import redis.asyncio as aioredis
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ride_dispatch.config import Settings, settings
from ride_dispatch.messaging.notifiers import (
    FanoutNotifier,
    Notifier,
    RedisPubSubNotifier,
    WebSocketNotifier,
)
from ride_dispatch.messaging.registry import ConnectionRegistry
from ride_dispatch.services.dispatch import OfferDistributor
from ride_dispatch.services.lifecycle import RideLifecycleService
from ride_dispatch.services.pullers import PullerService
from ride_dispatch.services.settlement import PointsLedger
from ride_dispatch.workers.expiration import (
    ExpirationScheduler,
    InMemoryScheduler,
    RedisDelayQueue,
)


@dataclass
class DispatchServices:
    session_factory: async_sessionmaker[AsyncSession]
    notifier: Notifier
    scheduler: ExpirationScheduler
    registry: ConnectionRegistry
    lifecycle: RideLifecycleService
    pullers: PullerService
    ledger: PointsLedger


def build_services(
    session_factory: async_sessionmaker[AsyncSession],
    notifier: Notifier,
    scheduler: ExpirationScheduler,
    registry: ConnectionRegistry | None = None,
    config: Settings = settings,
) -> DispatchServices:
    ledger = PointsLedger(session_factory)
    distributor = OfferDistributor(
        session_factory,
        notifier,
        fanout=config.offer_fanout,
        offer_ttl_seconds=config.offer_display_ttl_seconds,
    )
    lifecycle = RideLifecycleService(
        session_factory,
        notifier,
        scheduler,
        distributor=distributor,
        ledger=ledger,
        expiry_seconds=config.ride_expiry_seconds,
    )
    return DispatchServices(
        session_factory=session_factory,
        notifier=notifier,
        scheduler=scheduler,
        registry=registry or ConnectionRegistry(),
        lifecycle=lifecycle,
        pullers=PullerService(session_factory, notifier),
        ledger=ledger,
    )


def build_default_services(
    session_factory: async_sessionmaker[AsyncSession],
    redis: aioredis.Redis,
    config: Settings = settings,
) -> DispatchServices:
    """Production wiring: Redis pub/sub + WebSocket sinks, Redis delay queue."""
    registry = ConnectionRegistry()
    notifier = FanoutNotifier(
        [
            RedisPubSubNotifier(redis, prefix=config.topic_prefix),
            WebSocketNotifier(registry),
        ]
    )
    if config.scheduler_backend == "memory":
        scheduler: ExpirationScheduler = InMemoryScheduler()
    else:
        scheduler = RedisDelayQueue(
            redis,
            key=config.expiry_queue_key,
            poll_interval=config.expiry_poll_interval_seconds,
            claim_timeout=config.expiry_claim_timeout_seconds,
        )
    return build_services(session_factory, notifier, scheduler, registry, config)
