"""
Shared test fixtures.

Uses a throw-away SQLite file (via aiosqlite) per test so tests run
without Docker / PostgreSQL / Redis.  The pool holds a single connection:
concurrent service calls queue for it, which keeps SQLite's file locking
out of the picture.  Notifications and expirations go to in-memory
doubles that record what the engine emitted.
"""

from __future__ import annotations

from typing import AsyncGenerator, Optional

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import AsyncAdaptedQueuePool

from ride_dispatch.infrastructure import models  # noqa: F401
from ride_dispatch.infrastructure.database import Base, build_session_factory
from ride_dispatch.infrastructure.models import (
    LocationBlockModel,
    PullerModel,
    RiderModel,
)
from ride_dispatch.messaging.messages import OutboundMessage
from ride_dispatch.messaging.notifiers import Notifier
from ride_dispatch.workers.expiration import ExpirationScheduler
from ride_dispatch.wiring import build_services

# Pickup block and the destination used by the completion-points examples.
PICKUP = ("cuet-gate", "CUET Main Gate", 22.4600, 91.9700)
DESTINATION = ("pahartali", "Pahartali Bazar", 22.4633, 91.9714)

METRES_PER_DEG_LAT = 111_194.93


# ── Test doubles ──────────────────────────────────────────────────────


class RecordingNotifier(Notifier):
    def __init__(self) -> None:
        self.direct: list[tuple[int, OutboundMessage]] = []
        self.broadcasts: list[OutboundMessage] = []

    async def send_to_puller(self, puller_id, message):
        self.direct.append((puller_id, message))

    async def broadcast(self, message):
        self.broadcasts.append(message)

    def sent(self, message_type: type, puller_id: Optional[int] = None) -> list:
        return [
            m
            for pid, m in self.direct
            if isinstance(m, message_type) and (puller_id is None or pid == puller_id)
        ]

    def recipients(self, message_type: type) -> list[int]:
        return [pid for pid, m in self.direct if isinstance(m, message_type)]

    def broadcast_of(self, message_type: type) -> list:
        return [m for m in self.broadcasts if isinstance(m, message_type)]

    def clear(self) -> None:
        self.direct.clear()
        self.broadcasts.clear()


class ManualScheduler(ExpirationScheduler):
    """Records armed expirations; tests fire them explicitly."""

    def __init__(self) -> None:
        super().__init__()
        self.scheduled: list[tuple[int, float]] = []

    async def schedule(self, ride_id, delay_seconds):
        self.scheduled.append((ride_id, delay_seconds))

    async def fire_all(self) -> None:
        for ride_id, _ in list(self.scheduled):
            await self.fire(ride_id)


# ── Fixtures ──────────────────────────────────────────────────────────


@pytest_asyncio.fixture
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """Create tables in a fresh database file, yield, then dispose."""
    test_engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'dispatch.db'}",
        poolclass=AsyncAdaptedQueuePool,
        pool_size=1,
        max_overflow=0,
    )
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture
def services(session_factory, notifier, scheduler):
    return build_services(session_factory, notifier, scheduler)


@pytest.fixture
def lifecycle(services):
    return services.lifecycle


@pytest_asyncio.fixture
async def blocks(session_factory):
    """The pickup and destination blocks, keyed by role."""
    async with session_factory() as session:
        created = {}
        for role, (block_id, name, lat, lon) in (
            ("pickup", PICKUP),
            ("destination", DESTINATION),
        ):
            block = LocationBlockModel(
                block_id=block_id, name=name, latitude=lat, longitude=lon
            )
            session.add(block)
            created[role] = block
        await session.commit()
    return created


@pytest.fixture
def make_puller(session_factory):
    """Factory: ``await make_puller("A", metres_north_of_pickup)``."""

    async def _make(
        name: str,
        metres_from_pickup: Optional[float] = None,
        *,
        online: bool = True,
        active: bool = True,
    ) -> PullerModel:
        lat = lon = None
        if metres_from_pickup is not None:
            lat = PICKUP[2] + metres_from_pickup / METRES_PER_DEG_LAT
            lon = PICKUP[3]
        async with session_factory() as session:
            puller = PullerModel(
                name=name,
                is_online=online,
                is_active=active,
                last_known_lat=lat,
                last_known_lon=lon,
                points_balance=0,
            )
            session.add(puller)
            await session.commit()
            return puller

    return _make


@pytest_asyncio.fixture
async def rider(session_factory):
    async with session_factory() as session:
        r = RiderModel(name="Test Rider", phone="01700000000")
        session.add(r)
        await session.commit()
        return r


@pytest.fixture
def request_ride(lifecycle, blocks):
    async def _request(**kwargs):
        return await lifecycle.request_ride(PICKUP[0], DESTINATION[0], **kwargs)

    return _request
