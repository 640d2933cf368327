"""
Ride Expiration Scheduler
=========================

Arms exactly one delayed callback per ride, ``ride_expiry_seconds``
(default 60 s) after it enters SEARCHING.  Callbacks are never cancelled
or rescheduled: the bound handler re-checks the ride status when it
fires, so a ride accepted in the meantime costs one wasted wake-up.

Backends
--------
* ``InMemoryScheduler`` -- one asyncio task per ride.  Process-local;
  pending expirations are lost on restart.
* ``RedisDelayQueue``   -- a Redis sorted set scored by due time, plus a
  ``<key>:processing`` set of in-flight claims scored by claim time.  A
  background loop polls every ``expiry_poll_interval_seconds``:

  1. Acquire the poller lock (skip the cycle if another worker holds it).
  2. Move claims older than ``claim_timeout`` back into the queue, due now.
     These belong to a worker that died between claim and acknowledge.
  3. ``ZRANGEBYSCORE key -inf now`` -- due ride ids.
  4. Atomically move each one into the processing set (Lua); only the
     caller whose move succeeded fires it.
  5. Remove the claim once the handler has run.

  Entries survive process restarts, including a crash mid-fire: the
  claim is requeued and the ride is checked again.  The handler is
  idempotent, so a second run after a crash is harmless.  A handler that
  raises is logged and acknowledged, not retried.
"""

from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Optional

import redis.asyncio as aioredis

from ride_dispatch.config import settings
from ride_dispatch.infrastructure.locks import DistributedLock

logger = logging.getLogger(__name__)

ExpiryHandler = Callable[[int], Awaitable[object]]

# Move ARGV[1] from sorted set KEYS[1] to KEYS[2] with score ARGV[2].
# Returns 0 when the member was no longer in KEYS[1].
_MOVE_SCRIPT = """
if redis.call("zrem", KEYS[1], ARGV[1]) == 1 then
    redis.call("zadd", KEYS[2], ARGV[2], ARGV[1])
    return 1
end
return 0
"""


class ExpirationScheduler(ABC):
    def __init__(self) -> None:
        self._handler: Optional[ExpiryHandler] = None

    def bind(self, handler: ExpiryHandler) -> None:
        self._handler = handler

    @abstractmethod
    async def schedule(self, ride_id: int, delay_seconds: float) -> None: ...

    async def start(self) -> None:
        pass

    async def stop(self) -> None:
        pass

    async def fire(self, ride_id: int) -> None:
        if self._handler is None:
            logger.error("Expiry for ride %s fired with no handler bound", ride_id)
            return
        try:
            await self._handler(ride_id)
        except Exception:
            logger.exception("Expiry handler failed for ride %s", ride_id)


# ── In-process backend ────────────────────────────────────────────────


class InMemoryScheduler(ExpirationScheduler):
    def __init__(self) -> None:
        super().__init__()
        self._tasks: set[asyncio.Task] = set()

    async def schedule(self, ride_id: int, delay_seconds: float) -> None:
        task = asyncio.create_task(self._fire_later(ride_id, delay_seconds))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _fire_later(self, ride_id: int, delay_seconds: float) -> None:
        await asyncio.sleep(delay_seconds)
        await self.fire(ride_id)

    async def pending(self) -> int:
        return len(self._tasks)

    async def stop(self) -> None:
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("In-memory expiry scheduler stopped (%d pending dropped)", len(tasks))


# ── Persistent backend ────────────────────────────────────────────────


class RedisDelayQueue(ExpirationScheduler):
    def __init__(
        self,
        client: aioredis.Redis,
        key: str = settings.expiry_queue_key,
        poll_interval: float = settings.expiry_poll_interval_seconds,
        claim_timeout: float = settings.expiry_claim_timeout_seconds,
        clock: Callable[[], float] = time.time,
    ):
        super().__init__()
        self.redis = client
        self.key = key
        self.processing_key = f"{key}:processing"
        self.poll_interval = poll_interval
        self.claim_timeout = claim_timeout
        self.clock = clock
        self._task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None

    async def schedule(self, ride_id: int, delay_seconds: float) -> None:
        # NX: a ride is armed once; a second call never pushes it back.
        await self.redis.zadd(
            self.key, {str(ride_id): self.clock() + delay_seconds}, nx=True
        )

    async def start(self) -> None:
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._loop())
        logger.info("Expiry worker started (poll=%.1fs)", self.poll_interval)

    async def stop(self) -> None:
        if self._stop_event:
            self._stop_event.set()
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        logger.info("Expiry worker stopped")

    async def _loop(self) -> None:
        assert self._stop_event is not None
        while not self._stop_event.is_set():
            try:
                await self.run_cycle()
            except Exception:
                logger.exception("Unhandled error in expiry cycle")
            try:
                await asyncio.wait_for(
                    self._stop_event.wait(), timeout=self.poll_interval
                )
                break
            except asyncio.TimeoutError:
                pass  # next cycle

    async def run_cycle(self) -> int:
        """Fire every due expiration.  Returns how many were fired here."""
        lock = DistributedLock(
            self.redis, f"{self.key}:poller", ttl_seconds=max(5, int(self.poll_interval * 10))
        )
        if not await lock.acquire():
            logger.debug("Expiry poller lock held elsewhere -- skipping cycle")
            return 0

        fired = 0
        try:
            now = self.clock()
            await self._requeue_stale_claims(now)
            due = await self.redis.zrangebyscore(self.key, "-inf", now)
            for member in due:
                if not await self._move(self.key, self.processing_key, member, now):
                    continue  # claimed by another worker
                await self.fire(int(member))
                await self.redis.zrem(self.processing_key, member)
                fired += 1
        finally:
            await lock.release()

        if fired:
            logger.info("Expiry cycle: %d rides checked", fired)
        return fired

    async def pending(self) -> int:
        """Queued plus in-flight expirations."""
        queued = await self.redis.zcard(self.key)
        in_flight = await self.redis.zcard(self.processing_key)
        return int(queued) + int(in_flight)

    async def _requeue_stale_claims(self, now: float) -> None:
        stale = await self.redis.zrangebyscore(
            self.processing_key, "-inf", now - self.claim_timeout
        )
        for member in stale:
            if await self._move(self.processing_key, self.key, member, now):
                logger.warning("Requeued abandoned expiry claim for ride %s", member)

    async def _move(self, source: str, target: str, member, score: float) -> bool:
        return bool(
            await self.redis.eval(_MOVE_SCRIPT, 2, source, target, member, score)
        )
