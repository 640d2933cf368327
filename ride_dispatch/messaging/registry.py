"""
Connection registry for the puller push channel.

Maps an online puller id to its live connection handle.  It is an
explicit object owned by the application (``app.state``) and injected
into the WebSocket route and the ``WebSocketNotifier``; there is no
module-level table.
"""

from __future__ import annotations

import asyncio
from typing import Any, Optional


class ConnectionRegistry:
    def __init__(self) -> None:
        self._connections: dict[int, Any] = {}
        self._lock = asyncio.Lock()

    async def register(self, puller_id: int, connection: Any) -> Optional[Any]:
        """Bind *connection* to *puller_id*; returns the replaced handle, if any."""
        async with self._lock:
            previous = self._connections.get(puller_id)
            self._connections[puller_id] = connection
            return previous

    async def unregister(self, puller_id: int, connection: Any = None) -> bool:
        """Drop the binding.

        When *connection* is given, only that exact handle is removed so a
        stale socket closing late cannot evict a newer registration.
        """
        async with self._lock:
            current = self._connections.get(puller_id)
            if current is None:
                return False
            if connection is not None and current is not connection:
                return False
            del self._connections[puller_id]
            return True

    async def lookup(self, puller_id: int) -> Optional[Any]:
        async with self._lock:
            return self._connections.get(puller_id)

    async def snapshot(self) -> list[tuple[int, Any]]:
        async with self._lock:
            return list(self._connections.items())

    def __len__(self) -> int:
        return len(self._connections)
