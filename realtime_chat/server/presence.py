"""In-memory presence registry: which user is reachable on which connection."""
from __future__ import annotations

import asyncio
from typing import Dict, List, Optional, Protocol

from ..shared.events import EventModel


class ConnectionHandle(Protocol):
    async def send(self, event: EventModel) -> bool: ...


class PresenceRegistry:
    """Maps a user id to its one live connection.

    The registry is shared by every connection of the process, so each
    operation runs under a single asyncio lock. The last authenticated
    connection of a user wins.
    """

    def __init__(self) -> None:
        self._connections: Dict[int, ConnectionHandle] = {}
        self._lock = asyncio.Lock()

    async def set(self, user_id: int, connection: ConnectionHandle) -> None:
        async with self._lock:
            self._connections[user_id] = connection

    async def get(self, user_id: int) -> Optional[ConnectionHandle]:
        async with self._lock:
            return self._connections.get(user_id)

    async def remove(self, connection: ConnectionHandle) -> Optional[int]:
        """Erase the entry owned by ``connection`` and return its user id, if any."""
        async with self._lock:
            for user_id, registered in self._connections.items():
                if registered is connection:
                    del self._connections[user_id]
                    return user_id
        return None

    async def online_user_ids(self) -> List[int]:
        async with self._lock:
            return sorted(self._connections)

    async def broadcast_all(self, event: EventModel) -> int:
        """Send ``event`` to every registered connection; returns how many accepted it."""
        async with self._lock:
            targets = list(self._connections.values())
        delivered = 0
        for connection in targets:
            if await connection.send(event):
                delivered += 1
        return delivered

    def __len__(self) -> int:
        return len(self._connections)
