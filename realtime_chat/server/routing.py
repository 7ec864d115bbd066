"""Resolve a target user to its live connection and deliver events to it."""
from __future__ import annotations

from typing import Optional

from ..shared.events import EventModel
from .presence import ConnectionHandle, PresenceRegistry


class EventRouter:
    """Stateless view over a ``PresenceRegistry``."""

    def __init__(self, registry: PresenceRegistry):
        self.registry = registry

    async def route(self, target_user_id: int) -> Optional[ConnectionHandle]:
        return await self.registry.get(target_user_id)

    async def deliver(self, target_user_id: int, event: EventModel) -> bool:
        """Send ``event`` to the target if online. An offline target is a silent no-op."""
        connection = await self.route(target_user_id)
        if connection is None:
            return False
        return await connection.send(event)
