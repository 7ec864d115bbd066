"""Connection handle wrapping one live WebSocket."""
from __future__ import annotations

import uuid

from fastapi import WebSocket, WebSocketDisconnect
from fastapi.websockets import WebSocketState

from ..shared.events import EventModel
from .logging_config import configure_logging

logger = configure_logging()


class Connection:
    """Opaque routing target for outbound events.

    Sends never raise: a failed send marks the handle closed and reports
    ``False`` so the caller can treat the peer as gone.
    """

    def __init__(self, websocket: WebSocket):
        self.websocket = websocket
        self.id = uuid.uuid4().hex[:12]
        self.closed = False

    @property
    def is_open(self) -> bool:
        return not self.closed and self.websocket.application_state == WebSocketState.CONNECTED

    async def send(self, event: EventModel) -> bool:
        if not self.is_open:
            return False
        try:
            await self.websocket.send_json(event.to_wire())
        except (WebSocketDisconnect, RuntimeError, OSError) as exc:
            self.closed = True
            logger.warning("SEND_FAILED connection=%s event=%s error=%r", self.id, event.type, exc)
            return False
        return True

    def __repr__(self) -> str:
        return f"<Connection {self.id}>"
