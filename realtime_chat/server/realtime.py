"""WebSocket endpoint driving one ``ConnectionSession`` per client."""
from fastapi import APIRouter, WebSocket, WebSocketDisconnect, status

from ..shared.events import MalformedEvent, parse_inbound
from ..shared.utils import WS_PATH
from .config import CORS_ALLOWED_ORIGINS
from .connection import Connection
from .errors import ChatValidationError
from .logging_config import configure_logging
from .session import ConnectionSession, SessionState

router = APIRouter(tags=["realtime"])
logger = configure_logging()


def origin_allowed(origin: str | None) -> bool:
    if origin is None or "*" in CORS_ALLOWED_ORIGINS:
        return True
    return origin in CORS_ALLOWED_ORIGINS


@router.websocket(WS_PATH)
async def chat_socket(websocket: WebSocket):
    origin = websocket.headers.get("origin")
    if not origin_allowed(origin):
        logger.warning("ORIGIN_REJECTED origin=%s", origin)
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    connection = Connection(websocket)
    state = websocket.app.state
    session = ConnectionSession(connection, state.registry, state.store, sends=state.sends)
    try:
        while session.state is not SessionState.CLOSED:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(message.get("code", status.WS_1000_NORMAL_CLOSURE))
            # Binary frames carry the same JSON as text frames.
            raw = message.get("text")
            if raw is None:
                raw = message.get("bytes")
            try:
                event = parse_inbound(raw)
            except MalformedEvent as exc:
                await session.reject(ChatValidationError(str(exc)))
                continue
            await session.handle(event)
        connection.closed = True
        await websocket.close()
    except WebSocketDisconnect:
        connection.closed = True
    finally:
        await session.close()
