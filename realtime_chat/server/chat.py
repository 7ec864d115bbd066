"""Request/response chat routes used when no realtime connection is available."""
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from starlette.concurrency import run_in_threadpool

from ..shared.events import ChatMessage, NewMessage
from . import schemas
from .auth import get_current_user_id
from .config import RECENT_MESSAGES_LIMIT
from .errors import ChatError, ChatValidationError, MessageAccessError, PersistenceError, UnknownUserError
from .logging_config import configure_logging
from .routing import EventRouter
from .session import validate_outgoing_message

router = APIRouter(prefix="/chat", tags=["chat"])
logger = configure_logging()


def _http_error(exc: ChatError) -> HTTPException:
    if isinstance(exc, (ChatValidationError, UnknownUserError)):
        code = status.HTTP_400_BAD_REQUEST
    elif isinstance(exc, MessageAccessError):
        code = status.HTTP_403_FORBIDDEN
    else:
        code = status.HTTP_500_INTERNAL_SERVER_ERROR
    return HTTPException(status_code=code, detail=exc.message)


@router.get("/messages", response_model=List[ChatMessage])
async def list_messages(
    request: Request,
    limit: int = Query(RECENT_MESSAGES_LIMIT, ge=1, le=RECENT_MESSAGES_LIMIT),
    current_user_id: int = Depends(get_current_user_id),
):
    try:
        return await run_in_threadpool(request.app.state.store.list_recent_for_user, current_user_id, limit)
    except PersistenceError as exc:
        raise _http_error(exc) from exc


@router.post("/messages", response_model=ChatMessage, status_code=status.HTTP_201_CREATED)
async def send_message(
    payload: schemas.MessageCreate,
    request: Request,
    current_user_id: int = Depends(get_current_user_id),
):
    store = request.app.state.store
    try:
        validate_outgoing_message(payload.content, current_user_id, payload.receiver_id)
        message = await run_in_threadpool(store.create_message, payload.content, current_user_id, payload.receiver_id)
    except ChatError as exc:
        logger.info("EVENT_REJECTED user_id=%s reason=%s", current_user_id, exc.message)
        raise _http_error(exc) from exc

    logger.info("MESSAGE_SENT sender_id=%s receiver_id=%s message_id=%s", message.sender_id, message.receiver_id, message.id)
    if await EventRouter(request.app.state.registry).deliver(message.receiver_id, NewMessage(message=message)):
        logger.info("MESSAGE_DELIVERED message_id=%s receiver_id=%s", message.id, message.receiver_id)
    return message


@router.delete("/messages/{message_id}")
async def delete_message(message_id: int, request: Request, current_user_id: int = Depends(get_current_user_id)):
    try:
        await run_in_threadpool(request.app.state.store.delete_message, message_id, current_user_id)
    except ChatError as exc:
        raise _http_error(exc) from exc
    logger.info("MESSAGE_DELETED message_id=%s user_id=%s", message_id, current_user_id)
    return {"success": True}
