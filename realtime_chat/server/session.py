"""Per-connection session handling for the realtime chat protocol.

A session starts ``UNAUTHENTICATED`` and only reacts to ``authenticate``
until then. Once authenticated it relays typing indicators, persists and fans
out messages, and on disconnect withdraws the user's presence. ``CLOSED`` is
terminal. Events of one connection are handled one at a time, in arrival
order, by the endpoint loop that owns the session.
"""
from __future__ import annotations

import enum
from collections import OrderedDict
from typing import Optional

from starlette.concurrency import run_in_threadpool

from ..shared.events import (
    Authenticate,
    ChatMessage,
    Disconnect,
    ErrorEvent,
    EventModel,
    MessageSent,
    NewMessage,
    RecentMessages,
    SendMessage,
    StopTyping,
    Typing,
    UserStatus,
    UserStopTyping,
    UserTyping,
)
from .config import RECENT_MESSAGES_LIMIT
from .auth import TokenStore, tokens as default_tokens
from .errors import ChatError, ChatValidationError
from .logging_config import configure_logging
from .presence import ConnectionHandle, PresenceRegistry
from .routing import EventRouter
from .store import MessageStore

logger = configure_logging()

RECENT_SENDS_LIMIT = 4096


class SessionState(str, enum.Enum):
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATED = "authenticated"
    CLOSED = "closed"


def validate_outgoing_message(content: Optional[str], sender_id: int, receiver_id: Optional[int]) -> None:
    """Check the send rules shared by the realtime and HTTP paths."""
    if not content or not content.strip():
        raise ChatValidationError("Message content must not be empty")
    if receiver_id is None:
        raise ChatValidationError("Receiver is required")
    if receiver_id == sender_id:
        raise ChatValidationError("You cannot send a message to yourself")


class RecentSends:
    """Acks of recently persisted sends, keyed by sender and client message id.

    One instance is shared by every session of the app, so a send replayed on a
    new connection after the old one dropped is still recognised.
    """

    def __init__(self, limit: int = RECENT_SENDS_LIMIT):
        self.limit = limit
        self._acks: "OrderedDict[tuple[int, str], ChatMessage]" = OrderedDict()

    def get(self, user_id: int, client_id: str) -> Optional[ChatMessage]:
        return self._acks.get((user_id, client_id))

    def remember(self, user_id: int, client_id: str, message: ChatMessage) -> None:
        self._acks[(user_id, client_id)] = message
        while len(self._acks) > self.limit:
            self._acks.popitem(last=False)

    def __len__(self) -> int:
        return len(self._acks)


class ConnectionSession:
    """State machine driving one connection against the shared registry and store."""

    def __init__(
        self,
        connection: ConnectionHandle,
        registry: PresenceRegistry,
        store: MessageStore,
        router: Optional[EventRouter] = None,
        history_limit: int = RECENT_MESSAGES_LIMIT,
        sends: Optional[RecentSends] = None,
        tokens: Optional[TokenStore] = None,
    ):
        self.connection = connection
        self.registry = registry
        self.store = store
        self.router = router or EventRouter(registry)
        self.history_limit = history_limit
        self.state = SessionState.UNAUTHENTICATED
        self.user_id: Optional[int] = None
        self.sends = sends if sends is not None else RecentSends()
        self.tokens = tokens if tokens is not None else default_tokens
        self._handlers = {
            Typing: self._on_typing,
            StopTyping: self._on_stop_typing,
            SendMessage: self._on_send_message,
        }

    async def handle(self, event: EventModel) -> None:
        if self.state is SessionState.CLOSED:
            return
        if isinstance(event, Disconnect):
            await self.close()
            return
        try:
            if self.state is SessionState.UNAUTHENTICATED:
                if isinstance(event, Authenticate):
                    await self._on_authenticate(event)
                else:
                    logger.info("EVENT_IGNORED connection=%s event=%s reason=unauthenticated", self.connection, event.type)
                return
            handler = self._handlers.get(type(event))
            if handler is None:
                logger.info("EVENT_IGNORED user_id=%s event=%s", self.user_id, event.type)
                return
            await handler(event)
        except ChatError as exc:
            await self.reject(exc)

    async def reject(self, exc: ChatError) -> None:
        """Report a failed operation to this connection only."""
        logger.info("EVENT_REJECTED user_id=%s reason=%s", self.user_id, exc.message)
        await self.connection.send(ErrorEvent(message=exc.message))

    async def close(self) -> None:
        if self.state is SessionState.CLOSED:
            return
        self.state = SessionState.CLOSED
        user_id = await self.registry.remove(self.connection)
        if user_id is None:
            return
        logger.info("USER_OFFLINE user_id=%s connection=%s", user_id, self.connection)
        await self.registry.broadcast_all(UserStatus(user_id=user_id, status="offline"))

    async def _on_authenticate(self, event: Authenticate) -> None:
        if event.token is not None and self.tokens.user_for(event.token) != event.user_id:
            logger.warning("UNAUTHORIZED_ACCESS reason=socket_token user_id=%s connection=%s", event.user_id, self.connection)
            raise ChatValidationError("Authentication failed")
        await self.registry.set(event.user_id, self.connection)
        self.user_id = event.user_id
        self.state = SessionState.AUTHENTICATED
        logger.info("USER_ONLINE user_id=%s connection=%s", event.user_id, self.connection)
        await self.registry.broadcast_all(UserStatus(user_id=event.user_id, status="online"))
        messages = await run_in_threadpool(self.store.list_recent_for_user, event.user_id, self.history_limit)
        await self.connection.send(RecentMessages(messages=messages))

    def _check_identity(self, claimed: Optional[int]) -> None:
        if claimed is not None and claimed != self.user_id:
            raise ChatValidationError("Sender does not match the authenticated user")

    async def _on_typing(self, event: Typing) -> None:
        self._check_identity(event.user_id)
        await self.router.deliver(event.receiver_id, UserTyping(user_id=self.user_id))

    async def _on_stop_typing(self, event: StopTyping) -> None:
        self._check_identity(event.user_id)
        await self.router.deliver(event.receiver_id, UserStopTyping(user_id=self.user_id))

    async def _on_send_message(self, event: SendMessage) -> None:
        self._check_identity(event.sender_id)
        client_id = event.client_message_id
        if client_id is not None:
            previous = self.sends.get(self.user_id, client_id)
            if previous is not None:
                logger.info("MESSAGE_DUPLICATE user_id=%s client_message_id=%s", self.user_id, client_id)
                await self.connection.send(MessageSent(message=previous, client_message_id=client_id))
                return

        validate_outgoing_message(event.content, self.user_id, event.receiver_id)
        # The write runs in a worker thread and completes even if this
        # connection goes away while it is in flight.
        message = await run_in_threadpool(self.store.create_message, event.content, self.user_id, event.receiver_id)
        logger.info(
            "MESSAGE_SENT sender_id=%s receiver_id=%s message_id=%s", message.sender_id, message.receiver_id, message.id
        )
        if client_id is not None:
            self.sends.remember(self.user_id, client_id, message)

        await self.connection.send(MessageSent(message=message, client_message_id=client_id))
        if await self.router.deliver(message.receiver_id, NewMessage(message=message)):
            logger.info("MESSAGE_DELIVERED message_id=%s receiver_id=%s", message.id, message.receiver_id)
