"""Realtime chat client keeping one WebSocket and a local view of the conversation.

While the socket is up every send and typing signal goes over it. When it is
down the client degrades instead of failing: history comes from the HTTP API
or the local cache, sends go through the HTTP API, and if that is unreachable
too they are queued in a local outbox that is replayed on ``reconnect()``.
"""
from __future__ import annotations

import json
import logging
import threading
import uuid
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Set

import requests
from websockets.exceptions import WebSocketException
from websockets.sync.client import connect as ws_connect

from ..shared.events import (
    Authenticate,
    ChatMessage,
    ErrorEvent,
    EventModel,
    MalformedEvent,
    MessageSent,
    NewMessage,
    RecentMessages,
    SendMessage,
    StopTyping,
    Typing,
    UserStatus,
    UserStopTyping,
    UserTyping,
    parse_outbound,
)
from .api import APIClient
from .models import PendingMessage
from .storage import cache_messages, get_token, load_cached_messages, load_outbox, store_outbox

logger = logging.getLogger("realtime_chat.client")

TYPING_TIMEOUT_SECONDS = 3.0
# Conversation partner used when a call does not name one.
DEFAULT_RECEIVER_ID = 2


class RealtimeChatClient:
    def __init__(
        self,
        ws_url: str,
        user_id: int,
        api: Optional[APIClient] = None,
        receiver_id: int = DEFAULT_RECEIVER_ID,
        typing_timeout: float = TYPING_TIMEOUT_SECONDS,
        connect: Callable = ws_connect,
        timer_factory: Callable = threading.Timer,
        on_update: Optional[Callable[["RealtimeChatClient"], None]] = None,
        autoconnect: bool = True,
    ):
        self.ws_url = ws_url
        self.user_id = user_id
        self.api = api
        self.receiver_id = receiver_id
        self.typing_timeout = typing_timeout
        self.on_update = on_update

        self.messages: List[ChatMessage] = []
        self.typing_users: Set[int] = set()
        self.online_users: Set[int] = set()
        self.connected = False
        self.loading = True
        self.error: Optional[str] = None

        self._connect = connect
        self._timer_factory = timer_factory
        self._lock = threading.RLock()
        self._ws = None
        self._reader: Optional[threading.Thread] = None
        self._typing_timers: Dict[int, threading.Timer] = {}
        self._typing_generation: Dict[int, int] = {}
        self._outbox: List[PendingMessage] = [PendingMessage.from_dict(item) for item in load_outbox()]
        self._next_local_id = min((p.local_id for p in self._outbox), default=0) - 1

        if autoconnect:
            self.connect()

    # connection lifecycle

    def connect(self) -> bool:
        """Open the realtime connection and authenticate; fall back to offline mode on failure."""
        if self.connected:
            return True
        try:
            ws = self._connect(self.ws_url)
        except (OSError, TimeoutError, WebSocketException) as exc:
            logger.warning("Realtime server unreachable at %s: %s", self.ws_url, exc)
            self._go_offline("Realtime server unreachable, working offline")
            return False

        with self._lock:
            self._ws = ws
            self.connected = True
            self.error = None
            self.loading = True
        if not self._transmit(Authenticate(user_id=self.user_id, token=get_token())):
            return False

        self._reader = threading.Thread(target=self._read_loop, args=(ws,), name="chat-reader", daemon=True)
        self._reader.start()
        self._flush_outbox()
        self._notify()
        return True

    def reconnect(self) -> bool:
        return self.connect()

    def close(self) -> None:
        with self._lock:
            ws, self._ws = self._ws, None
            self.connected = False
            for user_id in list(self._typing_timers):
                self._clear_typing(user_id)
        if ws is not None:
            ws.close()
        reader = self._reader
        if reader is not None and reader is not threading.current_thread():
            reader.join(timeout=1.0)

    def _read_loop(self, ws) -> None:
        try:
            for raw in ws:
                try:
                    event = parse_outbound(raw)
                except MalformedEvent as exc:
                    logger.warning("Dropping malformed server event: %s", exc)
                    continue
                self.handle_event(event)
        except (OSError, WebSocketException) as exc:
            logger.info("Realtime connection closed: %s", exc)
        finally:
            self._connection_lost(ws)

    def _connection_lost(self, ws) -> None:
        with self._lock:
            if self._ws is not ws:
                return
            self._ws = None
            self.connected = False
            self.online_users.clear()
            for user_id in list(self._typing_timers):
                self._clear_typing(user_id)
        self._go_offline("Realtime connection lost, working offline")

    def _go_offline(self, reason: str) -> None:
        self.refresh_messages()
        self.error = reason
        self._notify()

    def _transmit(self, event: EventModel) -> bool:
        ws = self._ws
        if ws is None:
            return False
        try:
            ws.send(json.dumps(event.to_wire()))
        except (OSError, WebSocketException) as exc:
            logger.info("Realtime send failed: %s", exc)
            self._connection_lost(ws)
            return False
        return True

    # inbound events

    def handle_event(self, event: EventModel) -> None:
        if isinstance(event, RecentMessages):
            with self._lock:
                self.messages = list(event.messages) + self._pending_entries()
                self.loading = False
            self._persist_cache()
        elif isinstance(event, MessageSent):
            self._settle(event.client_message_id)
            self._append(event.message)
        elif isinstance(event, NewMessage):
            self._append(event.message)
            self._clear_typing(event.message.sender_id)
        elif isinstance(event, UserTyping):
            self._mark_typing(event.user_id)
        elif isinstance(event, UserStopTyping):
            self._clear_typing(event.user_id)
        elif isinstance(event, UserStatus):
            with self._lock:
                if event.status == "online":
                    self.online_users.add(event.user_id)
                else:
                    self.online_users.discard(event.user_id)
        elif isinstance(event, ErrorEvent):
            self.error = event.message
        self._notify()

    def _append(self, message: ChatMessage) -> None:
        with self._lock:
            if any(existing.id == message.id for existing in self.messages):
                return
            self.messages.append(message)
        self._persist_cache()

    def _settle(self, client_message_id: Optional[str]) -> None:
        if client_message_id is None:
            return
        with self._lock:
            pending = next((p for p in self._outbox if p.client_message_id == client_message_id), None)
            if pending is None:
                return
            self._outbox.remove(pending)
            self.messages = [m for m in self.messages if m.id != pending.local_id]
            store_outbox([p.to_dict() for p in self._outbox])

    # typing indicators

    def is_typing(self, user_id: int) -> bool:
        return user_id in self.typing_users

    def _mark_typing(self, user_id: int) -> None:
        with self._lock:
            previous = self._typing_timers.pop(user_id, None)
            if previous is not None:
                previous.cancel()
            generation = self._typing_generation.get(user_id, 0) + 1
            self._typing_generation[user_id] = generation
            timer = self._timer_factory(self.typing_timeout, self._expire_typing, args=(user_id, generation))
            timer.daemon = True
            self._typing_timers[user_id] = timer
            self.typing_users.add(user_id)
        timer.start()

    def _expire_typing(self, user_id: int, generation: int) -> None:
        with self._lock:
            if self._typing_generation.get(user_id) != generation:
                return
            self._typing_timers.pop(user_id, None)
            self.typing_users.discard(user_id)
        self._notify()

    def _clear_typing(self, user_id: int) -> None:
        with self._lock:
            timer = self._typing_timers.pop(user_id, None)
            if timer is not None:
                timer.cancel()
            self._typing_generation[user_id] = self._typing_generation.get(user_id, 0) + 1
            self.typing_users.discard(user_id)

    # outbound operations

    def set_typing(self, is_typing: bool, receiver_id: Optional[int] = None) -> bool:
        if not self.connected:
            return False
        receiver = self.receiver_id if receiver_id is None else receiver_id
        event_type = Typing if is_typing else StopTyping
        return self._transmit(event_type(receiver_id=receiver, user_id=self.user_id))

    def send_message(self, content: str, receiver_id: Optional[int] = None) -> bool:
        if not content or not content.strip():
            return False
        receiver = self.receiver_id if receiver_id is None else receiver_id
        if receiver == self.user_id:
            self.error = "You cannot send a message to yourself"
            self._notify()
            return False

        if self.connected:
            event = SendMessage(
                content=content,
                receiver_id=receiver,
                sender_id=self.user_id,
                client_message_id=uuid.uuid4().hex,
            )
            if self._transmit(event):
                return True
        return self._send_offline(content, receiver)

    def _send_offline(self, content: str, receiver_id: int) -> bool:
        if self.api is not None and self.api.authenticated:
            try:
                message = self.api.send_message(receiver_id, content)
            except requests.HTTPError as exc:
                if exc.response is not None and exc.response.status_code < 500:
                    self.error = f"Message rejected: {exc}"
                    self._notify()
                    return False
                self.error = f"Could not send message: {exc}"
            except requests.RequestException as exc:
                self.error = f"Could not send message: {exc}"
            else:
                self._append(message)
                self._notify()
                return True

        with self._lock:
            pending = PendingMessage(
                client_message_id=uuid.uuid4().hex,
                local_id=self._next_local_id,
                content=content,
                receiver_id=receiver_id,
                created_at=datetime.now(timezone.utc),
            )
            self._next_local_id -= 1
            self._outbox.append(pending)
            self.messages.append(self._as_message(pending))
            store_outbox([p.to_dict() for p in self._outbox])
        self._notify()
        return True

    def _flush_outbox(self) -> None:
        for pending in list(self._outbox):
            event = SendMessage(
                content=pending.content,
                receiver_id=pending.receiver_id,
                sender_id=self.user_id,
                client_message_id=pending.client_message_id,
            )
            if not self._transmit(event):
                break

    @property
    def pending_messages(self) -> List[PendingMessage]:
        return list(self._outbox)

    # history

    def refresh_messages(self) -> None:
        """Reload history over HTTP, or from the local cache when that fails. No-op while connected."""
        if self.connected:
            return
        history: Optional[List[ChatMessage]] = None
        if self.api is not None and self.api.authenticated:
            try:
                history = self.api.get_messages()
            except requests.RequestException as exc:
                logger.warning("History fetch failed: %s", exc)
                self.error = f"Could not load messages: {exc}"
        if history is None:
            history = [ChatMessage.model_validate(item) for item in load_cached_messages()]
        with self._lock:
            self.messages = history + self._pending_entries()
            self.loading = False
        self._persist_cache()
        self._notify()

    def _pending_entries(self) -> List[ChatMessage]:
        return [self._as_message(p) for p in self._outbox]

    def _as_message(self, pending: PendingMessage) -> ChatMessage:
        return ChatMessage(
            id=pending.local_id,
            content=pending.content,
            sender_id=self.user_id,
            receiver_id=pending.receiver_id,
            timestamp=pending.created_at,
        )

    def _persist_cache(self) -> None:
        with self._lock:
            persisted = [m.to_wire() for m in self.messages if m.id > 0]
        if persisted:
            cache_messages(persisted)

    def _notify(self) -> None:
        if self.on_update is not None:
            self.on_update(self)
