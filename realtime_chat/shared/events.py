"""Realtime event models exchanged between chat clients and the server.

Every frame is a flat JSON object tagged by ``type`` with camelCase keys, e.g.
``{"type": "send_message", "content": "hi", "receiverId": 2}``.
"""
from __future__ import annotations

import json
from datetime import datetime
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError
from pydantic.alias_generators import to_camel


class EventModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class ChatMessage(EventModel):
    """A persisted chat message as seen by both parties."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    id: int
    content: str
    sender_id: int
    receiver_id: int
    timestamp: datetime


# Client -> server


class Authenticate(EventModel):
    type: Literal["authenticate"] = "authenticate"
    user_id: int
    token: Optional[str] = None


class Typing(EventModel):
    type: Literal["typing"] = "typing"
    receiver_id: int
    user_id: Optional[int] = None


class StopTyping(EventModel):
    type: Literal["stop_typing"] = "stop_typing"
    receiver_id: int
    user_id: Optional[int] = None


class SendMessage(EventModel):
    type: Literal["send_message"] = "send_message"
    content: str = ""
    receiver_id: Optional[int] = None
    sender_id: Optional[int] = None
    client_message_id: Optional[str] = None


class Disconnect(EventModel):
    type: Literal["disconnect"] = "disconnect"


InboundEvent = Annotated[
    Union[Authenticate, Typing, StopTyping, SendMessage, Disconnect],
    Field(discriminator="type"),
]


# Server -> client


class RecentMessages(EventModel):
    type: Literal["recent_messages"] = "recent_messages"
    messages: List[ChatMessage]


class MessageSent(EventModel):
    type: Literal["message_sent"] = "message_sent"
    message: ChatMessage
    client_message_id: Optional[str] = None


class NewMessage(EventModel):
    type: Literal["new_message"] = "new_message"
    message: ChatMessage


class UserTyping(EventModel):
    type: Literal["user_typing"] = "user_typing"
    user_id: int


class UserStopTyping(EventModel):
    type: Literal["user_stop_typing"] = "user_stop_typing"
    user_id: int


class UserStatus(EventModel):
    type: Literal["user_status"] = "user_status"
    user_id: int
    status: Literal["online", "offline"]


class ErrorEvent(EventModel):
    type: Literal["error"] = "error"
    message: str


OutboundEvent = Annotated[
    Union[RecentMessages, MessageSent, NewMessage, UserTyping, UserStopTyping, UserStatus, ErrorEvent],
    Field(discriminator="type"),
]

_inbound_adapter: TypeAdapter = TypeAdapter(InboundEvent)
_outbound_adapter: TypeAdapter = TypeAdapter(OutboundEvent)


class MalformedEvent(ValueError):
    """Raised when a frame is not valid JSON or does not match any known event."""


def _load(raw: Union[str, bytes, dict]) -> dict:
    if isinstance(raw, dict):
        return raw
    try:
        data = json.loads(raw)
    except (TypeError, ValueError) as exc:
        raise MalformedEvent("Event is not valid JSON") from exc
    if not isinstance(data, dict):
        raise MalformedEvent("Event must be a JSON object")
    return data


def _describe(exc: ValidationError) -> str:
    first = exc.errors()[0]
    location = ".".join(str(part) for part in first["loc"])
    return f"Invalid event: {location} {first['msg']}".replace("  ", " ")


def parse_inbound(raw: Union[str, bytes, dict]):
    try:
        return _inbound_adapter.validate_python(_load(raw))
    except ValidationError as exc:
        raise MalformedEvent(_describe(exc)) from exc


def parse_outbound(raw: Union[str, bytes, dict]):
    try:
        return _outbound_adapter.validate_python(_load(raw))
    except ValidationError as exc:
        raise MalformedEvent(_describe(exc)) from exc
