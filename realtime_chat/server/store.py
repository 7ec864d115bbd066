"""Message store gateway: durable chat history behind a small interface.

The realtime layer only needs two capabilities from storage, creating a
message and listing a user's recent history. ``MessageStore`` names that
contract and ``SqlMessageStore`` fulfils it with SQLAlchemy. Calls are
blocking; async callers run them in a worker thread.
"""
from typing import Callable, List, Protocol

from sqlalchemy import desc, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..shared.events import ChatMessage
from .config import RECENT_MESSAGES_LIMIT
from .database import SessionLocal
from .errors import MessageAccessError, PersistenceError, UnknownUserError
from .logging_config import configure_logging
from .models import ChatMessage as ChatMessageRow
from .models import User

logger = configure_logging()


class MessageStore(Protocol):
    def create_message(self, content: str, sender_id: int, receiver_id: int) -> ChatMessage: ...

    def list_recent_for_user(self, user_id: int, limit: int = RECENT_MESSAGES_LIMIT) -> List[ChatMessage]: ...

    def delete_message(self, message_id: int, requester_id: int) -> None: ...


class SqlMessageStore:
    """``MessageStore`` backed by the relational database."""

    def __init__(self, session_factory: Callable[[], Session] = SessionLocal):
        self.session_factory = session_factory

    def create_message(self, content: str, sender_id: int, receiver_id: int) -> ChatMessage:
        db = self.session_factory()
        try:
            for user_id in (sender_id, receiver_id):
                if db.get(User, user_id) is None:
                    raise UnknownUserError(f"Unknown user {user_id}")
            row = ChatMessageRow(content=content, sender_id=sender_id, receiver_id=receiver_id)
            db.add(row)
            db.commit()
            db.refresh(row)
            return ChatMessage.model_validate(row)
        except SQLAlchemyError as exc:
            db.rollback()
            logger.error("STORE_WRITE_FAILED sender_id=%s receiver_id=%s error=%s", sender_id, receiver_id, exc)
            raise PersistenceError("Failed to send message") from exc
        finally:
            db.close()

    def list_recent_for_user(self, user_id: int, limit: int = RECENT_MESSAGES_LIMIT) -> List[ChatMessage]:
        db = self.session_factory()
        try:
            rows = (
                db.query(ChatMessageRow)
                .filter(or_(ChatMessageRow.sender_id == user_id, ChatMessageRow.receiver_id == user_id))
                .order_by(desc(ChatMessageRow.timestamp), desc(ChatMessageRow.id))
                .limit(limit)
                .all()
            )
        except SQLAlchemyError as exc:
            logger.error("STORE_READ_FAILED user_id=%s error=%s", user_id, exc)
            raise PersistenceError("Failed to load messages") from exc
        finally:
            db.close()
        # newest N were selected; hand them back oldest first
        return [ChatMessage.model_validate(row) for row in reversed(rows)]

    def delete_message(self, message_id: int, requester_id: int) -> None:
        db = self.session_factory()
        try:
            row = db.get(ChatMessageRow, message_id)
            if row is None or row.sender_id != requester_id:
                raise MessageAccessError("You are not allowed to delete this message")
            db.delete(row)
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            logger.error("STORE_DELETE_FAILED message_id=%s error=%s", message_id, exc)
            raise PersistenceError("Failed to delete message") from exc
        finally:
            db.close()
