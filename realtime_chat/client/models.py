"""Client-side models for users and messages waiting to be sent."""
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Dict


@dataclass
class User:
    id: int
    username: str


@dataclass
class PendingMessage:
    """A message composed while offline, replayed once the realtime link is back."""

    client_message_id: str
    local_id: int
    content: str
    receiver_id: int
    created_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["created_at"] = self.created_at.isoformat()
        return data

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "PendingMessage":
        return PendingMessage(
            client_message_id=data["client_message_id"],
            local_id=int(data["local_id"]),
            content=data["content"],
            receiver_id=int(data["receiver_id"]),
            created_at=datetime.fromisoformat(data["created_at"]),
        )
