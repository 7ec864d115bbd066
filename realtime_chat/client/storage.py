"""Local client storage for credentials, cached history and unsent messages."""
import json
from pathlib import Path
from typing import Any, Dict, List, Optional

STORAGE_FILE = Path.home() / ".realtime_chat_client.json"


def load_state() -> Dict[str, Any]:
    if STORAGE_FILE.exists():
        with STORAGE_FILE.open("r", encoding="utf-8") as f:
            return json.load(f)
    return {}


def save_state(data: Dict[str, Any]) -> None:
    STORAGE_FILE.parent.mkdir(parents=True, exist_ok=True)
    with STORAGE_FILE.open("w", encoding="utf-8") as f:
        json.dump(data, f, indent=2)


def store_auth(token: str, user: Dict[str, Any]) -> None:
    state = load_state()
    state["token"] = token
    state["user"] = user
    save_state(state)


def clear_auth() -> None:
    state = load_state()
    for key in ["token", "user", "messages", "outbox"]:
        state.pop(key, None)
    save_state(state)


def get_token() -> Optional[str]:
    return load_state().get("token")


def get_user() -> Optional[Dict[str, Any]]:
    return load_state().get("user")


def store_server_url(url: str) -> None:
    state = load_state()
    state["server_url"] = url
    save_state(state)


def get_server_url() -> Optional[str]:
    return load_state().get("server_url")


def cache_messages(messages: List[Dict[str, Any]]) -> None:
    state = load_state()
    state["messages"] = messages
    save_state(state)


def load_cached_messages() -> List[Dict[str, Any]]:
    return load_state().get("messages", [])


def store_outbox(pending: List[Dict[str, Any]]) -> None:
    state = load_state()
    state["outbox"] = pending
    save_state(state)


def load_outbox() -> List[Dict[str, Any]]:
    return load_state().get("outbox", [])
