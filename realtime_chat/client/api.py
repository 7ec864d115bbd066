"""HTTP API client for interacting with the realtime chat server."""
from typing import Any, Dict, List, Optional

import requests

from ..shared.events import ChatMessage
from .storage import get_token


class APIClient:
    def __init__(self, base_url: str, session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.http = session or requests.Session()

    def _headers(self) -> Dict[str, str]:
        token = get_token()
        headers = {"Content-Type": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    @property
    def authenticated(self) -> bool:
        return get_token() is not None

    def register(self, username: str, password: str) -> Dict[str, Any]:
        resp = self.http.post(
            f"{self.base_url}/auth/register", json={"username": username, "password": password}, timeout=10
        )
        resp.raise_for_status()
        return resp.json()

    def login(self, username: str, password: str) -> Dict[str, Any]:
        resp = self.http.post(
            f"{self.base_url}/auth/login", json={"username": username, "password": password}, timeout=10
        )
        resp.raise_for_status()
        return resp.json()

    def logout(self) -> Dict[str, Any]:
        resp = self.http.post(f"{self.base_url}/auth/logout", headers=self._headers(), timeout=10)
        resp.raise_for_status()
        return resp.json()

    def list_users(self) -> List[Dict[str, Any]]:
        resp = self.http.get(f"{self.base_url}/users", headers=self._headers(), timeout=10)
        resp.raise_for_status()
        return resp.json()

    def online_users(self) -> List[int]:
        resp = self.http.get(f"{self.base_url}/users/online", headers=self._headers(), timeout=10)
        resp.raise_for_status()
        return resp.json()["userIds"]

    def get_messages(self, limit: Optional[int] = None) -> List[ChatMessage]:
        params: Dict[str, Any] = {}
        if limit:
            params["limit"] = limit
        resp = self.http.get(f"{self.base_url}/chat/messages", params=params, headers=self._headers(), timeout=10)
        resp.raise_for_status()
        return [ChatMessage.model_validate(item) for item in resp.json()]

    def send_message(self, receiver_id: int, content: str) -> ChatMessage:
        resp = self.http.post(
            f"{self.base_url}/chat/messages",
            json={"content": content, "receiverId": receiver_id},
            headers=self._headers(),
            timeout=10,
        )
        resp.raise_for_status()
        return ChatMessage.model_validate(resp.json())

    def delete_message(self, message_id: int) -> Dict[str, Any]:
        resp = self.http.delete(f"{self.base_url}/chat/messages/{message_id}", headers=self._headers(), timeout=10)
        resp.raise_for_status()
        return resp.json()
