"""Console client for the realtime chat application."""
import sys
from typing import Dict, Optional

import requests

from . import api
from .models import User
from .realtime import DEFAULT_RECEIVER_ID, RealtimeChatClient
from .storage import clear_auth, get_server_url, get_user, store_auth, store_server_url
from ..shared.utils import websocket_url


class ChatConsole:
    """Interactive console front end over ``RealtimeChatClient``."""

    def __init__(self, server_url: str):
        self.api = api.APIClient(server_url)
        self.server_url = server_url
        self.current_user = get_user()
        self.chat: Optional[RealtimeChatClient] = None
        self._shown = 0

    def register(self) -> None:
        print("=== Register ===")
        username = input("Username: ").strip()
        password = input("Password (min 6 chars): ").strip()
        try:
            self.api.register(username, password)
            print("Registration successful. You can now log in.")
        except requests.RequestException as exc:
            print(f"Registration failed: {exc}")

    def login(self) -> bool:
        print("=== Login ===")
        username = input("Username: ").strip()
        password = input("Password: ").strip()
        try:
            response = self.api.login(username, password)
        except requests.RequestException as exc:
            print(f"Login failed: {exc}")
            return False

        store_auth(response["token"], response["user"])
        self.current_user = response["user"]
        print(f"Welcome, {self.current_user['username']}!")
        return True

    def list_users(self) -> Dict[int, User]:
        try:
            users_raw = self.api.list_users()
        except requests.RequestException as exc:
            print(f"Could not fetch users: {exc}")
            return {}
        users = {u["id"]: User(**u) for u in users_raw}
        for u in users.values():
            print(f"- {u.id}: {u.username}")
        return users

    def _render(self, chat: RealtimeChatClient) -> None:
        if len(chat.messages) < self._shown:
            self._shown = 0
        for msg in chat.messages[self._shown:]:
            direction = "(you)" if msg.sender_id == self.current_user["id"] else f"user {msg.sender_id}"
            marker = " [pending]" if msg.id < 0 else ""
            print(f"[{msg.timestamp:%H:%M}] {direction}: {msg.content}{marker}")
        self._shown = len(chat.messages)
        if chat.typing_users:
            print(f"... user {', '.join(str(u) for u in sorted(chat.typing_users))} is typing")
        if chat.error:
            print(f"! {chat.error}")

    def start_chat(self) -> None:
        raw = input(f"Receiver id [{DEFAULT_RECEIVER_ID}]: ").strip()
        receiver_id = int(raw) if raw.isdigit() else DEFAULT_RECEIVER_ID
        self._shown = 0
        self.chat = RealtimeChatClient(
            websocket_url(self.server_url),
            self.current_user["id"],
            api=self.api,
            receiver_id=receiver_id,
            on_update=self._render,
        )
        try:
            while True:
                state = "online" if self.chat.connected else "offline"
                print(f"\n[{state}] Chat commands: [s]end, [t]yping, [r]efresh, [c]onnect, [b]ack")
                cmd = input("> ").strip().lower()
                if cmd == "b":
                    break
                if cmd == "s":
                    self.chat.set_typing(True)
                    text = input("Message: ")
                    self.chat.set_typing(False)
                    if not self.chat.send_message(text):
                        print("Message not sent.")
                if cmd == "t":
                    self.chat.set_typing(True)
                if cmd == "r":
                    self.chat.refresh_messages()
                if cmd == "c":
                    print("Connected." if self.chat.reconnect() else "Still offline.")
        finally:
            self.chat.close()
            self.chat = None

    def logout(self) -> None:
        try:
            self.api.logout()
        except requests.RequestException as exc:
            print(f"Server logout failed: {exc}")
        clear_auth()
        self.current_user = None
        print("Logged out.")


def main():
    print("Realtime Chat Client")
    default_url = get_server_url() or "http://127.0.0.1:4000"
    server_url = input(f"Server URL [{default_url}]: ").strip() or default_url
    store_server_url(server_url)
    client = ChatConsole(server_url)

    while True:
        print("\nMenu: [r]egister, [l]ogin, [q]uit")
        choice = input("> ").strip().lower()
        if choice == "q":
            sys.exit(0)
        if choice == "r":
            client.register()
        if choice == "l":
            if client.login():
                while client.current_user:
                    print("\nUser menu: [u]sers, [c]hat, [o]logout")
                    sub = input("> ").strip().lower()
                    if sub == "o":
                        client.logout()
                        break
                    if sub == "u":
                        client.list_users()
                    if sub == "c":
                        client.start_chat()


if __name__ == "__main__":
    main()
