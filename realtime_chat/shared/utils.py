"""Shared utility functions."""
from urllib.parse import urlsplit, urlunsplit

WS_PATH = "/ws"


def websocket_url(base_url: str, path: str = WS_PATH) -> str:
    """Derive the realtime endpoint URL from the HTTP base URL of the server."""
    parts = urlsplit(base_url.rstrip("/"))
    scheme = {"http": "ws", "https": "wss"}.get(parts.scheme, parts.scheme)
    return urlunsplit((scheme, parts.netloc, parts.path + path, "", ""))
