"""Server configuration values, read once from the environment at startup."""
import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent

DATABASE_URL = os.getenv("CHAT_DATABASE_URL", f"sqlite:///{BASE_DIR / 'realtime_chat.db'}")
TOKEN_EXPIRY_MINUTES = int(os.getenv("TOKEN_EXPIRY_MINUTES", str(60 * 24)))

CORS_ALLOWED_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CORS_ALLOWED_ORIGINS", "http://localhost:3000").split(",")
    if origin.strip()
]
WS_HOST = os.getenv("WS_HOST", "0.0.0.0")
WS_PORT = int(os.getenv("WS_PORT", "4000"))

RECENT_MESSAGES_LIMIT = int(os.getenv("RECENT_MESSAGES_LIMIT", "50"))

LOG_FILE = Path(os.getenv("CHAT_LOG_FILE", str(BASE_DIR / "server.log")))
LOG_LEVEL = os.getenv("CHAT_LOG_LEVEL", "INFO").upper()
