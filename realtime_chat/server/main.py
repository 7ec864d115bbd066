"""FastAPI application entrypoint for the realtime chat server."""
from typing import Optional

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from . import auth, chat, realtime, users
from .config import CORS_ALLOWED_ORIGINS, WS_HOST, WS_PORT
from .database import Base, engine
from .logging_config import configure_logging
from .presence import PresenceRegistry
from .session import RecentSends
from .store import MessageStore, SqlMessageStore

logger = configure_logging()


def create_app(store: Optional[MessageStore] = None, registry: Optional[PresenceRegistry] = None) -> FastAPI:
    if store is None:
        # Create tables
        Base.metadata.create_all(bind=engine)
        store = SqlMessageStore()

    app = FastAPI(title="Realtime Chat Server", version="1.0.0")
    app.state.store = store
    app.state.registry = registry or PresenceRegistry()
    app.state.sends = RecentSends()
    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE"],
        allow_headers=["*"],
    )
    app.include_router(auth.router)
    app.include_router(users.router)
    app.include_router(chat.router)
    app.include_router(realtime.router)

    @app.get("/")
    def root():
        return {"status": "ok", "service": "Realtime Chat WebSocket Server"}

    logger.info("SERVER_CONFIGURED allowed_origins=%s", ",".join(CORS_ALLOWED_ORIGINS))
    return app


app = create_app()


def run() -> None:
    uvicorn.run("realtime_chat.server.main:app", host=WS_HOST, port=WS_PORT, reload=False)


if __name__ == "__main__":
    run()
