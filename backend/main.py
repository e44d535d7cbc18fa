from fastapi import FastAPI, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
from typing import Optional
import uvicorn
import logging

import config
config.setup_logging()

from session_registry import SessionRegistry
from socket_manager import SocketManager

logger = logging.getLogger(__name__)


def _allowed_origins() -> list[str]:
    if config.ALLOWED_ORIGINS.strip():
        return [o.strip() for o in config.ALLOWED_ORIGINS.split(",")]
    return [
        "http://localhost:5173",
        "http://127.0.0.1:5173",
    ]


def create_app(registry: Optional[SessionRegistry] = None) -> FastAPI:
    """Build the application around one SessionRegistry.

    Each call gets its own registry unless one is passed in, so tests can run
    isolated servers side by side.
    """
    registry = registry if registry is not None else SessionRegistry()
    socket_manager = SocketManager(registry)
    if config.ALLOWED_ORIGINS.strip():
        socket_manager.allowed_origins = _allowed_origins()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting live quiz server")
        yield
        logger.info("Shutting down live quiz server (%d active sessions)", len(registry))

    app = FastAPI(title="Live Quiz Server", lifespan=lifespan)
    app.state.registry = registry
    app.state.socket_manager = socket_manager

    app.add_middleware(
        CORSMiddleware,
        allow_origins=_allowed_origins(),
        allow_credentials=False,
        allow_methods=["GET"],
        allow_headers=["Content-Type"],
    )

    @app.get("/")
    async def root():
        return {"message": "Live quiz server is running"}

    @app.get("/health")
    async def health():
        return {"status": "healthy"}

    @app.websocket("/ws/{client_id}")
    async def websocket_endpoint(websocket: WebSocket, client_id: str):
        await socket_manager.connect(websocket, client_id)

    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run("main:app", host=config.HOST, port=config.PORT, reload=True)
