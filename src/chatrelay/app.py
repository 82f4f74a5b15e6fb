"""Application factory for the FastAPI service."""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .auth import SupabaseIdentityProvider
from .chat import ChatOrchestrator
from .config import get_settings
from .routers.chat import router as chat_router
from .routers.chats import router as chats_router
from .routers.user import router as user_router

_LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
_LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def _configure_logging() -> None:
    """Configure logging based on LOG_LEVEL environment variable."""
    # Load .env first so LOG_LEVEL/LOG_FILE are available
    load_dotenv()

    log_level_str = os.getenv("LOG_LEVEL", "INFO").upper()
    log_level = getattr(logging, log_level_str, logging.INFO)

    handlers: list[logging.Handler] = []

    log_file = os.getenv("LOG_FILE")
    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(_LOG_FORMAT, datefmt=_LOG_DATE_FORMAT))
        handlers.append(file_handler)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(logging.Formatter(_LOG_FORMAT, datefmt=_LOG_DATE_FORMAT))
    handlers.append(console_handler)

    logging.basicConfig(level=log_level, handlers=handlers, force=True)

    logging.getLogger("chatrelay").setLevel(log_level)

    for name in ("uvicorn", "uvicorn.access", "uvicorn.error"):
        logging.getLogger(name).setLevel(log_level)

    # httpx logs every request line at INFO
    if log_level > logging.DEBUG:
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)


def create_app() -> FastAPI:
    _configure_logging()

    settings = get_settings()
    orchestrator = ChatOrchestrator(settings)
    identity_provider = SupabaseIdentityProvider.from_settings(settings)
    if identity_provider is None:
        logging.warning("Supabase is not configured; authenticated routes will fail")

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await orchestrator.initialize()
        try:
            yield
        finally:
            await orchestrator.shutdown()

    app = FastAPI(
        title="Chat Relay Backend",
        version="0.1.0",
        description="Streaming chat relay backed by OpenAI with per-user chat history.",
        lifespan=lifespan,
    )

    app.state.chat_orchestrator = orchestrator
    app.state.identity_provider = identity_provider

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(chat_router)
    app.include_router(chats_router)
    app.include_router(user_router)

    @app.get("/health", tags=["health"])
    async def healthcheck() -> dict[str, str | bool | int]:
        return {
            "status": "ok",
            "model": settings.chat_model,
            "openai_configured": orchestrator.client.is_configured,
            "pending_titles": orchestrator.titles.pending,
        }

    return app


__all__ = ["create_app"]
