"""
FastAPI app factory.

Responsibilities:
- Create and configure FastAPI app
- Set up middleware
- Initialize shared resources (transcription session, summary client)
- Register routes
- Release shared resources on shutdown
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from config import AppConfig
from observability.logger import log_event
from server.routes import register_routes
from session.summary_client import SummaryClient
from session.transcription_session import TranscriptionSession


def create_app(
    config: AppConfig | None = None,
    session: TranscriptionSession | None = None,
    summary_client: SummaryClient | None = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    This is the app factory pattern that allows:
    - Testing with injected session / summary client
    - Environment-specific setup
    - ASGI server compatibility
    """
    if config is None:
        config = AppConfig.load_from_env()

    # One summary client per process, shared with the session
    if summary_client is None:
        summary_client = build_summary_client(config)

    if session is None:
        session = TranscriptionSession(config=config, summary_client=summary_client)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        log_event({
            "event_type": "app_startup",
            "env": config.env,
            "session_id": session.session_id,
        })
        try:
            yield
        finally:
            await app.state.session.close()
            await app.state.summary_client.aclose()
            log_event({"event_type": "app_shutdown", "session_id": session.session_id})

    app = FastAPI(title="Consultation Transcription API", lifespan=lifespan)

    app.state.config = config
    app.state.session = session
    app.state.summary_client = summary_client

    # Middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # tighten later
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Routes
    register_routes(app)

    return app


def build_summary_client(config: AppConfig) -> SummaryClient:
    """Build the summary client from configuration."""
    return SummaryClient(
        config.api_base_url,
        config.summary_path,
        token=config.api_token,
        timeout_s=config.http_timeout_s,
    )
