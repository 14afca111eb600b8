"""
Route registration for the transcription control API.

Responsibilities:
- Define HTTP endpoints
- Map session errors to HTTP status codes
- Pull dependencies from app.state
"""

from __future__ import annotations

from typing import Any

from fastapi import FastAPI, Header, HTTPException
from fastapi.responses import JSONResponse

from errors import CaptureError, InvalidTranscriptId, SessionError, SummaryFetchError, TransportError
from observability.logger import log_event
from session.summary_client import SummaryClient, validate_transcript_id
from session.transcription_session import TranscriptionSession


def _error_body(exc: SessionError) -> dict[str, Any]:
    return {"kind": exc.kind.value, "message": exc.message, "hint": exc.hint}


def register_routes(app: FastAPI) -> None:
    """Register all routes on the FastAPI app."""

    def _session() -> TranscriptionSession:
        return app.state.session

    @app.get("/health")
    async def health() -> dict[str, str]: # pyright: ignore[reportUnusedFunction]
        return {"status": "ok"}

    @app.get("/session")
    async def get_session() -> dict[str, Any]: # pyright: ignore[reportUnusedFunction]
        return _session().snapshot()

    @app.post("/session/start")
    async def start_session() -> Any: # pyright: ignore[reportUnusedFunction]
        session = _session()
        try:
            await session.start_recording()
        except CaptureError as exc:
            return JSONResponse(status_code=409, content=_error_body(exc))
        except TransportError as exc:
            return JSONResponse(status_code=503, content=_error_body(exc))
        return session.snapshot()

    @app.post("/session/stop")
    async def stop_session() -> dict[str, Any]: # pyright: ignore[reportUnusedFunction]
        session = _session()
        session.stop_recording()
        return session.snapshot()

    @app.post("/session/clear")
    async def clear_session() -> dict[str, Any]: # pyright: ignore[reportUnusedFunction]
        session = _session()
        session.clear_transcriptions()
        return session.snapshot()

    @app.get("/session/transcript")
    async def get_transcript(speakers: bool = True) -> dict[str, Any]: # pyright: ignore[reportUnusedFunction]
        session = _session()
        return {
            "transcript_id": session.current_transcript_id,
            "text": session.full_transcript(include_speakers=speakers),
            "segment_count": session.segment_count,
            "word_count": session.word_count,
        }

    @app.get("/transcription/summary/{transcript_id}")
    async def get_summary( # pyright: ignore[reportUnusedFunction]
        transcript_id: str,
        authorization: str | None = Header(default=None),
    ) -> dict[str, Any]:
        client: SummaryClient = app.state.summary_client
        try:
            tid = validate_transcript_id(transcript_id)
            summary = await client.fetch(tid, authorization=authorization)
        except InvalidTranscriptId as exc:
            # Local validation has no upstream status; upstream rejections keep theirs
            raise HTTPException(status_code=exc.status_code or 400, detail=exc.message) from exc
        except SummaryFetchError as exc:
            log_event({
                "level": "ERROR",
                "event_type": "summary_proxy_failed",
                "transcript_id": transcript_id,
                "status_code": exc.status_code,
                "message": exc.message,
            })
            raise HTTPException(status_code=exc.status_code or 502, detail=exc.message) from exc

        if summary is None:
            raise HTTPException(status_code=404, detail="Summary not found for this transcript")

        return {"transcript_id": tid, "summary": summary.to_dict()}
