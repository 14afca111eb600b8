"""
Out-of-band clinical summary retrieval.

GET {api_base_url}{summary_path}/{transcript_id}

Response handling:
- 200 JSON  -> parse_summary(body)
- 200 text  -> parse_summary(text) (raw-text fallback)
- 404       -> None (no summary yet for this id)
- 422       -> InvalidTranscriptId
- other     -> SummaryFetchError(status_code=...)
- network   -> SummaryFetchError

The transcript id is never defaulted: callers must pass a real id.
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable

import httpx

from constants import SUMMARY_POLL_ATTEMPTS, SUMMARY_POLL_DELAY_S
from errors import InvalidTranscriptId, MalformedPayload, SummaryFetchError
from observability.logger import log_event
from observability.metrics import timed
from protocol.decoder import parse_summary
from protocol.messages import ClinicalSummary


_MISSING_ID_MARKERS = ("", "undefined", "null", "none")


def validate_transcript_id(value: Any) -> int:
    """
    Coerce a transcript id to int.

    Raises InvalidTranscriptId for missing placeholders and non-integers.
    """
    if value is None or isinstance(value, bool):
        raise InvalidTranscriptId("Transcript ID is required")
    if isinstance(value, int):
        if value < 0:
            raise InvalidTranscriptId(f"Transcript ID must be non-negative, got {value}")
        return value

    text = str(value).strip()
    if text.lower() in _MISSING_ID_MARKERS:
        raise InvalidTranscriptId("Transcript ID is required")
    if not text.isdigit():
        raise InvalidTranscriptId(f"Transcript ID must be an integer, got {text!r}")
    return int(text)


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(body, dict) and "detail" in body:
        return str(body["detail"])
    return str(body)


class SummaryClient:
    """Service for retrieving stored consultation summaries."""

    def __init__(
        self,
        base_url: str,
        summary_path: str = "/api/v1/transcription/summary",
        *,
        http_client: httpx.AsyncClient | None = None,
        token: str | None = None,
        timeout_s: float = 10.0,
    ) -> None:
        self._url_prefix = base_url.rstrip("/") + "/" + summary_path.strip("/")
        self._token = token
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=timeout_s)

    def url_for(self, transcript_id: int) -> str:
        return f"{self._url_prefix}/{transcript_id}"

    def _headers(self, authorization: str | None = None) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if authorization:
            headers["Authorization"] = authorization
        elif self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return headers

    async def fetch(
        self,
        transcript_id: Any,
        *,
        authorization: str | None = None,
    ) -> ClinicalSummary | None:
        """Fetch the summary for a transcript; None when not ready (404)."""
        tid = validate_transcript_id(transcript_id)
        url = self.url_for(tid)

        with timed("summary_fetch_latency", details={"transcript_id": tid}):
            try:
                response = await self._client.get(url, headers=self._headers(authorization))
            except httpx.HTTPError as exc:
                log_event({
                    "level": "ERROR",
                    "event_type": "summary_fetch_network_error",
                    "transcript_id": tid,
                    "exception": type(exc).__name__,
                    "message": str(exc),
                })
                raise SummaryFetchError(f"Failed to fetch summary: {exc}") from exc

        if response.status_code == 404:
            log_event({"event_type": "summary_not_ready", "transcript_id": tid})
            return None

        if response.status_code == 422:
            raise InvalidTranscriptId(_error_detail(response), status_code=422)

        if response.is_error:
            detail = _error_detail(response)
            log_event({
                "level": "ERROR",
                "event_type": "summary_fetch_failed",
                "transcript_id": tid,
                "status_code": response.status_code,
                "detail": detail,
            })
            raise SummaryFetchError(
                f"Failed to fetch summary: {detail}", status_code=response.status_code
            )

        content_type = response.headers.get("content-type", "")
        try:
            if "application/json" in content_type:
                payload: Any = response.json()
            else:
                payload = response.text
            summary = parse_summary(payload)
        except (ValueError, MalformedPayload) as exc:
            raise SummaryFetchError(
                f"Unreadable summary payload: {exc}", status_code=response.status_code
            ) from exc

        log_event({
            "event_type": "summary_fetched",
            "transcript_id": tid,
            "structured": summary.is_structured,
        })
        return summary

    async def poll(
        self,
        transcript_id: Any,
        *,
        attempts: int = SUMMARY_POLL_ATTEMPTS,
        delay_s: float = SUMMARY_POLL_DELAY_S,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        authorization: str | None = None,
    ) -> ClinicalSummary | None:
        """Fetch repeatedly until a summary is available or attempts run out."""
        for attempt in range(1, attempts + 1):
            summary = await self.fetch(transcript_id, authorization=authorization)
            if summary is not None:
                return summary
            if attempt < attempts:
                await sleep(delay_s)
        return None

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
