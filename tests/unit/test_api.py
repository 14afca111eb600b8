# pylint: disable=missing-module-docstring,missing-function-docstring

from typing import Any

import httpx
from fastapi.testclient import TestClient

from config import AppConfig
from errors import ConnectRefused, DeviceBusy
from protocol.messages import Final
from orchestrator.events import EventType, MessageReceived
from server.app import create_app
from session.summary_client import SummaryClient
from session.transcription_session import TranscriptionSession


class FakeTransport:
    def __init__(self, *, fail_with: Exception | None = None) -> None:
        self.fail_with = fail_with
        self.on_open: Any = None
        self.on_message: Any = None
        self.on_close: Any = None
        self.on_transport_error: Any = None
        self.on_reconnect_scheduled: Any = None
        self.control: list[str] = []

    async def connect(self) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        self.on_open()

    def send(self, _frame: Any) -> None:
        pass

    def send_control(self, message: str) -> None:
        self.control.append(message)

    def disconnect(self) -> None:
        pass

    async def wait_closed(self) -> None:
        pass

    def snapshot(self) -> dict[str, Any]:
        return {"status": "FAKE"}


class FakeCapture:
    def __init__(self, *, fail_with: Exception | None = None) -> None:
        self.fail_with = fail_with
        self.frames_emitted = 0

    def start(self, _on_frame: Any) -> None:
        if self.fail_with is not None:
            raise self.fail_with

    def stop(self) -> None:
        pass


def summary_handler(request: httpx.Request) -> httpx.Response:
    transcript_id = request.url.path.rsplit("/", 1)[-1]
    if transcript_id == "42":
        return httpx.Response(200, json={"diagnosis": ["Migraine"], "identifiers": "Patient A"})
    if transcript_id == "500":
        return httpx.Response(500, text="upstream down")
    if transcript_id == "99":
        return httpx.Response(422, json={"detail": "Invalid transcript ID"})
    return httpx.Response(404, json={"detail": "Summary not found"})


def make_client(
    *,
    transport_error: Exception | None = None,
    capture_error: Exception | None = None,
) -> tuple[TestClient, TranscriptionSession]:
    config = AppConfig(api_base_url="https://api.test")
    summary_client = SummaryClient(
        config.api_base_url,
        config.summary_path,
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(summary_handler)),
    )
    session = TranscriptionSession(
        config=config,
        transport=FakeTransport(fail_with=transport_error),
        capture=FakeCapture(fail_with=capture_error),
        summary_client=summary_client,
        session_id="sess_api",
    )
    app = create_app(config, session=session, summary_client=summary_client)
    return TestClient(app), session


def test_health():
    client, _ = make_client()
    with client:
        assert client.get("/health").json() == {"status": "ok"}


def test_start_stop_clear_flow():
    client, session = make_client()
    with client:
        body = client.post("/session/start").json()
        assert body["phase"] == "RECORDING"
        assert body["is_recording"] is True

        session.runtime.dispatch(MessageReceived(
            ts_ms=0,
            event_type=EventType.MESSAGE_RECEIVED,
            message=Final(text="Headache since Monday", speaker_tag=2, transcript_id=42),
        ))

        transcript = client.get("/session/transcript").json()
        assert transcript["text"] == "[SPEAKER_2]: Headache since Monday"
        assert transcript["transcript_id"] == 42
        assert transcript["word_count"] == 3

        plain = client.get("/session/transcript", params={"speakers": "false"}).json()
        assert plain["text"] == "Headache since Monday"

        body = client.post("/session/stop").json()
        assert body["phase"] == "AWAITING_SUMMARY"
        assert body["is_loading_summary"] is True

        body = client.post("/session/clear").json()
        assert body["transcriptions"] == []
        assert body["current_transcript_id"] is None

        assert client.get("/session").json()["session_id"] == "sess_api"


def test_start_capture_error_is_409():
    client, _ = make_client(capture_error=DeviceBusy())
    with client:
        response = client.post("/session/start")

    assert response.status_code == 409
    assert response.json()["kind"] == "device_busy"
    assert response.json()["hint"]


def test_start_connect_error_is_503():
    client, _ = make_client(transport_error=ConnectRefused())
    with client:
        response = client.post("/session/start")

    assert response.status_code == 503
    assert response.json()["kind"] == "connect_refused"


def test_summary_proxy():
    client, _ = make_client()
    with client:
        ok = client.get("/transcription/summary/42")
        missing = client.get("/transcription/summary/7")
        invalid = client.get("/transcription/summary/undefined")
        upstream = client.get("/transcription/summary/500")
        rejected = client.get("/transcription/summary/99")

    assert ok.status_code == 200
    assert ok.json()["summary"]["diagnosis"] == ["Migraine"]
    assert ok.json()["summary"]["identifiers"] == "Patient A"
    assert missing.status_code == 404
    assert invalid.status_code == 400
    assert upstream.status_code == 500
    assert rejected.status_code == 422
    assert rejected.json()["detail"] == "Invalid transcript ID"
