# pylint: disable=missing-module-docstring,missing-function-docstring

import asyncio
from typing import Callable

import httpx
import pytest

from errors import InvalidTranscriptId, SummaryFetchError
from session.summary_client import SummaryClient, validate_transcript_id


Handler = Callable[[httpx.Request], httpx.Response]


def make_client(handler: Handler, token: str | None = None) -> SummaryClient:
    return SummaryClient(
        "https://api.test/",
        "/api/v1/transcription/summary",
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        token=token,
    )


def test_json_summary_and_bearer_token():
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"summary": {"treatment": ["Paracetamol"]}})

    summary = asyncio.run(make_client(handler, token="abc").fetch(42))

    assert summary is not None
    assert summary.treatment == ("Paracetamol",)
    assert str(seen[0].url) == "https://api.test/api/v1/transcription/summary/42"
    assert seen[0].headers["Authorization"] == "Bearer abc"


def test_text_summary_falls_back_to_raw_text():
    def handler(_request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="Free text summary")

    summary = asyncio.run(make_client(handler).fetch("7"))

    assert summary is not None
    assert summary.raw_text == "Free text summary"


def test_not_found_means_not_ready():
    def handler(_request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, json={"detail": "Summary not found"})

    assert asyncio.run(make_client(handler).fetch(1)) is None


def test_422_is_invalid_transcript_id():
    def handler(_request: httpx.Request) -> httpx.Response:
        return httpx.Response(422, json={"detail": "Invalid transcript ID"})

    with pytest.raises(InvalidTranscriptId, match="Invalid transcript ID") as info:
        asyncio.run(make_client(handler).fetch(1))

    assert info.value.status_code == 422


def test_server_error_carries_status():
    def handler(_request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, text="boom")

    with pytest.raises(SummaryFetchError) as info:
        asyncio.run(make_client(handler).fetch(1))

    assert info.value.status_code == 500


def test_network_error_is_wrapped():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("unreachable", request=request)

    with pytest.raises(SummaryFetchError) as info:
        asyncio.run(make_client(handler).fetch(1))

    assert info.value.status_code is None


def test_poll_until_ready():
    responses = [httpx.Response(404), httpx.Response(404), httpx.Response(200, json={"history": ["ok"]})]
    sleeps: list[float] = []

    def handler(_request: httpx.Request) -> httpx.Response:
        return responses.pop(0)

    async def fake_sleep(delay: float) -> None:
        sleeps.append(delay)

    summary = asyncio.run(make_client(handler).poll(3, attempts=5, delay_s=0.5, sleep=fake_sleep))

    assert summary is not None
    assert summary.history == ("ok",)
    assert sleeps == [0.5, 0.5]


def test_poll_gives_up():
    sleeps: list[float] = []

    async def fake_sleep(delay: float) -> None:
        sleeps.append(delay)

    client = make_client(lambda _request: httpx.Response(404))

    assert asyncio.run(client.poll(3, attempts=3, delay_s=1.0, sleep=fake_sleep)) is None
    assert sleeps == [1.0, 1.0]


@pytest.mark.parametrize("value", [None, "", "undefined", "null", "abc", "4.2", -1, True])
def test_validate_transcript_id_rejects(value):
    with pytest.raises(InvalidTranscriptId) as info:
        validate_transcript_id(value)

    assert info.value.status_code is None


def test_validate_transcript_id_accepts():
    assert validate_transcript_id(42) == 42
    assert validate_transcript_id(" 42 ") == 42


def test_invalid_id_never_hits_the_network():
    calls: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200)

    with pytest.raises(InvalidTranscriptId):
        asyncio.run(make_client(handler).fetch("undefined"))
    assert calls == []
