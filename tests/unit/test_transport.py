# pylint: disable=missing-module-docstring,missing-function-docstring

import asyncio
from typing import Any, Callable

import pytest

from audio.frames import AudioFrame
from errors import (
    ConnectRefused,
    ConnectTimeout,
    ReceiveFailure,
    ReconnectExhausted,
    TransportError,
)
from protocol.wire import encode_end_session
from session.connection_status import TransportStatus
from session.transport import SessionTransport


_CLOSED = object()


class FakeWebSocket:
    """Minimal stand-in for a websockets client connection."""

    def __init__(self) -> None:
        self.sent: list[Any] = []
        self.close_code: int | None = None
        self.close_reason: str | None = None
        self._inbox: asyncio.Queue[Any] = asyncio.Queue()

    def __aiter__(self) -> "FakeWebSocket":
        return self

    async def __anext__(self) -> Any:
        item = await self._inbox.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        if isinstance(item, Exception):
            raise item
        return item

    async def send(self, data: Any) -> None:
        self.sent.append(data)

    async def close(self, code: int = 1000, reason: str = "") -> None:
        if self.close_code is None:
            self.close_code = code
            self.close_reason = reason
        self._inbox.put_nowait(_CLOSED)

    # Test controls
    def deliver(self, raw: Any) -> None:
        self._inbox.put_nowait(raw)

    def drop(self) -> None:
        """Server vanished without a close frame (1006)."""
        self._inbox.put_nowait(_CLOSED)

    def fail(self, exc: Exception) -> None:
        """Next read raises exc; the socket itself stays up."""
        self._inbox.put_nowait(exc)


def make_frame(seq: int) -> AudioFrame:
    return AudioFrame(sequence_num=seq, pcm_bytes=bytes([seq, 0]) * 4, ts_ms=0)


async def settle(predicate: Callable[[], bool] = lambda: False, rounds: int = 200) -> None:
    for _ in range(rounds):
        if predicate():
            return
        await asyncio.sleep(0)


class Harness:
    def __init__(self, outcomes: list[Any]) -> None:
        self.outcomes = outcomes
        self.sleeps: list[float] = []
        self.opens = 0
        self.messages: list[Any] = []
        self.closes: list[tuple[int, str, bool]] = []
        self.errors: list[TransportError] = []
        self.scheduled: list[tuple[int, float]] = []
        self.connect_gate: asyncio.Event | None = None
        self.sleep_gate: asyncio.Event | None = None

        self.transport = SessionTransport(
            "ws://transcribe.test/ws",
            connect_fn=self.connect_fn,
            sleep=self.sleep,
            session_id="test",
            on_open=self.on_open,
            on_message=self.messages.append,
            on_close=lambda code, reason, intentional: self.closes.append((code, reason, intentional)),
            on_transport_error=self.errors.append,
            on_reconnect_scheduled=lambda attempt, delay: self.scheduled.append((attempt, delay)),
        )

    def on_open(self) -> None:
        self.opens += 1

    async def connect_fn(self, _url: str) -> Any:
        if self.connect_gate is not None:
            await self.connect_gate.wait()
        outcome = self.outcomes.pop(0) if self.outcomes else OSError("refused")
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    async def sleep(self, delay: float) -> None:
        self.sleeps.append(delay)
        if self.sleep_gate is not None:
            await self.sleep_gate.wait()
        await asyncio.sleep(0)


# ---------------------------------------------------------------------
# Sending
# ---------------------------------------------------------------------

def test_frames_sent_while_not_open_are_dropped_and_counted():
    async def scenario() -> Harness:
        h = Harness([])
        h.transport.send(make_frame(1))
        h.transport.send(make_frame(2))
        return h

    h = asyncio.run(scenario())

    assert h.transport.frames_dropped == 2
    assert h.transport.drops.not_open == 2
    assert h.transport.status is TransportStatus.CLOSED


def test_frames_sent_while_connecting_are_dropped_and_counted():
    async def scenario() -> tuple[Harness, list[TransportStatus]]:
        h = Harness([FakeWebSocket()])
        h.connect_gate = asyncio.Event()
        connecting = asyncio.create_task(h.transport.connect())
        await settle(lambda: h.transport.status is TransportStatus.CONNECTING)
        seen = [h.transport.status]

        h.transport.send(make_frame(1))

        h.connect_gate.set()
        await connecting
        seen.append(h.transport.status)
        h.transport.disconnect()
        await h.transport.wait_closed()
        return h, seen

    h, seen = asyncio.run(scenario())

    assert seen == [TransportStatus.CONNECTING, TransportStatus.OPEN]
    assert h.transport.drops.not_open == 1
    assert h.transport.frames_dropped == 1


def test_frames_sent_during_reconnect_backoff_are_dropped_and_counted():
    async def scenario() -> tuple[Harness, FakeWebSocket, TransportStatus]:
        first, second = FakeWebSocket(), FakeWebSocket()
        h = Harness([first, second])
        await h.transport.connect()

        h.sleep_gate = asyncio.Event()
        first.drop()
        await settle(lambda: len(h.scheduled) == 1)
        status = h.transport.status

        h.transport.send(make_frame(1))
        h.transport.send(make_frame(2))

        h.sleep_gate.set()
        await settle(lambda: h.opens == 2)
        h.transport.disconnect()
        await h.transport.wait_closed()
        return h, second, status

    h, second, status = asyncio.run(scenario())

    assert status is TransportStatus.CONNECTING
    assert h.transport.drops.not_open == 2
    assert not any(isinstance(m, bytes) for m in second.sent)


def test_audio_in_order_then_end_session_once():
    async def scenario() -> FakeWebSocket:
        ws = FakeWebSocket()
        h = Harness([ws])
        await h.transport.connect()

        for seq in (1, 2, 3):
            h.transport.send(make_frame(seq))
        h.transport.send_control(encode_end_session())
        h.transport.send_control(encode_end_session())

        await settle(lambda: len(ws.sent) == 4)
        await settle()
        return ws

    ws = asyncio.run(scenario())

    assert ws.sent[:3] == [make_frame(s).pcm_bytes for s in (1, 2, 3)]
    assert ws.sent[3:] == [encode_end_session()]


def test_inbound_messages_are_forwarded_raw():
    async def scenario() -> Harness:
        ws = FakeWebSocket()
        h = Harness([ws])
        await h.transport.connect()
        ws.deliver('{"type": "interim", "transcript": "hi"}')
        ws.deliver(b"\x00\x01")
        await settle(lambda: len(h.messages) == 2)
        return h

    h = asyncio.run(scenario())

    assert h.messages == ['{"type": "interim", "transcript": "hi"}', b"\x00\x01"]


# ---------------------------------------------------------------------
# Connect failures
# ---------------------------------------------------------------------

def test_connect_refused():
    async def scenario() -> Harness:
        h = Harness([OSError("connection refused")])
        with pytest.raises(ConnectRefused):
            await h.transport.connect()
        return h

    h = asyncio.run(scenario())

    assert h.transport.status is TransportStatus.CLOSED
    assert h.sleeps == []
    assert h.opens == 0


def test_connect_timeout():
    async def never_opens(_url: str) -> Any:
        await asyncio.Event().wait()

    async def scenario() -> None:
        transport = SessionTransport(
            "ws://transcribe.test/ws", connect_fn=never_opens, connect_timeout_s=0.01
        )
        with pytest.raises(ConnectTimeout):
            await transport.connect()

    asyncio.run(scenario())


# ---------------------------------------------------------------------
# Reconnect
# ---------------------------------------------------------------------

def test_abnormal_close_retries_three_times_then_exhausts():
    async def scenario() -> Harness:
        ws = FakeWebSocket()
        h = Harness([ws])
        await h.transport.connect()

        ws.drop()
        await settle(lambda: bool(h.errors))
        # Give a hypothetical fourth attempt every chance to happen
        await settle()
        return h

    h = asyncio.run(scenario())

    assert h.closes == [(1006, "", False)]
    assert h.sleeps == [2.0, 4.0, 6.0]
    assert h.scheduled == [(1, 2.0), (2, 4.0), (3, 6.0)]
    assert h.transport.connect_calls == 4
    assert len(h.errors) == 1
    assert isinstance(h.errors[0], ReconnectExhausted)
    assert "3 attempts" in h.errors[0].message
    assert h.transport.status is TransportStatus.CLOSED


def test_successful_reconnect_resets_attempts():
    async def scenario() -> tuple[Harness, FakeWebSocket]:
        first, second = FakeWebSocket(), FakeWebSocket()
        h = Harness([first, OSError("refused"), second])
        await h.transport.connect()

        first.drop()
        await settle(lambda: h.opens == 2)

        h.transport.send(make_frame(1))
        await settle(lambda: bool(second.sent))
        return h, second

    h, second = asyncio.run(scenario())

    assert h.sleeps == [2.0, 4.0]
    assert h.transport.reconnect_attempts == 0
    assert h.transport.is_open
    assert h.errors == []
    assert second.sent == [make_frame(1).pcm_bytes]


def test_normal_server_close_does_not_reconnect():
    async def scenario() -> Harness:
        ws = FakeWebSocket()
        h = Harness([ws])
        await h.transport.connect()

        await ws.close(1000, "done")
        await settle(lambda: bool(h.closes))
        await settle()
        return h

    h = asyncio.run(scenario())

    assert h.closes == [(1000, "done", False)]
    assert h.sleeps == []
    assert h.transport.connect_calls == 1


def test_intentional_disconnect_never_reconnects():
    async def scenario() -> tuple[Harness, FakeWebSocket]:
        ws = FakeWebSocket()
        h = Harness([ws, FakeWebSocket()])
        await h.transport.connect()

        h.transport.disconnect()
        h.transport.disconnect()
        await h.transport.wait_closed()
        await settle()
        return h, ws

    h, ws = asyncio.run(scenario())

    assert ws.close_code == 1000
    assert h.closes == [(1000, "client disconnect", True)]
    assert h.sleeps == []
    assert h.transport.connect_calls == 1
    assert h.transport.status is TransportStatus.CLOSED


def test_disconnect_during_backoff_cancels_reconnect():
    async def scenario() -> Harness:
        ws = FakeWebSocket()
        h = Harness([ws, FakeWebSocket()])
        await h.transport.connect()

        ws.drop()
        await settle(lambda: bool(h.scheduled))
        h.transport.disconnect()
        await settle()
        return h

    h = asyncio.run(scenario())

    assert h.transport.connect_calls == 1
    assert h.errors == []
    assert h.opens == 1
    assert h.transport.status is TransportStatus.CLOSED


# ---------------------------------------------------------------------
# Receive errors
# ---------------------------------------------------------------------

def test_transient_receive_error_keeps_connection_open():
    async def scenario() -> tuple[Harness, FakeWebSocket, TransportStatus]:
        ws = FakeWebSocket()
        h = Harness([ws])
        await h.transport.connect()

        ws.fail(RuntimeError("transient read glitch"))
        ws.deliver('{"type": "interim", "transcript": "still"}')
        await settle(lambda: len(h.messages) == 1)
        status = h.transport.status

        h.transport.disconnect()
        await h.transport.wait_closed()
        return h, ws, status

    h, ws, status = asyncio.run(scenario())

    assert status is TransportStatus.OPEN
    assert h.messages == ['{"type": "interim", "transcript": "still"}']
    assert len(h.errors) == 1
    assert isinstance(h.errors[0], ReceiveFailure)
    assert h.errors[0].fatal is False
    assert h.scheduled == []
    assert h.closes == [(1000, "client disconnect", True)]
    assert ws.close_code == 1000


def test_repeated_receive_errors_recycle_socket_with_reconnect():
    async def scenario() -> tuple[Harness, FakeWebSocket]:
        first, second = FakeWebSocket(), FakeWebSocket()
        h = Harness([first, second])
        await h.transport.connect()

        for _ in range(3):
            first.fail(RuntimeError("read failed"))
        await settle(lambda: h.opens == 2)

        h.transport.disconnect()
        await h.transport.wait_closed()
        return h, first

    h, first = asyncio.run(scenario())

    assert first.close_code == 1011
    assert h.closes[0] == (1006, "receive failed", False)
    assert h.scheduled == [(1, 2.0)]
    assert len([e for e in h.errors if isinstance(e, ReceiveFailure)]) == 3
    assert h.opens == 2
