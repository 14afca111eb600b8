# pylint: disable=missing-module-docstring,missing-function-docstring

import asyncio
from typing import Callable

import pytest

from audio.frames import AudioFrame
from errors import ConnectTimeout, PermissionDenied
from orchestrator.enums.state import SessionPhase
from orchestrator.events import (
    EventType,
    MessageReceived,
    StartRequested,
    StopRequested,
    TransportOpened,
)
from orchestrator.reducer import session_phase
from orchestrator.runtime import Runtime
from orchestrator.runtime_context import RuntimeExecutionContext
from orchestrator.state_dataclass import SessionState
from protocol.messages import Final


class FakeTransport:
    def __init__(self, runtime_ref: list[Runtime], *, fail_with: Exception | None = None) -> None:
        self._runtime_ref = runtime_ref
        self._fail_with = fail_with
        self.calls: list[str] = []
        self.sent: list[AudioFrame] = []
        self.control: list[str] = []

    async def connect(self) -> None:
        self.calls.append("connect")
        if self._fail_with is not None:
            raise self._fail_with
        # Real transport fires on_open before connect() returns
        self._runtime_ref[0].dispatch(
            TransportOpened(ts_ms=0, event_type=EventType.TRANSPORT_OPENED)
        )

    def send(self, frame: AudioFrame) -> None:
        self.sent.append(frame)

    def send_control(self, message: str) -> None:
        self.calls.append("send_control")
        self.control.append(message)

    def disconnect(self) -> None:
        self.calls.append("disconnect")


class FakeCapture:
    def __init__(self, *, fail_with: Exception | None = None) -> None:
        self._fail_with = fail_with
        self.on_frame: Callable[[AudioFrame], None] | None = None
        self.frames_emitted = 0
        self.calls: list[str] = []

    def start(self, on_frame: Callable[[AudioFrame], None]) -> None:
        self.calls.append("start")
        if self._fail_with is not None:
            raise self._fail_with
        self.on_frame = on_frame

    def stop(self) -> None:
        self.calls.append("stop")
        self.on_frame = None


def make_runtime(
    *,
    transport_error: Exception | None = None,
    capture_error: Exception | None = None,
) -> tuple[Runtime, FakeTransport, FakeCapture]:
    ref: list[Runtime] = []
    transport = FakeTransport(ref, fail_with=transport_error)
    capture = FakeCapture(fail_with=capture_error)
    runtime = Runtime(
        context=RuntimeExecutionContext(transport=transport, capture=capture, session_id="test"),
        clock=lambda: 1000,
    )
    ref.append(runtime)
    return runtime, transport, capture


def start_event() -> StartRequested:
    return StartRequested(ts_ms=0, event_type=EventType.START_REQUESTED)


def stop_event() -> StopRequested:
    return StopRequested(ts_ms=0, event_type=EventType.STOP_REQUESTED)


def test_start_connects_then_records_and_wires_frames():
    runtime, transport, capture = make_runtime()

    asyncio.run(runtime.handle_event(start_event()))

    assert transport.calls == ["connect"]
    assert capture.calls == ["start"]
    assert session_phase(runtime.state) is SessionPhase.RECORDING

    assert capture.on_frame is not None
    frame = AudioFrame(sequence_num=1, pcm_bytes=b"\x00\x00", ts_ms=0)
    capture.on_frame(frame)
    assert transport.sent == [frame]


def test_stop_runs_capture_stop_then_end_session_synchronously():
    runtime, transport, capture = make_runtime()
    asyncio.run(runtime.handle_event(start_event()))

    deferred = runtime.dispatch(stop_event())

    assert deferred == ()
    assert capture.calls == ["start", "stop"]
    assert transport.control == ['{"type": "end_session"}']
    assert session_phase(runtime.state) is SessionPhase.AWAITING_SUMMARY


def test_connect_failure_is_recorded_and_reraised():
    runtime, _, capture = make_runtime(transport_error=ConnectTimeout())

    with pytest.raises(ConnectTimeout):
        asyncio.run(runtime.handle_event(start_event()))

    assert capture.calls == []
    assert session_phase(runtime.state) is SessionPhase.IDLE
    assert runtime.state.last_error is not None
    assert runtime.state.last_error.kind.value == "connect_timeout"


def test_capture_failure_is_recorded_and_reraised():
    runtime, transport, _ = make_runtime(capture_error=PermissionDenied())

    with pytest.raises(PermissionDenied):
        asyncio.run(runtime.handle_event(start_event()))

    assert transport.calls == ["connect"]
    assert session_phase(runtime.state) is SessionPhase.CONNECTED
    assert runtime.state.last_error is not None
    assert runtime.state.last_error.hint


def test_listeners_notified_on_change_and_errors_contained():
    runtime, _, _ = make_runtime()
    seen: list[SessionState] = []

    def broken(_state: SessionState) -> None:
        raise RuntimeError("listener bug")

    runtime.subscribe(broken)
    unsubscribe = runtime.subscribe(seen.append)

    runtime.dispatch(MessageReceived(
        ts_ms=0, event_type=EventType.MESSAGE_RECEIVED, message=Final(text="hi")
    ))
    assert len(seen) == 1

    # Ignored events do not notify
    runtime.dispatch(stop_event())
    assert len(seen) == 1

    unsubscribe()
    runtime.dispatch(MessageReceived(
        ts_ms=0, event_type=EventType.MESSAGE_RECEIVED, message=Final(text="again")
    ))
    assert len(seen) == 1


def test_events_raised_by_listeners_are_queued_not_nested():
    runtime, _, _ = make_runtime()
    order: list[int] = []

    def listener(state: SessionState) -> None:
        order.append(len(state.transcript.segments))
        if len(state.transcript.segments) == 1:
            runtime.dispatch(MessageReceived(
                ts_ms=0, event_type=EventType.MESSAGE_RECEIVED, message=Final(text="second")
            ))

    runtime.subscribe(listener)
    runtime.dispatch(MessageReceived(
        ts_ms=0, event_type=EventType.MESSAGE_RECEIVED, message=Final(text="first")
    ))

    assert order == [1, 2]
    assert [s.text for s in runtime.state.transcript.segments] == ["first", "second"]
