"""
Runtime execution shell for a single transcription session.

Responsibilities:
- Own session state
- Call pure reducer
- Execute commands with side effects (transport, capture, logging)
- Feed command outcomes back into the reducer as events
- Notify state listeners

Non-responsibilities:
- No orchestration decisions (all in the reducer)
- No socket or device handling (delegated through the context)
"""

from __future__ import annotations

import time
from collections import deque
from typing import TYPE_CHECKING, Callable, Deque

from audio.frames import AudioFrame
from errors import CaptureError, TransportError
from observability.logger import log_event
from orchestrator.commands import (
    ASYNC_COMMAND_TYPES,
    CloseTransport,
    Command,
    LogEvent,
    OpenTransport,
    SendEndSession,
    StartCapture,
    StopCapture,
)
from orchestrator.events import (
    CaptureFailed,
    CaptureStarted,
    CaptureStopped,
    Event,
    EventType,
    TransportConnectFailed,
)
from orchestrator.reducer import reduce, session_phase
from orchestrator.state_dataclass import SessionState
from protocol.wire import encode_end_session


if TYPE_CHECKING:
    from orchestrator.runtime_context import RuntimeExecutionContext


StateListener = Callable[[SessionState], None]


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


class Runtime:
    """
    Runtime execution boundary for a single session.

    Architectural role:
    Runtime is the bridge between the pure orchestration layer
    (reducer + immutable state) and the imperative world
    (transport, capture, logging).

    Guarantees:
    - Reducer is always called exactly once per incoming event
    - Steps are serialized: an event raised while a step runs (from a
      command or a listener) is queued and reduced after the step finishes
    - State is updated before any side effects of the step execute
    - Commands are executed in reducer-emitted order
    - Runtime never performs orchestration logic itself

    Two entry points:
    - dispatch(event): synchronous; runs every step to completion and
      executes synchronous commands. Asynchronous commands (open transport,
      start capture) are returned to the caller.
    - await handle_event(event): dispatch + await the asynchronous commands,
      feeding their outcomes back as events. Setup failures re-raise.
    """

    def __init__(
        self,
        *,
        context: RuntimeExecutionContext,
        initial_state: SessionState | None = None,
        clock: Callable[[], int] = _now_ms,
    ) -> None:
        self._ctx = context
        self._state = initial_state if initial_state is not None else SessionState()
        self._clock = clock

        self._pending: Deque[Event] = deque()
        self._deferred: list[Command] = []
        self._dispatching = False
        self._listeners: list[StateListener] = []

    @property
    def state(self) -> SessionState:
        """
        Return the current immutable session state.

        State is only mutated internally by Runtime via the reducer.
        """
        return self._state

    def now_ms(self) -> int:
        return self._clock()

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """Register a state listener; returns an unsubscribe callable."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self._state)
            except Exception as exc:  # pylint: disable=broad-exception-caught
                log_event({
                    "level": "ERROR",
                    "event_type": "state_listener_error",
                    "session_id": self._ctx.session_id,
                    "exception": type(exc).__name__,
                    "message": str(exc),
                })

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def dispatch(self, event: Event) -> tuple[Command, ...]:
        """
        Reduce an event (and everything it triggers) synchronously.

        Returns the asynchronous commands emitted along the way; they are
        only returned to the outermost caller.
        """
        self._pending.append(event)
        if self._dispatching:
            return ()

        self._dispatching = True
        try:
            while self._pending:
                self._step(self._pending.popleft())
        finally:
            self._dispatching = False

        deferred = tuple(self._deferred)
        self._deferred.clear()
        return deferred

    async def handle_event(self, event: Event) -> None:
        """
        Process an event and await its asynchronous commands in order.

        If an asynchronous command fails, its failure event is reduced, the
        remaining asynchronous commands are skipped and the error re-raises.
        """
        for cmd in self.dispatch(event):
            await self._execute_async(cmd)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _step(self, event: Event) -> None:
        prev_state = self._state
        new_state, commands = reduce(self._state, event)
        self._state = new_state

        for cmd in commands:
            if cmd.command_type in ASYNC_COMMAND_TYPES:
                self._deferred.append(cmd)
            else:
                self._execute_sync(cmd)

        if new_state is not prev_state:
            self._notify()

    def _execute_sync(self, cmd: Command) -> None:
        """Execute a single synchronous command with side effects."""
        if isinstance(cmd, LogEvent):
            log_event({
                **cmd.event,
                "session_id": self._ctx.session_id,
            })

        elif isinstance(cmd, StopCapture):
            self._ctx.capture.stop()
            self.dispatch(CaptureStopped(
                event_type=EventType.CAPTURE_STOPPED,
                ts_ms=self._clock(),
                frames_emitted=self._ctx.capture.frames_emitted,
            ))

        elif isinstance(cmd, SendEndSession):
            self._ctx.transport.send_control(encode_end_session())
            log_event({
                "event_type": "end_session_sent",
                "session_id": self._ctx.session_id,
            })

        elif isinstance(cmd, CloseTransport):
            self._ctx.transport.disconnect()
            log_event({
                "event_type": "transport_close_requested",
                "session_id": self._ctx.session_id,
                "reason": cmd.reason,
            })

        else:
            log_event({
                "level": "WARNING",
                "event_type": "unknown_command",
                "session_id": self._ctx.session_id,
                "command_type": getattr(cmd, "command_type", None),
            })

    async def _execute_async(self, cmd: Command) -> None:
        if isinstance(cmd, OpenTransport):
            try:
                await self._ctx.transport.connect()
            except TransportError as exc:
                self.dispatch(TransportConnectFailed(
                    event_type=EventType.TRANSPORT_CONNECT_FAILED,
                    ts_ms=self._clock(),
                    error=exc.info(),
                ))
                raise

        elif isinstance(cmd, StartCapture):
            if not self._state.start_pending:
                # Superseded while the transport was connecting
                log_event({
                    "event_type": "capture_start_skipped",
                    "session_id": self._ctx.session_id,
                    "phase": session_phase(self._state).value,
                })
                return
            try:
                self._ctx.capture.start(self._on_frame)
            except CaptureError as exc:
                self.dispatch(CaptureFailed(
                    event_type=EventType.CAPTURE_FAILED,
                    ts_ms=self._clock(),
                    error=exc.info(),
                ))
                raise
            self.dispatch(CaptureStarted(
                event_type=EventType.CAPTURE_STARTED,
                ts_ms=self._clock(),
            ))

    def _on_frame(self, frame: AudioFrame) -> None:
        self._ctx.transport.send(frame)
