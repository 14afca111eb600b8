"""
Persistent transcription socket.

Core model:
- One SessionTransport per session; the socket may be replaced by reconnects.
- Audio is fire-and-forget: send() never raises and never blocks. Frames go
  into a bounded AudioFrameQueue drained in order by a per-connection sender
  task. When the socket is not OPEN, frames are dropped and counted.
- The EndSession control message is queued behind all pending audio and is
  sent at most once per stream.

Reconnect rules:
- Only a connection that was established and then closed unexpectedly
  (not intentional, code != 1000) is retried.
- Up to RECONNECT_MAX_ATTEMPTS attempts; attempt n waits backoff(n).
  A failing attempt consumes an attempt. The counter resets on open.
- Exhaustion is reported once through on_transport_error(ReconnectExhausted);
  no further attempt is made.
- disconnect() suppresses any pending or future reconnect.

Design constraints:
- Transport must not call the reducer directly (callbacks only).
- Transport must not decode inbound messages (raw frames go to on_message).
"""

from __future__ import annotations

import asyncio
import functools
from typing import Any, Awaitable, Callable, Mapping

from websockets.asyncio.client import connect as ws_connect
from websockets.exceptions import ConnectionClosed

from audio.frames import AudioFrame
from audio.queues import AudioFrameQueue, DropCounters, DropReason
from constants import (
    CLOSE_CODE_ABNORMAL,
    CLOSE_CODE_INTERNAL_ERROR,
    CLOSE_CODE_NORMAL,
    CONNECT_TIMEOUT_S,
    OUTBOUND_AUDIO_Q_MAX_S,
    RECONNECT_MAX_ATTEMPTS,
    RECV_ERROR_MAX_CONSECUTIVE,
    WS_MAX_MESSAGE_BYTES,
)
from errors import (
    AudioSendFailure,
    ConnectRefused,
    ConnectTimeout,
    ReceiveFailure,
    ReconnectExhausted,
    TransportError,
)
from observability.logger import log_event
from observability.metrics import timed
from orchestrator.retry import reconnect_delay_s, should_reconnect
from protocol.wire import WireEncodingError, check_sequence_gap, encode_audio_frame
from session.connection_status import TransportStatus


ConnectFn = Callable[[str], Awaitable[Any]]


class SessionTransport:
    """
    Bidirectional message channel to the transcription service.

    Observable callbacks (all synchronous, invoked on the event loop):
        on_open()
        on_message(raw: str | bytes)
        on_close(code: int, reason: str, intentional: bool)
        on_transport_error(exc: TransportError)
        on_reconnect_scheduled(attempt: int, delay_s: float)
    """

    def __init__(
        self,
        url: str,
        *,
        connect_fn: ConnectFn | None = None,
        backoff: Callable[[int], float] = reconnect_delay_s,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        connect_timeout_s: float = CONNECT_TIMEOUT_S,
        headers: Mapping[str, str] | None = None,
        max_queue_s: float = OUTBOUND_AUDIO_Q_MAX_S,
        max_attempts: int = RECONNECT_MAX_ATTEMPTS,
        session_id: str | None = None,
        on_open: Callable[[], None] | None = None,
        on_message: Callable[[str | bytes], None] | None = None,
        on_close: Callable[[int, str, bool], None] | None = None,
        on_transport_error: Callable[[TransportError], None] | None = None,
        on_reconnect_scheduled: Callable[[int, float], None] | None = None,
    ) -> None:
        self._url = url
        if connect_fn is None:
            connect_fn = functools.partial(
                ws_connect,
                additional_headers=dict(headers) if headers else None,
                max_size=WS_MAX_MESSAGE_BYTES,
                open_timeout=None,
            )
        self._connect_fn = connect_fn
        self._backoff = backoff
        self._sleep = sleep
        self._connect_timeout_s = connect_timeout_s
        self._max_attempts = max_attempts
        self._session_id = session_id

        self.on_open = on_open
        self.on_message = on_message
        self.on_close = on_close
        self.on_transport_error = on_transport_error
        self.on_reconnect_scheduled = on_reconnect_scheduled

        self._status = TransportStatus.CLOSED
        self._ws: Any = None
        self._queue = AudioFrameQueue(max_depth_s=max_queue_s)
        self._control: list[str] = []
        self._control_sent = False
        self._wake = asyncio.Event()

        self._intentional = False
        self._reconnect_attempts = 0

        self._recv_task: asyncio.Task[None] | None = None
        self._send_task: asyncio.Task[None] | None = None
        self._reconnect_task: asyncio.Task[None] | None = None
        self._close_task: asyncio.Task[None] | None = None

        self._drop_streak = 0
        self.connect_calls = 0

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def status(self) -> TransportStatus:
        return self._status

    @property
    def is_open(self) -> bool:
        return self._status is TransportStatus.OPEN

    @property
    def drops(self) -> DropCounters:
        return self._queue.drops

    @property
    def frames_dropped(self) -> int:
        """Frames dropped for any reason (not open, overflow, send failure)."""
        return self._queue.total_drops()

    @property
    def reconnect_attempts(self) -> int:
        return self._reconnect_attempts

    def snapshot(self) -> dict[str, Any]:
        return {
            "status": self._status.value,
            "reconnect_attempts": self._reconnect_attempts,
            **self._queue.snapshot(),
        }

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        """
        Open the socket.

        Raises:
            ConnectTimeout: no open within connect_timeout_s
            ConnectRefused: refused / handshake failure / closed while connecting
        """
        if self._status is TransportStatus.OPEN:
            return

        # A fresh connect supersedes any pending reconnect
        self._cancel_reconnect()
        self._intentional = False
        self._reconnect_attempts = 0
        self._control_sent = False
        self._control.clear()

        await self._open()

    def send(self, frame: AudioFrame) -> None:
        """Queue an audio frame. Never raises; drops are counted."""
        if self._status is not TransportStatus.OPEN:
            self._record_drop(DropReason.NOT_OPEN, frame)
            return

        if not self._queue.enqueue(frame):
            self._log_drop(DropReason.OVERFLOW, frame)
            return

        self._drop_streak = 0
        self._wake.set()

    def send_control(self, message: str) -> None:
        """Queue a control message behind pending audio (once per stream)."""
        if self._control_sent:
            log_event({
                "event_type": "transport_control_ignored",
                "session_id": self._session_id,
                "reason": "already_sent",
            })
            return

        if self._status is not TransportStatus.OPEN:
            log_event({
                "level": "WARNING",
                "event_type": "transport_control_dropped",
                "session_id": self._session_id,
                "reason": "not_open",
                "status": self._status.value,
            })
            return

        self._control_sent = True
        self._control.append(message)
        self._wake.set()

    def disconnect(self) -> None:
        """
        Intentional close (code 1000). Idempotent, never reconnects.

        Returns immediately; await wait_closed() for teardown.
        """
        already = self._intentional
        self._intentional = True
        backoff_cancelled = self._cancel_reconnect()

        ws = self._ws
        if ws is None:
            # A handshake in flight from connect() closes itself on completion
            if backoff_cancelled or self._status is not TransportStatus.CONNECTING:
                self._status = TransportStatus.CLOSED
            return

        if already and self._status is TransportStatus.CLOSING:
            return

        self._status = TransportStatus.CLOSING
        log_event({
            "event_type": "transport_disconnect",
            "session_id": self._session_id,
            **self._queue.snapshot(),
        })
        self._close_task = asyncio.create_task(self._close_ws(ws))

    async def wait_closed(self) -> None:
        """Wait for close / reconnect / receive tasks to finish."""
        tasks = [
            t for t in (self._close_task, self._reconnect_task, self._recv_task, self._send_task)
            if t is not None and not t.done()
        ]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # ------------------------------------------------------------------
    # Connection management
    # ------------------------------------------------------------------

    async def _open(self) -> None:
        self._status = TransportStatus.CONNECTING
        self.connect_calls += 1

        try:
            with timed(
                "transport_connect_latency",
                session_id=self._session_id,
                details={"attempt": self._reconnect_attempts},
            ):
                ws = await asyncio.wait_for(
                    self._connect_fn(self._url),
                    timeout=self._connect_timeout_s,
                )
        except asyncio.TimeoutError as exc:
            self._status = TransportStatus.CLOSED
            raise ConnectTimeout(
                f"no connection within {self._connect_timeout_s:g}s"
            ) from exc
        except asyncio.CancelledError:
            self._status = TransportStatus.CLOSED
            raise
        except Exception as exc:  # pylint: disable=broad-exception-caught
            self._status = TransportStatus.CLOSED
            raise ConnectRefused(f"connect failed: {exc}") from exc

        if self._intentional:
            # disconnect() raced the handshake
            self._status = TransportStatus.CLOSED
            await self._safe_close(ws)
            raise ConnectRefused("disconnected while connecting")

        self._ws = ws
        self._status = TransportStatus.OPEN
        self._reconnect_attempts = 0
        self._drop_streak = 0
        self._wake = asyncio.Event()
        if self._control or not self._queue.is_empty():
            self._wake.set()

        self._recv_task = asyncio.create_task(self._recv_loop(ws))
        self._send_task = asyncio.create_task(self._send_loop(ws))

        log_event({
            "event_type": "transport_open",
            "session_id": self._session_id,
            "url": self._url,
        })
        self._fire(self.on_open)

    async def _close_ws(self, ws: Any) -> None:
        await self._safe_close(ws)
        # Receive loop normally observes the close; make sure teardown happens
        if self._ws is ws:
            await self._handle_closed(ws)

    async def _safe_close(
        self,
        ws: Any,
        code: int = CLOSE_CODE_NORMAL,
        reason: str = "client disconnect",
    ) -> None:
        try:
            await ws.close(code, reason)
        except Exception as exc:  # pylint: disable=broad-exception-caught
            log_event({
                "level": "WARNING",
                "event_type": "transport_close_error",
                "session_id": self._session_id,
                "exception": type(exc).__name__,
                "message": str(exc),
            })

    async def _handle_closed(self, ws: Any, *, code: int | None = None) -> None:
        if ws is not self._ws:
            return  # stale connection
        self._ws = None

        send_task = self._send_task
        self._send_task = None
        if send_task is not None and not send_task.done() and send_task is not asyncio.current_task():
            send_task.cancel()

        discarded = self._queue.clear()
        self._control.clear()

        if code is None:
            code = getattr(ws, "close_code", None)
        if code is None:
            code = CLOSE_CODE_ABNORMAL
        reason = getattr(ws, "close_reason", None) or ""
        intentional = self._intentional

        self._status = TransportStatus.CLOSED
        log_event({
            "level": "INFO" if intentional or code == CLOSE_CODE_NORMAL else "WARNING",
            "event_type": "transport_closed",
            "session_id": self._session_id,
            "code": code,
            "reason": reason,
            "intentional": intentional,
            "frames_discarded": discarded,
        })
        self._fire(self.on_close, code, reason, intentional)

        if should_reconnect(code=code, intentional=intentional, attempts_made=0):
            self._reconnect_task = asyncio.create_task(self._reconnect_loop(code))

    async def _reconnect_loop(self, code: int) -> None:
        while True:
            if self._intentional:
                return

            if not should_reconnect(
                code=code,
                intentional=self._intentional,
                attempts_made=self._reconnect_attempts,
                max_attempts=self._max_attempts,
            ):
                self._status = TransportStatus.CLOSED
                exc = ReconnectExhausted(
                    f"Failed to reconnect after {self._max_attempts} attempts"
                )
                log_event({
                    "level": "ERROR",
                    "event_type": "transport_reconnect_exhausted",
                    "session_id": self._session_id,
                    "attempts": self._reconnect_attempts,
                })
                self._fire(self.on_transport_error, exc)
                return

            self._reconnect_attempts += 1
            attempt = self._reconnect_attempts
            delay_s = self._backoff(attempt)
            self._status = TransportStatus.CONNECTING

            log_event({
                "event_type": "transport_reconnect_scheduled",
                "session_id": self._session_id,
                "attempt": attempt,
                "max_attempts": self._max_attempts,
                "delay_s": delay_s,
            })
            self._fire(self.on_reconnect_scheduled, attempt, delay_s)

            await self._sleep(delay_s)
            if self._intentional:
                return

            try:
                await self._open()
                return
            except TransportError as exc:
                log_event({
                    "level": "WARNING",
                    "event_type": "transport_reconnect_failed",
                    "session_id": self._session_id,
                    "attempt": attempt,
                    "kind": exc.kind.value,
                    "message": exc.message,
                })

    def _cancel_reconnect(self) -> bool:
        task = self._reconnect_task
        self._reconnect_task = None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            return True
        return False

    # ------------------------------------------------------------------
    # Background loops
    # ------------------------------------------------------------------

    async def _recv_loop(self, ws: Any) -> None:
        failures = 0
        close_code: int | None = None

        while True:
            try:
                async for raw in ws:
                    failures = 0
                    self._fire(self.on_message, raw)
                break
            except ConnectionClosed:
                break
            except asyncio.CancelledError:
                raise
            except Exception as exc:  # pylint: disable=broad-exception-caught
                # Transient while OPEN: report and keep reading
                failures += 1
                log_event({
                    "level": "WARNING",
                    "event_type": "transport_recv_error",
                    "session_id": self._session_id,
                    "exception": type(exc).__name__,
                    "message": str(exc),
                    "consecutive": failures,
                })
                self._fire(self.on_transport_error, ReceiveFailure(f"{type(exc).__name__}: {exc}"))
                if failures >= RECV_ERROR_MAX_CONSECUTIVE:
                    await self._safe_close(ws, CLOSE_CODE_INTERNAL_ERROR, "receive failed")
                    close_code = CLOSE_CODE_ABNORMAL
                    break

        await self._handle_closed(ws, code=close_code)

    async def _send_loop(self, ws: Any) -> None:
        wake = self._wake
        last_seq: int | None = None

        while True:
            await wake.wait()
            wake.clear()

            while True:
                frame = self._queue.dequeue()
                if frame is None:
                    break

                gap = check_sequence_gap(last_seq=last_seq, current_seq=frame.sequence_num)
                if gap.gap and gap.gap_size:
                    log_event({
                        "level": "DEBUG",
                        "event_type": "audio_seq_gap",
                        "session_id": self._session_id,
                        "expected": gap.expected,
                        "actual": gap.actual,
                        "gap_size": gap.gap_size,
                    })
                last_seq = frame.sequence_num

                try:
                    await ws.send(encode_audio_frame(frame))
                except ConnectionClosed:
                    self._log_drop(DropReason.SEND_FAILED, frame, count=True)
                except WireEncodingError as exc:
                    self._log_drop(DropReason.SEND_FAILED, frame, count=True, message=str(exc))
                except Exception as exc:  # pylint: disable=broad-exception-caught
                    self._log_drop(DropReason.SEND_FAILED, frame, count=True, message=str(exc))
                    self._fire(self.on_transport_error, AudioSendFailure(str(exc)))

            while self._control and self._queue.is_empty():
                message = self._control.pop(0)
                try:
                    await ws.send(message)
                    log_event({
                        "event_type": "transport_control_sent",
                        "session_id": self._session_id,
                        "message": message,
                    })
                except Exception as exc:  # pylint: disable=broad-exception-caught
                    log_event({
                        "level": "ERROR",
                        "event_type": "transport_control_send_failed",
                        "session_id": self._session_id,
                        "exception": type(exc).__name__,
                        "message": str(exc),
                    })

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _record_drop(self, reason: DropReason, frame: AudioFrame) -> None:
        self._queue.drops.record(reason)
        self._log_drop(reason, frame)

    def _log_drop(
        self,
        reason: DropReason,
        frame: AudioFrame,
        *,
        count: bool = False,
        message: str | None = None,
    ) -> None:
        if count:
            self._queue.drops.record(reason)
        self._drop_streak += 1
        log_event({
            # First drop of a streak is a warning; the rest are debug noise
            "level": "WARNING" if self._drop_streak == 1 else "DEBUG",
            "event_type": "audio_frame_dropped",
            "session_id": self._session_id,
            "reason": reason.value,
            "sequence_num": frame.sequence_num,
            "status": self._status.value,
            "frames_dropped": self._queue.total_drops(),
            "message": message,
        })

    def _fire(self, callback: Callable[..., None] | None, *args: Any) -> None:
        if callback is None:
            return
        try:
            callback(*args)
        except Exception as exc:  # pylint: disable=broad-exception-caught
            log_event({
                "level": "ERROR",
                "event_type": "transport_callback_error",
                "session_id": self._session_id,
                "callback": getattr(callback, "__name__", repr(callback)),
                "exception": type(exc).__name__,
                "message": str(exc),
            })
