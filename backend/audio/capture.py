"""
Microphone capture pipeline.

Responsibilities:
- Acquire the microphone through an injected CaptureSource
- Down-mix, resample and encode captured blocks to PCM16 mono 16kHz
- Cut the stream into fixed-size AudioFrames in strict capture order
- Hand frames to the owner's callback on the event loop thread
- Release the hardware on every exit path

Non-responsibilities:
- No transport knowledge (frames go to a plain callback)
- No session state decisions

Threading model:
    Hardware sources invoke their block callback on a driver thread.
    Frames are cut on that thread (the driver serializes callbacks, so order
    is preserved) and handed to the event loop with call_soon_threadsafe.
    stop() bumps a generation counter; deliveries queued before stop()
    carry the old generation and are discarded, so no frame reaches the
    owner after stop() returns.
"""

from __future__ import annotations

import asyncio
import threading
import time
from typing import Any, Callable, Iterable, Protocol

import numpy as np

from audio.frames import AudioFrame
from audio.pcm import StreamResampler, downmix_to_mono, float32_to_pcm16le
from constants import AUDIO_FRAME_SAMPLES, AUDIO_SAMPLE_RATE_HZ, AUDIO_CHANNELS
from errors import (
    CaptureError,
    DeviceBusy,
    DeviceUnavailable,
    EnvironmentUnsupported,
    PermissionDenied,
)
from observability.logger import log_event


BlockCallback = Callable[[np.ndarray], None]
FrameCallback = Callable[[AudioFrame], None]


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


# ---------------------------------------------------------------------
# Sources
# ---------------------------------------------------------------------

class CaptureSource(Protocol):
    """
    Raw audio source.

    open() must either succeed with the device held, or raise a
    CaptureError with nothing held. close() must be idempotent.
    """

    sample_rate_hz: int

    def open(self, on_block: BlockCallback) -> None: ...
    def close(self) -> None: ...


# PortAudio error codes (portaudio.h)
_PA_INVALID_DEVICE = -9996
_PA_INVALID_SAMPLE_RATE = -9997
_PA_DEVICE_UNAVAILABLE = -9985


def _portaudio_code(exc: BaseException) -> int | None:
    args = getattr(exc, "args", ())
    if len(args) > 1 and isinstance(args[1], int):
        return args[1]
    return None


def map_capture_error(exc: BaseException) -> CaptureError:
    """Translate a platform exception into the capture error taxonomy."""
    if isinstance(exc, CaptureError):
        return exc
    if isinstance(exc, PermissionError):
        return PermissionDenied(str(exc))

    code = _portaudio_code(exc)
    text = str(exc).lower()
    if code == _PA_DEVICE_UNAVAILABLE or "busy" in text:
        return DeviceBusy(str(exc))
    if code == _PA_INVALID_DEVICE or "no input device" in text or "querying device" in text:
        return DeviceUnavailable(str(exc))
    if "permission" in text or "not authorized" in text:
        return PermissionDenied(str(exc))
    return DeviceUnavailable(str(exc))


class SoundDeviceSource:
    """
    Real microphone source backed by sounddevice.InputStream.

    Opens at the wire rate when the device supports it; otherwise falls back
    to the device default rate and lets the pipeline resample.
    """

    def __init__(
        self,
        *,
        device: str | int | None = None,
        sample_rate_hz: int = AUDIO_SAMPLE_RATE_HZ,
        blocksize: int = AUDIO_FRAME_SAMPLES,
        channels: int = AUDIO_CHANNELS,
    ) -> None:
        self._device = device
        self.sample_rate_hz = sample_rate_hz
        self._blocksize = blocksize
        self._channels = channels
        self._stream: Any = None
        self._overflows = 0

    def open(self, on_block: BlockCallback) -> None:
        try:
            import sounddevice as sd  # pylint: disable=import-outside-toplevel
        except OSError as exc:
            # PortAudio shared library missing
            raise EnvironmentUnsupported(f"audio backend unavailable: {exc}") from exc

        def _callback(indata: np.ndarray, frames: int, time_info: Any, status: Any) -> None:  # pylint: disable=unused-argument
            if status:
                self._overflows += 1
            on_block(indata.copy())

        try:
            self._stream = self._open_stream(sd, _callback, self.sample_rate_hz)
        except sd.PortAudioError as exc:
            if _portaudio_code(exc) != _PA_INVALID_SAMPLE_RATE:
                raise map_capture_error(exc) from exc
            try:
                fallback = int(sd.query_devices(self._device, "input")["default_samplerate"])
                self._stream = self._open_stream(sd, _callback, fallback)
                self.sample_rate_hz = fallback
            except Exception as inner:  # pylint: disable=broad-exception-caught
                raise map_capture_error(inner) from inner
        except Exception as exc:  # pylint: disable=broad-exception-caught
            raise map_capture_error(exc) from exc

        log_event({
            "event_type": "capture_device_opened",
            "device": self._device,
            "sample_rate_hz": self.sample_rate_hz,
            "blocksize": self._blocksize,
        })

    def _open_stream(self, sd: Any, callback: Callable[..., None], rate: int) -> Any:
        stream = sd.InputStream(
            device=self._device,
            samplerate=rate,
            channels=self._channels,
            dtype="float32",
            blocksize=self._blocksize,
            callback=callback,
        )
        try:
            stream.start()
        except BaseException:
            # Partial setup: release before surfacing the error
            stream.close(ignore_errors=True)
            raise
        return stream

    def close(self) -> None:
        stream = self._stream
        self._stream = None
        if stream is None:
            return
        try:
            stream.stop(ignore_errors=True)
        finally:
            stream.close(ignore_errors=True)
            log_event({
                "event_type": "capture_device_closed",
                "device": self._device,
                "input_overflows": self._overflows,
            })


class ReplaySource:
    """
    Offline source replaying canned sample blocks.

    Used by tests and dry runs. Nothing is delivered until push()/replay()
    is called, so callers control timing deterministically.
    """

    def __init__(
        self,
        blocks: Iterable[np.ndarray] = (),
        *,
        sample_rate_hz: int = AUDIO_SAMPLE_RATE_HZ,
        fail_with: CaptureError | None = None,
    ) -> None:
        self.sample_rate_hz = sample_rate_hz
        self._blocks = [np.asarray(b, dtype=np.float32) for b in blocks]
        self._fail_with = fail_with
        self._on_block: BlockCallback | None = None
        self.open_count = 0
        self.close_count = 0

    @property
    def is_open(self) -> bool:
        return self._on_block is not None

    def open(self, on_block: BlockCallback) -> None:
        if self._fail_with is not None:
            raise self._fail_with
        self._on_block = on_block
        self.open_count += 1

    def push(self, block: np.ndarray) -> bool:
        """Deliver one block. Returns False when the source is closed."""
        cb = self._on_block
        if cb is None:
            return False
        cb(np.asarray(block, dtype=np.float32))
        return True

    def replay(self) -> int:
        """Deliver every canned block in order; returns how many were delivered."""
        return sum(1 for b in self._blocks if self.push(b))

    def close(self) -> None:
        if self._on_block is None:
            return
        self._on_block = None
        self.close_count += 1


# ---------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------

class CapturePipeline:
    """
    Capture -> mono -> 16kHz -> PCM16 -> fixed-size frames.

    start(on_frame):
        Acquire the source and begin delivering frames. Raises a
        CaptureError (with the source released) on failure.

    stop():
        Synchronous, idempotent teardown. Releases the source before
        returning; no frame is delivered after it returns. An incomplete
        trailing buffer is dropped (frames are fixed-size).
    """

    def __init__(
        self,
        source: CaptureSource,
        *,
        frame_samples: int = AUDIO_FRAME_SAMPLES,
        target_rate_hz: int = AUDIO_SAMPLE_RATE_HZ,
        session_id: str | None = None,
    ) -> None:
        if frame_samples <= 0:
            raise ValueError("frame_samples must be > 0")

        self._source = source
        self._frame_samples = frame_samples
        self._target_rate_hz = target_rate_hz
        self._session_id = session_id

        self._lock = threading.Lock()
        self._running = False
        self._generation = 0
        self._pending = np.empty(0, dtype=np.float32)
        self._next_seq = 1
        self._on_frame: FrameCallback | None = None
        self._resampler: StreamResampler | None = None

        self._loop: asyncio.AbstractEventLoop | None = None
        self._loop_thread_id: int | None = None

        self.frames_emitted = 0
        self.frames_discarded = 0

    @property
    def is_running(self) -> bool:
        return self._running

    def start(self, on_frame: FrameCallback) -> None:
        if self._running:
            log_event({
                "level": "WARNING",
                "event_type": "capture_start_ignored",
                "session_id": self._session_id,
                "reason": "already_running",
            })
            return

        try:
            self._loop = asyncio.get_running_loop()
            self._loop_thread_id = threading.get_ident()
        except RuntimeError:
            self._loop = None
            self._loop_thread_id = None

        with self._lock:
            self._generation += 1
            generation = self._generation
            self._pending = np.empty(0, dtype=np.float32)
            self._next_seq = 1
            self._on_frame = on_frame
            self._resampler = None
            self._running = True

        try:
            self._source.open(lambda block: self._on_block(generation, block))
        except BaseException as exc:
            self._running = False
            self._on_frame = None
            self._release_source()
            log_event({
                "level": "ERROR",
                "event_type": "capture_start_failed",
                "session_id": self._session_id,
                "exception": type(exc).__name__,
                "message": str(exc),
            })
            if isinstance(exc, Exception):
                raise map_capture_error(exc) from exc
            raise

        log_event({
            "event_type": "capture_started",
            "session_id": self._session_id,
            "source_rate_hz": self._source.sample_rate_hz,
            "frame_samples": self._frame_samples,
        })

    def stop(self) -> None:
        with self._lock:
            was_running = self._running
            self._running = False
            self._generation += 1
            self._on_frame = None
            dropped_samples = len(self._pending)
            self._pending = np.empty(0, dtype=np.float32)
            self._resampler = None

        self._release_source()

        if was_running:
            log_event({
                "event_type": "capture_stopped",
                "session_id": self._session_id,
                "frames_emitted": self.frames_emitted,
                "frames_discarded": self.frames_discarded,
                "trailing_samples_dropped": dropped_samples,
            })

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _release_source(self) -> None:
        try:
            self._source.close()
        except Exception as exc:  # pylint: disable=broad-exception-caught
            log_event({
                "level": "WARNING",
                "event_type": "capture_release_error",
                "session_id": self._session_id,
                "exception": type(exc).__name__,
                "message": str(exc),
            })

    def _on_block(self, generation: int, block: np.ndarray) -> None:
        """Source callback; may run on a driver thread."""
        mono = downmix_to_mono(block)

        frames: list[AudioFrame] = []
        with self._lock:
            if not self._running or generation != self._generation:
                return
            # Source rate is only final once the device has opened
            rate = self._source.sample_rate_hz
            if self._resampler is None or self._resampler.src_rate_hz != rate:
                self._resampler = StreamResampler(rate, self._target_rate_hz)
            mono = self._resampler.process(mono)

            pending = np.concatenate((self._pending, mono))
            n = self._frame_samples
            while len(pending) >= n:
                frames.append(
                    AudioFrame(
                        sequence_num=self._next_seq,
                        pcm_bytes=float32_to_pcm16le(pending[:n]),
                        ts_ms=_now_ms(),
                    )
                )
                self._next_seq += 1
                pending = pending[n:]
            self._pending = pending

        for frame in frames:
            self._hand_off(generation, frame)

    def _hand_off(self, generation: int, frame: AudioFrame) -> None:
        loop = self._loop
        if loop is None or threading.get_ident() == self._loop_thread_id:
            self._deliver(generation, frame)
            return
        try:
            loop.call_soon_threadsafe(self._deliver, generation, frame)
        except RuntimeError:
            # Loop already closed
            self.frames_discarded += 1

    def _deliver(self, generation: int, frame: AudioFrame) -> None:
        on_frame = self._on_frame
        if not self._running or generation != self._generation or on_frame is None:
            self.frames_discarded += 1
            return
        self.frames_emitted += 1
        on_frame(frame)
