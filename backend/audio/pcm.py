"""PCM conversion utilities."""
from math import gcd

import numpy as np
from scipy import signal

from constants import PCM16_MAX, PCM16_MIN, PCM16_SCALE


def float32_to_pcm16le(samples: np.ndarray) -> bytes:
    """
    Convert float samples in [-1.0, 1.0] to PCM16 little-endian bytes.

    Out-of-range input is clipped. Scaling by 32768 with rounding keeps
    the round trip through pcm16le_to_float32 within one quantization step.
    """
    clipped = np.clip(np.asarray(samples, dtype=np.float32), -1.0, 1.0)
    scaled = np.round(clipped.astype(np.float64) * PCM16_SCALE)
    audio_i16 = np.clip(scaled, PCM16_MIN, PCM16_MAX).astype("<i2")
    return audio_i16.tobytes()


def pcm16le_to_float32(pcm_bytes: bytes) -> np.ndarray:
    """
    Convert PCM16 little-endian mono bytes to float32 in [-1.0, 1.0).

    No resampling. No channel mixing.
    """
    if len(pcm_bytes) % 2 != 0:
        # Truncated sample; caller should treat as malformed frame upstream.
        pcm_bytes = pcm_bytes[: len(pcm_bytes) - 1]

    audio_i16 = np.frombuffer(pcm_bytes, dtype="<i2")  # little-endian int16
    audio_f32 = audio_i16.astype(np.float32) / PCM16_SCALE
    return audio_f32


def downmix_to_mono(block: np.ndarray) -> np.ndarray:
    """
    Average all channels of a (frames, channels) block into one channel.

    1-D input is returned as float32 unchanged.
    """
    arr = np.asarray(block, dtype=np.float32)
    if arr.ndim == 1:
        return arr
    if arr.ndim != 2:
        raise ValueError(f"expected 1-D or 2-D block, got {arr.ndim}-D")
    if arr.shape[1] == 1:
        return arr[:, 0]
    return arr.mean(axis=1).astype(np.float32)


class StreamResampler:
    """
    Stateful polyphase resampler for a continuous mono stream.

    Uses the anti-aliasing filter scipy.signal.resample_poly designs, but
    carries input history between calls. Block boundaries neither restart
    the filter nor round the output length: after N input samples exactly
    the outputs whose filter support has fully arrived have been emitted,
    which trails N * dst / src by a fixed latency_samples.
    """

    def __init__(self, src_rate_hz: int, dst_rate_hz: int) -> None:
        if src_rate_hz <= 0 or dst_rate_hz <= 0:
            raise ValueError("sample rates must be > 0")

        g = gcd(src_rate_hz, dst_rate_hz)
        self.src_rate_hz = src_rate_hz
        self.dst_rate_hz = dst_rate_hz
        self._up = dst_rate_hz // g
        self._down = src_rate_hz // g

        max_rate = max(self._up, self._down)
        half_len = 10 * max_rate
        self._taps = signal.firwin(2 * half_len + 1, 1.0 / max_rate, window=("kaiser", 5.0)) * self._up
        self._delay = half_len
        # Input samples touched by one output
        self._span = -(-len(self._taps) // self._up) + 1

        self._history = np.empty(0, dtype=np.float64)
        self._history_start = 0
        self._consumed = 0
        self._produced = 0

    @property
    def passthrough(self) -> bool:
        return self._up == self._down

    @property
    def latency_samples(self) -> int:
        """Output samples held back waiting for future input."""
        if self.passthrough:
            return 0
        return -(-self._delay // self._down)

    def process(self, samples: np.ndarray) -> np.ndarray:
        x = np.asarray(samples, dtype=np.float64)
        if self.passthrough:
            return x.astype(np.float32)

        self._history = np.concatenate((self._history, x))
        self._consumed += len(x)

        # Output k needs input up to index (k * down + delay) // up
        ready = max(0, (self._consumed * self._up - 1 - self._delay) // self._down + 1)
        if ready <= self._produced:
            return np.empty(0, dtype=np.float32)

        k = np.arange(self._produced, ready, dtype=np.int64)
        pos = k * self._down + self._delay
        n = (pos // self._up)[:, None] - np.arange(self._span, dtype=np.int64)[None, :]
        tap = pos[:, None] - n * self._up
        valid = (tap < len(self._taps)) & (n >= self._history_start)

        coeffs = np.where(valid, self._taps[np.minimum(tap, len(self._taps) - 1)], 0.0)
        rel = np.clip(n - self._history_start, 0, len(self._history) - 1)
        out = (coeffs * self._history[rel]).sum(axis=1)

        self._produced = ready
        self._trim()
        return out.astype(np.float32)

    def _trim(self) -> None:
        # Keep every input the next output can still reach
        pos = self._produced * self._down + self._delay
        keep_from = max(0, (pos - len(self._taps) + 1) // self._up)
        drop = keep_from - self._history_start
        if drop > 0:
            self._history = self._history[drop:]
            self._history_start = keep_from
