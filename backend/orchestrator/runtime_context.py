"""
Runtime execution context.

Provides Runtime with live access to session-owned imperative resources
needed for command execution (transport, capture).

This module contains:
- Narrow Protocols (capabilities, not implementations)
- Zero orchestration logic
- Zero state mutation
"""

from __future__ import annotations

from typing import Callable, Protocol, runtime_checkable

from audio.frames import AudioFrame


# ---------------------------------------------------------------------
# Capability Protocols
# ---------------------------------------------------------------------

@runtime_checkable
class TransportProtocol(Protocol):
    async def connect(self) -> None: ...
    def send(self, frame: AudioFrame) -> None: ...
    def send_control(self, message: str) -> None: ...
    def disconnect(self) -> None: ...


@runtime_checkable
class CaptureProtocol(Protocol):
    def start(self, on_frame: Callable[[AudioFrame], None]) -> None: ...
    def stop(self) -> None: ...

    @property
    def frames_emitted(self) -> int: ...


# ---------------------------------------------------------------------
# Runtime Execution Context
# ---------------------------------------------------------------------

class RuntimeExecutionContext:
    """
    Imperative execution context for Runtime.

    Runtime is allowed to:
    - Open / close the transport and send control messages
    - Start / stop capture, wiring frames to the transport

    Runtime is NOT allowed to:
    - Mutate session state directly
    - Perform orchestration decisions
    """

    def __init__(
        self,
        *,
        transport: TransportProtocol,
        capture: CaptureProtocol,
        session_id: str | None = None,
    ) -> None:
        self.transport = transport
        self.capture = capture
        self.session_id = session_id
