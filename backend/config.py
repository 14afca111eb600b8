"""
Application configuration.

Responsibilities:
- Load deployment-specific configuration
- Read environment variables
- Provide a typed, immutable config object

Non-responsibilities:
- No session logic
- No protocol constants
- No runtime mutation
"""

from __future__ import annotations

import os
from dataclasses import dataclass


_DEFAULT_API_BASE_URL = "https://meera-bot-v2.onrender.com"
_DEFAULT_WS_URL = "wss://meera-bot-v2.onrender.com/api/v1/transcription/ws/transcribe"


def _optional(name: str) -> str | None:
    value = os.environ.get(name)
    if value is None or value.strip() == "":
        return None
    return value


@dataclass(frozen=True)
class AppConfig:
    """
    Immutable application configuration.

    Constructed once at process startup.
    Passed downward to the session / server factory.
    """

    # ------------------------------------------------------------------
    # Environment
    # ------------------------------------------------------------------

    env: str = "dev"
    log_level: str = "INFO"

    # ------------------------------------------------------------------
    # Transcription service
    # ------------------------------------------------------------------

    transcription_ws_url: str = _DEFAULT_WS_URL
    api_base_url: str = _DEFAULT_API_BASE_URL
    summary_path: str = "/api/v1/transcription/summary"
    api_token: str | None = None
    http_timeout_s: float = 10.0

    # ------------------------------------------------------------------
    # Capture
    # ------------------------------------------------------------------

    capture_device: str | None = None

    # ------------------------------------------------------------------
    # Observability
    # ------------------------------------------------------------------

    enable_json_logs: bool = True

    # ------------------------------------------------------------------
    # Factory
    # ------------------------------------------------------------------

    @staticmethod
    def load_from_env() -> AppConfig:
        """
        Load configuration from environment variables.

        Raises:
            ValueError if a numeric variable is not a number.
        """
        return AppConfig(
            env=os.environ.get("ENV", "dev"),
            log_level=os.environ.get("LOG_LEVEL", "INFO"),

            transcription_ws_url=os.environ.get("TRANSCRIPTION_WS_URL", _DEFAULT_WS_URL),
            api_base_url=os.environ.get("API_BASE_URL", _DEFAULT_API_BASE_URL),
            summary_path=os.environ.get(
                "TRANSCRIPTION_SUMMARY_PATH", "/api/v1/transcription/summary"
            ),
            api_token=_optional("API_TOKEN"),
            http_timeout_s=float(os.environ.get("HTTP_TIMEOUT_S", "10")),

            capture_device=_optional("CAPTURE_DEVICE"),

            enable_json_logs=os.environ.get("ENABLE_JSON_LOGS", "1") == "1",
        )
