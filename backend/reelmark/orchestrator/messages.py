"""User-facing message text for orchestrator errors."""
from __future__ import annotations

from typing import Any, Optional

from reelmark.core.errors import AUTH_LIMIT_MESSAGE, GUEST_LIMIT_MESSAGE, UNSUPPORTED_LANGUAGE_DETAILS  # noqa: F401

DEFAULT_CLIENT_ERROR = "Something went wrong. Please try again."
INVALID_URL_MESSAGE = "Invalid video URL. Please provide a YouTube or Bilibili link."
TRANSCRIPT_TIMEOUT_MESSAGE = "The transcript request timed out. Please try again."
SUMMARY_TIMEOUT_MESSAGE = "Summary generation timed out. The video may be too long."
NO_THEME_HIGHLIGHTS_MESSAGE = "No highlights are available for this theme."
SAVE_WARNING_MESSAGE = "Couldn't save this analysis. Your results are still visible."

_LANGUAGE_MARKERS = ("user aborted request", "unsupported transcript language")


def normalize_error_message(message: Optional[str], fallback: str = DEFAULT_CLIENT_ERROR) -> str:
    """Trimmed message or fallback; language failures map to one fixed explanation."""
    trimmed = message.strip() if isinstance(message, str) else ""
    base = trimmed or fallback
    source = f"{trimmed} {base}".lower()
    if any(marker in source for marker in _LANGUAGE_MARKERS):
        return UNSUPPORTED_LANGUAGE_DETAILS
    return base


def build_api_error_message(payload: Any, fallback: str) -> str:
    """``"<error>: <details>"`` from an API error body, normalised."""
    if not isinstance(payload, dict):
        return normalize_error_message(None, fallback)

    error = payload.get("error").strip() if isinstance(payload.get("error"), str) else ""
    details = payload.get("details").strip() if isinstance(payload.get("details"), str) else ""

    if error and details:
        return normalize_error_message(f"{error}: {details}", fallback)
    return normalize_error_message(details or error or None, fallback)


def limit_message_from(payload: Any, default: str) -> str:
    """A 429 body's ``message``, else its ``error``, else ``default``."""
    if isinstance(payload, dict):
        for field in ("message", "error"):
            value = payload.get(field)
            if isinstance(value, str) and value.strip():
                return value.strip()
    return default
