"""Per-tab key/value storage that survives a sign-in round trip."""
from __future__ import annotations

from typing import Dict, Optional

PENDING_VIDEO_KEY = "pendingVideoId"
LIMIT_MESSAGE_KEY = "limitRedirectMessage"


class SessionStore:

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._values: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._values.get(key)

    def set(self, key: str, value: str) -> None:
        self._values[key] = value

    def remove(self, key: str) -> None:
        self._values.pop(key, None)

    def __contains__(self, key: str) -> bool:
        return key in self._values
