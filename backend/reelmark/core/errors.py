"""
Reelmark error taxonomy.

Each error knows its HTTP status and renders as ``{"error": ..., "details": ...}``.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)

UNSUPPORTED_LANGUAGE_ERROR = "Unsupported transcript language"
UNSUPPORTED_LANGUAGE_DETAILS = (
    "We currently only support YouTube videos with English captions. "
    "Please choose a video that has English captions enabled."
)
NO_CAPTIONS_ERROR = "No captions are available for this video. The video may not have captions enabled."
TIMEOUT_ERROR = "Request timed out"
GUEST_LIMIT_MESSAGE = "You've used today's free analysis. Sign in to keep going."
AUTH_LIMIT_MESSAGE = "You've reached today's analysis limit. Please come back tomorrow."


class ReelmarkError(Exception):
    status_code: int = 500
    default_error: str = "Internal server error"

    def __init__(self, error: Optional[str] = None, details: Optional[str] = None):
        self.error = error or self.default_error
        self.details = details
        super().__init__(self.error if not details else f"{self.error}: {details}")

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"error": self.error}
        if self.details:
            payload["details"] = self.details
        return payload


class InvalidInputError(ReelmarkError):
    status_code = 400
    default_error = "Invalid request"


class UnsupportedLanguageError(ReelmarkError):
    status_code = 400
    default_error = UNSUPPORTED_LANGUAGE_ERROR

    def __init__(self, error: Optional[str] = None, details: Optional[str] = None):
        super().__init__(error, details or UNSUPPORTED_LANGUAGE_DETAILS)


class AuthenticationRequiredError(ReelmarkError):
    status_code = 401
    default_error = "Authentication required"


class NotFoundError(ReelmarkError):
    status_code = 404
    default_error = "Not found"


class RateLimitError(ReelmarkError):
    status_code = 429
    default_error = "Rate limit exceeded"

    def __init__(
        self,
        error: Optional[str] = None,
        message: Optional[str] = None,
        requires_auth: bool = False,
    ):
        super().__init__(error)
        self.message = message
        self.requires_auth = requires_auth

    def to_payload(self) -> Dict[str, Any]:
        payload = super().to_payload()
        if self.message:
            payload["message"] = self.message
        payload["requiresAuth"] = self.requires_auth
        return payload


class UpstreamError(ReelmarkError):
    status_code = 500
    default_error = "Upstream service failure"


class UpstreamTimeoutError(UpstreamError):
    status_code = 504
    default_error = TIMEOUT_ERROR


async def _reelmark_error_handler(request: Request, exc: ReelmarkError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    else:
        logger.info(f"{request.method} {request.url.path} -> {exc.status_code}: {exc.error}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


async def _validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    first = exc.errors()[0] if exc.errors() else {}
    location = ".".join(str(part) for part in first.get("loc", []) if part != "body")
    details = f"{location}: {first.get('msg')}" if location else first.get("msg")
    return JSONResponse(
        status_code=400,
        content={"error": "Invalid request", "details": details},
    )


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ReelmarkError, _reelmark_error_handler)
    app.add_exception_handler(RequestValidationError, _validation_error_handler)
