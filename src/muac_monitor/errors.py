"""Domain errors and HTTP error envelope helpers."""

from __future__ import annotations

from typing import Any
from uuid import uuid4

from fastapi.responses import JSONResponse


class ValidationError(Exception):
    """Raised when input is rejected before any store access."""


class NotFoundError(Exception):
    """Raised when a referenced entity cannot be found."""


class ConflictError(Exception):
    """Raised when a unique constraint conflict occurs."""


class StorageError(Exception):
    """Raised when the store is left in a state the core cannot recover from."""


class ApiError(Exception):
    """Structured API error used for consistent error envelopes."""

    def __init__(
        self,
        *,
        status_code: int,
        code: str,
        message: str,
        trace_id: str | None = None,
        details: list[dict[str, Any]] | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message
        self.trace_id = trace_id
        self.details = details


def error_response(
    *,
    status_code: int,
    code: str,
    message: str,
    trace_id: str | None,
    details: list[dict[str, Any]] | None = None,
) -> JSONResponse:
    """Build standard error envelope response."""

    payload: dict[str, Any] = {
        "error": {
            "code": code,
            "message": message,
            "trace_id": trace_id or f"trc_{uuid4().hex[:8]}",
        }
    }
    if details:
        payload["error"]["details"] = details
    return JSONResponse(status_code=status_code, content=payload)
