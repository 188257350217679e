from __future__ import annotations

from typing import Any, Dict, Optional


class ApiError(Exception):
    """Base class for errors that map onto an HTTP status and a JSON body."""

    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: Optional[str] = None, *, details: Any = None) -> None:
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)

    def to_body(self, *, include_details: bool = True) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": self.message}
        if include_details and self.details is not None:
            body["details"] = self.details
        return body


class Unauthorized(ApiError):
    status_code = 401
    default_message = "Authentication required"


class ValidationError(ApiError):
    status_code = 400
    default_message = "Invalid request"


class NotFound(ApiError):
    status_code = 404
    default_message = "Problem not found"


class InternalError(ApiError):
    """Server-side failure. ``details`` is only echoed outside production."""

    status_code = 500


__all__ = [
    "ApiError",
    "InternalError",
    "NotFound",
    "Unauthorized",
    "ValidationError",
]
