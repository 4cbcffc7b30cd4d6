"""
Error taxonomy shared by services and routes.

Services raise these; the app-level error handler turns them into JSON
responses using ``status_code``.
"""
from __future__ import annotations

from typing import Any


class FormhubError(Exception):
    status_code = 500

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"error": self.message}
        if self.context:
            body.update(self.context)
        return body


class ValidationError(FormhubError):
    status_code = 400


class AuthenticationError(FormhubError):
    status_code = 401


class PermissionDeniedError(FormhubError, PermissionError):
    status_code = 403


class NotFoundError(FormhubError):
    status_code = 404


class ConflictError(FormhubError):
    status_code = 409


class RateLimitedError(FormhubError):
    status_code = 429
