"""
Service-layer errors. Handlers let these propagate; create_app() turns them into
JSON `{"error": ...}` bodies with the matching status code.
"""
from __future__ import annotations

from typing import Any


class ServiceError(RuntimeError):
    status_code = 400

    def __init__(self, message: str, *, extra: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.extra = extra or {}

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.message, **self.extra}


class ValidationError(ServiceError):
    status_code = 400


class Unauthorized(ServiceError):
    status_code = 401


class Forbidden(ServiceError):
    status_code = 403


class NotFound(ServiceError):
    status_code = 404


class Conflict(ServiceError):
    status_code = 409


class Gone(ServiceError):
    status_code = 410


class ConfigurationError(ServiceError):
    status_code = 500
