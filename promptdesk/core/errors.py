"""Domain exceptions and their HTTP mapping."""

from __future__ import annotations

from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from promptdesk.core.logging import get_logger

log = get_logger(__name__)


class PromptDeskError(Exception):
    """Base class for errors raised by domain services."""

    status_code = 500
    code = "INTERNAL_ERROR"

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": self.code,
            "message": self.message,
            "status_code": self.status_code,
            "details": self.details,
        }


class ValidationError(PromptDeskError):
    """Raised when a request field fails validation."""

    status_code = 400
    code = "VALIDATION_ERROR"

    def __init__(self, field: str, message: str):
        super().__init__(
            f"Validation failed for field '{field}': {message}",
            {"field": field, "validation_message": message},
        )
        self.field = field


class NotFoundError(PromptDeskError):
    """Raised when a resource does not exist."""

    status_code = 404
    code = "NOT_FOUND"

    def __init__(self, resource: str, id: str):
        super().__init__(
            f"{resource} with id '{id}' not found",
            {"resource": resource, "id": id},
        )


class PermissionDeniedError(PromptDeskError):
    """Raised when the actor lacks a permission."""

    status_code = 403
    code = "AUTHORIZATION_ERROR"

    def __init__(self, action: str, resource: str):
        super().__init__(
            f"Unauthorized: Cannot {action} {resource}",
            {"action": action, "resource": resource},
        )


class AuthenticationError(PromptDeskError):
    """Raised when no acting user was supplied."""

    status_code = 401
    code = "AUTHENTICATION_ERROR"

    def __init__(self, message: str = "User not authenticated"):
        super().__init__(message)


class ConflictError(PromptDeskError):
    """Raised on uniqueness violations and invalid state transitions."""

    status_code = 409
    code = "CONFLICT"


def register_exception_handlers(app: FastAPI) -> None:
    """Render PromptDeskError subclasses as JSON error bodies."""

    @app.exception_handler(PromptDeskError)
    async def handle_domain_error(request: Request, exc: PromptDeskError) -> JSONResponse:
        if exc.status_code >= 500:
            log.error("request_failed", path=request.url.path, error=exc.message)
        else:
            log.info("request_rejected", path=request.url.path, code=exc.code, error=exc.message)
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())
