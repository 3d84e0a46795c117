"""Error responses and exception handlers for the HTTP surface.

Error response format:
{
    "type": "error",
    "error": {
        "type": "<error_type>",
        "message": "<error_message>"
    }
}
"""

import logging
from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from switchboard.core.exceptions import (
    CapacityRejected,
    CredentialNotFound,
    NoKeyAvailable,
    OrchestrationError,
    PermanentRequestError,
    StorageError,
)

logger = logging.getLogger(__name__)


def error_response(status_code: int, error_type: str, message: str) -> JSONResponse:
    content: dict[str, Any] = {
        "type": "error",
        "error": {"type": error_type, "message": message},
    }
    return JSONResponse(status_code=status_code, content=content)


class ErrorResponseBuilder:
    """Builders for the error responses shared by every router."""

    @staticmethod
    def not_found(resource: str, identifier: str) -> JSONResponse:
        return error_response(404, "not_found", f"{resource} '{identifier}' not found")

    @staticmethod
    def invalid_parameter(name: str, reason: str, value: Any | None = None) -> JSONResponse:
        message = f"Invalid parameter '{name}': {reason}"
        if value is not None:
            message += f" (got: {value!r})"
        return error_response(400, "invalid_parameter", message)

    @staticmethod
    def unauthorized(message: str = "Authentication required") -> JSONResponse:
        return error_response(401, "unauthorized", message)

    @staticmethod
    def orchestration_error(exc: OrchestrationError) -> JSONResponse:
        """Map an engine failure to a status code; ``kind`` becomes the error type."""
        if isinstance(exc, NoKeyAvailable):
            status_code = 503
        elif isinstance(exc, CapacityRejected):
            status_code = 429
        elif isinstance(exc, PermanentRequestError):
            status_code = 400
        else:
            # Per-provider failures stay in telemetry, never in the client payload.
            status_code = 502
        return error_response(status_code, exc.kind.value, exc.user_message)

    @staticmethod
    def internal_error(message: str, error_type: str = "internal_error") -> JSONResponse:
        return error_response(500, error_type, message)


async def _orchestration_error_handler(request: Request, exc: OrchestrationError) -> JSONResponse:
    logger.warning(f"{request.method} {request.url.path} failed: {exc}")
    return ErrorResponseBuilder.orchestration_error(exc)


async def _credential_not_found_handler(request: Request, exc: CredentialNotFound) -> JSONResponse:
    return ErrorResponseBuilder.not_found("Credential", exc.credential_id)


async def _value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
    return error_response(400, "invalid_request", str(exc))


async def _storage_error_handler(request: Request, exc: StorageError) -> JSONResponse:
    logger.error(f"Key store failure on {request.url.path}: {exc}")
    return ErrorResponseBuilder.internal_error(str(exc), "storage_error")


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(OrchestrationError, _orchestration_error_handler)
    app.add_exception_handler(CredentialNotFound, _credential_not_found_handler)
    app.add_exception_handler(ValueError, _value_error_handler)
    app.add_exception_handler(StorageError, _storage_error_handler)
