"""Error taxonomy, operation results and HTTP error rendering."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from app.core.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class ErrorKind(str, enum.Enum):
    """Failure classes surfaced by services, each bound to one HTTP status."""

    UNAUTHENTICATED = "unauthenticated"
    AUTHORIZATION = "authorization"
    MISSING_FIELD = "missing_field"
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    INTERNAL = "internal"


ERROR_KIND_STATUS: dict[ErrorKind, int] = {
    ErrorKind.UNAUTHENTICATED: status.HTTP_401_UNAUTHORIZED,
    ErrorKind.AUTHORIZATION: status.HTTP_403_FORBIDDEN,
    ErrorKind.MISSING_FIELD: status.HTTP_400_BAD_REQUEST,
    ErrorKind.VALIDATION: status.HTTP_400_BAD_REQUEST,
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.CONFLICT: status.HTTP_409_CONFLICT,
    ErrorKind.INTERNAL: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


@dataclass(frozen=True)
class ServiceError:
    """Expected failure of a ledger or service operation.

    ``message`` is sent to the caller verbatim, so it must never carry
    internal detail. ``details`` are merged into the response body.
    """

    kind: ErrorKind
    message: str
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def status_code(self) -> int:
        return ERROR_KIND_STATUS[self.kind]

    @property
    def retryable(self) -> bool:
        return self.kind is ErrorKind.CONFLICT

    @classmethod
    def unauthenticated(cls) -> "ServiceError":
        return cls(ErrorKind.UNAUTHENTICATED, "Unauthorized")

    @classmethod
    def access_denied(cls) -> "ServiceError":
        return cls(ErrorKind.AUTHORIZATION, "Access denied")

    @classmethod
    def missing_fields(cls) -> "ServiceError":
        return cls(ErrorKind.MISSING_FIELD, "Missing required fields")

    @classmethod
    def not_found(cls, resource: str) -> "ServiceError":
        return cls(ErrorKind.NOT_FOUND, f"{resource} not found")

    @classmethod
    def validation(cls, message: str, **details: Any) -> "ServiceError":
        return cls(ErrorKind.VALIDATION, message, details)

    @classmethod
    def conflict(cls, message: str) -> "ServiceError":
        return cls(ErrorKind.CONFLICT, message)

    @classmethod
    def internal(cls) -> "ServiceError":
        return cls(ErrorKind.INTERNAL, "Internal server error")


@dataclass(frozen=True)
class OperationResult(Generic[T]):
    """Outcome of an operation: either ``value`` or ``error`` is set."""

    value: T | None = None
    error: ServiceError | None = None

    @classmethod
    def success(cls, value: T) -> "OperationResult[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: ServiceError) -> "OperationResult[T]":
        return cls(error=error)

    @property
    def is_success(self) -> bool:
        return self.error is None

    def unwrap(self) -> T:
        """Return the value; only valid on a successful result."""

        if self.error is not None:
            raise AppError(self.error)
        return self.value  # type: ignore[return-value]


class AppError(Exception):
    """Raised where a result cannot be returned, e.g. inside a dependency."""

    def __init__(self, error: ServiceError) -> None:
        super().__init__(error.message)
        self.error = error


def error_response(error: ServiceError) -> JSONResponse:
    """Render a service error as ``{"error": message, **details}``."""

    return JSONResponse(status_code=error.status_code, content={"error": error.message, **error.details})


def install_exception_handlers(app: FastAPI) -> None:
    """Attach handlers producing the ``{"error": ...}`` response shape."""

    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
        return error_response(exc.error)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        logger.info(
            "Rejected malformed request",
            extra={"path": request.url.path, "error_count": len(exc.errors())},
        )
        return error_response(ServiceError.validation("Invalid request"))

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception(
            "Unhandled exception",
            exc_info=exc,
            extra={"method": request.method, "path": request.url.path},
        )
        return error_response(ServiceError.internal())
