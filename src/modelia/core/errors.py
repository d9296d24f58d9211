"""Domain error taxonomy.

Every error the services raise is one of a closed set of variants, each
tagged with an :class:`ErrorKind`.  The HTTP layer maps kinds to responses
through a single table (see ``modelia.api.main``) instead of inspecting
messages or walking class hierarchies.

Variants
--------
ClientError
    Generic 4xx with a caller-supplied status code.
ValidationError
    422, carries the complete list of field errors.
UnauthorizedError / ForbiddenError / NotFoundError / ConflictError
    401 / 403 / 404 / 409.
ModelOverloadedError
    503, the retryable "model overloaded" condition raised by the
    generation backend.
ServerError
    500, non-operational.  The circuit breaker errors subclass it so that a
    failed downstream call and an open breaker both surface as a server error
    while still being distinguishable through ``reason``.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

# Client-visible messages shared across the API.
SOMETHING_WENT_WRONG = "Something went wrong"
VALIDATION_FAILED = "Validation failed"
UNAUTHORIZED = "Unauthorized access"
USER_EXISTS = "User already exists"
INVALID_CREDENTIALS = "Invalid credentials"
INVALID_TOKEN = "Invalid or expired token"
NO_TOKEN = "No token provided"
MODEL_OVERLOADED = "Model is currently overloaded. Please try again."
IMAGE_REQUIRED = "Image file is required"


class ErrorKind(str, Enum):
    """Tag identifying each error variant."""

    CLIENT = "client"
    VALIDATION = "validation"
    UNAUTHORIZED = "unauthorized"
    FORBIDDEN = "forbidden"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    SERVICE_UNAVAILABLE = "service_unavailable"
    SERVER = "server"


@dataclass(frozen=True)
class FieldError:
    """A single field-level validation failure."""

    field: str
    message: str

    def to_dict(self) -> dict[str, str]:
        return {"field": self.field, "message": self.message}


class AppError(Exception):
    """Base class for all domain errors.

    Attributes:
        message: Client-safe description of the failure.
        status_code: HTTP status the error maps to.
        kind: Variant tag.
        is_operational: False for unexpected failures whose message should not
            reach clients outside development.
    """

    kind: ErrorKind = ErrorKind.SERVER
    default_status: int = 500
    is_operational: bool = True
    retryable: bool = False

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code if status_code is not None else self.default_status


class ClientError(AppError):
    kind = ErrorKind.CLIENT
    default_status = 400

    def __init__(self, message: str, status_code: int = 400) -> None:
        if not 400 <= status_code < 500:
            raise ValueError(f"ClientError status must be 4xx, got {status_code}")
        super().__init__(message, status_code)


class ValidationError(AppError):
    kind = ErrorKind.VALIDATION
    default_status = 422

    def __init__(
        self,
        errors: list[FieldError] | None = None,
        message: str = VALIDATION_FAILED,
    ) -> None:
        super().__init__(message)
        self.errors: list[FieldError] = list(errors or [])


class UnauthorizedError(AppError):
    kind = ErrorKind.UNAUTHORIZED
    default_status = 401

    def __init__(self, message: str = UNAUTHORIZED) -> None:
        super().__init__(message)


class ForbiddenError(AppError):
    kind = ErrorKind.FORBIDDEN
    default_status = 403


class NotFoundError(AppError):
    kind = ErrorKind.NOT_FOUND
    default_status = 404


class ConflictError(AppError):
    kind = ErrorKind.CONFLICT
    default_status = 409


class ModelOverloadedError(AppError):
    """The generation backend rejected the request; the client may retry."""

    kind = ErrorKind.SERVICE_UNAVAILABLE
    default_status = 503
    retryable = True

    def __init__(self, message: str = MODEL_OVERLOADED) -> None:
        super().__init__(message)


class ServerError(AppError):
    kind = ErrorKind.SERVER
    default_status = 500
    is_operational = False

    def __init__(self, message: str = SOMETHING_WENT_WRONG) -> None:
        super().__init__(message)


class CircuitBreakerError(ServerError):
    """Base for failures reported by a circuit breaker.

    Attributes:
        breaker_name: Name of the wrapped operation.
        reason: ``"open"``, ``"timeout"`` or ``"failure"``.
    """

    reason = "failure"

    def __init__(self, breaker_name: str, message: str) -> None:
        super().__init__(message)
        self.breaker_name = breaker_name


class BreakerOpenError(CircuitBreakerError):
    """The breaker is open; the downstream operation was not invoked."""

    reason = "open"

    def __init__(self, breaker_name: str) -> None:
        super().__init__(breaker_name, f"Circuit breaker {breaker_name} is open")


class DownstreamError(CircuitBreakerError):
    """The downstream operation ran and failed."""

    reason = "failure"

    def __init__(self, breaker_name: str, message: str | None = None) -> None:
        super().__init__(breaker_name, message or f"{breaker_name} failed")


class DownstreamTimeoutError(DownstreamError):
    """The downstream operation did not finish within the breaker timeout."""

    reason = "timeout"

    def __init__(self, breaker_name: str, timeout: float) -> None:
        super().__init__(breaker_name, f"{breaker_name} timed out after {timeout:g}s")
