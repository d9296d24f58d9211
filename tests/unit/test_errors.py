"""Tests for modelia.core.errors — the domain error taxonomy."""

from __future__ import annotations

import pytest

from modelia.core.errors import (
    MODEL_OVERLOADED,
    SOMETHING_WENT_WRONG,
    VALIDATION_FAILED,
    AppError,
    BreakerOpenError,
    ClientError,
    ConflictError,
    DownstreamError,
    DownstreamTimeoutError,
    ErrorKind,
    FieldError,
    ForbiddenError,
    ModelOverloadedError,
    NotFoundError,
    ServerError,
    UnauthorizedError,
    ValidationError,
)


class TestErrorVariants:
    """Each variant carries its kind and status code."""

    @pytest.mark.parametrize(
        "error, kind, status",
        [
            (ClientError("bad"), ErrorKind.CLIENT, 400),
            (ValidationError(), ErrorKind.VALIDATION, 422),
            (UnauthorizedError(), ErrorKind.UNAUTHORIZED, 401),
            (ForbiddenError("no"), ErrorKind.FORBIDDEN, 403),
            (NotFoundError("gone"), ErrorKind.NOT_FOUND, 404),
            (ConflictError("dup"), ErrorKind.CONFLICT, 409),
            (ModelOverloadedError(), ErrorKind.SERVICE_UNAVAILABLE, 503),
            (ServerError(), ErrorKind.SERVER, 500),
        ],
    )
    def test_kind_and_status(self, error: AppError, kind: ErrorKind, status: int):
        assert error.kind is kind
        assert error.status_code == status

    def test_client_error_custom_status(self):
        assert ClientError("too big", status_code=413).status_code == 413

    def test_client_error_rejects_non_4xx(self):
        with pytest.raises(ValueError):
            ClientError("nope", status_code=500)

    def test_validation_error_keeps_all_field_errors(self):
        errors = [FieldError("email", "bad email"), FieldError("name", "too short")]
        exc = ValidationError(errors)
        assert exc.message == VALIDATION_FAILED
        assert [e.to_dict() for e in exc.errors] == [
            {"field": "email", "message": "bad email"},
            {"field": "name", "message": "too short"},
        ]

    def test_model_overloaded_is_retryable(self):
        exc = ModelOverloadedError()
        assert exc.retryable
        assert exc.message == MODEL_OVERLOADED

    def test_server_error_is_not_operational(self):
        exc = ServerError()
        assert not exc.is_operational
        assert exc.message == SOMETHING_WENT_WRONG


class TestBreakerErrors:
    """Breaker failures are server errors distinguished by ``reason``."""

    def test_open(self):
        exc = BreakerOpenError("UserRepository.findById")
        assert isinstance(exc, ServerError)
        assert exc.reason == "open"
        assert exc.breaker_name == "UserRepository.findById"

    def test_failure(self):
        exc = DownstreamError("GenerationRepository.create")
        assert exc.reason == "failure"
        assert exc.status_code == 500

    def test_timeout_is_a_downstream_error(self):
        exc = DownstreamTimeoutError("GenerationRepository.create", 3.0)
        assert isinstance(exc, DownstreamError)
        assert exc.reason == "timeout"
        assert "3s" in exc.message
