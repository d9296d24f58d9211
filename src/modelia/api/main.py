"""Modelia Studio — FastAPI Application.

This module is the entry point for the HTTP service.  It defines the
``create_app`` factory, all REST routes, the error boundary that renders
every failure as the JSON envelope, and the ``main()`` CLI function that
launches the uvicorn server.

Architecture
------------
- **Configuration** comes from :data:`~modelia.core.config.config`
  (``MODELIA_*`` environment variables and ``.env``).
- **Services** (repositories, auth, generation) are wired once per app by
  the lifespan handler and stored on ``app.state.services``.
- **Persistence** is SQLite (or any SQLAlchemy URL) behind per-operation
  circuit breakers.
- **Files** are served only to their owners from the per-user namespace.

Endpoints
---------
========  ================================  ==================================
Method    Path                              Purpose
========  ================================  ==================================
POST      ``/v1/auth/signup``               Create an account, returns a token
POST      ``/v1/auth/login``                Log in, returns a token
POST      ``/v1/generations``               Upload an image and generate
GET       ``/v1/generations?limit=N``       Most recent generations
GET       ``/v1/files/{user_id}/{name}``    Owner-only file download
GET       ``/health``                       Liveness check
========  ================================  ==================================

Every response uses the envelope ``{"success": true, "data": ...,
"message": ...}`` or ``{"success": false, "error": {"message": ...,
"errors": [...]}}``.

Usage
-----
CLI (installed entry point)::

    modelia

Direct invocation::

    python -m modelia.api.main
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Depends, FastAPI, File, Form, Request, UploadFile
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse
from pydantic import ValidationError as PydanticValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from modelia import __version__
from modelia.api.dependencies import (
    AppServices,
    build_services,
    get_services,
    require_file_user,
    require_user,
)
from modelia.api.models import (
    AuthOut,
    GenerationForm,
    GenerationOut,
    LoginRequest,
    SignupRequest,
    UserOut,
    field_errors,
)
from modelia.api.uploads import store_upload
from modelia.core.backends import GenerationBackend
from modelia.core.config import ModeliaConfig, config
from modelia.core.errors import (
    IMAGE_REQUIRED,
    SOMETHING_WENT_WRONG,
    AppError,
    ClientError,
    ErrorKind,
    ValidationError,
)
from modelia.services import AuthResult, TokenPayload

logger = logging.getLogger(__name__)

ROUTE_NOT_FOUND = "Route not found"
REDACTED = "[REDACTED]"
_SENSITIVE_HEADERS = frozenset({"authorization", "cookie", "set-cookie"})
_SENSITIVE_FIELDS = frozenset({"password"})


# ---------------------------------------------------------------------------
# Error boundary.
#
# One policy per ErrorKind.  A kind without a policy is a programming error
# and is rejected at import time.
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class _ErrorPolicy:
    log_level: int
    expose_message: bool


_POLICY_BY_KIND: dict[ErrorKind, _ErrorPolicy] = {
    ErrorKind.CLIENT: _ErrorPolicy(logging.INFO, True),
    ErrorKind.VALIDATION: _ErrorPolicy(logging.INFO, True),
    ErrorKind.UNAUTHORIZED: _ErrorPolicy(logging.INFO, True),
    ErrorKind.FORBIDDEN: _ErrorPolicy(logging.WARNING, True),
    ErrorKind.NOT_FOUND: _ErrorPolicy(logging.INFO, True),
    ErrorKind.CONFLICT: _ErrorPolicy(logging.INFO, True),
    ErrorKind.SERVICE_UNAVAILABLE: _ErrorPolicy(logging.WARNING, True),
    ErrorKind.SERVER: _ErrorPolicy(logging.ERROR, False),
}

_unmapped = set(ErrorKind) - set(_POLICY_BY_KIND)
if _unmapped:
    raise RuntimeError(f"No error policy for kinds: {sorted(k.value for k in _unmapped)}")


def success_response(data: Any, message: str | None = None, status_code: int = 200) -> JSONResponse:
    """Render the success envelope."""
    body: dict[str, Any] = {"success": True, "data": data}
    if message is not None:
        body["message"] = message
    return JSONResponse(status_code=status_code, content=jsonable_encoder(body))


def error_response(
    message: str,
    status_code: int,
    errors: list[dict[str, str]] | None = None,
) -> JSONResponse:
    """Render the failure envelope.  ``errors`` is only included when given."""
    error: dict[str, Any] = {"message": message}
    if errors is not None:
        error["errors"] = errors
    return JSONResponse(status_code=status_code, content={"success": False, "error": error})


def redact_headers(headers) -> dict[str, str]:
    """Copy request headers with credentials replaced."""
    return {
        name: (REDACTED if name.lower() in _SENSITIVE_HEADERS else value)
        for name, value in headers.items()
    }


def redact_body(body: Any) -> Any:
    """Copy a JSON request body with password fields replaced."""
    if isinstance(body, dict):
        return {
            key: (REDACTED if key in _SENSITIVE_FIELDS else value)
            for key, value in body.items()
        }
    return body


def _describe_request(request: Request) -> str:
    url = request.url.remove_query_params("authorization")
    return f"{request.method} {url} headers={redact_headers(request.headers)}"


def _render_app_error(
    request: Request,
    exc: AppError,
    settings: ModeliaConfig,
    body: Any = None,
) -> JSONResponse:
    policy = _POLICY_BY_KIND[exc.kind]
    context = _describe_request(request)
    if body is not None:
        context = f"{context} body={redact_body(body)!r}"
    logger.log(
        policy.log_level,
        f"{exc.kind.value} error ({exc.status_code}) on {context}: {exc.message}",
        exc_info=exc if policy.log_level >= logging.ERROR else None,
    )

    expose = policy.expose_message and exc.is_operational
    message = exc.message if expose or settings.is_development else SOMETHING_WENT_WRONG

    errors = None
    if isinstance(exc, ValidationError):
        errors = [error.to_dict() for error in exc.errors]
    return error_response(message, exc.status_code, errors)


def register_exception_handlers(app: FastAPI, settings: ModeliaConfig) -> None:
    """Install the handlers that turn every failure into the error envelope."""

    @app.exception_handler(AppError)
    async def handle_app_error(request: Request, exc: AppError) -> JSONResponse:
        return _render_app_error(request, exc, settings)

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError) -> JSONResponse:
        error = ValidationError(field_errors(exc.errors()))
        return _render_app_error(request, error, settings, body=exc.body)

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_exception(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        if exc.status_code == 404:
            logger.info(f"No route for {request.method} {request.url.path}")
            return error_response(ROUTE_NOT_FOUND, 404)
        return error_response(str(exc.detail), exc.status_code)

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
        logger.error(f"Unhandled error on {_describe_request(request)}", exc_info=exc)
        message = str(exc) if settings.is_development else SOMETHING_WENT_WRONG
        return error_response(message or SOMETHING_WENT_WRONG, 500)


# ---------------------------------------------------------------------------
# Routes.
# ---------------------------------------------------------------------------

router = APIRouter(prefix="/v1")


def _auth_payload(result: AuthResult) -> dict[str, Any]:
    auth = AuthOut(token=result.token, user=UserOut.model_validate(result.user))
    return auth.model_dump(mode="json", by_alias=True)


def parse_limit(raw: str | None, default: int) -> int:
    """Parse the ``limit`` query value; anything but a positive integer is *default*."""
    if raw is None:
        return default
    try:
        value = int(raw.strip())
    except ValueError:
        return default
    return value if value >= 1 else default


@router.post("/auth/signup", status_code=201)
async def signup(
    payload: SignupRequest,
    services: AppServices = Depends(get_services),
) -> JSONResponse:
    """Create an account and return a bearer token for it."""
    result = await services.auth.signup(payload.email, payload.password, payload.name)
    return success_response(_auth_payload(result), "User created successfully", status_code=201)


@router.post("/auth/login")
async def login(
    payload: LoginRequest,
    services: AppServices = Depends(get_services),
) -> JSONResponse:
    result = await services.auth.login(payload.email, payload.password)
    return success_response(_auth_payload(result), "Login successful")


@router.post("/generations", status_code=201)
async def create_generation(
    current_user: TokenPayload = Depends(require_user),
    services: AppServices = Depends(get_services),
    image: UploadFile | None = File(None),
    prompt: str | None = Form(None),
    style: str | None = Form(None),
) -> JSONResponse:
    """Upload a source image and run one generation.

    The image is checked first (400), then the text fields (422), and only
    then is anything written to disk.

    Raises:
        ClientError: Missing image, unsupported type, or too large.
        ValidationError: Invalid ``prompt`` or ``style``.
        ModelOverloadedError: Simulated overload; the upload is discarded.
    """
    if image is None or not image.filename:
        raise ClientError(IMAGE_REQUIRED)

    fields = {name: value for name, value in (("prompt", prompt), ("style", style)) if value is not None}
    try:
        form = GenerationForm.model_validate(fields)
    except PydanticValidationError as exc:
        raise ValidationError(field_errors(exc.errors())) from exc

    upload = await store_upload(image, current_user.id, services.files, services.config)
    generation = await services.generation_service.create_generation(
        current_user.id, form.prompt, form.style, upload
    )
    data = GenerationOut.model_validate(generation).model_dump(mode="json", by_alias=True)
    return success_response(data, "Generation created successfully", status_code=201)


@router.get("/generations")
async def list_generations(
    limit: str | None = None,
    current_user: TokenPayload = Depends(require_user),
    services: AppServices = Depends(get_services),
) -> JSONResponse:
    """Return the caller's most recent generations, newest first."""
    count = parse_limit(limit, services.config.history_limit)
    generations = await services.generation_service.get_recent_generations(current_user.id, count)
    data = [
        GenerationOut.model_validate(generation).model_dump(mode="json", by_alias=True)
        for generation in generations
    ]
    return success_response(data)


@router.get("/files/{user_id}/{filename}")
async def download_file(
    user_id: str,
    filename: str,
    current_user: TokenPayload = Depends(require_file_user),
    services: AppServices = Depends(get_services),
) -> FileResponse:
    """Stream a file from the caller's own namespace.

    Raises:
        ForbiddenError: *user_id* is not the caller, or the path escapes.
        NotFoundError: No such file.
    """
    path = services.files.serve(current_user.id, user_id, filename)
    return FileResponse(path)


# ---------------------------------------------------------------------------
# Application factory.
# ---------------------------------------------------------------------------


def create_app(
    settings: ModeliaConfig | None = None,
    *,
    backend: GenerationBackend | None = None,
) -> FastAPI:
    """Build a configured FastAPI application.

    Args:
        settings: Configuration to use; defaults to the global ``config``.
        backend: Generation backend override, mainly for tests.

    Returns:
        The application.  Services are created when its lifespan starts.
    """
    settings = settings or config

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        """Wire services on startup and release the engine on shutdown."""
        app.state.services = build_services(settings, backend=backend)
        logger.info(f"Modelia API ready ({settings.environment}), uploads in {settings.uploads_dir}")

        yield  # Application runs here.

        app.state.services.close()
        logger.info("Database engine disposed on shutdown.")

    app = FastAPI(
        title="Modelia Studio",
        description="Image style generation API with authenticated per-user storage.",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app, settings)
    app.include_router(router)

    @app.get("/health")
    async def health() -> JSONResponse:
        return success_response(
            {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}
        )

    return app


app = create_app()


def main() -> None:
    """Launch the uvicorn ASGI server.

    Reads host, port and log level from :data:`~modelia.core.config.config`
    (``MODELIA_SERVER_HOST``, ``MODELIA_SERVER_PORT``, ``MODELIA_LOG_LEVEL``).
    Defaults to ``0.0.0.0:3001``.

    This function is registered as the ``modelia`` console script in
    ``pyproject.toml``.
    """
    import uvicorn

    logging.basicConfig(
        level=config.log_level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    uvicorn.run(
        "modelia.api.main:app",
        host=config.server_host,
        port=config.server_port,
        reload=False,
    )


if __name__ == "__main__":
    main()
