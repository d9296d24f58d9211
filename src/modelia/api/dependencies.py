"""Service container and FastAPI dependencies.

The lifespan handler in :mod:`modelia.api.main` builds one
:class:`AppServices` per application and stores it on ``app.state``; route
handlers receive it (and the authenticated user) through the dependency
functions below.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from fastapi import Request
from sqlalchemy.engine import Engine

from modelia.core.backends import GenerationBackend, backend_registry
from modelia.core.circuit_breaker import BreakerSettings
from modelia.core.config import ModeliaConfig
from modelia.core.database import create_db_engine, create_session_factory, init_db
from modelia.core.errors import NO_TOKEN, UnauthorizedError
from modelia.core.files import FileNamespace
from modelia.repositories import GenerationRepository, UserRepository
from modelia.services import AuthService, GenerationService, TokenPayload

logger = logging.getLogger(__name__)

BEARER_PREFIX = "Bearer "


@dataclass
class AppServices:
    """Everything a request handler needs, wired once per application."""

    config: ModeliaConfig
    engine: Engine
    files: FileNamespace
    users: UserRepository
    generations: GenerationRepository
    auth: AuthService
    generation_service: GenerationService

    def close(self) -> None:
        self.engine.dispose()


def build_services(
    config: ModeliaConfig,
    backend: GenerationBackend | None = None,
) -> AppServices:
    """Create the engine, schema, repositories and services.

    Args:
        config: Application configuration.
        backend: Generation backend to use instead of the configured one.

    Returns:
        The wired service container.
    """
    engine = create_db_engine(config.database_url)
    init_db(engine)
    session_factory = create_session_factory(engine)

    breaker_settings = BreakerSettings.from_config(config)
    users = UserRepository(session_factory, breaker_settings)
    generations = GenerationRepository(session_factory, breaker_settings)

    files = FileNamespace(config.uploads_dir)
    if backend is None:
        backend = backend_registry.instantiate(config.generation_backend, config)
    logger.info(f"Using generation backend: {backend.name}")

    return AppServices(
        config=config,
        engine=engine,
        files=files,
        users=users,
        generations=generations,
        auth=AuthService(users, config),
        generation_service=GenerationService(generations, backend, files),
    )


def get_services(request: Request) -> AppServices:
    return request.app.state.services


def extract_bearer_token(header: str | None) -> str | None:
    """Return the token from an ``Authorization: Bearer <token>`` value."""
    if not header or not header.startswith(BEARER_PREFIX):
        return None
    token = header[len(BEARER_PREFIX) :].strip()
    return token or None


def _authenticate(request: Request, token: str | None) -> TokenPayload:
    if not token:
        raise UnauthorizedError(NO_TOKEN)
    return get_services(request).auth.verify_token(token)


def require_user(request: Request) -> TokenPayload:
    """Authenticate from the ``Authorization`` header.

    Raises:
        UnauthorizedError: No bearer token, or an invalid one.
    """
    return _authenticate(request, extract_bearer_token(request.headers.get("authorization")))


def require_file_user(request: Request) -> TokenPayload:
    """Authenticate a file download.

    Browsers cannot attach headers to ``<img src>`` requests, so the token may
    also arrive as the ``authorization`` query parameter, either bare or with
    the ``Bearer`` prefix.  The header wins when both are present.
    """
    token = extract_bearer_token(request.headers.get("authorization"))
    if token is None:
        query_value = request.query_params.get("authorization")
        if query_value:
            token = extract_bearer_token(query_value) or query_value.strip() or None
    return _authenticate(request, token)
