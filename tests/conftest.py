"""Shared pytest fixtures for Modelia tests."""

from __future__ import annotations

import io
import shutil
import tempfile
from pathlib import Path
from typing import Generator

import pytest
from fastapi.testclient import TestClient
from PIL import Image

from modelia.api.main import create_app
from modelia.core.circuit_breaker import BreakerSettings
from modelia.core.config import ModeliaConfig
from modelia.core.database import create_db_engine, create_session_factory, init_db
from modelia.core.files import FileNamespace
from modelia.repositories import GenerationRepository, UserRepository
from modelia.services import AuthService


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files.

    Yields:
        Path to temporary directory

    Cleanup:
        Directory is removed after test completes
    """
    temp_path = Path(tempfile.mkdtemp())
    try:
        yield temp_path
    finally:
        shutil.rmtree(temp_path, ignore_errors=True)


@pytest.fixture
def test_config(temp_dir: Path) -> ModeliaConfig:
    """Create a test configuration rooted in a temporary directory.

    Faults are disabled and the simulated delay is zero so tests are fast and
    deterministic; tests that need faults inject their own backend or RNG.

    Args:
        temp_dir: Temporary directory from fixture

    Returns:
        ModeliaConfig instance for testing
    """
    return ModeliaConfig(
        environment="test",
        database_url=f"sqlite:///{temp_dir / 'modelia.db'}",
        uploads_dir=temp_dir / "uploads",
        jwt_secret="test-secret",
        bcrypt_rounds=4,
        fault_probability=0.0,
        delay_min_seconds=0.0,
        delay_max_seconds=0.0,
        _env_file=None,
    )


@pytest.fixture
def session_factory(test_config: ModeliaConfig):
    """Session factory over a freshly initialised SQLite database."""
    engine = create_db_engine(test_config.database_url)
    init_db(engine)
    try:
        yield create_session_factory(engine)
    finally:
        engine.dispose()


@pytest.fixture
def breaker_settings() -> BreakerSettings:
    return BreakerSettings(timeout=5.0)


@pytest.fixture
def user_repository(session_factory, breaker_settings) -> UserRepository:
    return UserRepository(session_factory, breaker_settings)


@pytest.fixture
def generation_repository(session_factory, breaker_settings) -> GenerationRepository:
    return GenerationRepository(session_factory, breaker_settings)


@pytest.fixture
def auth_service(user_repository, test_config) -> AuthService:
    return AuthService(user_repository, test_config)


@pytest.fixture
def file_namespace(test_config: ModeliaConfig) -> FileNamespace:
    return FileNamespace(test_config.uploads_dir)


def _encode_image(fmt: str) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (8, 8), color=(200, 30, 30)).save(buffer, format=fmt)
    return buffer.getvalue()


@pytest.fixture
def jpeg_bytes() -> bytes:
    """A small but real JPEG image."""
    return _encode_image("JPEG")


@pytest.fixture
def png_bytes() -> bytes:
    """A small but real PNG image."""
    return _encode_image("PNG")


@pytest.fixture
def test_client(test_config: ModeliaConfig) -> Generator[TestClient, None, None]:
    """TestClient over an app built from the test configuration.

    Entering the client runs the lifespan, so services are wired against the
    temporary database and uploads directory.
    """
    app = create_app(test_config)
    with TestClient(app) as client:
        yield client


def _signup(client: TestClient, email: str = "ada@example.com", name: str = "Ada") -> dict:
    resp = client.post(
        "/v1/auth/signup",
        json={"email": email, "password": "secret1", "name": name},
    )
    assert resp.status_code == 201, resp.text
    return resp.json()["data"]


@pytest.fixture
def signup_user(test_client: TestClient):
    """Sign up additional users: ``signup_user("bob@example.com")`` returns ``data``."""

    def _create(email: str, name: str = "Someone") -> dict:
        return _signup(test_client, email=email, name=name)

    return _create


@pytest.fixture
def auth_data(test_client: TestClient) -> dict:
    """Token and user of a freshly signed-up account."""
    return _signup(test_client)


@pytest.fixture
def auth_headers(auth_data: dict) -> dict[str, str]:
    return {"Authorization": f"Bearer {auth_data['token']}"}
