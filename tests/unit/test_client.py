"""Tests for modelia.client.api_client using ``httpx.MockTransport``."""

from __future__ import annotations

import asyncio
from pathlib import Path

import httpx
import pytest

from modelia.client import (
    AuthenticationFailed,
    ModeliaClient,
    ModelOverloaded,
    NetworkError,
    RequestFailed,
    ValidationFailed,
)
from modelia.client.api_client import NETWORK_ERROR_MESSAGE

BASE_URL = "http://testserver/v1"

GENERATION = {
    "id": 3,
    "userId": 1,
    "prompt": "make it pop",
    "style": "modern",
    "imageUrl": "/files/1/img_1-2.jpg",
    "resultUrl": "/files/1/result_1-2.jpg",
    "status": "completed",
    "createdAt": "2024-05-01T12:00:00",
}

AUTH = {
    "token": "tok-123",
    "user": {"id": 1, "email": "ada@example.com", "name": "Ada", "createdAt": "2024-05-01T12:00:00"},
}


def _client(handler, token: str | None = None) -> ModeliaClient:
    return ModeliaClient(BASE_URL, token=token, transport=httpx.MockTransport(handler))


def _ok(data, status: int = 200) -> httpx.Response:
    return httpx.Response(status, json={"success": True, "data": data})


def _fail(status: int, message: str, errors=None) -> httpx.Response:
    error = {"message": message}
    if errors is not None:
        error["errors"] = errors
    return httpx.Response(status, json={"success": False, "error": error})


def _run(client: ModeliaClient, coro_factory):
    async def run():
        async with client:
            return await coro_factory(client)

    return asyncio.run(run())


class TestAuth:
    def test_signup_stores_token(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["body"] = request.content
            return _ok(AUTH, 201)

        client = _client(handler)
        auth = _run(client, lambda c: c.signup("ada@example.com", "secret1", "Ada"))
        assert auth.user.email == "ada@example.com"
        assert client.token == "tok-123"
        assert seen["url"] == f"{BASE_URL}/auth/signup"
        assert b'"name":"Ada"' in seen["body"].replace(b" ", b"")

    def test_login_failure_is_authentication_failed(self):
        client = _client(lambda request: _fail(401, "Invalid credentials"), token="old")
        with pytest.raises(AuthenticationFailed, match="Invalid credentials"):
            _run(client, lambda c: c.login("ada@example.com", "wrong"))
        assert client.token is None

    def test_conflict_is_request_failed(self):
        client = _client(lambda request: _fail(409, "User already exists"))
        with pytest.raises(RequestFailed) as excinfo:
            _run(client, lambda c: c.signup("ada@example.com", "secret1", "Ada"))
        assert excinfo.value.status_code == 409


class TestGenerations:
    def test_create_sends_multipart_with_bearer(self, jpeg_bytes: bytes):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["auth"] = request.headers.get("authorization")
            seen["content_type"] = request.headers.get("content-type")
            seen["body"] = request.content
            return _ok(GENERATION, 201)

        client = _client(handler, token="tok-123")
        generation = _run(client, lambda c: c.create_generation("make it pop", "modern", jpeg_bytes))

        assert generation.result_url == "/files/1/result_1-2.jpg"
        assert seen["auth"] == "Bearer tok-123"
        assert seen["content_type"].startswith("multipart/form-data")
        assert b'name="prompt"' in seen["body"]
        assert b'name="image"; filename="image.jpg"' in seen["body"]
        assert jpeg_bytes in seen["body"]

    def test_create_reads_path(self, temp_dir: Path, png_bytes: bytes):
        image = temp_dir / "shirt.png"
        image.write_bytes(png_bytes)
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["body"] = request.content
            return _ok(GENERATION, 201)

        _run(_client(handler, "t"), lambda c: c.create_generation("make it pop", "modern", image))
        assert b'filename="shirt.png"' in seen["body"]
        assert b"Content-Type: image/png" in seen["body"]

    def test_503_is_model_overloaded(self, jpeg_bytes: bytes):
        client = _client(lambda request: _fail(503, "Model is currently overloaded. Please try again."))
        with pytest.raises(ModelOverloaded, match="Model overloaded"):
            _run(client, lambda c: c.create_generation("make it pop", "modern", jpeg_bytes))

    def test_422_lists_field_errors(self, jpeg_bytes: bytes):
        errors = [{"field": "style", "message": "Input should be 'casual'"}]
        client = _client(lambda request: _fail(422, "Validation failed", errors))
        with pytest.raises(ValidationFailed) as excinfo:
            _run(client, lambda c: c.create_generation("make it pop", "elegant", jpeg_bytes))
        assert excinfo.value.message == "Validation failed - style: Input should be 'casual'"
        assert excinfo.value.errors == errors

    def test_non_json_error_uses_default_message(self, jpeg_bytes: bytes):
        client = _client(lambda request: httpx.Response(502, text="bad gateway"))
        with pytest.raises(RequestFailed, match="Generation failed"):
            _run(client, lambda c: c.create_generation("make it pop", "modern", jpeg_bytes))

    def test_transport_failure_is_network_error(self, jpeg_bytes: bytes):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(NetworkError, match=NETWORK_ERROR_MESSAGE):
            _run(_client(handler), lambda c: c.create_generation("abc", "modern", jpeg_bytes))

    def test_get_recent_sends_limit(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["limit"] = request.url.params.get("limit")
            return _ok([GENERATION])

        items = _run(_client(handler, "t"), lambda c: c.get_recent(3))
        assert seen["limit"] == "3"
        assert [g.id for g in items] == [3]


class TestFiles:
    def test_file_url_appends_encoded_token(self):
        client = ModeliaClient(BASE_URL, token="a b+c")
        url = client.file_url("/files/1/img.jpg")
        assert url.startswith(f"{BASE_URL}/files/1/img.jpg?authorization=")
        assert httpx.URL(url).params["authorization"] == "a b+c"

    def test_file_url_without_token(self):
        assert ModeliaClient(BASE_URL).file_url("files/1/img.jpg") == f"{BASE_URL}/files/1/img.jpg"

    def test_absolute_and_empty_urls(self):
        client = ModeliaClient(BASE_URL, token="t")
        assert client.file_url("https://cdn.example.com/x.jpg") == "https://cdn.example.com/x.jpg"
        assert client.file_url("") == ""

    def test_download_file(self, jpeg_bytes: bytes):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["token"] = request.url.params.get("authorization")
            return httpx.Response(200, content=jpeg_bytes, headers={"content-type": "image/jpeg"})

        data = _run(_client(handler, "tok"), lambda c: c.download_file("/files/1/img.jpg"))
        assert data == jpeg_bytes
        assert seen["token"] == "tok"

    def test_download_forbidden(self):
        client = _client(lambda request: _fail(403, "You do not have permission to access this file"), "t")
        with pytest.raises(RequestFailed) as excinfo:
            _run(client, lambda c: c.download_file("/files/2/img.jpg"))
        assert excinfo.value.status_code == 403
