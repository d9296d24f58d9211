"""Async HTTP client for the Modelia API.

Wraps :class:`httpx.AsyncClient`, attaches the bearer token, unwraps the
response envelope and turns failures into typed :class:`ApiError`
subclasses::

    async with ModeliaClient("http://localhost:3001/v1") as client:
        await client.login("ada@example.com", "secret1")
        generation = await client.create_generation("make it pop", "modern", Path("shirt.jpg"))
        image_bytes = await client.download_file(generation.result_url)

Cancelling the task that awaits a request (for example through
:meth:`GenerateController.abort`) cancels the underlying HTTP request.
"""

from __future__ import annotations

import logging
import mimetypes
from pathlib import Path
from typing import Any

import aiofiles
import httpx

from modelia.api.models import AuthOut, GenerationOut

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "http://localhost:3001/v1"
DEFAULT_TIMEOUT = 30.0

MODEL_OVERLOADED_MESSAGE = "Model overloaded"
GENERATION_FAILED_MESSAGE = "Generation failed"
NETWORK_ERROR_MESSAGE = "Network error. Please check your connection."

# Mirrors the web studio's selector, which also offers "elegant"; the server
# rejects that value with a validation error.
CLIENT_STYLES = ("casual", "formal", "streetwear", "vintage", "modern", "elegant")


class ApiError(Exception):
    """Base class for client-side API failures.

    Attributes:
        message: Human-readable description.
        status_code: HTTP status, or None for transport failures.
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class ModelOverloaded(ApiError):
    """503 from the generation endpoint.  The only retryable failure."""


class ValidationFailed(ApiError):
    def __init__(self, message: str, errors: list[dict[str, str]], status_code: int = 422) -> None:
        super().__init__(message, status_code)
        self.errors = errors


class AuthenticationFailed(ApiError):
    pass


class RequestFailed(ApiError):
    pass


class NetworkError(ApiError):
    pass


def error_from_response(response: httpx.Response, default_message: str) -> ApiError:
    """Map a non-2xx response to the matching :class:`ApiError` subclass.

    Validation errors get their field errors appended to the message as
    ``"<message> - field: msg, field: msg"``.
    """
    status = response.status_code
    if status == 503:
        return ModelOverloaded(MODEL_OVERLOADED_MESSAGE, status)

    try:
        body = response.json()
    except ValueError:
        body = None

    error = body.get("error") if isinstance(body, dict) else None
    error = error if isinstance(error, dict) else {}
    message = error.get("message") or default_message
    field_errors = error.get("errors") or []

    if field_errors:
        details = ", ".join(f"{item.get('field')}: {item.get('message')}" for item in field_errors)
        message = f"{message} - {details}"

    if status == 422:
        return ValidationFailed(message, list(field_errors), status)
    if status == 401:
        return AuthenticationFailed(message, status)
    return RequestFailed(message, status)


class ModeliaClient:
    """Client for the ``/v1`` API.

    Args:
        base_url: API root including the version segment.
        token: Bearer token to start with; :meth:`signup` and :meth:`login`
            replace it.
        timeout: Request timeout in seconds.
        transport: Optional httpx transport (tests use ``httpx.MockTransport``).
    """

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        token: str | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.token = token
        self._http = httpx.AsyncClient(base_url=self.base_url, timeout=timeout, transport=transport)

    async def __aenter__(self) -> ModeliaClient:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    def logout(self) -> None:
        self.token = None

    # -- auth ---------------------------------------------------------------

    async def signup(self, email: str, password: str, name: str) -> AuthOut:
        data = await self._request_data(
            "POST",
            "/auth/signup",
            default_message="Signup failed",
            json={"email": email, "password": password, "name": name},
        )
        auth = AuthOut.model_validate(data)
        self.token = auth.token
        return auth

    async def login(self, email: str, password: str) -> AuthOut:
        data = await self._request_data(
            "POST",
            "/auth/login",
            default_message="Login failed",
            json={"email": email, "password": password},
        )
        auth = AuthOut.model_validate(data)
        self.token = auth.token
        return auth

    # -- generations --------------------------------------------------------

    async def create_generation(
        self,
        prompt: str,
        style: str,
        image: bytes | Path,
        *,
        filename: str | None = None,
        content_type: str | None = None,
    ) -> GenerationOut:
        """Upload *image* and run one generation.

        Args:
            prompt: Prompt text.
            style: Style name.
            image: Raw bytes or a path to read.
            filename: Name sent with the upload; defaults to the path's name
                or ``image.jpg``.
            content_type: MIME type; guessed from the filename if omitted.

        Raises:
            ModelOverloaded: The server reported a simulated overload.
            ValidationFailed: Prompt or style rejected.
            AuthenticationFailed: Missing or expired token.
            NetworkError: The request did not complete.
        """
        if isinstance(image, Path):
            async with aiofiles.open(image, "rb") as handle:
                content = await handle.read()
            filename = filename or image.name
        else:
            content = image
            filename = filename or "image.jpg"

        content_type = content_type or mimetypes.guess_type(filename)[0] or "image/jpeg"
        data = await self._request_data(
            "POST",
            "/generations",
            default_message=GENERATION_FAILED_MESSAGE,
            data={"prompt": prompt, "style": style},
            files={"image": (filename, content, content_type)},
        )
        return GenerationOut.model_validate(data)

    async def get_recent(self, limit: int = 5) -> list[GenerationOut]:
        data = await self._request_data(
            "GET",
            "/generations",
            default_message="Failed to fetch generations",
            params={"limit": limit},
        )
        return [GenerationOut.model_validate(item) for item in data]

    # -- files --------------------------------------------------------------

    def file_url(self, path: str) -> str:
        """Absolute URL for a secure file path, with the token as a query parameter.

        Absolute ``http(s)`` URLs are returned unchanged.
        """
        if not path:
            return ""
        if path.startswith(("http://", "https://")):
            return path
        url = f"{self.base_url}/{path.lstrip('/')}"
        if self.token:
            url = str(httpx.URL(url, params={"authorization": self.token}))
        return url

    async def download_file(self, path: str) -> bytes:
        """Fetch a file the current user owns."""
        response = await self._send("GET", self.file_url(path))
        if response.is_success:
            return response.content
        raise error_from_response(response, "Download failed")

    # -- plumbing -----------------------------------------------------------

    async def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        headers = kwargs.pop("headers", {})
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        try:
            response = await self._http.request(method, url, headers=headers, **kwargs)
        except httpx.TransportError as exc:
            logger.warning(f"{method} {url} failed: {exc}")
            raise NetworkError(NETWORK_ERROR_MESSAGE) from exc

        if response.status_code == 401:
            self.token = None
        return response

    async def _request_data(self, method: str, url: str, *, default_message: str, **kwargs: Any) -> Any:
        response = await self._send(method, url, **kwargs)
        if not response.is_success:
            raise error_from_response(response, default_message)
        return response.json()["data"]
