"""Python client for the Modelia API.

Provides :class:`ModeliaClient` for the HTTP endpoints and
:class:`GenerateController` for the retry/abort workflow a studio UI drives.
"""

from modelia.client.api_client import (
    ApiError,
    AuthenticationFailed,
    ModeliaClient,
    ModelOverloaded,
    NetworkError,
    RequestFailed,
    ValidationFailed,
)
from modelia.client.retry_controller import GenerateController, GenerationHistory, RetryPolicy

__all__ = [
    "ApiError",
    "AuthenticationFailed",
    "GenerateController",
    "GenerationHistory",
    "ModelOverloaded",
    "ModeliaClient",
    "NetworkError",
    "RequestFailed",
    "RetryPolicy",
    "ValidationFailed",
]
