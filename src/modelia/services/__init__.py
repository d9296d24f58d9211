"""Business logic: authentication and the generation lifecycle."""

from modelia.services.auth_service import AuthResult, AuthService, PublicUser, TokenPayload
from modelia.services.generation_service import GenerationService

__all__ = ["AuthResult", "AuthService", "GenerationService", "PublicUser", "TokenPayload"]
