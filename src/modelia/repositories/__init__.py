"""Circuit-broken persistence boundaries for users and generations."""

from modelia.repositories.generation_repository import GenerationRepository
from modelia.repositories.user_repository import UserRepository

__all__ = ["GenerationRepository", "UserRepository"]
