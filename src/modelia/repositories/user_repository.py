"""Persistence boundary for user records.

Same shape as :mod:`modelia.repositories.generation_repository`: one breaker
per operation, ORM work on a worker thread.
"""

from __future__ import annotations

import asyncio
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import sessionmaker

from modelia.core.circuit_breaker import BreakerSettings, CircuitBreaker
from modelia.core.db_models import User


class UserRepository:
    """Lookups and inserts over the ``users`` table.

    Args:
        session_factory: SQLAlchemy session factory.
        breaker_settings: Tuning shared by this repository's breakers.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        breaker_settings: BreakerSettings | None = None,
    ) -> None:
        self._session_factory = session_factory

        self._find_by_id_breaker = CircuitBreaker(
            self._find_by_id, "UserRepository.findById", breaker_settings
        )
        self._find_by_email_breaker = CircuitBreaker(
            self._find_by_email, "UserRepository.findByEmail", breaker_settings
        )
        self._create_breaker = CircuitBreaker(
            self._create, "UserRepository.create", breaker_settings
        )

    @property
    def breakers(self) -> dict[str, CircuitBreaker]:
        return {
            "find_by_id": self._find_by_id_breaker,
            "find_by_email": self._find_by_email_breaker,
            "create": self._create_breaker,
        }

    async def find_by_id(self, user_id: int) -> User | None:
        return await self._find_by_id_breaker(user_id)

    async def find_by_email(self, email: str) -> User | None:
        """Exact, case-sensitive email lookup."""
        return await self._find_by_email_breaker(email)

    async def create(self, data: dict[str, Any]) -> User:
        """Insert a user.  *data* must already carry the password hash."""
        return await self._create_breaker(data)

    async def exists_by_email(self, email: str) -> bool:
        return await self.find_by_email(email) is not None

    async def _find_by_id(self, user_id: int) -> User | None:
        return await asyncio.to_thread(self._find_by_id_sync, user_id)

    async def _find_by_email(self, email: str) -> User | None:
        return await asyncio.to_thread(self._find_by_email_sync, email)

    async def _create(self, data: dict[str, Any]) -> User:
        return await asyncio.to_thread(self._create_sync, data)

    def _find_by_id_sync(self, user_id: int) -> User | None:
        with self._session_factory() as session:
            return session.get(User, user_id)

    def _find_by_email_sync(self, email: str) -> User | None:
        with self._session_factory() as session:
            return session.scalars(select(User).where(User.email == email).limit(1)).first()

    def _create_sync(self, data: dict[str, Any]) -> User:
        with self._session_factory() as session:
            user = User(**data)
            session.add(user)
            session.commit()
            session.refresh(user)
            return user
