"""Persistence boundary for generation records.

Each public method runs through its own :class:`CircuitBreaker`, built when
the repository is constructed.  Blocking ORM work is pushed onto a worker
thread with :func:`asyncio.to_thread` so the event loop keeps serving other
requests while a query waits on the database.

No method performs authorization; callers decide who may see which rows.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.orm import sessionmaker

from modelia.core.circuit_breaker import BreakerSettings, CircuitBreaker
from modelia.core.db_models import Generation

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_LIMIT = 5

# Columns an update may touch.
_UPDATABLE_FIELDS = frozenset({"prompt", "style", "image_url", "result_url", "status"})


class GenerationRepository:
    """CRUD over the ``generations`` table.

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

        self._create_breaker = CircuitBreaker(
            self._create, "GenerationRepository.create", breaker_settings
        )
        self._find_by_id_breaker = CircuitBreaker(
            self._find_by_id, "GenerationRepository.findById", breaker_settings
        )
        self._find_by_user_id_breaker = CircuitBreaker(
            self._find_by_user_id, "GenerationRepository.findByUserId", breaker_settings
        )
        self._update_breaker = CircuitBreaker(
            self._update, "GenerationRepository.update", breaker_settings
        )
        self._delete_breaker = CircuitBreaker(
            self._delete, "GenerationRepository.delete", breaker_settings
        )

    @property
    def breakers(self) -> dict[str, CircuitBreaker]:
        """Breakers keyed by operation name."""
        return {
            "create": self._create_breaker,
            "find_by_id": self._find_by_id_breaker,
            "find_by_user_id": self._find_by_user_id_breaker,
            "update": self._update_breaker,
            "delete": self._delete_breaker,
        }

    # -- Public interface ---------------------------------------------------

    async def create(self, data: dict[str, Any]) -> Generation:
        """Insert a generation and return it with its id and timestamp.

        A ``user_id`` that references no user violates the foreign key and
        surfaces as a generic ``DownstreamError``.
        """
        return await self._create_breaker(data)

    async def find_by_id(self, generation_id: int) -> Generation | None:
        return await self._find_by_id_breaker(generation_id)

    async def find_by_user_id(
        self, user_id: int, limit: int = DEFAULT_HISTORY_LIMIT
    ) -> list[Generation]:
        """Most recent generations of *user_id*, newest first, at most *limit*."""
        return await self._find_by_user_id_breaker(user_id, limit)

    async def update(self, generation_id: int, changes: dict[str, Any]) -> Generation | None:
        """Apply *changes* to a generation; ``None`` if it does not exist."""
        return await self._update_breaker(generation_id, changes)

    async def delete(self, generation_id: int) -> bool:
        """Delete a generation; True iff a row was removed."""
        return await self._delete_breaker(generation_id)

    # -- Breaker-wrapped operations ----------------------------------------

    async def _create(self, data: dict[str, Any]) -> Generation:
        return await asyncio.to_thread(self._create_sync, data)

    async def _find_by_id(self, generation_id: int) -> Generation | None:
        return await asyncio.to_thread(self._find_by_id_sync, generation_id)

    async def _find_by_user_id(self, user_id: int, limit: int) -> list[Generation]:
        return await asyncio.to_thread(self._find_by_user_id_sync, user_id, limit)

    async def _update(self, generation_id: int, changes: dict[str, Any]) -> Generation | None:
        return await asyncio.to_thread(self._update_sync, generation_id, changes)

    async def _delete(self, generation_id: int) -> bool:
        return await asyncio.to_thread(self._delete_sync, generation_id)

    # -- Blocking ORM work --------------------------------------------------

    def _create_sync(self, data: dict[str, Any]) -> Generation:
        with self._session_factory() as session:
            generation = Generation(**data)
            session.add(generation)
            session.commit()
            # Reload so the timestamp matches what later reads return.
            session.refresh(generation)
            return generation

    def _find_by_id_sync(self, generation_id: int) -> Generation | None:
        with self._session_factory() as session:
            return session.get(Generation, generation_id)

    def _find_by_user_id_sync(self, user_id: int, limit: int) -> list[Generation]:
        stmt = (
            select(Generation)
            .where(Generation.user_id == user_id)
            .order_by(Generation.created_at.desc(), Generation.id.desc())
            .limit(limit)
        )
        with self._session_factory() as session:
            return list(session.scalars(stmt).all())

    def _update_sync(self, generation_id: int, changes: dict[str, Any]) -> Generation | None:
        unknown = set(changes) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update generation fields: {sorted(unknown)}")

        with self._session_factory() as session:
            generation = session.get(Generation, generation_id)
            if generation is None:
                return None
            for field, value in changes.items():
                setattr(generation, field, value)
            session.commit()
            session.refresh(generation)
            return generation

    def _delete_sync(self, generation_id: int) -> bool:
        with self._session_factory() as session:
            result = session.execute(delete(Generation).where(Generation.id == generation_id))
            session.commit()
            return result.rowcount > 0
