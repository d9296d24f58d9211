"""Tests for modelia.repositories — persistence behind circuit breakers.

Repositories run against a real SQLite file from the ``session_factory``
fixture; breaker behaviour is exercised by breaking the session factory.
"""

from __future__ import annotations

import asyncio
from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from modelia.core.circuit_breaker import BreakerSettings, BreakerState
from modelia.core.db_models import Generation
from modelia.core.errors import BreakerOpenError, DownstreamError
from modelia.repositories import GenerationRepository, UserRepository


def _user(repo: UserRepository, email: str = "ada@example.com"):
    return asyncio.run(repo.create({"email": email, "password": "hash", "name": "Ada"}))


def _generation(repo: GenerationRepository, user_id: int, prompt: str = "make it pop"):
    return asyncio.run(
        repo.create(
            {
                "user_id": user_id,
                "prompt": prompt,
                "style": "modern",
                "image_url": f"/files/{user_id}/img_1.jpg",
                "result_url": f"/files/{user_id}/result_1.jpg",
                "status": "completed",
            }
        )
    )


class TestUserRepository:
    def test_create_assigns_id_and_timestamp(self, user_repository):
        user = _user(user_repository)
        assert user.id is not None
        assert user.created_at is not None

    def test_find_by_email(self, user_repository):
        created = _user(user_repository)
        found = asyncio.run(user_repository.find_by_email("ada@example.com"))
        assert found.id == created.id

    def test_find_by_email_is_exact(self, user_repository):
        _user(user_repository)
        assert asyncio.run(user_repository.find_by_email("ADA@example.com")) is None

    def test_find_by_id_missing(self, user_repository):
        assert asyncio.run(user_repository.find_by_id(999)) is None

    def test_exists_by_email(self, user_repository):
        _user(user_repository)
        assert asyncio.run(user_repository.exists_by_email("ada@example.com"))
        assert not asyncio.run(user_repository.exists_by_email("bob@example.com"))

    def test_duplicate_email_is_downstream_error(self, user_repository):
        _user(user_repository)
        with pytest.raises(DownstreamError):
            _user(user_repository)


class TestGenerationRepository:
    def test_create_and_find_by_id(self, user_repository, generation_repository):
        user = _user(user_repository)
        created = _generation(generation_repository, user.id)
        found = asyncio.run(generation_repository.find_by_id(created.id))
        assert found.prompt == "make it pop"
        assert found.created_at == created.created_at

    def test_default_status_is_pending(self, user_repository, generation_repository):
        user = _user(user_repository)
        generation = asyncio.run(
            generation_repository.create(
                {"user_id": user.id, "prompt": "abc", "style": "casual", "image_url": "/files/1/x"}
            )
        )
        assert generation.status == "pending"
        assert generation.result_url is None

    def test_find_by_user_id_newest_first_and_limited(
        self, user_repository, generation_repository, session_factory
    ):
        user = _user(user_repository)
        ids = [_generation(generation_repository, user.id, f"prompt {i}").id for i in range(7)]

        # Spread timestamps so ordering does not depend on clock resolution.
        with session_factory() as session:
            for offset, generation_id in enumerate(ids):
                row = session.get(Generation, generation_id)
                row.created_at = row.created_at + timedelta(seconds=offset)
            session.commit()

        recent = asyncio.run(generation_repository.find_by_user_id(user.id))
        assert [g.id for g in recent] == list(reversed(ids))[:5]

        two = asyncio.run(generation_repository.find_by_user_id(user.id, 2))
        assert [g.id for g in two] == [ids[-1], ids[-2]]

    def test_find_by_user_id_is_per_user(self, user_repository, generation_repository):
        ada = _user(user_repository)
        bob = _user(user_repository, "bob@example.com")
        _generation(generation_repository, ada.id)
        assert asyncio.run(generation_repository.find_by_user_id(bob.id)) == []

    def test_update(self, user_repository, generation_repository):
        user = _user(user_repository)
        created = _generation(generation_repository, user.id)
        updated = asyncio.run(generation_repository.update(created.id, {"status": "failed"}))
        assert updated.status == "failed"

    def test_update_missing_returns_none(self, generation_repository):
        assert asyncio.run(generation_repository.update(123, {"status": "failed"})) is None

    def test_update_rejects_unknown_fields(self, user_repository, generation_repository):
        user = _user(user_repository)
        created = _generation(generation_repository, user.id)
        with pytest.raises(DownstreamError) as excinfo:
            asyncio.run(generation_repository.update(created.id, {"user_id": 42}))
        assert isinstance(excinfo.value.__cause__, ValueError)

    def test_delete(self, user_repository, generation_repository):
        user = _user(user_repository)
        created = _generation(generation_repository, user.id)
        assert asyncio.run(generation_repository.delete(created.id)) is True
        assert asyncio.run(generation_repository.delete(created.id)) is False

    def test_unknown_user_violates_foreign_key(self, generation_repository):
        with pytest.raises(DownstreamError):
            _generation(generation_repository, user_id=999)


class TestRepositoryBreakers:
    """Every repository operation has its own breaker."""

    def test_breaker_names(self, user_repository, generation_repository):
        assert {b.name for b in user_repository.breakers.values()} == {
            "UserRepository.findById",
            "UserRepository.findByEmail",
            "UserRepository.create",
        }
        assert generation_repository.breakers["find_by_user_id"].name == (
            "GenerationRepository.findByUserId"
        )

    def test_failing_operation_opens_only_its_breaker(self):
        broken_factory = MagicMock(side_effect=RuntimeError("database is locked"))
        repo = GenerationRepository(broken_factory, BreakerSettings(volume_threshold=2))

        async def run():
            for _ in range(2):
                with pytest.raises(DownstreamError):
                    await repo.find_by_id(1)
            with pytest.raises(BreakerOpenError):
                await repo.find_by_id(1)

        asyncio.run(run())
        assert repo.breakers["find_by_id"].state is BreakerState.OPEN
        assert repo.breakers["create"].state is BreakerState.CLOSED
        assert broken_factory.call_count == 2
