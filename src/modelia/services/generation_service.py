"""Generation request lifecycle.

One call to :meth:`GenerationService.create_generation` walks a small state
machine::

    received ──▶ fault-check ──┬──▶ failed     (upload deleted, 503, no row)
                               └──▶ processing ──▶ persisted (completed row)

The fault check, simulated latency and result artifact all live in the
configured :class:`~modelia.core.backends.GenerationBackend`; this service
owns the bookkeeping around it: secure URLs, cleanup of rejected uploads,
and persistence.

Files written before a persistence failure are left on disk.  Cleanup here
is best effort, not transactional.
"""

from __future__ import annotations

import logging

import aiofiles.os

from modelia.core.backends import GenerationBackend
from modelia.core.db_models import Generation, GenerationStatus
from modelia.core.errors import ModelOverloadedError
from modelia.core.files import FileNamespace, StoredUpload
from modelia.repositories.generation_repository import (
    DEFAULT_HISTORY_LIMIT,
    GenerationRepository,
)

logger = logging.getLogger(__name__)


class GenerationService:
    """Orchestrates generation requests end to end.

    Args:
        repository: Generation persistence boundary.
        backend: Generation backend (simulated by default).
        files: Secure file namespace used to build URLs.
    """

    def __init__(
        self,
        repository: GenerationRepository,
        backend: GenerationBackend,
        files: FileNamespace,
    ) -> None:
        self._repository = repository
        self._backend = backend
        self._files = files

    async def create_generation(
        self,
        user_id: int,
        prompt: str,
        style: str,
        upload: StoredUpload,
    ) -> Generation:
        """Run one generation request and persist the completed record.

        Args:
            user_id: Owner of the request and of the uploaded file.
            prompt: Validated prompt text.
            style: Validated style.
            upload: The stored source image.

        Returns:
            The persisted generation with status ``completed``.

        Raises:
            ModelOverloadedError: The backend refused the request.  The upload
                has been deleted and nothing was written to the database.
            DownstreamError: Persistence failed after the result was written.
        """
        try:
            result_path = await self._backend.generate(upload.path, prompt=prompt, style=style)
        except ModelOverloadedError:
            await self._discard_upload(upload)
            raise

        generation = await self._repository.create(
            {
                "user_id": user_id,
                "prompt": prompt,
                "style": style,
                "image_url": self._files.secure_url(user_id, upload.filename),
                "result_url": self._files.secure_url(user_id, result_path.name),
                "status": GenerationStatus.COMPLETED.value,
            }
        )
        logger.info(f"Generation {generation.id} completed for user {user_id} ({style})")
        return generation

    async def get_recent_generations(
        self, user_id: int, limit: int = DEFAULT_HISTORY_LIMIT
    ) -> list[Generation]:
        return await self._repository.find_by_user_id(user_id, limit)

    async def get_generation_by_id(self, generation_id: int) -> Generation | None:
        return await self._repository.find_by_id(generation_id)

    async def _discard_upload(self, upload: StoredUpload) -> None:
        try:
            await aiofiles.os.remove(upload.path)
        except FileNotFoundError:
            logger.debug(f"Upload already gone: {upload.filename}")
        else:
            logger.info(f"Removed rejected upload {upload.filename}")
