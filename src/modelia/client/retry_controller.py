"""Generation workflow state for interactive clients.

:class:`GenerateController` tracks one in-flight generation at a time: the
loading flag, the last error and a retry budget that only the overload
condition consumes.  Retrying is always an explicit call; the controller
never retries on its own.  :meth:`GenerateController.abort` cancels the
request task and resets state without recording a failure.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from collections.abc import Awaitable, Callable, Iterator
from dataclasses import dataclass
from pathlib import Path

from modelia.api.models import GenerationOut
from modelia.client.api_client import ApiError, ModeliaClient, ModelOverloaded

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_SIZE = 5


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff settings.

    Attributes:
        max_attempts: Retry budget.
        initial_delay: Delay in seconds before the first retry.
        max_delay: Upper bound on any delay, in seconds.
        backoff_multiplier: Growth factor per retry already spent.
    """

    max_attempts: int = 3
    initial_delay: float = 1.0
    max_delay: float = 4.0
    backoff_multiplier: float = 2.0

    def delay_for(self, retry_count: int) -> float:
        return min(self.initial_delay * self.backoff_multiplier**retry_count, self.max_delay)


class GenerateController:
    """Drives ``create_generation`` calls with abort and manual retry.

    Args:
        client: API client used for the requests.
        on_success: Called with the generation after a successful request.
        on_error: Called with the :class:`ApiError` after a failed request.
        policy: Backoff settings; ``policy.max_attempts`` is the retry budget
            unless *max_retries* is given.
        max_retries: Override for the retry budget.
        sleep: Awaitable sleep used between retries.
    """

    def __init__(
        self,
        client: ModeliaClient,
        *,
        on_success: Callable[[GenerationOut], None] | None = None,
        on_error: Callable[[ApiError], None] | None = None,
        policy: RetryPolicy | None = None,
        max_retries: int | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._client = client
        self._on_success = on_success
        self._on_error = on_error
        self.policy = policy or RetryPolicy()
        self.max_retries = max_retries if max_retries is not None else self.policy.max_attempts
        self._sleep = sleep

        self._task: asyncio.Task | None = None
        self._is_loading = False
        self._error: ApiError | None = None
        self._retry_count = 0

    @property
    def is_loading(self) -> bool:
        return self._is_loading

    @property
    def error(self) -> ApiError | None:
        return self._error

    @property
    def retry_count(self) -> int:
        return self._retry_count

    @property
    def can_retry(self) -> bool:
        return self._retry_count < self.max_retries and isinstance(self._error, ModelOverloaded)

    async def generate(self, prompt: str, style: str, image: bytes | Path) -> GenerationOut | None:
        """Run one request.

        Returns:
            The generation, or None if the request failed or was aborted.
            Failures are reported through :attr:`error` and ``on_error``.
        """
        self._is_loading = True
        self._error = None

        task = asyncio.ensure_future(self._client.create_generation(prompt, style, image))
        self._task = task
        try:
            generation = await task
        except asyncio.CancelledError:
            if self._task is task:
                # Not aborted: the caller itself was cancelled.
                raise
            logger.debug("Generation request aborted")
            return None
        except ApiError as exc:
            if self._task is task:
                self._record_failure(exc)
            return None
        finally:
            if self._task is task:
                self._task = None
                self._is_loading = False

        self._retry_count = 0
        if self._on_success is not None:
            self._on_success(generation)
        return generation

    async def retry(self, prompt: str, style: str, image: bytes | Path) -> GenerationOut | None:
        """Wait out the backoff delay and generate again.

        Returns None without sleeping when the retry budget is spent.
        """
        if self._retry_count >= self.max_retries:
            return None
        delay = self.policy.delay_for(self._retry_count)
        logger.info(f"Retrying generation in {delay:g}s (attempt {self._retry_count + 1})")
        await self._sleep(delay)
        return await self.generate(prompt, style, image)

    def abort(self) -> None:
        """Cancel the in-flight request and reset state.  Not a failure."""
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None
        self._is_loading = False
        self._error = None
        self._retry_count = 0

    def _record_failure(self, exc: ApiError) -> None:
        self._error = exc
        if isinstance(exc, ModelOverloaded) and self._retry_count < self.max_retries:
            self._retry_count += 1
        logger.info(f"Generation failed: {exc.message} (retries used: {self._retry_count})")
        if self._on_error is not None:
            self._on_error(exc)


class GenerationHistory:
    """Most-recent-first list of generations, capped at *limit* entries."""

    def __init__(self, limit: int = DEFAULT_HISTORY_SIZE) -> None:
        self.limit = limit
        self._items: deque[GenerationOut] = deque(maxlen=limit)

    def add(self, generation: GenerationOut) -> None:
        self._items.appendleft(generation)

    def replace(self, generations: list[GenerationOut]) -> None:
        """Reset from a server listing that is already newest first."""
        self._items.clear()
        self._items.extend(generations[: self.limit])

    @property
    def items(self) -> list[GenerationOut]:
        return list(self._items)

    def __iter__(self) -> Iterator[GenerationOut]:
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)
