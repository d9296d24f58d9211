"""Generation backends and their registry.

A generation backend turns an uploaded source image into a result image.
The service layer only talks to :class:`GenerationBackend`, so the simulated
backend that ships today can be replaced by a real inference client without
touching the request lifecycle.

Backend Contract
----------------
``await backend.generate(source, prompt=..., style=...)`` must either:

- return the path of a result file written next to ``source``, or
- raise :class:`~modelia.core.errors.ModelOverloadedError` when the model
  refuses work (the caller cleans up the upload and reports 503).

Any other exception propagates as a server error.

Usage Example
-------------
    >>> from modelia.core.backends import backend_registry
    >>> from modelia.core.config import config
    >>> backend = backend_registry.instantiate("simulated", config)
    >>> result_path = await backend.generate(upload_path, prompt="...", style="vintage")

Registering a custom backend:

    >>> class RemoteBackend(GenerationBackend):
    ...     name = "remote"
    ...     async def generate(self, source, *, prompt, style): ...
    >>> backend_registry.register(RemoteBackend)
"""

from __future__ import annotations

import asyncio
import logging
import random
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

import aiofiles

from modelia.core.config import ModeliaConfig
from modelia.core.errors import ModelOverloadedError

logger = logging.getLogger(__name__)

SOURCE_PREFIX = "img_"
RESULT_PREFIX = "result_"
_COPY_CHUNK_SIZE = 64 * 1024


def result_filename(source_name: str) -> str:
    """Sibling name for the result of *source_name*.

    ``img_123.jpg`` becomes ``result_123.jpg``; names without the upload
    prefix get ``result_`` prepended.
    """
    if source_name.startswith(SOURCE_PREFIX):
        return RESULT_PREFIX + source_name[len(SOURCE_PREFIX) :]
    return RESULT_PREFIX + source_name


async def copy_file(source: Path, destination: Path) -> None:
    """Copy *source* to *destination* without blocking the event loop."""
    async with aiofiles.open(source, "rb") as src, aiofiles.open(destination, "wb") as dst:
        while True:
            chunk = await src.read(_COPY_CHUNK_SIZE)
            if not chunk:
                break
            await dst.write(chunk)


class GenerationBackend(ABC):
    """Abstract base class for generation backends.

    Attributes
    ----------
    name : str
        Registry key for the backend
    description : str
        Human-readable summary
    config : ModeliaConfig
        Application configuration
    """

    name: str = "base"
    description: str = "Base class for generation backends"

    def __init__(self, config: ModeliaConfig) -> None:
        self.config = config
        logger.info(f"Initialized {self.name} generation backend")

    @abstractmethod
    async def generate(self, source: Path, *, prompt: str, style: str) -> Path:
        """Produce a result image for *source*.

        Args:
            source: Path of the stored upload.
            prompt: User prompt text.
            style: Requested style.

        Returns:
            Path of the result file.

        Raises:
            ModelOverloadedError: The model is refusing work right now.
        """

    def get_info(self) -> dict[str, Any]:
        return {"name": self.name, "description": self.description}


class SimulatedGenerationBackend(GenerationBackend):
    """Stand-in for a real inference service.

    Fails with :class:`ModelOverloadedError` with probability
    ``config.fault_probability``; otherwise sleeps for a duration drawn
    uniformly from ``[delay_min_seconds, delay_max_seconds]`` and copies the
    source file to a ``result_`` sibling.

    Args:
        config: Application configuration.
        rng: Random source; tests pass a seeded or mocked instance.
    """

    name = "simulated"
    description = "Random overload faults, artificial latency, result = copy of source"

    def __init__(self, config: ModeliaConfig, rng: random.Random | None = None) -> None:
        super().__init__(config)
        self._rng = rng or random.Random()

    async def generate(self, source: Path, *, prompt: str, style: str) -> Path:
        if self._rng.random() < self.config.fault_probability:
            logger.warning(f"Simulated model overload for {source.name}")
            raise ModelOverloadedError()

        delay = self._rng.uniform(self.config.delay_min_seconds, self.config.delay_max_seconds)
        await asyncio.sleep(delay)

        destination = source.with_name(result_filename(source.name))
        await copy_file(source, destination)
        logger.info(f"Simulated {style!r} generation for {source.name} in {delay:.2f}s")
        return destination


class BackendRegistry:
    """Registry of available generation backends."""

    def __init__(self) -> None:
        self._backends: dict[str, type[GenerationBackend]] = {}

    def register(self, backend_class: type[GenerationBackend]) -> None:
        """Register a backend class under its ``name``."""
        backend_name = backend_class.name
        if backend_name in self._backends:
            logger.warning(f"Generation backend '{backend_name}' is already registered, overwriting")
        self._backends[backend_name] = backend_class
        logger.debug(f"Registered generation backend: {backend_name}")

    def instantiate(self, backend_name: str, config: ModeliaConfig, **kwargs) -> GenerationBackend:
        """Create an instance of a registered backend.

        Raises:
            KeyError: If *backend_name* is not registered.
        """
        if backend_name not in self._backends:
            available = ", ".join(self.list_available())
            raise KeyError(
                f"Generation backend '{backend_name}' not found. Available backends: {available}"
            )
        return self._backends[backend_name](config, **kwargs)

    def list_available(self) -> list[str]:
        return list(self._backends.keys())


# Global backend registry instance
backend_registry = BackendRegistry()
backend_registry.register(SimulatedGenerationBackend)
