"""Modelia Studio - image style generation service with a resilient client."""

__version__ = "0.3.0"

from modelia.core.backends import GenerationBackend, backend_registry
from modelia.core.config import ModeliaConfig, config

__all__ = [
    "GenerationBackend",
    "backend_registry",
    "ModeliaConfig",
    "config",
]
