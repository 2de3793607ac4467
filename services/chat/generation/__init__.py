"""Generation backend adapters for the chat service."""

from .client import (
    SAFETY_THRESHOLDS,
    GeminiClient,
    GenerationClient,
    GenerationError,
    GenerationUnavailableError,
)


__all__ = [
    "SAFETY_THRESHOLDS",
    "GeminiClient",
    "GenerationClient",
    "GenerationError",
    "GenerationUnavailableError",
]
