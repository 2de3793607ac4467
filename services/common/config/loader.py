"""Construction of configuration objects at process start."""

from __future__ import annotations

from typing import Any, TypeVar

from services.common.structured_logging import get_logger


T = TypeVar("T")

logger = get_logger(__name__)


def load_config_from_env(config_class: type[T], **overrides: Any) -> T:
    """Instantiate ``config_class``; its fields read the environment.

    Failures are logged as ``config.load_failed`` and re-raised so a
    misconfigured service refuses to start.
    """
    try:
        return config_class(**overrides)
    except Exception as exc:
        logger.error(
            "config.load_failed",
            config_class=config_class.__name__,
            error=str(exc),
            error_type=type(exc).__name__,
        )
        raise
