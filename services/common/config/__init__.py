"""Shared configuration primitives.

Services declare their settings as ``BaseConfig`` subclasses and build
them with ``load_config_from_env``.
"""

from .base import (
    BaseConfig,
    ConfigError,
    FieldDefinition,
    LoggingConfig,
    RequiredFieldError,
    ValidationError,
)
from .loader import load_config_from_env


__all__ = [
    "BaseConfig",
    "ConfigError",
    "FieldDefinition",
    "LoggingConfig",
    "RequiredFieldError",
    "ValidationError",
    "load_config_from_env",
]
