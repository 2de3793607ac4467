"""Declarative, environment-driven configuration.

A configuration class lists its fields as ``FieldDefinition`` objects.
Values are resolved per field in this order: environment variable,
constructor keyword, declared default. Every resolved value is then
type-checked and range-checked; the first violation raises.
"""

from __future__ import annotations

import os
import re
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any


class ConfigError(Exception):
    """Raised for invalid configuration classes or arguments."""


class ValidationError(ConfigError):
    """Raised when a field value is rejected."""

    def __init__(self, field_name: str, value: Any, message: str) -> None:
        self.field = field_name
        self.value = value
        self.message = message
        super().__init__(f"Invalid value {value!r} for '{field_name}': {message}")


class RequiredFieldError(ConfigError):
    """Raised when a required field has no value."""

    def __init__(self, field_name: str) -> None:
        self.field = field_name
        super().__init__(f"Missing required configuration field '{field_name}'")


_BOOL_TRUE = frozenset({"true", "1", "yes", "on"})


@dataclass
class FieldDefinition:
    """One configuration field and the rules its value must satisfy."""

    name: str
    field_type: type[Any]
    default: Any = None
    required: bool = False
    description: str = ""
    validator: Callable[[Any], bool] | None = None
    env_var: str | None = None
    choices: list[Any] | None = None
    min_value: int | float | None = None
    max_value: int | float | None = None
    pattern: str | None = None

    def __post_init__(self) -> None:
        if self.required and self.default is not None:
            raise ValueError(f"Required field '{self.name}' cannot declare a default")
        if self.choices and self.default not in self.choices:
            raise ValueError(f"Default of '{self.name}' is not one of its choices")

    def parse(self, raw: str) -> Any:
        """Convert an environment string to the field type."""
        if self.field_type is bool:
            return raw.strip().lower() in _BOOL_TRUE
        if self.field_type is list:
            return [part.strip() for part in raw.split(",") if part.strip()]
        if self.field_type in (int, float):
            try:
                return self.field_type(raw)
            except ValueError as exc:
                raise ValidationError(
                    self.name, raw, f"not a valid {self.field_type.__name__}"
                ) from exc
        return raw

    def check(self, value: Any) -> Any:
        """Validate ``value`` and return its normalized form."""
        # bool is an int subclass but never a number here
        if (
            self.field_type is float
            and isinstance(value, int)
            and not isinstance(value, bool)
        ):
            value = float(value)
        if not isinstance(value, self.field_type):
            raise ValidationError(
                self.name, value, f"expected {self.field_type.__name__}"
            )

        if self.choices:
            value = self._match_choice(value)
        if self.min_value is not None and value < self.min_value:
            raise ValidationError(self.name, value, f"must be >= {self.min_value}")
        if self.max_value is not None and value > self.max_value:
            raise ValidationError(self.name, value, f"must be <= {self.max_value}")
        if self.pattern and isinstance(value, str) and not re.match(self.pattern, value):
            raise ValidationError(self.name, value, f"must match {self.pattern}")
        if self.validator is not None and not self.validator(value):
            raise ValidationError(self.name, value, "rejected by validator")
        return value

    def _match_choice(self, value: Any) -> Any:
        choices = self.choices or []
        if isinstance(value, str):
            # String choices match case-insensitively
            folded = value.casefold()
            for choice in choices:
                if isinstance(choice, str) and choice.casefold() == folded:
                    return choice
        if value in choices:
            return value
        raise ValidationError(self.name, value, f"must be one of {choices}")


class BaseConfig(ABC):
    """Base class for configuration sections.

    Field values are exposed as attributes::

        config = LoggingConfig(level="DEBUG")
        config.level  # "DEBUG", unless LOG_LEVEL says otherwise
    """

    def __init__(self, **kwargs: Any) -> None:
        fields = {field.name: field for field in self.get_field_definitions()}
        unknown = sorted(set(kwargs) - set(fields))
        if unknown:
            raise ConfigError(
                f"{self.__class__.__name__} has no field(s): {', '.join(unknown)}"
            )
        self._values: dict[str, Any] = {
            name: self._resolve(field, kwargs) for name, field in fields.items()
        }

    @staticmethod
    def _resolve(field: FieldDefinition, kwargs: dict[str, Any]) -> Any:
        raw = os.getenv(field.env_var) if field.env_var else None
        if raw is not None:
            value = field.parse(raw)
        else:
            value = kwargs.get(field.name, field.default)

        if value is None:
            if field.required:
                raise RequiredFieldError(field.name)
            return None
        return field.check(value)

    @classmethod
    @abstractmethod
    def get_field_definitions(cls) -> list[FieldDefinition]:
        """Declare the fields of this configuration section."""

    def __getattr__(self, name: str) -> Any:
        values = self.__dict__.get("_values", {})
        try:
            return values[name]
        except KeyError:
            raise AttributeError(
                f"{self.__class__.__name__} has no field '{name}'"
            ) from None

    def to_dict(self) -> dict[str, Any]:
        return dict(self._values)


class LoggingConfig(BaseConfig):
    """Log level and output format."""

    @classmethod
    def get_field_definitions(cls) -> list[FieldDefinition]:
        return [
            FieldDefinition(
                name="level",
                field_type=str,
                default="INFO",
                description="Minimum log level",
                env_var="LOG_LEVEL",
                choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
            ),
            FieldDefinition(
                name="json_logs",
                field_type=bool,
                default=True,
                description="Emit JSON lines instead of console output",
                env_var="LOG_JSON",
            ),
            FieldDefinition(
                name="service_name",
                field_type=str,
                default="chat",
                description="Value of the ``service`` field on every event",
                env_var="SERVICE_NAME",
            ),
        ]
