"""Typed access to environment variables.

Values are read from the process environment on every call (nothing is
cached), coerced to the requested type and optionally validated. Every failure
is raised as a :class:`~storelink.errors.ConfigError` subclass that names the
variable::

    port = get_env_var("PORT", value_type="number", default=5432)
    retries = get_number("RETRIES", validate=lambda v: v > 0 or "Must be positive")
"""

from __future__ import annotations

import math
import os
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Mapping, TypeAlias

from pydantic import JsonValue, TypeAdapter, ValidationError
from pydantic_core import from_json

from .errors import (
    ConfigMismatchError,
    InvalidFormatError,
    MissingError,
    ValidationFailedError,
)

ConfigValue: TypeAlias = JsonValue
Validator = Callable[[Any], bool | str]

_JSON_ADAPTER: TypeAdapter[JsonValue] = TypeAdapter(JsonValue)
# ASCII digits only: int() and float() also take underscores and other scripts.
_NUMBER_RE = re.compile(r"[+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?", re.ASCII)

_TRUE_WORDS = frozenset({"true", "1", "yes", "y"})
_FALSE_WORDS = frozenset({"false", "0", "no", "n"})


class ValueType(str, Enum):
    """Types an environment variable can be coerced to."""

    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    JSON = "json"


class _Unset:
    def __repr__(self) -> str:
        return "<unset>"


UNSET: Any = _Unset()


@dataclass(frozen=True, slots=True)
class ConfigRequest:
    """Describes how a single variable should be read."""

    name: str
    required: bool = True
    default: Any = UNSET
    value_type: ValueType = ValueType.STRING
    validate: Validator | None = None

    @property
    def has_default(self) -> bool:
        return self.default is not UNSET


def parse_number(raw: str, name: str = "value") -> int | float:
    """Parse a finite number, keeping integer literals as ``int``."""

    text = raw.strip()
    if not _NUMBER_RE.fullmatch(text):
        raise InvalidFormatError(name, f"Invalid number value: {raw!r}")
    try:
        return int(text)
    except ValueError:
        pass
    try:
        value = float(text)
    except ValueError:
        raise InvalidFormatError(name, f"Invalid number value: {raw!r}") from None
    if not math.isfinite(value):
        raise InvalidFormatError(name, f"Invalid number value: {raw!r}")
    return value


def parse_boolean(raw: str, name: str = "value") -> bool:
    normalized = raw.strip().lower()
    if normalized in _TRUE_WORDS:
        return True
    if normalized in _FALSE_WORDS:
        return False
    raise InvalidFormatError(name, f"Invalid boolean value: {raw!r}")


def parse_json(raw: str, name: str = "value") -> ConfigValue:
    try:
        data = from_json(raw, allow_inf_nan=False)
    except ValueError as exc:
        raise InvalidFormatError(name, f"Invalid JSON: {exc}") from None
    try:
        return _JSON_ADAPTER.validate_python(data)
    except ValidationError as exc:
        raise InvalidFormatError(name, exc.errors()[0]["msg"]) from None


def read(request: ConfigRequest, environ: Mapping[str, str] | None = None) -> ConfigValue:
    """Resolve a :class:`ConfigRequest` against the environment."""

    source = os.environ if environ is None else environ
    name = request.name
    value_type = ValueType(request.value_type)

    if request.has_default and not _matches_type(request.default, value_type):
        raise ConfigMismatchError(
            name,
            f"Default value type ({type(request.default).__name__}) "
            f"does not match expected type ({value_type.value})",
        )

    raw = source.get(name)
    if not raw:
        if request.has_default:
            return request.default
        if request.required:
            raise MissingError(name, "Variable is required but not set")
        if value_type is ValueType.STRING:
            return ""
        raise ConfigMismatchError(
            name,
            f"Optional {value_type.value} variable is not set and declares no default",
        )

    value = _coerce(raw, value_type, name)
    if request.validate is not None:
        _run_validator(request.validate, value, name)
    return value


def get_env_var(
    name: str,
    *,
    required: bool = True,
    default: Any = UNSET,
    value_type: ValueType | str = ValueType.STRING,
    validate: Validator | None = None,
    environ: Mapping[str, str] | None = None,
) -> ConfigValue:
    """Read ``name`` from the environment as ``value_type``."""

    request = ConfigRequest(
        name=name,
        required=required,
        default=default,
        value_type=ValueType(value_type),
        validate=validate,
    )
    return read(request, environ)


def get_str(name: str, **options: Any) -> str:
    return get_env_var(name, value_type=ValueType.STRING, **options)  # type: ignore[return-value]


def get_number(name: str, **options: Any) -> int | float:
    return get_env_var(name, value_type=ValueType.NUMBER, **options)  # type: ignore[return-value]


def get_bool(name: str, **options: Any) -> bool:
    return get_env_var(name, value_type=ValueType.BOOLEAN, **options)  # type: ignore[return-value]


def get_json(name: str, **options: Any) -> ConfigValue:
    return get_env_var(name, value_type=ValueType.JSON, **options)


def _coerce(raw: str, value_type: ValueType, name: str) -> ConfigValue:
    if value_type is ValueType.NUMBER:
        return parse_number(raw, name)
    if value_type is ValueType.BOOLEAN:
        return parse_boolean(raw, name)
    if value_type is ValueType.JSON:
        return parse_json(raw, name)
    return raw


def _matches_type(value: object, value_type: ValueType) -> bool:
    if value_type is ValueType.STRING:
        return isinstance(value, str)
    if value_type is ValueType.NUMBER:
        return isinstance(value, (int, float)) and not isinstance(value, bool)
    if value_type is ValueType.BOOLEAN:
        return isinstance(value, bool)
    # JSON defaults follow the object-like shapes: mappings, sequences or null.
    return value is None or isinstance(value, (dict, list))


def _run_validator(validate: Validator, value: ConfigValue, name: str) -> None:
    try:
        outcome = validate(value)
    except Exception as exc:
        raise ValidationFailedError(name, str(exc) or f"Validation failed for value: {value!r}") from exc
    if outcome is True:
        return
    if isinstance(outcome, str) and outcome:
        raise ValidationFailedError(name, outcome)
    raise ValidationFailedError(name, f"Validation failed for value: {value!r}")


__all__ = [
    "ConfigRequest",
    "ConfigValue",
    "UNSET",
    "ValueType",
    "get_bool",
    "get_env_var",
    "get_json",
    "get_number",
    "get_str",
    "parse_boolean",
    "parse_json",
    "parse_number",
    "read",
]
