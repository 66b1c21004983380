"""
Typed key/value attributes attached to telemetry events.

A Field carries an explicit kind tag and is validated when it is built,
so each sink can convert every field without a failing cast:

- to_log_value() yields a JSON-native value for the structured log
- to_property() yields a string for the APM property map
"""

from dataclasses import dataclass
from enum import Enum
from typing import Union


FieldValue = Union[str, int, bool, BaseException]


class FieldKind(str, Enum):
    """Variant tag of a Field value."""
    STRING = "string"
    INTEGER = "integer"
    BOOLEAN = "boolean"
    ERROR = "error"


def _matches(kind: FieldKind, value: object) -> bool:
    if kind is FieldKind.STRING:
        return isinstance(value, str)
    if kind is FieldKind.INTEGER:
        # bool is an int subclass; keep the variants apart
        return isinstance(value, int) and not isinstance(value, bool)
    if kind is FieldKind.BOOLEAN:
        return isinstance(value, bool)
    return isinstance(value, BaseException)


def _describe_error(exc: BaseException) -> str:
    text = str(exc)
    if not text:
        return type(exc).__name__
    return f"{type(exc).__name__}: {text}"


@dataclass(frozen=True)
class Field:
    """
    A single named, typed attribute.

    Use the string(), integer(), boolean() and error() constructors rather
    than building a Field directly.

    Raises:
        TypeError: If the value does not match the declared kind.
    """

    key: str
    value: FieldValue
    kind: FieldKind

    def __post_init__(self):
        if not isinstance(self.key, str):
            raise TypeError(f"Field key must be a string, got {type(self.key).__name__}")
        if not _matches(self.kind, self.value):
            raise TypeError(
                f"Field {self.key!r} declared as {self.kind.value} "
                f"but got {type(self.value).__name__}"
            )

    def to_log_value(self) -> Union[str, int, bool]:
        """Convert the value for the structured log record."""
        if self.kind is FieldKind.ERROR:
            return _describe_error(self.value)
        return self.value

    def to_property(self) -> str:
        """Convert the value for the string-valued APM property map."""
        if self.kind is FieldKind.BOOLEAN:
            return "true" if self.value else "false"
        if self.kind is FieldKind.ERROR:
            return _describe_error(self.value)
        return str(self.value)


def string(key: str, value: str) -> Field:
    return Field(key, value, FieldKind.STRING)


def integer(key: str, value: int) -> Field:
    return Field(key, value, FieldKind.INTEGER)


def boolean(key: str, value: bool) -> Field:
    return Field(key, value, FieldKind.BOOLEAN)


def error(key: str, value: BaseException) -> Field:
    return Field(key, value, FieldKind.ERROR)


def error_field(value: BaseException) -> Field:
    """Shorthand for error("error", value)."""
    return error("error", value)


def first_error(fields) -> Union[BaseException, None]:
    """Return the value of the first error-kind field, if any."""
    for f in fields:
        if f.kind is FieldKind.ERROR:
            return f.value
    return None
