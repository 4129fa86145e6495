"""
Core Type Definitions for the S3 Datastore

Implements the Result/Either monad used by the lower storage layers,
a nanosecond Timestamp for error correlation, and
the hierarchical Key addressed by the datastore.

Design Principles:
- Lower layers return Result; the public datastore surface raises
- Keys are normalized once, at construction
- Ordering and equality of keys are byte-wise on the normalized form

Complexity: O(1) for monad operations, O(len(key)) for key normalization
"""

from __future__ import annotations

import re
import time
from dataclasses import dataclass
from typing import (
    Any,
    Callable,
    Generic,
    Literal,
    TypeVar,
    Union,
)

# =============================================================================
# TYPE VARIABLES FOR GENERIC CONTAINERS
# =============================================================================
T = TypeVar("T")  # Success type
E = TypeVar("E")  # Error type
U = TypeVar("U")  # Transform result type


# =============================================================================
# RESULT MONAD
# =============================================================================
@dataclass(frozen=True, slots=True)
class Ok(Generic[T]):
    """
    Success variant of Result monad.

    Immutable container for successful computation results.
    """

    value: T

    def is_ok(self) -> Literal[True]:
        return True

    def is_err(self) -> Literal[False]:
        return False

    def unwrap(self) -> T:
        """Extract value. Safe to call after is_ok() check."""
        return self.value

    def unwrap_or(self, default: T) -> T:
        """Return value, ignoring default."""
        return self.value

    def unwrap_or_raise(self) -> T:
        """Return value (counterpart of Err.unwrap_or_raise)."""
        return self.value

    def map(self, fn: Callable[[T], U]) -> Ok[U]:
        """Apply transformation to success value."""
        return Ok(fn(self.value))

    def flat_map(self, fn: Callable[[T], Result[U, E]]) -> Result[U, E]:
        """Monadic bind for chaining fallible operations."""
        return fn(self.value)

    def __repr__(self) -> str:
        return f"Ok({self.value!r})"


@dataclass(frozen=True, slots=True)
class Err(Generic[E]):
    """
    Failure variant of Result monad.

    Carries the error value unchanged through monadic chains.
    """

    error: E

    def is_ok(self) -> Literal[False]:
        return False

    def is_err(self) -> Literal[True]:
        return True

    def unwrap(self) -> Any:
        """
        Attempting to unwrap an error is a programming error.

        Raises:
            RuntimeError: Always, with error context
        """
        raise RuntimeError(f"Called unwrap() on Err: {self.error}")

    def unwrap_or(self, default: T) -> T:
        """Return default value on error."""
        return default

    def unwrap_or_raise(self) -> Any:
        """
        Raise the carried error at an API boundary.

        Exceptions are raised as-is so callers can match on their class;
        any other error value is wrapped in RuntimeError.
        """
        if isinstance(self.error, BaseException):
            raise self.error
        raise RuntimeError(str(self.error))

    def map(self, fn: Callable[[Any], U]) -> Err[E]:
        """No-op on error variant - propagates error unchanged."""
        return self

    def flat_map(self, fn: Callable[[Any], Result[U, E]]) -> Err[E]:
        """Propagate error through monadic chain."""
        return self

    def __repr__(self) -> str:
        return f"Err({self.error!r})"


# Union type for pattern matching
Result = Union[Ok[T], Err[E]]


# =============================================================================
# TIMESTAMP WITH NANOSECOND PRECISION
# =============================================================================
@dataclass(frozen=True, slots=True, order=True)
class Timestamp:
    """
    Nanosecond timestamp since the Unix epoch.

    Used to stamp errors for log correlation.
    """

    nanos: int

    @classmethod
    def now(cls) -> Timestamp:
        return cls(nanos=time.time_ns())

    def __repr__(self) -> str:
        return f"Timestamp({self.nanos}ns)"


# =============================================================================
# HIERARCHICAL KEY
# =============================================================================
KEY_SEPARATOR = "/"

_DOUBLED_SEPARATORS = re.compile(r"/{2,}")


def collapse_separators(path: str) -> str:
    """Collapse every run of consecutive separators into one."""
    return _DOUBLED_SEPARATORS.sub(KEY_SEPARATOR, path)


class Key:
    """
    Slash-delimited hierarchical identifier.

    Normalized form:
        - exactly one leading separator
        - no doubled separators
        - no trailing separator (except the root key "/")

    Equality, hashing and ordering use the normalized string, so
    ordering is byte-wise (code point order) and case-sensitive.

    Example:
        >>> Key("a//b/")
        Key('/a/b')
        >>> Key("/a").child("b")
        Key('/a/b')
    """

    __slots__ = ("_value",)

    def __init__(self, value: Union[str, bytes, Key] = KEY_SEPARATOR, clean: bool = True) -> None:
        if isinstance(value, Key):
            value = value._value
        elif isinstance(value, bytes):
            value = value.decode("utf-8")

        if clean:
            value = self._clean(value)

        self._value: str = value

    @staticmethod
    def _clean(value: str) -> str:
        value = collapse_separators(KEY_SEPARATOR + value)
        if len(value) > 1 and value.endswith(KEY_SEPARATOR):
            value = value[:-1]
        return value

    @classmethod
    def with_namespaces(cls, namespaces: list[str]) -> Key:
        """Build a key from its path segments."""
        return cls(KEY_SEPARATOR.join(namespaces))

    def namespaces(self) -> list[str]:
        """Path segments, root excluded."""
        return [part for part in self._value.split(KEY_SEPARATOR) if part]

    @property
    def name(self) -> str:
        """Last path segment ("" for the root key)."""
        parts = self.namespaces()
        return parts[-1] if parts else ""

    def parent(self) -> Key:
        parts = self.namespaces()
        if len(parts) <= 1:
            return Key(KEY_SEPARATOR)
        return Key.with_namespaces(parts[:-1])

    def child(self, name: Union[str, Key]) -> Key:
        return Key(f"{self._value}{KEY_SEPARATOR}{name}")

    def is_ancestor_of(self, other: Key) -> bool:
        if self._value == KEY_SEPARATOR:
            return other._value != KEY_SEPARATOR
        return other._value.startswith(self._value + KEY_SEPARATOR)

    def is_top_level(self) -> bool:
        return len(self.namespaces()) == 1

    def to_bytes(self) -> bytes:
        return self._value.encode("utf-8")

    def __str__(self) -> str:
        return self._value

    def __repr__(self) -> str:
        return f"Key({self._value!r})"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Key):
            return NotImplemented
        return self._value == other._value

    def __lt__(self, other: Key) -> bool:
        return self._value < other._value

    def __le__(self, other: Key) -> bool:
        return self._value <= other._value

    def __gt__(self, other: Key) -> bool:
        return self._value > other._value

    def __ge__(self, other: Key) -> bool:
        return self._value >= other._value

    def __hash__(self) -> int:
        return hash(self._value)
