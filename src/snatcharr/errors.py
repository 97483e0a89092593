"""Error kinds and result values returned by fallible operations."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, TypeVar

T = TypeVar("T")


class ErrorKind(str, Enum):
    """Classification of everything that can go wrong in a fallible call."""

    INVALID_CONFIG = "invalid_config"
    INVALID_TORRENT = "invalid_torrent"
    CONNECTION_FAILED = "connection_failed"
    NETWORK_ERROR = "network_error"
    TIMEOUT = "timeout"
    AUTHENTICATION_FAILED = "authentication_failed"
    RATE_LIMITED = "rate_limited"
    PARSE_ERROR = "parse_error"
    API_ERROR = "api_error"
    NOT_FOUND = "not_found"
    DUPLICATE_TORRENT = "duplicate_torrent"
    NO_MATCH_FOUND = "no_match_found"
    EPISODE_NOT_FOUND = "episode_not_found"
    NO_CLIENTS_AVAILABLE = "no_clients_available"


RETRYABLE_KINDS = frozenset(
    {
        ErrorKind.CONNECTION_FAILED,
        ErrorKind.NETWORK_ERROR,
        ErrorKind.TIMEOUT,
        ErrorKind.RATE_LIMITED,
    }
)


@dataclass(frozen=True)
class Failure:
    """A classified error returned instead of raised."""

    kind: ErrorKind
    message: str = ""
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def retryable(self) -> bool:
        """Whether a caller may retry the operation with backoff."""
        return self.kind in RETRYABLE_KINDS

    def __str__(self) -> str:
        if self.message:
            return f"{self.kind.value}: {self.message}"
        return self.kind.value


@dataclass(frozen=True)
class Result(Generic[T]):
    """Outcome of a fallible call: either a value or a failure.

    Use the ``success`` and ``fail`` constructors rather than building
    instances directly.
    """

    value: T | None = None
    failure: Failure | None = None

    @property
    def ok(self) -> bool:
        return self.failure is None

    @property
    def kind(self) -> ErrorKind | None:
        return self.failure.kind if self.failure else None

    @classmethod
    def success(cls, value: T | None = None) -> Result[T]:
        return cls(value=value)

    @classmethod
    def fail(cls, kind: ErrorKind, message: str = "", **details: Any) -> Result[T]:
        return cls(failure=Failure(kind=kind, message=message, details=details))

    @classmethod
    def from_failure(cls, failure: Failure) -> Result[T]:
        return cls(failure=failure)

    def unwrap(self) -> T:
        """Return the value, raising if this result is a failure.

        Raises:
            ValueError: If the result holds a failure
        """
        if self.failure is not None:
            raise ValueError(f"Called unwrap() on a failed result: {self.failure}")
        return self.value  # type: ignore[return-value]
