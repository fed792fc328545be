"""
Failure track payload: what went wrong, classified by an ErrorCode.

A FailureDescription is plain data: a code, a human-readable message, the
exception that caused it (if any) and when it happened. Callers branch on the
code; messages are for logs and diagnostics only.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum, unique


@unique
class ErrorCode(Enum):
    """
    Closed set of failure classifications used across the onboarding client.

    Caller-side problems first, then infrastructure problems.
    """

    VALIDATION_ERROR = "VALIDATION_ERROR"
    """Input that cannot be processed (missing profile, malformed record)."""

    AUTHENTICATION_ERROR = "AUTHENTICATION_ERROR"
    """Identity provider rejected or could not establish the login."""

    NOT_FOUND = "NOT_FOUND"
    """The looked-up record does not exist. Often a signal, not an error."""

    CONFLICT_ERROR = "CONFLICT_ERROR"
    """A write collided with an existing record (unique key taken)."""

    DATABASE_ERROR = "DATABASE_ERROR"
    """Member datastore query or write failed."""

    EXTERNAL_SERVICE_ERROR = "EXTERNAL_SERVICE_ERROR"
    """A remote API answered with an unexpected status or payload."""

    NETWORK_ERROR = "NETWORK_ERROR"
    """Transport-level failure before any response arrived."""

    TIMEOUT_ERROR = "TIMEOUT_ERROR"
    """The remote side did not answer in time."""

    STORAGE_ERROR = "STORAGE_ERROR"
    """Local durable storage could not be read or written."""

    UNKNOWN_ERROR = "UNKNOWN_ERROR"
    """Anything not classified above."""


@dataclass(frozen=True, slots=True)
class FailureDescription:
    """
    Immutable failure record carried by ``Failure``.

    >>> desc = FailureDescription(ErrorCode.NOT_FOUND, "member missing")
    >>> desc.code.value
    'NOT_FOUND'
    """

    code: ErrorCode
    message: str
    exception: BaseException | None = field(default=None, repr=False)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def with_code(self, code: ErrorCode) -> FailureDescription:
        """Same failure, reclassified. Keeps message, exception and timestamp."""
        return FailureDescription(
            code=code,
            message=self.message,
            exception=self.exception,
            timestamp=self.timestamp,
        )

    def __str__(self) -> str:
        return f"{self.code.value}: {self.message}"
