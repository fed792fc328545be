"""
Result: a value on either the success track or the failure track.

    lookup ──Success──▶ create ──Success──▶ cache ──▶ Result[T]
       │                   │                  │
       └──Failure──────────┴──────────────────┴────▶ Result[T]

Adapters wrap every call that can raise in ``from_computation`` or
``from_awaitable`` so exceptions stop at the adapter boundary. Everything
above that boundary only composes Results with ``map`` / ``flat_map`` and
decides what to do with a failure by looking at its ``ErrorCode``.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from railway.failure import ErrorCode, FailureDescription

T = TypeVar("T")
U = TypeVar("U")
R = TypeVar("R")


class Result(Generic[T]):
    """
    Base of ``Success`` and ``Failure``.

        >>> Result.success(2).flat_map(lambda x: Result.success(x + 1)).value()
        3
        >>> Result.failure(ErrorCode.NOT_FOUND, "gone").has_code(ErrorCode.NOT_FOUND)
        True
    """

    # ──────────────────────── Introspection ────────────────────────

    def is_success(self) -> bool:
        return isinstance(self, Success)

    def is_failure(self) -> bool:
        return isinstance(self, Failure)

    def value(self) -> T:
        """Success value. Raises ValueError on a Failure; prefer ``either``."""
        match self:
            case Success(v):
                return v
            case Failure(err):
                raise ValueError(f"Cannot get value from a Failure: {err.message}")
        raise TypeError("unreachable")  # pragma: no cover

    def error(self) -> FailureDescription:
        """Failure description. Raises ValueError on a Success."""
        match self:
            case Failure(err):
                return err
            case Success(v):
                raise ValueError(f"Cannot get error from a Success: {v!r}")
        raise TypeError("unreachable")  # pragma: no cover

    def has_code(self, code: ErrorCode) -> bool:
        """True only for a Failure classified with ``code``."""
        match self:
            case Failure(err):
                return err.code is code
        return False

    # ──────────────────────── Transformations ────────────────────────

    def either(
        self,
        on_success: Callable[[T], R],
        on_failure: Callable[[FailureDescription], R],
    ) -> R:
        """Fold both tracks into one value."""
        match self:
            case Success(v):
                return on_success(v)
            case Failure(err):
                return on_failure(err)
        raise TypeError("unreachable")  # pragma: no cover

    def map_failure(
        self, mapper: Callable[[FailureDescription], FailureDescription]
    ) -> Result[T]:
        """Rewrite the failure (e.g. reclassify its code); successes pass through."""
        match self:
            case Failure(err):
                return Failure(mapper(err))
        return self

    def flat_map(self, mapper: Callable[[T], Result[U]]) -> Result[U]:
        match self:
            case Success(v):
                return mapper(v)
            case Failure(err):
                return Failure(err)
        raise TypeError("unreachable")  # pragma: no cover

    def peek(self, action: Callable[[T], Any]) -> Result[T]:
        """Run a side effect on the success value (logging, tracking)."""
        match self:
            case Success(v):
                action(v)
        return self

    def peek_failure(self, action: Callable[[FailureDescription], Any]) -> Result[T]:
        match self:
            case Failure(err):
                action(err)
        return self

    def get_or_else(self, default: T) -> T:
        match self:
            case Success(v):
                return v
        return default

    # ──────────────────────── Async ────────────────────────

    async def flat_map_async(
        self, mapper: Callable[[T], Awaitable[Result[U]]]
    ) -> Result[U]:
        """
        Chain an async Result-returning step.

        An exception escaping ``mapper`` lands on the failure track as
        UNKNOWN_ERROR; well-behaved steps return a Failure themselves.
        """
        match self:
            case Success(v):
                try:
                    return await mapper(v)
                except Exception as e:
                    return Failure(FailureDescription(ErrorCode.UNKNOWN_ERROR, str(e), e))
            case Failure(err):
                return Failure(err)
        raise TypeError("unreachable")  # pragma: no cover

    # ──────────────────────── Factories ────────────────────────

    @staticmethod
    def success(value: T) -> Result[T]:
        return Success(value)

    @staticmethod
    def failure(
        code: ErrorCode,
        message: str,
        exception: BaseException | None = None,
    ) -> Result[T]:
        return Failure(FailureDescription(code=code, message=message, exception=exception))

    @staticmethod
    def from_optional(
        value: T | None,
        error_message: str,
        error_code: ErrorCode = ErrorCode.NOT_FOUND,
    ) -> Result[T]:
        """Success for a present value, Failure(``error_code``) for None."""
        if value is not None:
            return Success(value)
        return Result.failure(error_code, error_message)

    @staticmethod
    def from_computation(
        computation: Callable[[], T],
        error_code: ErrorCode,
        error_message: str,
    ) -> Result[T]:
        """Run a synchronous call that may raise; exceptions become a Failure."""
        try:
            return Result.success(computation())
        except Exception as e:
            return Result.failure(error_code, error_message, e)

    @staticmethod
    async def from_awaitable(
        factory: Callable[[], Awaitable[T]],
        error_code: ErrorCode,
        error_message: str,
    ) -> Result[T]:
        """
        Await a call that may raise; exceptions become a Failure.

        Cancellation is not an Exception and still propagates.

            result = await Result.from_awaitable(
                lambda: client.get(url),
                ErrorCode.DATABASE_ERROR,
                "Member lookup failed",
            )
        """
        try:
            return Result.success(await factory())
        except Exception as e:
            return Result.failure(error_code, error_message, e)

    # ──────────────────────── Dunder methods ────────────────────────

    def __bool__(self) -> bool:
        return self.is_success()


@dataclass(frozen=True, eq=False)
class Success(Result[T]):
    """The success track. ``None`` is not a value; use a Failure instead."""

    _value: T

    def __post_init__(self) -> None:
        if self._value is None:
            raise TypeError("Success value must not be None")

    def __repr__(self) -> str:
        return f"Success({self._value!r})"

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Success):
            return self._value == other._value
        if isinstance(other, Result):
            return False
        return NotImplemented

    def __hash__(self) -> int:
        return hash(("Success", self._value))


@dataclass(frozen=True, eq=False)
class Failure(Result[T]):
    """The failure track. Equality ignores timestamp and exception."""

    _error: FailureDescription

    def __post_init__(self) -> None:
        if self._error is None:
            raise TypeError("Failure error must not be None")

    def __repr__(self) -> str:
        return f"Failure({self._error.code.value}: {self._error.message!r})"

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Failure):
            return (
                self._error.code == other._error.code
                and self._error.message == other._error.message
            )
        if isinstance(other, Result):
            return False
        return NotImplemented

    def __hash__(self) -> int:
        return hash(("Failure", self._error.code, self._error.message))
