"""
pytest helpers for asserting on Result values with readable failure output.

    value = ResultAssertions.assert_success(await store.find_by_identity("U1"))
    ResultAssertions.assert_failure(result, ErrorCode.NOT_FOUND)
"""

from __future__ import annotations

from typing import TypeVar

from railway.failure import ErrorCode, FailureDescription
from railway.result import Result

T = TypeVar("T")


class ResultAssertions:
    """Assertions that explain which track a Result was on."""

    @staticmethod
    def assert_success(result: Result[T], message: str = "") -> T:
        """Assert Success and hand back the value."""
        context = f" ({message})" if message else ""
        if result.is_failure():
            err = result.error()
            raise AssertionError(
                f"Expected Success but got Failure({err.code.value}: {err.message!r}){context}"
            )
        return result.value()

    @staticmethod
    def assert_failure(
        result: Result[T],
        expected_code: ErrorCode | None = None,
        message: str = "",
    ) -> FailureDescription:
        """Assert Failure, optionally with a specific code, and hand back the description."""
        context = f" ({message})" if message else ""
        if result.is_success():
            raise AssertionError(f"Expected Failure but got Success({result.value()!r}){context}")
        error = result.error()
        if expected_code is not None and error.code is not expected_code:
            raise AssertionError(
                f"Expected error code {expected_code.value} "
                f"but got {error.code.value}: {error.message!r}{context}"
            )
        return error

