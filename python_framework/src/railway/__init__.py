"""
Railway-oriented error handling for the onboarding client.

Every port returns ``Result[T]``; exceptions are caught once, at the adapter
boundary, and travel as data from there on.

    from railway import ErrorCode, Result

    def require_id(raw: str) -> Result[str]:
        if not raw:
            return Result.failure(ErrorCode.VALIDATION_ERROR, "identity id is empty")
        return Result.success(raw)
"""

from railway.assertions import ResultAssertions
from railway.failure import ErrorCode, FailureDescription
from railway.result import Failure, Result, Success

__all__ = [
    "ErrorCode",
    "Failure",
    "FailureDescription",
    "Result",
    "ResultAssertions",
    "Success",
]

__version__ = "2.0.0"
