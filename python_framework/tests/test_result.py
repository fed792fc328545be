"""
Tests for the Result type.

Covers creation, the two tracks through map / flat_map, failure
reclassification, side effects, factories and the async helpers.
"""

from __future__ import annotations

import asyncio

import pytest

from railway import ErrorCode, Failure, FailureDescription, Result, Success


class TestCreation:
    def test_success_wraps_value(self):
        result = Result.success(42)
        assert result.is_success()
        assert not result.is_failure()
        assert result.value() == 42

    def test_success_rejects_none(self):
        with pytest.raises(TypeError, match="must not be None"):
            Success(None)

    def test_failure_carries_code_message_exception(self):
        ex = ValueError("bad")
        result = Result.failure(ErrorCode.DATABASE_ERROR, "query failed", ex)
        assert result.is_failure()
        assert result.error().code is ErrorCode.DATABASE_ERROR
        assert result.error().message == "query failed"
        assert result.error().exception is ex

    def test_truthiness_follows_track(self):
        assert Result.success("x")
        assert not Result.failure(ErrorCode.NOT_FOUND, "x")

    def test_value_on_failure_raises(self):
        with pytest.raises(ValueError, match="Cannot get value from a Failure"):
            Result.failure(ErrorCode.NOT_FOUND, "missing").value()

    def test_error_on_success_raises(self):
        with pytest.raises(ValueError, match="Cannot get error from a Success"):
            Result.success(1).error()

    def test_has_code(self):
        result = Result.failure(ErrorCode.NOT_FOUND, "missing")
        assert result.has_code(ErrorCode.NOT_FOUND)
        assert not result.has_code(ErrorCode.DATABASE_ERROR)
        assert not Result.success(1).has_code(ErrorCode.NOT_FOUND)


class TestTransformations:
    def test_flat_map_chain(self):
        result = (
            Result.success(3)
            .flat_map(lambda x: Result.success(x + 1))
            .flat_map(lambda x: Result.success(x * 2))
        )
        assert result.value() == 8

    def test_flat_map_short_circuits(self):
        calls: list[int] = []

        def step(x: int) -> Result[int]:
            calls.append(x)
            return Result.success(x)

        result = Result.failure(ErrorCode.NOT_FOUND, "x").flat_map(step)
        assert result.is_failure()
        assert calls == []

    def test_map_failure_reclassifies(self):
        result = Result.failure(ErrorCode.DATABASE_ERROR, "dup").map_failure(
            lambda err: err.with_code(ErrorCode.CONFLICT_ERROR)
        )
        assert result.error().code is ErrorCode.CONFLICT_ERROR

    def test_map_failure_passes_success_through(self):
        result = Result.success(1).map_failure(lambda err: err.with_code(ErrorCode.UNKNOWN_ERROR))
        assert result.value() == 1

    def test_either_folds_both_tracks(self):
        ok = Result.success(2).either(lambda v: f"ok {v}", lambda e: f"err {e.message}")
        bad = Result.failure(ErrorCode.NOT_FOUND, "gone").either(
            lambda v: f"ok {v}", lambda e: f"err {e.message}"
        )
        assert ok == "ok 2"
        assert bad == "err gone"

    def test_peek_and_peek_failure(self):
        seen: list[object] = []
        Result.success(5).peek(seen.append).peek_failure(seen.append)
        Result.failure(ErrorCode.NOT_FOUND, "x").peek(seen.append).peek_failure(
            lambda e: seen.append(e.code)
        )
        assert seen == [5, ErrorCode.NOT_FOUND]

    def test_get_or_else(self):
        failed = Result.failure(ErrorCode.NOT_FOUND, "x")
        assert failed.get_or_else(7) == 7
        assert Result.success(3).get_or_else(7) == 3


class TestFactories:
    def test_from_optional(self):
        assert Result.from_optional("a", "missing").value() == "a"
        missing = Result.from_optional(None, "missing")
        assert missing.error().code is ErrorCode.NOT_FOUND

    def test_from_computation_catches(self):
        def explode() -> int:
            raise RuntimeError("disk full")

        result = Result.from_computation(explode, ErrorCode.STORAGE_ERROR, "write failed")
        assert result.error().code is ErrorCode.STORAGE_ERROR
        assert isinstance(result.error().exception, RuntimeError)


class TestPatternMatching:
    def test_match_success_and_failure(self):
        def describe(result: Result[int]) -> str:
            match result:
                case Success(v):
                    return f"value {v}"
                case Failure(err):
                    return f"error {err.code.value}"
            return "unreachable"

        assert describe(Result.success(1)) == "value 1"
        assert describe(Result.failure(ErrorCode.NOT_FOUND, "x")) == "error NOT_FOUND"


class TestEquality:
    def test_success_equality(self):
        assert Result.success(1) == Result.success(1)
        assert Result.success(1) != Result.success(2)

    def test_failure_equality_ignores_timestamp(self):
        assert Result.failure(ErrorCode.NOT_FOUND, "x") == Result.failure(ErrorCode.NOT_FOUND, "x")

    def test_success_not_equal_to_failure(self):
        assert Result.success(1) != Result.failure(ErrorCode.NOT_FOUND, "x")

    def test_repr(self):
        assert repr(Result.success(42)) == "Success(42)"
        assert "NOT_FOUND" in repr(Result.failure(ErrorCode.NOT_FOUND, "gone"))


class TestAsync:
    @pytest.mark.asyncio
    async def test_from_awaitable_success(self):
        async def fetch() -> str:
            return "row"

        result = await Result.from_awaitable(fetch, ErrorCode.DATABASE_ERROR, "failed")
        assert result.value() == "row"

    @pytest.mark.asyncio
    async def test_from_awaitable_catches(self):
        async def fetch() -> str:
            raise ConnectionError("refused")

        result = await Result.from_awaitable(fetch, ErrorCode.DATABASE_ERROR, "failed")
        assert result.error().code is ErrorCode.DATABASE_ERROR
        assert isinstance(result.error().exception, ConnectionError)

    @pytest.mark.asyncio
    async def test_from_awaitable_lets_cancellation_through(self):
        async def fetch() -> str:
            raise asyncio.CancelledError

        with pytest.raises(asyncio.CancelledError):
            await Result.from_awaitable(fetch, ErrorCode.DATABASE_ERROR, "failed")

    @pytest.mark.asyncio
    async def test_flat_map_async(self):
        async def validate(x: int) -> Result[int]:
            return Result.success(x) if x > 0 else Result.failure(ErrorCode.VALIDATION_ERROR, "neg")

        assert (await Result.success(5).flat_map_async(validate)).value() == 5
        negative = await Result.success(-1).flat_map_async(validate)
        assert negative.error().code is ErrorCode.VALIDATION_ERROR

    @pytest.mark.asyncio
    async def test_flat_map_async_catches_exception(self):
        async def failing(x: int) -> Result[int]:
            raise RuntimeError("boom")

        result = await Result.success(5).flat_map_async(failing)
        assert result.error().code is ErrorCode.UNKNOWN_ERROR
