"""Tests for the Result type used at the API boundary."""

import pytest

from vitals.domain.errors import ApiError, NetworkError
from vitals.services.result import Result


class TestResult:
    """Test the Result type for explicit error handling."""

    def test_result_ok_creates_successful_result(self) -> None:
        result: Result[str, ApiError] = Result.ok("success")
        assert result.is_ok()
        assert not result.is_err()
        assert result.unwrap() == "success"

    def test_result_error_creates_failed_result(self) -> None:
        error = NetworkError("connection refused")
        result: Result[str, ApiError] = Result.err(error)
        assert not result.is_ok()
        assert result.is_err()
        assert result.unwrap_or("default") == "default"
        assert result.unwrap_err() is error

    def test_unwrap_raises_on_error_result(self) -> None:
        result: Result[str, ApiError] = Result.err(ApiError("not found", 404))

        with pytest.raises(ApiError, match="not found"):
            result.unwrap()

    def test_none_is_a_valid_ok_value(self) -> None:
        result: Result[None, ApiError] = Result.ok(None)
        assert result.is_ok()
        assert result.unwrap() is None

    def test_unwrap_err_on_ok_raises(self) -> None:
        with pytest.raises(ValueError):
            Result.ok(1).unwrap_err()

    def test_result_needs_exactly_one_side(self) -> None:
        with pytest.raises(ValueError):
            Result()
        with pytest.raises(ValueError):
            Result(value=1, error=ApiError("boom"))
