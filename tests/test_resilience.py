"""
Tests for retry and graceful degradation helpers.
"""
from unittest.mock import AsyncMock, patch

import pytest

from instay.services.resilience import (
    RetryConfig,
    TransientServiceError,
    graceful_degradation,
    is_retryable_status,
    retry_async,
)

pytestmark = pytest.mark.unit


@pytest.fixture(autouse=True)
def no_backoff():
    with patch("instay.services.resilience.asyncio.sleep", new=AsyncMock()) as sleep:
        yield sleep


class TestRetryAsync:
    """Test async retry decorator."""

    @pytest.mark.asyncio
    async def test_succeeds_without_retry(self):
        """Should succeed on first attempt."""
        call_count = 0

        @retry_async()
        async def success_func():
            nonlocal call_count
            call_count += 1
            return "success"

        assert await success_func() == "success"
        assert call_count == 1

    @pytest.mark.asyncio
    async def test_retries_then_succeeds(self, no_backoff):
        """Should retry transient failures with backoff."""
        attempts = []

        @retry_async(config=RetryConfig(max_retries=3, base_delay=1.0))
        async def flaky():
            attempts.append(1)
            if len(attempts) < 3:
                raise TransientServiceError("bird", "503")
            return "ok"

        assert await flaky() == "ok"
        assert len(attempts) == 3
        assert [c.args[0] for c in no_backoff.call_args_list] == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_non_retryable_raises_immediately(self):
        """Exceptions outside retryable_exceptions are not retried."""
        attempts = []

        @retry_async(config=RetryConfig(retryable_exceptions=(TransientServiceError,)))
        async def broken():
            attempts.append(1)
            raise ValueError("bad")

        with pytest.raises(ValueError):
            await broken()
        assert len(attempts) == 1

    @pytest.mark.asyncio
    async def test_raises_after_exhaustion(self):
        @retry_async(config=RetryConfig(max_retries=2))
        async def always_fails():
            raise TransientServiceError("bird", "down")

        with pytest.raises(TransientServiceError):
            await always_fails()


class TestGracefulDegradation:
    """Test graceful degradation decorator."""

    @pytest.mark.asyncio
    async def test_async_fallback(self):
        @graceful_degradation("messages", fallback_value=list)
        async def fails():
            raise RuntimeError("down")

        assert await fails() == []

    def test_sync_fallback(self):
        @graceful_degradation("snapshot", fallback_value=None)
        def fails():
            raise RuntimeError("down")

        assert fails() is None

    def test_passes_through_result(self):
        @graceful_degradation("snapshot", fallback_value=None)
        def works():
            return 42

        assert works() == 42


class TestIsRetryableStatus:
    """Test HTTP status classification."""

    def test_retryable(self):
        for code in (500, 502, 503, 429, 408):
            assert is_retryable_status(code)

    def test_not_retryable(self):
        for code in (200, 400, 401, 404, 501):
            assert not is_retryable_status(code)
