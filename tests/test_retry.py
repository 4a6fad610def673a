"""Tests for retry with backoff"""

from unittest.mock import AsyncMock, patch

import pytest

from trainermatch.errors import ErrorKind, NetworkError, UpstreamServiceError, ValidationError
from trainermatch.utils.retry import is_retryable, with_retry


class TestIsRetryable:
    def test_flags(self):
        assert is_retryable(NetworkError(ErrorKind.TIMEOUT, "slow")) is True
        assert is_retryable(UpstreamServiceError(ErrorKind.QUOTA_EXCEEDED, "quota")) is False
        assert is_retryable(ValidationError("bad")) is False
        assert is_retryable(RuntimeError("plain")) is False


class TestWithRetry:
    """with_retry"""

    @pytest.mark.asyncio
    async def test_success_first_try(self):
        operation = AsyncMock(return_value="ok")
        assert await with_retry(operation) == "ok"
        assert operation.await_count == 1

    @pytest.mark.asyncio
    async def test_exponential_backoff(self):
        error = NetworkError(ErrorKind.UNREACHABLE, "down")
        operation = AsyncMock(side_effect=[error, error, "ok"])

        with patch("trainermatch.utils.retry.asyncio.sleep", new_callable=AsyncMock) as sleep:
            assert await with_retry(operation, max_attempts=3, base_delay=1.0) == "ok"

        assert [c.args[0] for c in sleep.await_args_list] == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self):
        error = UpstreamServiceError(ErrorKind.RATE_LIMITED, "busy")
        operation = AsyncMock(side_effect=error)

        with patch("trainermatch.utils.retry.asyncio.sleep", new_callable=AsyncMock):
            with pytest.raises(UpstreamServiceError) as exc_info:
                await with_retry(operation, max_attempts=3)

        assert exc_info.value is error
        assert operation.await_count == 3

    @pytest.mark.asyncio
    async def test_non_retryable_raises_immediately(self):
        operation = AsyncMock(side_effect=UpstreamServiceError(ErrorKind.INVALID_CREDENTIALS, "bad key"))

        with patch("trainermatch.utils.retry.asyncio.sleep", new_callable=AsyncMock) as sleep:
            with pytest.raises(UpstreamServiceError):
                await with_retry(operation)

        assert operation.await_count == 1
        sleep.assert_not_awaited()
