"""Tests for the retry decorator."""

from unittest.mock import AsyncMock, patch

import httpx
import pytest

from dreamjournal.app.providers.retry import RetryPolicy, with_retry


def _status_error(status: int) -> httpx.HTTPStatusError:
    request = httpx.Request("POST", "https://llm.test/v1/chat/completions")
    return httpx.HTTPStatusError(
        "error", request=request, response=httpx.Response(status, request=request)
    )


class TestRetryPolicy:
    def test_calculate_delay(self):
        policy = RetryPolicy(base_delay=0.5, max_delay=4.0)

        assert policy.calculate_delay(0) == 0.5
        assert policy.calculate_delay(1) == 1.0
        assert policy.calculate_delay(5) == 4.0

    @pytest.mark.parametrize(
        ("exc", "expected"),
        [
            (_status_error(500), True),
            (_status_error(503), True),
            (_status_error(429), True),
            (_status_error(400), False),
            (_status_error(401), False),
            (httpx.ConnectError("down"), True),
            (httpx.ReadTimeout("slow"), True),
            (ValueError("bad json"), False),
        ],
    )
    def test_is_retryable(self, exc, expected):
        assert RetryPolicy().is_retryable(exc) is expected


class TestWithRetry:
    @pytest.mark.asyncio
    async def test_retries_then_succeeds(self):
        func = AsyncMock(side_effect=[httpx.ConnectError("down"), "ok"])
        func.__name__ = "func"
        wrapped = with_retry(RetryPolicy(max_retries=2))(func)

        with patch("dreamjournal.app.providers.retry.asyncio.sleep", new=AsyncMock()) as sleep:
            assert await wrapped() == "ok"

        assert func.call_count == 2
        sleep.assert_awaited_once_with(0.5)

    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(self):
        func = AsyncMock(side_effect=_status_error(502))
        func.__name__ = "func"
        wrapped = with_retry(RetryPolicy(max_retries=2))(func)

        with patch("dreamjournal.app.providers.retry.asyncio.sleep", new=AsyncMock()):
            with pytest.raises(httpx.HTTPStatusError):
                await wrapped()

        assert func.call_count == 3

    @pytest.mark.asyncio
    async def test_non_retryable_raises_immediately(self):
        func = AsyncMock(side_effect=_status_error(400))
        func.__name__ = "func"
        wrapped = with_retry()(func)

        with pytest.raises(httpx.HTTPStatusError):
            await wrapped()

        assert func.call_count == 1
