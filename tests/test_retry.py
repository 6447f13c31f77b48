from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from cocreator.errors import FatalProviderError, HttpStatusError, ParseError, TransportError
from cocreator.services.retry import is_retryable, notify, with_retry


class FakeSleep:
    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


@pytest.mark.asyncio
async def test_503_is_tried_exactly_max_attempts_times():
    operation = AsyncMock(side_effect=HttpStatusError(503, "overloaded"))
    sleep = FakeSleep()
    messages: list[str] = []

    with pytest.raises(HttpStatusError) as exc_info:
        await with_retry(
            operation,
            max_attempts=3,
            initial_delay_ms=1000,
            on_progress=messages.append,
            action_name="Prompt Refinement",
            sleep=sleep,
        )

    assert exc_info.value.code == 503
    assert operation.await_count == 3
    assert len(sleep.delays) == 2
    assert messages == [
        "Connection unstable or rate limited during Prompt Refinement. Retrying (1/3)...",
        "Connection unstable or rate limited during Prompt Refinement. Retrying (2/3)...",
    ]


@pytest.mark.asyncio
async def test_final_attempt_error_is_raised_unchanged():
    last = HttpStatusError(503, "still overloaded")
    operation = AsyncMock(side_effect=[HttpStatusError(503, "overloaded"), last])

    with pytest.raises(HttpStatusError) as exc_info:
        await with_retry(operation, max_attempts=2, sleep=FakeSleep())

    assert exc_info.value is last


@pytest.mark.asyncio
async def test_backoff_doubles_with_jitter():
    operation = AsyncMock(side_effect=TransportError("refused"))
    sleep = FakeSleep()

    with pytest.raises(TransportError):
        await with_retry(operation, max_attempts=4, initial_delay_ms=2000, sleep=sleep)

    first, second, third = sleep.delays
    assert first == pytest.approx(2.0)
    assert 4.0 <= second <= 5.0
    assert second * 2 <= third <= second * 2 + 1.0


@pytest.mark.asyncio
async def test_404_not_found_is_tried_once():
    operation = AsyncMock(side_effect=FatalProviderError("HTTP 404: model not found"))
    sleep = FakeSleep()

    with pytest.raises(FatalProviderError):
        await with_retry(operation, max_attempts=5, sleep=sleep)

    assert operation.await_count == 1
    assert sleep.delays == []


@pytest.mark.asyncio
async def test_success_after_transient_failures_returns_value():
    operation = AsyncMock(side_effect=[HttpStatusError(429, "slow down"), HttpStatusError(500), "done"])
    sleep = FakeSleep()

    result = await with_retry(operation, max_attempts=3, sleep=sleep)

    assert result == "done"
    assert operation.await_count == 3


@pytest.mark.asyncio
async def test_failing_progress_listener_does_not_affect_retry():
    operation = AsyncMock(side_effect=[TransportError("reset"), "ok"])

    def broken_listener(_message: str) -> None:
        raise RuntimeError("listener exploded")

    result = await with_retry(operation, on_progress=broken_listener, sleep=FakeSleep())
    assert result == "ok"


@pytest.mark.parametrize(
    ("exc", "expected"),
    [
        (HttpStatusError(503), True),
        (HttpStatusError(429), True),
        (HttpStatusError(400, "bad request"), False),
        (HttpStatusError(401), False),
        (TransportError("connection refused"), True),
        (asyncio.TimeoutError(), True),
        (ParseError("garbage"), False),
        (FatalProviderError("API key missing"), False),
        (RuntimeError("RESOURCE_EXHAUSTED: quota"), True),
        (RuntimeError("Rpc failed due to xhr error"), True),
        (RuntimeError("Requested entity was not found. status unavailable"), False),
        (ValueError("something else"), False),
    ],
)
def test_is_retryable(exc, expected):
    assert is_retryable(exc) is expected


def test_notify_ignores_missing_listener():
    notify(None, "nothing happens")
