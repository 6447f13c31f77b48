from __future__ import annotations

import asyncio
import random
from typing import Awaitable, Callable, Optional, TypeVar

from loguru import logger

from cocreator.errors import (
    FatalProviderError,
    HttpStatusError,
    ParseError,
    TransportError,
    ValidationError,
)

T = TypeVar("T")

ProgressCallback = Callable[[str], None]

RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})

# Markers of transient failures in messages from SDKs that don't expose a status.
TRANSIENT_MARKERS = (
    "rate limit",
    "rate_limit",
    "too many requests",
    "resource_exhausted",
    "resource has been exhausted",
    '"status":"unavailable"',
    "unavailable",
    '"status":"unknown"',
    "rpc failed",
    "xhr error",
    "fetch failed",
    "bad gateway",
    "gateway timeout",
    "timed out",
    "timeout",
)


def is_retryable(exc: BaseException) -> bool:
    """Classify a failure as transient (retry) or permanent (propagate)."""
    if isinstance(exc, (FatalProviderError, ParseError, ValidationError)):
        return False
    if isinstance(exc, HttpStatusError):
        return exc.code in RETRYABLE_STATUS_CODES
    if isinstance(exc, TransportError):
        return True
    if isinstance(exc, asyncio.TimeoutError):
        return True
    message = str(exc).lower()
    if "not found" in message:
        return False
    return any(marker in message for marker in TRANSIENT_MARKERS)


def notify(on_progress: Optional[ProgressCallback], message: str) -> None:
    """Deliver a progress message; a failing listener never affects the caller."""
    if on_progress is None:
        return
    try:
        on_progress(message)
    except Exception as exc:
        logger.warning(f"Progress listener raised: {exc}")


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    *,
    max_attempts: int = 3,
    initial_delay_ms: int = 1000,
    on_progress: Optional[ProgressCallback] = None,
    action_name: str = "Request",
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Run ``operation`` with exponential backoff and jitter on transient failures.

    After each retryable failure the delay becomes ``delay * 2 + random(0, 1000)``
    milliseconds. Non-retryable failures propagate immediately; once attempts
    are exhausted the last error is raised.
    """
    attempts = max(int(max_attempts), 1)
    delay_ms = float(max(initial_delay_ms, 0))

    for attempt in range(1, attempts + 1):
        try:
            return await operation()
        except Exception as exc:
            if not is_retryable(exc):
                logger.error(f"{action_name} failed with a non-retryable error: {exc}")
                raise
            if attempt >= attempts:
                logger.error(f"All {attempts} attempts failed for {action_name}")
                raise

            message = (
                f"Connection unstable or rate limited during {action_name}. "
                f"Retrying ({attempt}/{attempts})..."
            )
            logger.warning(f"{message} cause={exc}")
            notify(on_progress, message)
            await sleep(delay_ms / 1000.0)
            delay_ms = delay_ms * 2 + random.uniform(0, 1000)

    raise RuntimeError(f"{action_name} made no attempts")
