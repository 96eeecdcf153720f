"""Retry policy for model requests."""

from __future__ import annotations

import asyncio
import random
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from loguru import logger

from burrow.chat.types import AuthType

T = TypeVar("T")

SCHEMA_DEPTH_MARKER = "maximum schema depth exceeded"
INVALID_ARGUMENT_MARKER = "Request contains an invalid argument"
JITTER_RATIO = 0.3
_SERVER_ERROR_RE = re.compile(r"5\d{2}")
_STATUS_IN_MESSAGE_RE = re.compile(r"\b(429|5\d{2})\b")

Persistent429Handler = Callable[[AuthType | None, BaseException], Awaitable[str | None]]


@dataclass(frozen=True)
class RetryOptions:
    max_attempts: int = 5
    initial_delay: float = 5.0
    max_delay: float = 30.0


def is_schema_depth_error(message: str) -> bool:
    return SCHEMA_DEPTH_MARKER in message


def is_invalid_argument_error(message: str) -> bool:
    return INVALID_ARGUMENT_MARKER in message


def error_status(exc: BaseException) -> int | None:
    """Best-effort HTTP status of a backend failure."""
    for attr in ("status_code", "status", "code"):
        value = getattr(exc, attr, None)
        if isinstance(value, int) and not isinstance(value, bool):
            return value
    match = _STATUS_IN_MESSAGE_RE.search(str(exc))
    if match is None:
        return None
    return int(match.group(1))


def is_retryable_message(message: str) -> bool:
    return "429" in message or _SERVER_ERROR_RE.search(message) is not None


def default_should_retry(exc: BaseException) -> bool:
    message = str(exc)
    if is_schema_depth_error(message):
        return False
    if is_retryable_message(message):
        return True
    status = error_status(exc)
    return status is not None and (status == 429 or 500 <= status < 600)


async def retry_with_backoff(
    fn: Callable[[], Awaitable[T]],
    options: RetryOptions | None = None,
    *,
    should_retry: Callable[[BaseException], bool] = default_should_retry,
    on_persistent_429: Persistent429Handler | None = None,
    auth_type: AuthType | None = None,
) -> T:
    """Call ``fn`` until it succeeds, the error is not retryable or attempts run out.

    When the attempts run out on a 429 for an OAuth session, ``on_persistent_429``
    may return a fallback model id; the budget then restarts for that model.
    """
    options = options or RetryOptions()
    attempt = 0
    delay = options.initial_delay
    while True:
        attempt += 1
        try:
            return await fn()
        except Exception as exc:
            retryable = should_retry(exc)
            exhausted = attempt >= options.max_attempts
            if (
                retryable
                and exhausted
                and on_persistent_429 is not None
                and auth_type == AuthType.LOGIN_WITH_OAUTH
                and error_status(exc) == 429
            ):
                fallback_model = await on_persistent_429(auth_type, exc)
                if fallback_model:
                    logger.info("chat.retry.fallback model={} attempts={}", fallback_model, attempt)
                    attempt = 0
                    delay = options.initial_delay
                    continue
            if not retryable or exhausted:
                raise

            wait = max(0.0, delay + delay * JITTER_RATIO * random.uniform(-1, 1))
            logger.warning(
                "chat.retry attempt={} max_attempts={} delay={:.2f}s error={}",
                attempt,
                options.max_attempts,
                wait,
                exc,
            )
            await asyncio.sleep(wait)
            delay = min(options.max_delay, delay * 2)
