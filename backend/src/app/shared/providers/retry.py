"""Operation-level retry.

Re-runs a whole dispatch-plus-parse pipeline when it raises.  This sits one
level above credential failover and knows nothing about credentials: a
parse failure is not fixed by rotating keys, while the same request asked
twice often yields a parseable answer.

No delay is inserted between attempts; ``max_attempts`` stays small.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import TypeVar

import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_none,
)

from app.domain.exceptions import ConfigurationError

logger = structlog.get_logger(__name__)

T = TypeVar("T")


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    max_attempts: int = 2,
    *,
    operation_name: str = "operation",
) -> T:
    """Call ``operation`` up to ``max_attempts`` times, returning the first success.

    ``ConfigurationError`` is never retried.

    Raises:
        The last error raised by ``operation`` once attempts are exhausted.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    def _log_retry(state: RetryCallState) -> None:
        logger.warning(
            "operation_retrying",
            operation=operation_name,
            attempt=state.attempt_number,
            max_attempts=max_attempts,
            error=str(state.outcome.exception()) if state.outcome else None,
        )

    retrying = AsyncRetrying(
        stop=stop_after_attempt(max_attempts),
        wait=wait_none(),
        retry=retry_if_not_exception_type(ConfigurationError),
        before_sleep=_log_retry,
        reraise=True,
    )
    try:
        return await retrying(operation)
    except Exception as exc:
        logger.error(
            "operation_failed",
            operation=operation_name,
            attempts=retrying.statistics.get("attempt_number", max_attempts),
            error=str(exc),
        )
        raise
