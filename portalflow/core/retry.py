"""
Retry helper for peripheral AI calls (barcode scanning, address lookup).

The traversal loop and step executors never retry: a failing step aborts
the run. This wrapper is only for calls made outside a step's single
external call.
"""

import logging
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _log_retry(label: str) -> Callable[[RetryCallState], None]:
    def before_sleep(retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        delay = retry_state.next_action.sleep if retry_state.next_action else 0
        logger.warning(
            f"{label} failed (attempt {retry_state.attempt_number}), "
            f"retrying in {delay:.1f}s: {error}"
        )

    return before_sleep


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    label: str = "operation",
    max_attempts: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 10.0,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    sleep: Optional[Callable[[float], Awaitable[None]]] = None,
) -> T:
    """
    Await operation, retrying with exponential backoff and jitter.

    Args:
        operation: Zero-argument coroutine factory (called once per attempt)
        label: Name used in retry log lines
        max_attempts: Total attempts including the first
        base_delay: Initial backoff in seconds
        max_delay: Backoff ceiling in seconds
        retry_on: Exception types that trigger a retry; others propagate at once
        sleep: Override for the async sleep (tests pass a no-op)

    Returns:
        The operation's result

    Raises:
        The last exception once attempts are exhausted
    """
    retrying_kwargs = {}
    if sleep is not None:
        retrying_kwargs["sleep"] = sleep

    async for attempt in AsyncRetrying(
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential_jitter(initial=base_delay, max=max_delay),
        retry=retry_if_exception_type(retry_on),
        before_sleep=_log_retry(label),
        reraise=True,
        **retrying_kwargs,
    ):
        with attempt:
            return await operation()

    # AsyncRetrying with reraise=True always returns or raises
    raise RuntimeError("Unexpected state in retry loop")  # pragma: no cover
