"""
Bounded retry with a recovery step between attempts.

One primitive shared by the pagination advancer and both sidebar
orchestrators: run an async action, judge its result with a success
predicate, and run a recovery action (usually a page reload) before every
attempt after the first.

Usage:
    result = await retry_with_recovery(
        lambda attempt: orchestrator.extract_once(page),
        succeeded=bool,
        max_attempts=3,
        recover=lambda: page.reload(),
        label="signalhire",
    )
"""

import logging
from typing import Any, Awaitable, Callable, Optional, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryError,
    before_sleep_log,
    retry_if_exception_type,
    retry_if_result,
    stop_after_attempt,
    wait_fixed,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def retry_with_recovery(
    action: Callable[[int], Awaitable[T]],
    *,
    succeeded: Callable[[T], bool],
    max_attempts: int,
    recover: Optional[Callable[[], Awaitable[Any]]] = None,
    wait_seconds: float = 0.0,
    label: str = "operation",
) -> T:
    """
    Run ``action(attempt_number)`` until ``succeeded(result)`` or attempts run out.

    Exceptions raised by ``action`` or ``recover`` count as a failed attempt.
    When every attempt fails, the last *result* is returned so callers can
    inspect it; if the last attempt raised, that exception propagates.

    Args:
        action: Coroutine factory receiving the 1-based attempt number
        succeeded: Predicate over the action's result
        max_attempts: Upper bound on attempts (>= 1)
        recover: Coroutine factory run before attempts 2..N
        wait_seconds: Fixed pause between attempts
        label: Name used in log lines

    Returns:
        The first successful result, or the last unsuccessful one.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be >= 1")

    retrying = AsyncRetrying(
        stop=stop_after_attempt(max_attempts),
        wait=wait_fixed(wait_seconds),
        retry=retry_if_exception_type(Exception) | retry_if_result(lambda r: not succeeded(r)),
        before_sleep=before_sleep_log(logger, logging.DEBUG),
        reraise=True,
    )

    try:
        async for attempt in retrying:
            n = attempt.retry_state.attempt_number
            with attempt:
                if n > 1 and recover is not None:
                    logger.info(f"[{label}] Recovering before attempt {n}/{max_attempts}")
                    await recover()
                logger.debug(f"[{label}] Attempt {n}/{max_attempts}")
                result = await action(n)
            if not attempt.retry_state.outcome.failed:
                attempt.retry_state.set_result(result)
    except RetryError as e:
        # Only reached when the final attempt returned an unsuccessful result
        logger.warning(f"[{label}] Gave up after {max_attempts} attempt(s)")
        return e.last_attempt.result()

    return result
