"""
Bounded retry with exponential backoff.

The only place the pipeline suspends. Each attempt is bounded by the HTTP
call's own timeout, so no cancellation is needed.
"""

import logging
import time
from typing import Callable, Tuple, Type, TypeVar

from tenacity import Retrying, retry_if_exception_type, stop_after_attempt

from sourcing.transport import TransientSourceError


logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_ATTEMPTS = 3
DEFAULT_BASE_DELAY = 1.0


def backoff_delay(attempt: int, base_delay: float = DEFAULT_BASE_DELAY) -> float:
    """Delay after the given zero-based failed attempt: base * 2**attempt."""
    return base_delay * (2 ** attempt)


def retry_with_backoff(
    operation: Callable[[], T],
    attempts: int = DEFAULT_ATTEMPTS,
    base_delay: float = DEFAULT_BASE_DELAY,
    retry_on: Tuple[Type[BaseException], ...] = (TransientSourceError,),
    sleep: Callable[[float], None] = time.sleep,
    label: str = "operation",
) -> T:
    """
    Run an operation, retrying on transient failures.

    Returns on the first success. Exceptions outside `retry_on` propagate
    immediately; the last transient failure propagates once attempts run out.

    Args:
        operation: Zero-argument callable
        attempts: Maximum number of attempts (default 3)
        base_delay: Seconds before the first retry, doubling each time
        retry_on: Exception types worth retrying
        sleep: Sleep function
        label: Name used in log messages

    Returns:
        The operation's result
    """
    attempts = max(1, attempts)

    def wait(retry_state) -> float:
        return backoff_delay(retry_state.attempt_number - 1, base_delay)

    def log_retry(retry_state) -> None:
        logger.warning(
            "%s failed (attempt %d/%d): %s; retrying in %.1fs",
            label,
            retry_state.attempt_number,
            attempts,
            retry_state.outcome.exception(),
            retry_state.next_action.sleep,
        )

    retrying = Retrying(
        stop=stop_after_attempt(attempts),
        wait=wait,
        retry=retry_if_exception_type(retry_on),
        sleep=sleep,
        before_sleep=log_retry,
        reraise=True,
    )
    return retrying(operation)
