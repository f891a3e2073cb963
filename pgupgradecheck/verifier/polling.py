# Copyright (c) 2024, Oracle and/or its affiliates.
#
# Licensed under the Universal Permissive License v 1.0 as shown at https://oss.oracle.com/licenses/upl/
#

from logging import getLogger
from typing import Any, Callable, Optional, TypeVar

from .api import Clock
from .errors import ConflictError, TransientError, WaitTimeoutError

logger = getLogger("polling")

T = TypeVar("T")

DEFAULT_POLL_INTERVAL = 2


def await_condition(predicate: Callable[[], T],
                    matcher: Callable[[T], Any] = bool,
                    *,
                    timeout: float,
                    clock: Clock,
                    poll_interval: float = DEFAULT_POLL_INTERVAL,
                    what: str = "condition",
                    target: Optional[str] = None) -> T:
    """
    Call predicate until its result satisfies matcher or timeout seconds pass.

    A TransientError raised by predicate counts as "not yet" and is retried,
    anything else propagates right away. Returns the matching value, raises
    WaitTimeoutError (chained to the last transient error, if any) otherwise.
    """
    assert timeout > 0 and poll_interval > 0

    deadline = clock.now() + timeout
    last_value = None
    last_error: Optional[TransientError] = None
    attempt = 0

    while True:
        attempt += 1
        try:
            value = predicate()
        except TransientError as e:
            last_error = e
            logger.debug(f"{what}: attempt {attempt} failed: {e}")
        else:
            last_error = None
            last_value = value
            if matcher(value):
                logger.debug(f"{what}: satisfied after {attempt} attempt(s) with {value!r}")
                return value
            logger.debug(f"{what}: attempt {attempt} returned {value!r}")

        remaining = deadline - clock.now()
        if remaining <= 0:
            break
        clock.sleep(min(poll_interval, remaining))

    logger.error(f"Waited condition never became true: {what}. Last value was {last_value!r}")
    raise WaitTimeoutError(what, timeout, target, last_value) from last_error


def retry_with_backoff(is_retryable: Callable[[Exception], bool],
                       action: Callable[[], T],
                       *,
                       steps: int,
                       initial_delay: float,
                       clock: Clock,
                       factor: float = 1.0,
                       what: str = "action") -> T:
    """
    Run action up to steps times, sleeping initial_delay between attempts and
    multiplying the delay by factor after each one. The first non-retryable
    error is raised right away; when all attempts fail the last error is raised.
    """
    assert steps > 0

    delay = initial_delay
    for attempt in range(1, steps + 1):
        try:
            return action()
        except Exception as e:
            if not is_retryable(e):
                raise
            if attempt == steps:
                logger.error(f"{what}: giving up after {steps} attempts: {e}")
                raise
            logger.info(f"{what}: attempt {attempt}/{steps} failed ({e}), retrying in {delay}s")
        clock.sleep(delay)
        delay *= factor

    assert False, "unreachable"


def is_conflict(error: Exception) -> bool:
    return isinstance(error, ConflictError)
