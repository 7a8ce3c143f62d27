"""Bounded polling used by every readiness check in the harness."""

import logging
import time
from typing import Any, Callable

from embedded_kafka.errors import PreconditionTimeout

logger = logging.getLogger(__name__)


def eventually(timeout_ms: int, interval_ms: int, predicate: Callable[[], Any], message: str) -> None:
    """
    Poll ``predicate`` every ``interval_ms`` until it returns a truthy value.

    An AssertionError raised by the predicate counts as "not yet", so checks
    may be written as plain asserts. Any other exception propagates
    immediately. Raises PreconditionTimeout(message) once ``timeout_ms`` has
    elapsed without success.
    """
    if timeout_ms <= 0 or interval_ms <= 0:
        raise ValueError(f"timeout_ms and interval_ms must be positive, got {timeout_ms}/{interval_ms}")

    deadline = time.monotonic() + timeout_ms / 1000.0
    interval = interval_ms / 1000.0
    last_error = None
    attempts = 0

    while True:
        attempts += 1
        try:
            if predicate():
                return
        except AssertionError as e:
            last_error = e

        remaining = deadline - time.monotonic()
        if remaining <= 0:
            break
        time.sleep(min(interval, remaining))

    logger.debug(f"Condition not met after {attempts} attempts in {timeout_ms}ms: {message}")
    raise PreconditionTimeout(message) from last_error
