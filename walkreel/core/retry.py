"""
Retry helper for transient storage errors.
"""

import logging
import time
from typing import Any, Callable, Optional, Tuple, Type, TypeVar

from walkreel.config import STORAGE_MAX_ATTEMPTS, STORAGE_RETRY_BASE_DELAY
from walkreel.core.exceptions import StorageUnavailable

logger = logging.getLogger(__name__)

T = TypeVar("T")


def call_with_retries(
    fn: Callable[..., T],
    *args: Any,
    attempts: int = STORAGE_MAX_ATTEMPTS,
    base_delay: float = STORAGE_RETRY_BASE_DELAY,
    retry_on: Tuple[Type[BaseException], ...] = (StorageUnavailable,),
    sleep: Optional[Callable[[float], None]] = None,
    **kwargs: Any,
) -> T:
    """
    Call ``fn`` and retry it with exponential backoff on transient errors.

    Args:
        fn: Callable to invoke.
        attempts: Total number of attempts (at least 1).
        base_delay: Delay before the first retry; doubled for every retry after.
        retry_on: Exception types considered transient.
        sleep: Sleep function; defaults to ``time.sleep``.

    Returns:
        Whatever ``fn`` returns.

    Raises:
        The last transient error once attempts are exhausted, or any
        non-transient error immediately.
    """
    attempts = max(1, attempts)
    for attempt in range(1, attempts + 1):
        try:
            return fn(*args, **kwargs)
        except retry_on as e:
            if attempt >= attempts:
                logger.error(f"Giving up after {attempts} attempts: {e}")
                raise
            delay = base_delay * (2 ** (attempt - 1))
            logger.warning(
                f"Attempt {attempt}/{attempts} failed ({e}); retrying in {delay:.2f}s"
            )
            (sleep or time.sleep)(delay)
    raise AssertionError("unreachable")
