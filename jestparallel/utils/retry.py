"""Retry with exponential backoff for remote reporting requests."""

import logging
import time
from typing import Any, Callable, Optional, Tuple, Type

logger = logging.getLogger(__name__)


class RetryConfig:
    """Configuration for retry behavior."""

    def __init__(
        self,
        max_attempts: int = 3,
        initial_delay: float = 0.5,
        max_delay: float = 10.0,
        exponential_base: float = 2.0,
        exceptions: Tuple[Type[BaseException], ...] = (Exception,),
    ):
        """Initialize retry configuration.

        Args:
            max_attempts: Total attempts including the first one (default: 3)
            initial_delay: Delay in seconds before the first retry (default: 0.5)
            max_delay: Cap on the delay between attempts (default: 10.0)
            exponential_base: Growth factor of the delay (default: 2.0)
            exceptions: Exception types that trigger a retry
        """
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {max_attempts}")
        self.max_attempts = max_attempts
        self.initial_delay = initial_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.exceptions = exceptions

    def calculate_delay(self, attempt: int) -> float:
        """Delay after the given 0-indexed attempt, capped at max_delay."""
        delay = self.initial_delay * (self.exponential_base ** attempt)
        return min(delay, self.max_delay)


def execute_with_retry(
    func: Callable[..., Any],
    *args: Any,
    config: Optional[RetryConfig] = None,
    logger_instance: Optional[logging.Logger] = None,
    sleep: Callable[[float], None] = time.sleep,
    **kwargs: Any,
) -> Any:
    """Call ``func`` until it succeeds or the attempts run out.

    Args:
        func: Function to execute
        *args: Positional arguments to pass to func
        config: RetryConfig instance (defaults if None)
        logger_instance: Logger for retry messages
        sleep: Delay function, replaceable in tests
        **kwargs: Keyword arguments to pass to func

    Returns:
        Result of the function call

    Raises:
        The last exception once ``max_attempts`` is exhausted
    """
    config = config or RetryConfig()
    log = logger_instance or logger
    name = getattr(func, "__name__", repr(func))

    for attempt in range(config.max_attempts):
        try:
            return func(*args, **kwargs)
        except config.exceptions as e:
            if attempt + 1 >= config.max_attempts:
                log.error(f"{name} failed after {config.max_attempts} attempts: {e}")
                raise

            delay = config.calculate_delay(attempt)
            log.warning(
                f"{name} attempt {attempt + 1}/{config.max_attempts} failed: {e}. "
                f"Retrying in {delay:.1f}s..."
            )
            sleep(delay)

    raise AssertionError("unreachable")
