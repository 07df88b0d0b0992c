"""Tests for retry with exponential backoff."""

import pytest

from jestparallel.utils.retry import RetryConfig, execute_with_retry


class Flaky:
    """Callable failing a fixed number of times before succeeding."""

    def __init__(self, failures: int, exc: Exception = ConnectionError("down")):
        self.failures = failures
        self.exc = exc
        self.calls = 0
        self.__name__ = "flaky"

    def __call__(self, value):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.exc
        return value * 2


class TestRetryConfig:
    """Tests for RetryConfig."""

    def test_delay_grows_and_is_capped(self):
        config = RetryConfig(initial_delay=1.0, max_delay=5.0, exponential_base=2.0)
        assert [config.calculate_delay(a) for a in range(5)] == [1.0, 2.0, 4.0, 5.0, 5.0]

    def test_rejects_zero_attempts(self):
        with pytest.raises(ValueError):
            RetryConfig(max_attempts=0)


class TestExecuteWithRetry:
    """Tests for execute_with_retry."""

    def test_succeeds_after_failures(self):
        """Test that transient failures are retried with backoff."""
        func = Flaky(failures=2)
        sleeps = []

        result = execute_with_retry(func, 21, config=RetryConfig(max_attempts=3, initial_delay=0.5), sleep=sleeps.append)

        assert result == 42
        assert func.calls == 3
        assert sleeps == [0.5, 1.0]

    def test_raises_last_error_when_exhausted(self):
        func = Flaky(failures=5)

        with pytest.raises(ConnectionError):
            execute_with_retry(func, 1, config=RetryConfig(max_attempts=2), sleep=lambda _: None)

        assert func.calls == 2

    def test_other_exceptions_are_not_retried(self):
        """Test that only the configured exception types trigger a retry."""
        func = Flaky(failures=1, exc=KeyError("x"))
        config = RetryConfig(max_attempts=3, exceptions=(ConnectionError,))

        with pytest.raises(KeyError):
            execute_with_retry(func, 1, config=config, sleep=lambda _: None)

        assert func.calls == 1

    def test_passes_keyword_arguments(self):
        def add(a, b=0):
            return a + b

        assert execute_with_retry(add, 1, b=2) == 3
