"""
Batched delivery of test records to a remote reporting endpoint.

Results are flattened to one record per test and queued. The queue is
flushed automatically every ``flush_every`` records and on ``close()``,
posting at most ``batch_size`` records per request. A batch that still
fails after retries goes back to the front of the queue; delivery problems
are logged and never raised to the caller.
"""
import logging
import os
import random
import string
import threading
import time
from typing import Any, Dict, List, Optional

import requests

from jestparallel import __version__
from jestparallel.config import RemoteReportingConfig
from jestparallel.errors import ReportingError
from jestparallel.types import ExecutionResult, TestStatus, utc_now
from jestparallel.utils.retry import RetryConfig, execute_with_retry

logger = logging.getLogger(__name__)

BUILD_ID_ENV_VARS = ("JEST_PARALLEL_BUILD_ID", "BUILD_ID", "GITHUB_RUN_ID", "CI_PIPELINE_ID")
_BASE36 = string.digits + string.ascii_lowercase


def generate_build_id() -> str:
    """Build id from the CI environment, else ``jest-parallel-<epoch ms>-<6 base36 chars>``."""
    for name in BUILD_ID_ENV_VARS:
        value = os.environ.get(name)
        if value:
            return value
    suffix = "".join(random.choice(_BASE36) for _ in range(6))
    return f"jest-parallel-{int(time.time() * 1000)}-{suffix}"


def flatten_result(result: ExecutionResult, build_id: str) -> List[Dict[str, Any]]:
    """One flat record per test of ``result``."""
    timestamp = utc_now()
    records = []
    for test in result.test_results:
        status = test.status.value
        if test.status == TestStatus.TODO:
            status = TestStatus.SKIPPED.value
        records.append(
            {
                "buildId": build_id,
                "workerId": result.worker_id,
                "testPath": result.file_path,
                "testName": test.full_name,
                "status": status,
                "duration": round(test.duration_ms, 3),
                "error": test.error,
                "timestamp": timestamp,
            }
        )
    return records


class RemoteResultReporter:
    """Queues flattened test records and posts them in batches."""

    def __init__(
        self,
        config: RemoteReportingConfig,
        session: Optional[requests.Session] = None,
        retry_config: Optional[RetryConfig] = None,
    ) -> None:
        """
        Initialize the reporter.

        Args:
            config: Remote reporting settings
            session: HTTP session to use instead of a new one
            retry_config: Backoff for each batch request

        Raises:
            ReportingError: If reporting is enabled without an endpoint
        """
        if config.enabled and not config.endpoint:
            raise ReportingError("remote reporting is enabled but no endpoint is configured")
        self.config = config
        self.build_id = config.build_id or generate_build_id()
        self.retry_config = retry_config or RetryConfig(
            max_attempts=3,
            exceptions=(requests.RequestException,),
        )
        self._session = session
        self._queue: List[Dict[str, Any]] = []
        self._lock = threading.Lock()
        self.sent = 0

    @property
    def enabled(self) -> bool:
        return self.config.enabled

    @property
    def pending(self) -> int:
        return len(self._queue)

    def _get_session(self) -> requests.Session:
        """Get or create HTTP session."""
        if self._session is None:
            self._session = requests.Session()
            headers = {
                "Content-Type": "application/json",
                "User-Agent": f"jestparallel/{__version__}",
            }
            if self.config.api_key:
                headers["Authorization"] = f"Bearer {self.config.api_key}"
            self._session.headers.update(headers)
        return self._session

    def record(self, result: ExecutionResult) -> None:
        """Queue the tests of one ExecutionResult."""
        self.add_records(flatten_result(result, self.build_id))

    def add_records(self, records: List[Dict[str, Any]]) -> None:
        """Queue flat records, flushing once ``flush_every`` are pending."""
        if not self.enabled or not records:
            return
        with self._lock:
            self._queue.extend(records)
            should_flush = len(self._queue) >= self.config.flush_every
        if should_flush:
            self.flush()

    def flush(self) -> int:
        """
        Post every queued record.

        Returns:
            Number of records delivered by this call
        """
        delivered = 0
        with self._lock:
            while self._queue:
                batch = self._queue[: self.config.batch_size]
                del self._queue[: len(batch)]
                try:
                    execute_with_retry(
                        self._post,
                        batch,
                        config=self.retry_config,
                        logger_instance=logger,
                    )
                except requests.RequestException as e:
                    self._queue[:0] = batch
                    logger.warning(
                        f"Failed to deliver {len(batch)} result(s) to {self.config.endpoint}: {e}. "
                        f"{len(self._queue)} queued for the next flush"
                    )
                    break
                delivered += len(batch)
        self.sent += delivered
        if delivered:
            logger.debug(f"Delivered {delivered} result(s) for build {self.build_id}")
        return delivered

    def _post(self, batch: List[Dict[str, Any]]) -> None:
        response = self._get_session().post(
            self.config.endpoint,
            json={"buildId": self.build_id, "results": batch},
            timeout=self.config.timeout_seconds,
        )
        response.raise_for_status()

    def close(self) -> None:
        """Flush what is left and release the session."""
        if self.enabled:
            self.flush()
            if self._queue:
                logger.warning(f"Dropping {len(self._queue)} undelivered result(s) for build {self.build_id}")
                self._queue.clear()
        if self._session is not None:
            self._session.close()
            self._session = None

    def __enter__(self) -> "RemoteResultReporter":
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()
