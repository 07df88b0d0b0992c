"""
Top-level orchestration.

ParallelRunner plans WorkItems, runs them through the process pool, feeds
the optional remote reporter as results arrive and returns a RunReport.
A missing runner executable is the only error that escapes a run.
"""
import asyncio
import logging
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional, Sequence, Tuple, Union

from jestparallel.config import RunnerConfig, load_config
from jestparallel.integrations.remote import RemoteResultReporter
from jestparallel.log import configure_logging
from jestparallel.planner import find_test_files, plan_work_items
from jestparallel.pool import ProcessPoolManager
from jestparallel.report import RunReport, create_run_report
from jestparallel.types import ExecutionResult

logger = logging.getLogger(__name__)

FileSpec = Tuple[str, Sequence[str]]


class ParallelRunner:
    """Runs a set of Jest test files in parallel and collects the results."""

    def __init__(
        self,
        config: RunnerConfig,
        pool: Optional[ProcessPoolManager] = None,
        reporter: Optional[RemoteResultReporter] = None,
    ) -> None:
        self.config = config
        self.pool = pool or ProcessPoolManager(config)
        if reporter is None and config.remote.enabled:
            reporter = RemoteResultReporter(config.remote)
        self.reporter = reporter

    @classmethod
    def from_config_file(
        cls,
        config_path: Optional[Union[str, Path]] = None,
        overrides: Optional[Mapping[str, Any]] = None,
    ) -> "ParallelRunner":
        """Load configuration, set up logging and build a runner."""
        config = load_config(config_path, overrides)
        configure_logging(config.effective_log_level, config.log_file)
        return cls(config)

    def run(self, files: Optional[Iterable[Union[str, FileSpec]]] = None) -> RunReport:
        """
        Run test files and block until every WorkItem has a result.

        Args:
            files: Paths or ``(path, test_names)`` pairs; discovered from
                ``test_match`` when None

        Raises:
            RunnerNotFoundError: If the runner executable cannot be found
        """
        return asyncio.run(self.run_async(files))

    async def run_async(self, files: Optional[Iterable[Union[str, FileSpec]]] = None) -> RunReport:
        """Async variant of ``run`` for callers that own an event loop."""
        if files is None:
            files = find_test_files(self.config)
        specs = [(f, ()) if isinstance(f, (str, Path)) else f for f in files]
        items = plan_work_items(self.config, [(str(path), names) for path, names in specs])

        report = create_run_report(self.config)
        try:
            results = await self.pool.run_all(items, on_result=self._report_result)
        finally:
            if self.reporter is not None:
                await asyncio.to_thread(self.reporter.close)

        report.finalize(results)
        summary = report.summary
        logger.info(
            f"Run {report.run_id} finished: {summary.passed} passed, {summary.failed} failed, "
            f"{summary.skipped} skipped across {summary.files} file(s) in {summary.duration_ms / 1000:.1f}s"
        )
        return report

    async def _report_result(self, result: ExecutionResult) -> None:
        if self.reporter is None:
            return
        try:
            await asyncio.to_thread(self.reporter.record, result)
        except Exception:
            logger.exception(f"Remote reporting failed for {result.file_path}")
