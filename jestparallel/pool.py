"""
Process pool for runner subprocesses.

Each WorkItem gets one subprocess; a semaphore bounds how many run at once.
Worker slot ids are reused the way Jest reuses its own worker ids, so log
lines and results name at most ``max_workers`` distinct workers.

Every WorkItem yields exactly one ExecutionResult. Spawn failures, transform
failures and faults in the orchestration code itself become failed results;
only a missing runner executable, checked once before dispatch, aborts
``run_all``.
"""
import asyncio
import heapq
import logging
import tempfile
import time
from contextlib import ExitStack
from dataclasses import replace
from pathlib import Path
from typing import Awaitable, Callable, Iterable, List, Optional

from jestparallel.aggregator import ResultAggregator
from jestparallel.config import RunnerConfig
from jestparallel.errors import RunnerSpawnError, TransformError
from jestparallel.hooks import (
    detect_hook_timeout,
    hook_timer_setup_file,
    read_instrumented_hooks,
    remove_hooks_dir,
)
from jestparallel.parsers import OutputGrammar, get_grammar
from jestparallel.process import ProcessExecutor, ProcessOutcome
from jestparallel.strategy import select_strategy
from jestparallel.transformer import transformed_copy
from jestparallel.types import ExecutionResult, FailureType, WorkItem
from jestparallel.utils.commands import (
    build_runner_command,
    build_runner_env,
    discover_setup_files,
    resolve_executable,
)

logger = logging.getLogger(__name__)

ResultCallback = Callable[[ExecutionResult], Awaitable[None]]


class ProcessPoolManager:
    """Runs WorkItems as bounded, isolated runner subprocesses."""

    def __init__(
        self,
        config: RunnerConfig,
        grammar: Optional[OutputGrammar] = None,
        executor: Optional[ProcessExecutor] = None,
        aggregator: Optional[ResultAggregator] = None,
    ) -> None:
        self.config = config
        self.grammar = grammar or get_grammar(config.output_grammar)
        self.executor = executor or ProcessExecutor(grace_period_ms=config.grace_period_ms)
        self.aggregator = aggregator or ResultAggregator()
        self._semaphore: Optional[asyncio.Semaphore] = None
        self._free_slots: List[int] = list(range(1, config.max_workers + 1))
        self._setup_files: Optional[List[str]] = None

    def check_runner(self) -> str:
        """
        Verify the runner executable exists.

        Raises:
            RunnerNotFoundError: If it cannot be located
        """
        return resolve_executable(self.config.runner_command)

    async def run(self, item: WorkItem) -> ExecutionResult:
        """
        Run one WorkItem once a worker slot is free.

        Items planned without a worker id get the slot they run in.
        """
        if self._semaphore is None:
            # Created here so it belongs to the running event loop
            self._semaphore = asyncio.Semaphore(self.config.max_workers)

        async with self._semaphore:
            slot = heapq.heappop(self._free_slots)
            dispatched = item if item.worker_id else replace(item, worker_id=slot)
            try:
                return await self._run_guarded(dispatched)
            finally:
                heapq.heappush(self._free_slots, slot)

    async def run_all(
        self,
        items: Iterable[WorkItem],
        on_result: Optional[ResultCallback] = None,
    ) -> List[ExecutionResult]:
        """
        Run WorkItems concurrently and return their results in input order.

        Args:
            items: WorkItems to run
            on_result: Awaited with each result as soon as it is available

        Raises:
            RunnerNotFoundError: Before anything is dispatched, if the runner is missing
        """
        work = list(items)
        executable = self.check_runner()
        logger.info(f"Running {len(work)} work item(s) on up to {self.config.max_workers} worker(s) with {executable}")

        async def run_one(item: WorkItem) -> ExecutionResult:
            result = await self.run(item)
            if on_result is not None:
                await on_result(result)
            return result

        return list(await asyncio.gather(*(run_one(item) for item in work)))

    async def _run_guarded(self, item: WorkItem) -> ExecutionResult:
        start = time.monotonic()
        try:
            return await self._execute(item)
        except Exception as e:
            logger.exception(f"Worker {item.worker_id} crashed while running {item.label}")
            return self.aggregator.failed_result(
                item,
                f"Internal error while running {item.file_path}: {e}",
                duration_ms=(time.monotonic() - start) * 1000,
            )

    def _resolve_path(self, file_path: str) -> Path:
        path = Path(file_path)
        if not path.is_absolute():
            path = Path(self.config.project_root) / path
        return path.resolve()

    def _user_setup_files(self) -> List[str]:
        if self._setup_files is None:
            self._setup_files = discover_setup_files(
                Path(self.config.project_root), self.config.runner_config_path
            )
            if self._setup_files:
                logger.debug(f"Re-passing project setupFilesAfterEnv: {self._setup_files}")
        return self._setup_files

    async def _execute(self, item: WorkItem) -> ExecutionResult:
        plan = select_strategy(self.config, item)
        source = self._resolve_path(item.file_path)

        with ExitStack() as stack:
            run_path = source
            if plan.transform:
                try:
                    run_path = stack.enter_context(transformed_copy(source))
                except TransformError as e:
                    logger.error(str(e))
                    return self.aggregator.failed_result(item, str(e))

            workdir = Path(stack.enter_context(tempfile.TemporaryDirectory(prefix="jest-parallel-")))
            report_path = workdir / "report.json" if plan.json_report else None
            hooks_dir = workdir / "hooks" if plan.instrument_hooks else None
            setup_files: List[str] = []
            if plan.instrument_hooks:
                setup_files = [*self._user_setup_files(), str(hook_timer_setup_file())]

            argv = build_runner_command(self.config, str(run_path), plan.runner_args, report_path, setup_files)
            env = build_runner_env(self.config, item.worker_id, hooks_dir)

            logger.info(f"Worker {item.worker_id} running {item.label} ({plan.strategy.value})")
            outcome = await self.executor.execute(
                argv, item.timeout_ms, cwd=self.config.project_root, env=env
            )

            if outcome.spawn_error is not None:
                spawn_error = RunnerSpawnError(argv[0], outcome.spawn_error)
                return self.aggregator.failed_result(item, str(spawn_error), duration_ms=outcome.duration_ms)

            result = self._build_result(item, outcome, run_path, report_path, hooks_dir)

        logger.info(
            f"Worker {item.worker_id} finished {item.label}: {result.status.value} "
            f"({result.summary.passed} passed, {result.summary.failed} failed) in {result.duration_ms:.0f}ms"
        )
        return result

    def _build_result(
        self,
        item: WorkItem,
        outcome: ProcessOutcome,
        run_path: Path,
        report_path: Optional[Path],
        hooks_dir: Optional[Path],
    ) -> ExecutionResult:
        combined = outcome.combined_text
        text = self.grammar.parse_text(combined, item.file_path)
        report = self.grammar.parse_report(report_path, item.file_path) if report_path else None
        instrumented = None
        if hooks_dir is not None:
            instrumented = read_instrumented_hooks(hooks_dir, str(run_path))
            remove_hooks_dir(hooks_dir)

        for error in text.errors + (report.errors if report else []):
            if error.type == FailureType.PARSER_ERROR:
                logger.warning(f"{item.label}: {error.message}")

        timeout_message = None
        stuck_hook = None
        if outcome.timed_out:
            stuck_hook = detect_hook_timeout(combined)
            timeout_message = f"Worker timeout - exceeded {item.timeout_ms / 1000:g}s limit while processing {item.file_path}"
            if stuck_hook is not None:
                timeout_message += f" (likely stuck in {stuck_hook.value} hook)"
            logger.warning(timeout_message)

        return self.aggregator.aggregate(
            item,
            text,
            report=report,
            instrumented_hooks=instrumented,
            exit_code=outcome.exit_code,
            duration_ms=outcome.duration_ms,
            timed_out=outcome.timed_out,
            timeout_message=timeout_message,
            stuck_hook=stuck_hook,
        )
