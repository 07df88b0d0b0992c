"""
Execution strategy selection.

``select_strategy`` is a pure function of the configuration and the work
item. It decides the runner flags and whether the file must be rewritten
before it is run; nothing is spawned or written here.
"""
import math
import os
import re
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple

from jestparallel.config import RunnerConfig
from jestparallel.types import Strategy, WorkItem


@dataclass(frozen=True)
class RunPlan:
    """What to do with one WorkItem."""

    strategy: Strategy
    transform: bool = False
    runner_args: Tuple[str, ...] = ()
    json_report: bool = True
    instrument_hooks: bool = True
    test_name_pattern: Optional[str] = None


def _cpu_count() -> int:
    return os.cpu_count() or 1


def runner_worker_count(test_count_hint: Optional[int], max_workers: int) -> int:
    """Worker hint for Jest's own scheduler on a whole-file run."""
    if not test_count_hint:
        return max_workers
    return min(max(2, math.ceil(test_count_hint / 2)), max_workers)


def concurrency_limit(test_count_hint: Optional[int], max_workers: int) -> int:
    """Upper bound for ``test.concurrent`` tests running at once in one file."""
    wanted = test_count_hint or max_workers
    return max(1, min(wanted, max_workers, _cpu_count()))


def name_filter_pattern(name: str) -> str:
    """Regex for --testNamePattern matching exactly one test name.

    Jest matches the pattern against the full name (describe path plus test
    name, space separated), so the name is anchored at the end and must start
    the full name or follow a space.
    """
    return rf"(?:^|\s){re.escape(name)}$"


def _whole_file(config: RunnerConfig, item: WorkItem) -> RunPlan:
    workers = runner_worker_count(item.test_count_hint, config.max_workers)
    return RunPlan(
        strategy=Strategy.WHOLE_FILE,
        runner_args=("--maxWorkers", str(workers)),
        json_report=config.json_report,
        instrument_hooks=config.instrument_hooks,
    )


def _transformed_concurrent(config: RunnerConfig, item: WorkItem) -> RunPlan:
    limit = concurrency_limit(item.test_count_hint, config.max_workers)
    return RunPlan(
        strategy=Strategy.TRANSFORMED_CONCURRENT,
        transform=True,
        runner_args=("--maxConcurrency", str(limit)),
        json_report=config.json_report,
        instrument_hooks=config.instrument_hooks,
    )


def _per_test_isolated(config: RunnerConfig, item: WorkItem) -> RunPlan:
    args: Tuple[str, ...] = ("--runInBand",)
    pattern = None
    if item.test_name_filter:
        pattern = name_filter_pattern(item.test_name_filter)
        args += ("--testNamePattern", pattern)
    return RunPlan(
        strategy=Strategy.PER_TEST_ISOLATED,
        runner_args=args,
        json_report=config.json_report,
        instrument_hooks=config.instrument_hooks,
        test_name_pattern=pattern,
    )


STRATEGY_TABLE: Dict[Strategy, Callable[[RunnerConfig, WorkItem], RunPlan]] = {
    Strategy.WHOLE_FILE: _whole_file,
    Strategy.TRANSFORMED_CONCURRENT: _transformed_concurrent,
    Strategy.PER_TEST_ISOLATED: _per_test_isolated,
}


def select_strategy(config: RunnerConfig, item: WorkItem) -> RunPlan:
    """
    Choose runner flags and the transform step for a WorkItem.

    Args:
        config: Runner configuration
        item: The WorkItem about to be dispatched

    Returns:
        RunPlan for the item's strategy
    """
    return STRATEGY_TABLE[item.strategy](config, item)
