"""Tests for execution strategy selection."""

import re
from unittest.mock import patch

import pytest

from jestparallel.config import RunnerConfig
from jestparallel.strategy import (
    concurrency_limit,
    name_filter_pattern,
    runner_worker_count,
    select_strategy,
)
from jestparallel.types import Strategy, WorkItem


class TestRunnerWorkerCount:
    """Tests for the whole-file worker hint."""

    @pytest.mark.parametrize(
        "hint,max_workers,expected",
        [
            (None, 6, 6),
            (1, 6, 2),
            (3, 6, 2),
            (7, 6, 4),
            (40, 6, 6),
            (10, 1, 1),
        ],
    )
    def test_worker_count(self, hint, max_workers, expected):
        """Test min(max(2, ceil(hint / 2)), maxWorkers)."""
        assert runner_worker_count(hint, max_workers) == expected


class TestConcurrencyLimit:
    """Tests for the transformed-concurrent limit."""

    def test_bounded_by_cpu_count(self):
        """Test that the limit never exceeds the CPU count."""
        with patch("jestparallel.strategy._cpu_count", return_value=2):
            assert concurrency_limit(10, 8) == 2

    def test_bounded_by_hint(self):
        """Test that a small file does not ask for more slots than tests."""
        with patch("jestparallel.strategy._cpu_count", return_value=16):
            assert concurrency_limit(3, 8) == 3
            assert concurrency_limit(None, 8) == 8

    def test_at_least_one(self):
        """Test the lower bound."""
        with patch("jestparallel.strategy._cpu_count", return_value=1):
            assert concurrency_limit(0, 1) == 1


class TestSelectStrategy:
    """Tests for select_strategy."""

    def test_whole_file(self):
        """Test that whole-file delegates to Jest's own workers without rewriting."""
        config = RunnerConfig(max_workers=4)
        plan = select_strategy(config, WorkItem("a.test.js", test_count_hint=5))

        assert plan.strategy == Strategy.WHOLE_FILE
        assert plan.transform is False
        assert plan.runner_args == ("--maxWorkers", "3")
        assert plan.json_report is True
        assert plan.instrument_hooks is True

    def test_transformed_concurrent(self):
        """Test that transformed-concurrent requests the rewrite."""
        config = RunnerConfig(max_workers=4)
        item = WorkItem("a.test.js", strategy=Strategy.TRANSFORMED_CONCURRENT, test_count_hint=2)

        with patch("jestparallel.strategy._cpu_count", return_value=8):
            plan = select_strategy(config, item)

        assert plan.transform is True
        assert plan.runner_args == ("--maxConcurrency", "2")

    def test_per_test_isolated_with_filter(self):
        """Test that per-test runs in band filtered to one escaped name."""
        config = RunnerConfig()
        item = WorkItem(
            "a.test.js",
            strategy=Strategy.PER_TEST_ISOLATED,
            test_name_filter="handles (nested) [cases]?",
        )

        plan = select_strategy(config, item)

        assert plan.transform is False
        assert plan.runner_args[0] == "--runInBand"
        assert plan.runner_args[1] == "--testNamePattern"
        assert re.search(plan.runner_args[2], "Suite handles (nested) [cases]?")
        assert plan.test_name_pattern == plan.runner_args[2]

    def test_per_test_isolated_without_filter(self):
        """Test that an unfiltered isolated item runs the whole file in band."""
        plan = select_strategy(RunnerConfig(), WorkItem("a.test.js", strategy=Strategy.PER_TEST_ISOLATED))

        assert plan.runner_args == ("--runInBand",)
        assert plan.test_name_pattern is None

    def test_flags_follow_config(self):
        """Test that report and instrumentation switches come from the config."""
        config = RunnerConfig(json_report=False, instrument_hooks=False)
        plan = select_strategy(config, WorkItem("a.test.js"))

        assert plan.json_report is False
        assert plan.instrument_hooks is False

    def test_selection_is_pure(self):
        """Test that the same inputs give equal plans and the item is untouched."""
        config = RunnerConfig(max_workers=2)
        item = WorkItem("a.test.js", strategy=Strategy.TRANSFORMED_CONCURRENT)

        assert select_strategy(config, item) == select_strategy(config, item)
        assert item.strategy == Strategy.TRANSFORMED_CONCURRENT


class TestNameFilterPattern:
    """Tests for name_filter_pattern."""

    def test_escapes_regex_characters(self):
        """Test that the pattern matches the literal name only."""
        pattern = name_filter_pattern("a+b")
        assert re.search(pattern, "adds a+b")
        assert not re.search(pattern, "aab")

    def test_matches_whole_test_name(self):
        """Test that a name does not select tests that merely contain it."""
        pattern = name_filter_pattern("adds")
        assert re.search(pattern, "Math operations adds")
        assert re.search(pattern, "adds")
        assert not re.search(pattern, "Math operations adds numbers")
        assert not re.search(pattern, "Math operations re-adds")
