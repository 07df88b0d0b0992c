"""
Shared type definitions for jestparallel.

This module contains the records passed between the strategy selector, the
process pool, the output parsers and the aggregator. Everything returned to
callers is frozen; parsers that need to enrich a record build a new one with
``dataclasses.replace``.
"""

import hashlib
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional, Tuple


def utc_now() -> str:
    """Current UTC time as an ISO 8601 string with a Z suffix."""
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class Strategy(str, Enum):
    """How a test file is parallelized."""
    WHOLE_FILE = "whole-file"
    TRANSFORMED_CONCURRENT = "transformed-concurrent"
    PER_TEST_ISOLATED = "per-test-isolated"


class TestStatus(str, Enum):
    """Final outcome of a single test."""
    __test__ = False

    PASSED = "passed"
    FAILED = "failed"
    SKIPPED = "skipped"
    TODO = "todo"


class HookType(str, Enum):
    """Jest lifecycle hooks."""
    BEFORE_ALL = "beforeAll"
    BEFORE_EACH = "beforeEach"
    AFTER_ALL = "afterAll"
    AFTER_EACH = "afterEach"

    @property
    def failure_type(self) -> "FailureType":
        return FailureType(f"hook_failure_{self.value.lower()}")


class HookStatus(str, Enum):
    """What is known about a hook after a run.

    ``estimated`` means the duration was derived from the time budget left
    over by the tests, not measured.
    """
    NOT_FOUND = "not_found"
    EXECUTED = "executed"
    FAILED = "failed"
    ESTIMATED = "estimated"


class FailureType(str, Enum):
    """Error taxonomy used for tests, hooks and the parser itself."""
    ASSERTION_FAILURE = "assertion_failure"
    TIMEOUT = "timeout"
    REFERENCE_ERROR = "reference_error"
    TYPE_ERROR = "type_error"
    SYNTAX_ERROR = "syntax_error"
    RACE_CONDITION = "race_condition"
    HOOK_FAILURE_BEFOREALL = "hook_failure_beforeall"
    HOOK_FAILURE_BEFOREEACH = "hook_failure_beforeeach"
    HOOK_FAILURE_AFTERALL = "hook_failure_afterall"
    HOOK_FAILURE_AFTEREACH = "hook_failure_aftereach"
    SUITE_FAILURE = "suite_failure"
    PARSER_ERROR = "parser_error"
    UNKNOWN_FAILURE = "unknown_failure"


class ResultStatus(str, Enum):
    """File-level verdict."""
    PASSED = "passed"
    FAILED = "failed"


def make_test_id(file_path: str, name: str, suite: str = "") -> str:
    """Derive a stable test id from the file path and the test's full name."""
    full_name = f"{suite} › {name}" if suite else name
    digest = hashlib.sha1(f"{file_path}::{full_name}".encode("utf-8")).hexdigest()[:12]
    return f"{Path(file_path).name}::{digest}"


@dataclass(frozen=True)
class WorkItem:
    """One unit of dispatch: one test file, one strategy, one timeout."""

    file_path: str
    worker_id: int = 0
    strategy: Strategy = Strategy.WHOLE_FILE
    test_name_filter: Optional[str] = None
    timeout_ms: int = 30000
    test_count_hint: Optional[int] = None

    @property
    def label(self) -> str:
        if self.test_name_filter:
            return f"{self.file_path} [{self.test_name_filter}]"
        return self.file_path

    def to_dict(self) -> Dict[str, Any]:
        return {
            "file_path": self.file_path,
            "worker_id": self.worker_id,
            "strategy": self.strategy.value,
            "test_name_filter": self.test_name_filter,
            "timeout_ms": self.timeout_ms,
            "test_count_hint": self.test_count_hint,
        }


@dataclass(frozen=True)
class ErrorDetail:
    """A classified error extracted from runner output."""

    type: FailureType
    message: str
    stack_trace: Tuple[str, ...] = ()
    suite: Optional[str] = None
    timestamp: str = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "message": self.message,
            "stack_trace": list(self.stack_trace),
            "suite": self.suite,
            "timestamp": self.timestamp,
        }


@dataclass(frozen=True)
class TestRecord:
    """One test's final outcome.

    Records are unique by ``(suite, name)`` within a file. ``suite`` is the
    describe path joined with `` › ``, empty for top-level tests.
    """
    __test__ = False

    test_id: str
    name: str
    suite: str = ""
    status: TestStatus = TestStatus.PASSED
    duration_ms: float = 0.0
    error: Optional[str] = None
    failure_type: Optional[FailureType] = None
    stack_trace: Tuple[str, ...] = ()

    @property
    def key(self) -> Tuple[str, str]:
        return (self.suite, self.name)

    @property
    def full_name(self) -> str:
        return f"{self.suite} › {self.name}" if self.suite else self.name

    def to_dict(self) -> Dict[str, Any]:
        return {
            "test_id": self.test_id,
            "name": self.name,
            "suite": self.suite,
            "status": self.status.value,
            "duration_ms": self.duration_ms,
            "error": self.error,
            "failure_type": self.failure_type.value if self.failure_type else None,
            "stack_trace": list(self.stack_trace),
        }


@dataclass(frozen=True)
class HookRecord:
    """Timing and status of one hook type across a file."""

    hook_type: HookType
    status: HookStatus = HookStatus.NOT_FOUND
    duration_ms: float = 0.0
    errors: Tuple[ErrorDetail, ...] = ()
    executions: Optional[int] = None
    duration_estimated: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hook_type": self.hook_type.value,
            "status": self.status.value,
            "duration_ms": self.duration_ms,
            "duration_estimated": self.duration_estimated,
            "executions": self.executions,
            "errors": [e.to_dict() for e in self.errors],
        }


@dataclass(frozen=True)
class TestCounts:
    """Per-file passed/failed/skipped/todo counts."""
    __test__ = False

    passed: int = 0
    failed: int = 0
    skipped: int = 0
    todo: int = 0

    @property
    def total(self) -> int:
        return self.passed + self.failed + self.skipped + self.todo

    def to_dict(self) -> Dict[str, int]:
        return {
            "passed": self.passed,
            "failed": self.failed,
            "skipped": self.skipped,
            "todo": self.todo,
            "total": self.total,
        }


@dataclass(frozen=True)
class ExecutionResult:
    """Terminal result for one WorkItem. Produced exactly once per item."""

    status: ResultStatus
    file_path: str
    worker_id: int
    strategy: Strategy
    test_results: Tuple[TestRecord, ...] = ()
    hook_info: Dict[HookType, HookRecord] = field(default_factory=dict)
    exit_code: Optional[int] = None
    duration_ms: float = 0.0
    summary: TestCounts = field(default_factory=TestCounts)
    errors: Tuple[ErrorDetail, ...] = ()
    error: Optional[str] = None
    timed_out: bool = False
    test_name_filter: Optional[str] = None

    @property
    def passed(self) -> bool:
        return self.status == ResultStatus.PASSED

    @property
    def failed_tests(self) -> Tuple[TestRecord, ...]:
        return tuple(t for t in self.test_results if t.status == TestStatus.FAILED)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "status": self.status.value,
            "file_path": self.file_path,
            "worker_id": self.worker_id,
            "strategy": self.strategy.value,
            "test_name_filter": self.test_name_filter,
            "exit_code": self.exit_code,
            "duration_ms": round(self.duration_ms, 3),
            "timed_out": self.timed_out,
            "error": self.error,
            "summary": self.summary.to_dict(),
            "test_results": [t.to_dict() for t in self.test_results],
            "hook_info": {h.value: r.to_dict() for h, r in self.hook_info.items()},
            "errors": [e.to_dict() for e in self.errors],
        }
