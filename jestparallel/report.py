"""
Run-level report handed to the reporting layer.

Usage:
    report = create_run_report(config)
    report.finalize(results)  # Computes summary, finish time, duration

    # Output
    report.to_json()
    report.exit_code
"""
import json
import socket
import sys
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from jestparallel import __version__
from jestparallel.config import RunnerConfig
from jestparallel.types import ExecutionResult, utc_now


@dataclass
class RunSummary:
    """Counts across every ExecutionResult of a run."""

    files: int = 0
    failed_files: int = 0
    passed: int = 0
    failed: int = 0
    skipped: int = 0
    todo: int = 0
    timed_out: int = 0
    duration_ms: float = 0.0

    @property
    def total(self) -> int:
        return self.passed + self.failed + self.skipped + self.todo

    @classmethod
    def from_results(cls, results: Sequence[ExecutionResult], duration_ms: float = 0.0) -> "RunSummary":
        summary = cls(files=len({r.file_path for r in results}), duration_ms=duration_ms)
        failed_files = set()
        for result in results:
            summary.passed += result.summary.passed
            summary.failed += result.summary.failed
            summary.skipped += result.summary.skipped
            summary.todo += result.summary.todo
            if result.timed_out:
                summary.timed_out += 1
            if not result.passed:
                failed_files.add(result.file_path)
        summary.failed_files = len(failed_files)
        return summary

    def to_dict(self) -> Dict[str, Any]:
        return {
            "files": self.files,
            "failed_files": self.failed_files,
            "passed": self.passed,
            "failed": self.failed,
            "skipped": self.skipped,
            "todo": self.todo,
            "total": self.total,
            "timed_out": self.timed_out,
            "duration_ms": round(self.duration_ms, 3),
        }


@dataclass
class RunReport:
    """
    Every ExecutionResult of one run, in planning order.

    A run fails when any WorkItem failed; a run with no WorkItems passes.
    """

    run_id: str
    started_at: str
    mode: str = ""
    max_workers: int = 0
    environment: Dict[str, str] = field(default_factory=dict)
    results: List[ExecutionResult] = field(default_factory=list)
    finished_at: Optional[str] = None
    summary: RunSummary = field(default_factory=RunSummary)

    # Internal state
    _start_time: float = field(default=0.0, repr=False)
    _finalized: bool = field(default=False, repr=False)

    @property
    def passed(self) -> bool:
        return all(r.passed for r in self.results)

    @property
    def exit_code(self) -> int:
        return 0 if self.passed else 1

    @property
    def failed_results(self) -> List[ExecutionResult]:
        return [r for r in self.results if not r.passed]

    def finalize(self, results: Sequence[ExecutionResult]) -> None:
        """Record the results and compute the summary. Later calls are ignored."""
        if self._finalized:
            return
        self.results = list(results)
        duration_ms = (time.monotonic() - self._start_time) * 1000 if self._start_time else 0.0
        self.summary = RunSummary.from_results(self.results, duration_ms)
        self.finished_at = utc_now()
        self._finalized = True

    def to_dict(self) -> Dict[str, Any]:
        """Convert to JSON-serializable dictionary."""
        return {
            "run_id": self.run_id,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "mode": self.mode,
            "max_workers": self.max_workers,
            "environment": self.environment,
            "passed": self.passed,
            "exit_code": self.exit_code,
            "summary": self.summary.to_dict(),
            "results": [r.to_dict() for r in self.results],
        }

    def to_json(self, indent: int = 2) -> str:
        """Serialize to JSON string."""
        return json.dumps(self.to_dict(), indent=indent, default=str)


def create_run_report(config: RunnerConfig) -> RunReport:
    """
    Factory function to create a RunReport with fresh run metadata.

    Captures a unique run id (UUID4), the start time and host context.
    """
    environment = {
        "hostname": socket.gethostname(),
        "python_version": f"{sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}",
        "platform": sys.platform,
        "jestparallel_version": __version__,
    }
    report = RunReport(
        run_id=str(uuid.uuid4()),
        started_at=utc_now(),
        mode=config.mode.value,
        max_workers=config.max_workers,
        environment=environment,
    )
    report._start_time = time.monotonic()
    return report
