"""
Output grammar interface.

An OutputGrammar knows one runner output format. It hands out a fresh
ParseSession per WorkItem so no parse state outlives a run, and may also
read the runner's structured report when the format has one.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Set

from jestparallel.hooks import HookState, new_hook_states
from jestparallel.types import ErrorDetail, FailureType, HookType, TestCounts, TestRecord


class ParseState(str, Enum):
    """States of the text parser."""
    NORMAL = "normal"
    COLLECTING_TEST_ERROR = "collecting_test_error"
    COLLECTING_HOOK_ERROR = "collecting_hook_error"
    IN_STACK_TRACE = "in_stack_trace"


@dataclass
class RunnerSummary:
    """The runner's own summary lines (``Tests:`` / ``Time:``)."""

    counts: Optional[TestCounts] = None
    total: Optional[int] = None
    time_ms: Optional[float] = None


@dataclass
class ParsedOutput:
    """Everything one source (text stream or structured report) yielded."""

    source: str
    records: List[TestRecord] = field(default_factory=list)
    hook_states: Dict[HookType, HookState] = field(default_factory=new_hook_states)
    hooks_seen: Set[HookType] = field(default_factory=set)
    errors: List[ErrorDetail] = field(default_factory=list)
    summary: RunnerSummary = field(default_factory=RunnerSummary)
    suite_duration_ms: Optional[float] = None

    @property
    def is_empty(self) -> bool:
        return not self.records and not self.errors and self.summary.counts is None

    def add_parser_error(self, message: str) -> None:
        self.errors.append(ErrorDetail(type=FailureType.PARSER_ERROR, message=message))


class ParseSession(ABC):
    """Incremental parse of one run's output."""

    @abstractmethod
    def feed(self, chunk: str) -> None:
        """Consume more output. Chunks may split lines anywhere."""

    @abstractmethod
    def finish(self) -> ParsedOutput:
        """Flush pending state at end of stream and return the result."""


class OutputGrammar(ABC):
    """One runner output format."""

    name: str = ""

    @abstractmethod
    def new_session(self, file_path: str) -> ParseSession:
        """Start parsing output of a run of ``file_path``."""

    def parse_text(self, text: str, file_path: str) -> ParsedOutput:
        session = self.new_session(file_path)
        session.feed(text)
        return session.finish()

    def parse_report(self, report_path: Path, file_path: str) -> Optional[ParsedOutput]:
        """Read a structured report; None when the format has none or it is missing."""
        return None
