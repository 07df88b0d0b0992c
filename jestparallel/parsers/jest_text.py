"""
Streaming parser for Jest's verbose console output.

Line classification runs through an ordered pattern table. Error sections
(``● suite › test``) switch the parser into a collecting state until a
boundary: the next marker line, a blank line once the stack trace has been
read, a summary line, or a size cap. Anything still being collected at end
of stream is finalized.

Jest prints describe blocks as indented lines above their tests; the suite
of a test is derived from that indentation. Console blocks (``console.log``
followed by the logged text and its call site) are skipped for suite
detection but still scanned for hook activity.
"""
import logging
import re
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Dict, List, Optional, Pattern, Sequence, Tuple

from jestparallel.hooks import hooks_indicated
from jestparallel.parsers.base import OutputGrammar, ParsedOutput, ParseSession, ParseState
from jestparallel.parsers.jest_json import load_json_report
from jestparallel.parsers.classify import (
    STACK_FRAME_PATTERN,
    classify_error,
    extract_message,
    extract_stack_trace,
    hook_for_failure_type,
    mentioned_hooks,
    normalize_block,
    strip_ansi,
)
from jestparallel.types import (
    ErrorDetail,
    FailureType,
    HookType,
    TestCounts,
    TestRecord,
    TestStatus,
    make_test_id,
)

logger = logging.getLogger(__name__)

SUITE_SEPARATOR = " › "
FAILED_PLACEHOLDER = "Test failed (no detailed error message available)"

MIN_ERROR_LINES = 5
MAX_ERROR_LINES = 100

_DURATION = r"(?:\s+\((\d+(?:\.\d+)?)\s*(ms|s)\))?"

PASS_PATTERN = re.compile(rf"^(\s*)[✓√]\s+(.+?){_DURATION}\s*$")
FAIL_PATTERN = re.compile(rf"^(\s*)[✕✗×]\s+(.+?){_DURATION}\s*$")
SKIP_PATTERN = re.compile(r"^(\s*)○\s+(?:skipped\s+)?(.+?)\s*$")
TODO_PATTERN = re.compile(r"^(\s*)✎\s+todo\s+(.+?)\s*$")
SUITE_FAILURE_PATTERN = re.compile(r"^\s*●\s+Test suite failed to run\s*$")
HOOK_HEADER_PATTERN = re.compile(
    r"^\s*●\s+(?:(.+?)\s+›\s+)?(beforeAll|beforeEach|afterAll|afterEach)\s*$"
)
CONSOLE_HEADER_PATTERN = re.compile(r"^\s*●\s+Console\s*$")
ERROR_HEADER_PATTERN = re.compile(r"^\s*●\s+(.+?)\s*$")
FILE_HEADER_PATTERN = re.compile(r"^\s*(PASS|FAIL|RUNS)\s+\S")
SUMMARY_MARKER_PATTERN = re.compile(
    r"^\s*(?:Test Suites:|Tests:|Snapshots:|Time:|Ran all test suites|Summary of all failing tests)"
)
TESTS_SUMMARY_PATTERN = re.compile(r"^\s*Tests:\s+(.+)$")
SUMMARY_COUNT_PATTERN = re.compile(r"(\d+)\s+(passed|failed|skipped|todo|total)")
TIME_PATTERN = re.compile(r"^\s*Time:\s+(\d+(?:\.\d+)?)\s*(ms|s)\b")
CONSOLE_CALL_PATTERN = re.compile(r"^\s*console\.(?:log|info|warn|error|debug|trace)\s*$")

# Lines that are indented like a describe block but are something else
SUITE_EXCLUSIONS: Sequence[Pattern[str]] = (
    re.compile(r"^(?:at|Expected|Received|expect\(|console\.|npm|yarn|>|\||\d+\s*\|)"),
    re.compile(r"(?:Jest|jest|Determining test suites|Force exiting|worker process|Watch Usage)"),
    re.compile(r"(?:=>|[;{}]\s*$|\.test\.|\.spec\.)"),
)


@dataclass(frozen=True)
class _ErrorTarget:
    kind: str  # "test", "hook" or "suite"
    suite: str = ""
    name: str = ""
    hook: Optional[HookType] = None


def _to_ms(value: Optional[str], unit: Optional[str]) -> float:
    if value is None:
        return 0.0
    amount = float(value)
    return amount * 1000.0 if unit == "s" else amount


def _indent(line: str) -> int:
    return len(line) - len(line.lstrip(" \t"))


def split_full_name(title: str) -> Tuple[str, str]:
    """``"Outer › Inner › name"`` -> ``("Outer › Inner", "name")``."""
    parts = [p.strip() for p in title.split("›")]
    parts = [p for p in parts if p]
    if not parts:
        return "", title.strip()
    return SUITE_SEPARATOR.join(parts[:-1]), parts[-1]


class JestTextSession(ParseSession):
    """Parse state for one run. Create through JestGrammar.new_session."""

    def __init__(self, file_path: str) -> None:
        self.file_path = file_path
        self.state = ParseState.NORMAL
        self._output = ParsedOutput(source="text")
        self._index: Dict[Tuple[str, str], int] = {}
        self._suite_stack: List[Tuple[int, str]] = []
        self._pending = ""
        self._line_no = 0
        self._saw_content = False
        self._target: Optional[_ErrorTarget] = None
        self._lines: List[str] = []
        self._in_console_block = False
        self._console_saw_frame = False

    # -- stream handling ---------------------------------------------------

    def feed(self, chunk: str) -> None:
        if not chunk:
            return
        data = self._pending + chunk
        lines = data.split("\n")
        self._pending = lines.pop()
        for line in lines:
            self._process(line)

    def finish(self) -> ParsedOutput:
        if self._pending:
            self._process(self._pending)
            self._pending = ""
        if self._target is not None:
            self._finalize_error()

        output = self._output
        if not self._saw_content:
            output.add_parser_error("Runner produced no output")
        elif output.is_empty:
            output.add_parser_error("No test results found in runner output")
        return output

    def _process(self, raw: str) -> None:
        self._line_no += 1
        line = strip_ansi(raw.rstrip("\r"))
        if line.strip():
            self._saw_content = True
        try:
            self._process_line(line)
        except Exception as e:  # one bad line must not lose the rest of the run
            logger.warning(f"Could not parse line {self._line_no} of {self.file_path}: {e}")
            self._output.add_parser_error(f"line {self._line_no}: {e}")
            self._target = None
            self._lines = []
            self.state = ParseState.NORMAL

    # -- line classification -----------------------------------------------

    def _is_boundary(self, line: str) -> bool:
        return bool(
            PASS_PATTERN.match(line)
            or FAIL_PATTERN.match(line)
            or SKIP_PATTERN.match(line)
            or TODO_PATTERN.match(line)
            or ERROR_HEADER_PATTERN.match(line)
            or FILE_HEADER_PATTERN.match(line)
            or SUMMARY_MARKER_PATTERN.match(line)
        )

    def _process_line(self, line: str) -> None:
        if self.state != ParseState.NORMAL:
            if not self._collect(line):
                return
            # boundary line: the error section is closed, classify the line normally

        if self._in_console_block:
            if not self._console_line(line):
                return

        match = PASS_PATTERN.match(line)
        if match:
            self._add_test(match, TestStatus.PASSED)
            return
        match = FAIL_PATTERN.match(line)
        if match:
            self._add_test(match, TestStatus.FAILED)
            return
        match = SKIP_PATTERN.match(line)
        if match:
            self._add_test(match, TestStatus.SKIPPED)
            return
        match = TODO_PATTERN.match(line)
        if match:
            self._add_test(match, TestStatus.TODO)
            return

        if SUITE_FAILURE_PATTERN.match(line):
            self._start_error(_ErrorTarget(kind="suite"), ParseState.COLLECTING_TEST_ERROR)
            return
        match = HOOK_HEADER_PATTERN.match(line)
        if match:
            hook = HookType(match.group(2))
            suite, _ = split_full_name(f"{match.group(1) or ''} › {hook.value}")
            self._start_error(_ErrorTarget(kind="hook", suite=suite, hook=hook), ParseState.COLLECTING_HOOK_ERROR)
            return
        if CONSOLE_HEADER_PATTERN.match(line):
            return
        match = ERROR_HEADER_PATTERN.match(line)
        if match:
            suite, name = split_full_name(match.group(1))
            self._start_error(_ErrorTarget(kind="test", suite=suite, name=name), ParseState.COLLECTING_TEST_ERROR)
            return

        if FILE_HEADER_PATTERN.match(line):
            self._suite_stack = []
            return
        if self._summary_line(line):
            return
        if CONSOLE_CALL_PATTERN.match(line):
            self._in_console_block = True
            self._console_saw_frame = False
            return

        for hook in hooks_indicated(line):
            self._output.hooks_seen.add(hook)
        self._maybe_suite(line)

    def _console_line(self, line: str) -> bool:
        """Consume a console block line. Returns True when the block has ended."""
        if self._is_boundary(line) or CONSOLE_CALL_PATTERN.match(line):
            self._in_console_block = False
            return True
        for hook in hooks_indicated(line):
            self._output.hooks_seen.add(hook)
        if STACK_FRAME_PATTERN.match(line):
            self._console_saw_frame = True
        elif not line.strip() and self._console_saw_frame:
            self._in_console_block = False
        return False

    def _summary_line(self, line: str) -> bool:
        match = TESTS_SUMMARY_PATTERN.match(line)
        if match:
            counts = {kind: int(n) for n, kind in SUMMARY_COUNT_PATTERN.findall(match.group(1))}
            summary = self._output.summary
            summary.counts = TestCounts(
                passed=counts.get("passed", 0),
                failed=counts.get("failed", 0),
                skipped=counts.get("skipped", 0),
                todo=counts.get("todo", 0),
            )
            summary.total = counts.get("total")
            return True
        match = TIME_PATTERN.match(line)
        if match:
            self._output.summary.time_ms = _to_ms(match.group(1), match.group(2))
            self._output.suite_duration_ms = self._output.summary.time_ms
            return True
        return bool(SUMMARY_MARKER_PATTERN.match(line))

    def _maybe_suite(self, line: str) -> None:
        text = line.strip()
        indent = _indent(line)
        if not text or indent < 2:
            return
        if any(pattern.search(text) for pattern in SUITE_EXCLUSIONS):
            return
        while self._suite_stack and self._suite_stack[-1][0] >= indent:
            self._suite_stack.pop()
        self._suite_stack.append((indent, text))

    def _suite_for(self, indent: int) -> str:
        while self._suite_stack and self._suite_stack[-1][0] >= indent:
            self._suite_stack.pop()
        return SUITE_SEPARATOR.join(name for _, name in self._suite_stack)

    # -- records -------------------------------------------------------------

    def _add_test(self, match: "re.Match[str]", status: TestStatus) -> None:
        indent = len(match.group(1))
        name = match.group(2).strip()
        duration = 0.0
        if match.re.groups >= 4:
            duration = _to_ms(match.group(3), match.group(4))
        suite = self._suite_for(indent)
        record = TestRecord(
            test_id=make_test_id(self.file_path, name, suite),
            name=name,
            suite=suite,
            status=status,
            duration_ms=duration,
        )
        self._store(record)

    def _store(self, record: TestRecord) -> None:
        records = self._output.records
        existing = self._index.get(record.key)
        if existing is None:
            self._index[record.key] = len(records)
            records.append(record)
        elif record.error and not records[existing].error:
            records[existing] = record

    def _match_record(self, suite: str, name: str) -> Optional[int]:
        index = self._index.get((suite, name))
        if index is not None:
            return index
        records = self._output.records
        same_name = [i for i, r in enumerate(records) if r.name == name]
        if len(same_name) == 1:
            return same_name[0]
        full_name = f"{suite}{SUITE_SEPARATOR}{name}" if suite else name
        for i in same_name or range(len(records)):
            record = records[i]
            if record.suite and (record.suite in suite or suite in record.suite):
                return i
            if record.full_name in full_name or full_name in record.full_name:
                return i
        return None

    # -- error collection ------------------------------------------------------

    def _start_error(self, target: _ErrorTarget, state: ParseState) -> None:
        self._target = target
        self._lines = []
        self.state = state

    def _collecting_state(self) -> ParseState:
        if self._target is not None and self._target.kind == "hook":
            return ParseState.COLLECTING_HOOK_ERROR
        return ParseState.COLLECTING_TEST_ERROR

    def _collect(self, line: str) -> bool:
        """Accumulate an error line. Returns True when ``line`` closed the section
        and still needs normal processing."""
        if self._is_boundary(line):
            self._finalize_error()
            return True

        if not line.strip():
            if self.state == ParseState.IN_STACK_TRACE and len(self._lines) >= MIN_ERROR_LINES:
                self._finalize_error()
                return False
            self._lines.append(line)
            return False

        if STACK_FRAME_PATTERN.match(line):
            self.state = ParseState.IN_STACK_TRACE
        elif self.state == ParseState.IN_STACK_TRACE:
            self.state = self._collecting_state()
        self._lines.append(line)

        if len(self._lines) >= MAX_ERROR_LINES:
            self._finalize_error()
        return False

    def _finalize_error(self) -> None:
        target, lines = self._target, self._lines
        self._target = None
        self._lines = []
        self.state = ParseState.NORMAL
        if target is None:
            return

        text = normalize_block(lines)
        message = extract_message(text) or text
        stack = extract_stack_trace(text)

        if target.kind == "suite":
            self._output.errors.append(
                ErrorDetail(type=FailureType.SUITE_FAILURE, message=text or "Test suite failed to run", stack_trace=stack)
            )
            return

        if target.kind == "hook" and target.hook is not None:
            detail = ErrorDetail(
                type=target.hook.failure_type,
                message=message or f"{target.hook.value} hook failed",
                stack_trace=stack,
                suite=target.suite or None,
            )
            self._output.hook_states[target.hook].mark_failed(detail, direct=True)
            return

        failure_type = classify_error(text)
        index = self._match_record(target.suite, target.name)
        if index is not None:
            existing = self._output.records[index]
            self._output.records[index] = replace(
                existing,
                status=TestStatus.FAILED,
                error=text or existing.error or FAILED_PLACEHOLDER,
                failure_type=failure_type,
                stack_trace=stack or existing.stack_trace,
            )
        else:
            logger.debug(f"Synthesizing failed record for unmatched error header: {target.suite} › {target.name}")
            self._store(
                TestRecord(
                    test_id=make_test_id(self.file_path, target.name, target.suite),
                    name=target.name,
                    suite=target.suite,
                    status=TestStatus.FAILED,
                    error=text or FAILED_PLACEHOLDER,
                    failure_type=failure_type,
                    stack_trace=stack,
                )
            )

        # Hook failures are sometimes reported as failures of the tests they guard
        hooks = mentioned_hooks(text)
        hook = hook_for_failure_type(failure_type)
        if hook is not None and hook not in hooks:
            hooks.append(hook)
        for hook in hooks:
            self._output.hook_states[hook].mark_failed(
                ErrorDetail(
                    type=hook.failure_type,
                    message=message,
                    stack_trace=stack,
                    suite=target.suite or None,
                ),
                direct=False,
            )


class JestGrammar(OutputGrammar):
    """Jest verbose text output plus its ``--json`` report."""

    name = "jest"

    def new_session(self, file_path: str) -> JestTextSession:
        return JestTextSession(file_path)

    def parse_report(self, report_path: Path, file_path: str) -> Optional[ParsedOutput]:
        return load_json_report(report_path, file_path)
