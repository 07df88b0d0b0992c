"""
Reader for Jest's ``--json --outputFile`` report.

The report is authoritative for test outcomes when it exists and parses.
It carries nothing about hooks, which is why the text stream is always
parsed as well.
"""
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from jestparallel.parsers.base import ParsedOutput
from jestparallel.parsers.classify import classify_error, extract_stack_trace, strip_ansi
from jestparallel.types import ErrorDetail, FailureType, TestCounts, TestRecord, TestStatus, make_test_id

logger = logging.getLogger(__name__)

SUITE_SEPARATOR = " › "

STATUS_MAP: Dict[str, TestStatus] = {
    "passed": TestStatus.PASSED,
    "failed": TestStatus.FAILED,
    "pending": TestStatus.SKIPPED,
    "skipped": TestStatus.SKIPPED,
    "disabled": TestStatus.SKIPPED,
    "todo": TestStatus.TODO,
}


def _as_number(value: Any) -> Optional[float]:
    """Numeric value of a report field, None when it is missing or not a number."""
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _assertion_record(assertion: Dict[str, Any], file_path: str, output: ParsedOutput) -> TestRecord:
    ancestors = [str(a) for a in assertion.get("ancestorTitles") or []]
    suite = SUITE_SEPARATOR.join(ancestors)
    name = str(assertion.get("title") or assertion.get("fullName") or "unnamed test")
    status = STATUS_MAP.get(assertion.get("status"), TestStatus.SKIPPED)

    raw_duration = assertion.get("duration")
    duration = _as_number(raw_duration)
    if duration is None and raw_duration is not None:
        output.add_parser_error(f"Invalid duration {raw_duration!r} for '{name}' in JSON report")

    messages = [strip_ansi(str(m)) for m in assertion.get("failureMessages") or []]
    error = "\n\n".join(m.strip() for m in messages if m.strip()) or None

    failure_type = None
    stack = ()
    if status == TestStatus.FAILED and error:
        failure_type = classify_error(error)
        stack = extract_stack_trace(error)

    return TestRecord(
        test_id=make_test_id(file_path, name, suite),
        name=name,
        suite=suite,
        status=status,
        duration_ms=duration or 0.0,
        error=error,
        failure_type=failure_type,
        stack_trace=stack,
    )


def _suite_duration(suite: Dict[str, Any]) -> Optional[float]:
    perf = suite.get("perfStats")
    if not isinstance(perf, dict):
        perf = {}
    runtime = perf.get("runtime")
    if isinstance(runtime, (int, float)):
        return float(runtime)
    start = perf.get("start", suite.get("startTime"))
    end = perf.get("end", suite.get("endTime"))
    if isinstance(start, (int, float)) and isinstance(end, (int, float)) and end >= start:
        return float(end - start)
    return None


def parse_json_report(raw: str, file_path: str) -> ParsedOutput:
    """
    Extract TestRecords from a Jest JSON report.

    Args:
        raw: Report file content
        file_path: Test file the records belong to (used for test ids)

    Returns:
        ParsedOutput with source "json"; a malformed report yields no
        records and a parser_error entry
    """
    output = ParsedOutput(source="json")
    try:
        data = json.loads(raw)
    except ValueError as e:
        output.add_parser_error(f"Invalid JSON report: {e}")
        return output
    if not isinstance(data, dict):
        output.add_parser_error("JSON report is not an object")
        return output

    suites = data.get("testResults") or []
    if not isinstance(suites, list):
        output.add_parser_error(f"Unexpected testResults in JSON report: {type(suites).__name__}")
        suites = []

    durations: List[float] = []
    for suite in suites:
        if not isinstance(suite, dict):
            continue
        try:
            _read_suite(suite, file_path, output, durations)
        except (TypeError, ValueError, AttributeError) as e:
            output.add_parser_error(f"Malformed suite {suite.get('name')!r} in JSON report: {e}")

    if durations:
        output.suite_duration_ms = sum(durations)
    if "numTotalTests" in data:
        _read_counts(data, output)
    return output


def _read_suite(suite: Dict[str, Any], file_path: str, output: ParsedOutput, durations: List[float]) -> None:
    duration = _suite_duration(suite)
    if duration is not None:
        durations.append(duration)

    assertions = suite.get("assertionResults") or []
    for assertion in assertions:
        if not isinstance(assertion, dict):
            continue
        try:
            output.records.append(_assertion_record(assertion, file_path, output))
        except (TypeError, ValueError, AttributeError) as e:
            output.add_parser_error(f"Malformed assertion {assertion.get('title')!r} in JSON report: {e}")

    exec_error = suite.get("testExecError")
    message = suite.get("message") or ""
    if exec_error or (suite.get("status") == "failed" and not assertions and message):
        if isinstance(exec_error, dict):
            text = strip_ansi(str(exec_error.get("message") or exec_error.get("stack") or message))
        else:
            text = strip_ansi(str(message))
        output.errors.append(
            ErrorDetail(
                type=FailureType.SUITE_FAILURE,
                message=text.strip() or "Test suite failed to run",
                stack_trace=extract_stack_trace(text),
            )
        )


def _read_counts(data: Dict[str, Any], output: ParsedOutput) -> None:
    fields = ("numTotalTests", "numPassedTests", "numFailedTests", "numPendingTests", "numTodoTests")
    values = {}
    for name in fields:
        raw = data.get(name)
        value = _as_number(raw) if raw is not None else 0.0
        if value is None:
            # Counts are reconciled from the records instead
            output.add_parser_error(f"Invalid {name} {raw!r} in JSON report")
            return
        values[name] = int(value)

    output.summary.counts = TestCounts(
        passed=values["numPassedTests"],
        failed=values["numFailedTests"],
        skipped=values["numPendingTests"],
        todo=values["numTodoTests"],
    )
    output.summary.total = values["numTotalTests"]
    output.summary.time_ms = output.suite_duration_ms


def load_json_report(report_path: Path, file_path: str) -> Optional[ParsedOutput]:
    """Parse the report file if the runner wrote one; None otherwise."""
    try:
        raw = report_path.read_text(encoding="utf-8")
    except FileNotFoundError:
        logger.debug(f"No JSON report at {report_path}")
        return None
    except OSError as e:
        output = ParsedOutput(source="json")
        output.add_parser_error(f"Unreadable JSON report {report_path}: {e}")
        return output
    if not raw.strip():
        return None
    return parse_json_report(raw, file_path)
