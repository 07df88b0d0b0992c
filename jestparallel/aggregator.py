"""
Result aggregation.

Folds the structured report, the text parse and the hook side channel of
one run into its single ExecutionResult:

- records from the JSON report win; text records only enrich them (error
  detail) or add failed tests the report does not know about;
- duplicates by ``(suite, name)`` collapse onto the copy with an error;
- every failed record carries an error string;
- the per-file counts come from the records whenever the runner's own
  summary is missing or disagrees with them.
"""
import copy
import logging
import re
from dataclasses import replace
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from jestparallel.hooks import estimate_hook_durations, merge_hook_info
from jestparallel.parsers.base import ParsedOutput
from jestparallel.parsers.classify import classify_error
from jestparallel.parsers.jest_text import FAILED_PLACEHOLDER, SUITE_SEPARATOR
from jestparallel.strategy import name_filter_pattern
from jestparallel.types import (
    ErrorDetail,
    ExecutionResult,
    FailureType,
    HookRecord,
    HookStatus,
    HookType,
    ResultStatus,
    TestCounts,
    TestRecord,
    TestStatus,
    WorkItem,
    make_test_id,
)

logger = logging.getLogger(__name__)


def _prefer(current: TestRecord, candidate: TestRecord) -> TestRecord:
    if current.error is None and candidate.error is not None:
        return candidate
    return current


def dedupe_records(records: Iterable[TestRecord]) -> List[TestRecord]:
    """Collapse records sharing ``(suite, name)``, keeping the one with an error."""
    unique: List[TestRecord] = []
    index: Dict[Tuple[str, str], int] = {}
    for record in records:
        position = index.get(record.key)
        if position is None:
            index[record.key] = len(unique)
            unique.append(record)
        else:
            unique[position] = _prefer(unique[position], record)
    return unique


def merge_records(
    structured: Optional[Sequence[TestRecord]],
    text: Sequence[TestRecord],
) -> List[TestRecord]:
    """
    Combine report records with text records.

    Text records are matched to report records by ``(suite, name)``, or by
    name alone when that is unambiguous (describe detection from indentation
    can differ from the report's ancestor titles). Unmatched text records
    are kept only if they failed.
    """
    if structured is None:
        return dedupe_records(text)

    merged = dedupe_records(structured)
    by_key = {r.key: i for i, r in enumerate(merged)}
    by_name: Dict[str, List[int]] = {}
    for i, record in enumerate(merged):
        by_name.setdefault(record.name, []).append(i)

    for record in text:
        position = by_key.get(record.key)
        if position is None:
            candidates = by_name.get(record.name, [])
            if len(candidates) == 1:
                position = candidates[0]
                record = replace(record, suite=merged[position].suite, test_id=merged[position].test_id)
        if position is not None:
            merged[position] = _prefer(merged[position], record)
        elif record.status == TestStatus.FAILED:
            by_key[record.key] = len(merged)
            merged.append(record)
    return merged


def filter_records(records: Iterable[TestRecord], name_filter: Optional[str]) -> List[TestRecord]:
    """
    Drop the tests ``--testNamePattern`` excluded from a per-test run.

    Jest still lists them in its report as pending, and a test whose name
    merely contains the filter is not the one that was asked for. Failed
    records are always kept.
    """
    records = list(records)
    if not name_filter:
        return records
    pattern = re.compile(name_filter_pattern(name_filter))
    return [
        r for r in records
        if r.status == TestStatus.FAILED or r.name == name_filter
        or pattern.search(r.full_name.replace(SUITE_SEPARATOR, " "))
    ]


def ensure_failure_detail(records: Iterable[TestRecord]) -> List[TestRecord]:
    """Every failed record gets an error string and a failure type."""
    result = []
    for record in records:
        if record.status == TestStatus.FAILED:
            if not record.error:
                record = replace(
                    record,
                    error=FAILED_PLACEHOLDER,
                    failure_type=record.failure_type or FailureType.UNKNOWN_FAILURE,
                )
            elif record.failure_type is None:
                record = replace(record, failure_type=classify_error(record.error))
        result.append(record)
    return result


def observed_counts(records: Iterable[TestRecord]) -> TestCounts:
    counts = {status: 0 for status in TestStatus}
    for record in records:
        counts[record.status] += 1
    return TestCounts(
        passed=counts[TestStatus.PASSED],
        failed=counts[TestStatus.FAILED],
        skipped=counts[TestStatus.SKIPPED],
        todo=counts[TestStatus.TODO],
    )


def reconcile_counts(reported: Optional[TestCounts], records: Sequence[TestRecord]) -> TestCounts:
    """Use the runner's counts only when present, non-empty and consistent with the records."""
    observed = observed_counts(records)
    if reported is None or reported.total == 0 or reported != observed:
        if reported is not None and reported.total and reported != observed:
            logger.debug(f"Runner summary {reported.to_dict()} disagrees with records {observed.to_dict()}")
        return observed
    return reported


def timeout_record(item: WorkItem, message: str) -> TestRecord:
    name = item.test_name_filter or f"{Path(item.file_path).name} (timed out)"
    return TestRecord(
        test_id=make_test_id(item.file_path, name),
        name=name,
        status=TestStatus.FAILED,
        duration_ms=float(item.timeout_ms),
        error=message,
        failure_type=FailureType.TIMEOUT,
    )


def _merge_errors(*groups: Iterable[ErrorDetail]) -> Tuple[ErrorDetail, ...]:
    seen = set()
    merged = []
    for group in groups:
        for error in group:
            key = (error.type, error.message)
            if key not in seen:
                seen.add(key)
                merged.append(error)
    return tuple(merged)


class ResultAggregator:
    """Builds the terminal ExecutionResult for one WorkItem."""

    def aggregate(
        self,
        item: WorkItem,
        text: ParsedOutput,
        report: Optional[ParsedOutput] = None,
        instrumented_hooks: Optional[Dict[HookType, HookRecord]] = None,
        exit_code: Optional[int] = None,
        duration_ms: float = 0.0,
        timed_out: bool = False,
        timeout_message: Optional[str] = None,
        stuck_hook: Optional[HookType] = None,
        error: Optional[str] = None,
    ) -> ExecutionResult:
        """
        Merge parse results into an ExecutionResult.

        Args:
            item: The WorkItem that was run
            text: Parse of the combined stdout/stderr stream
            report: Parse of the JSON report, if one was written
            instrumented_hooks: Hook records from the side channel, if any
            exit_code: Runner exit code (negative for a signal, None if never started)
            duration_ms: Wall time of the run
            timed_out: Whether the run was killed on timeout
            timeout_message: Error text for the synthesized timeout record
            stuck_hook: Hook the run most likely hung in
            error: File-level error (spawn failure, transform failure)

        Returns:
            The ExecutionResult for ``item``
        """
        structured = report.records if report is not None and report.records else None
        records = filter_records(merge_records(structured, text.records), item.test_name_filter)

        if timed_out and not any(r.status == TestStatus.FAILED for r in records):
            records.append(timeout_record(item, timeout_message or "Worker timeout"))
        records = ensure_failure_detail(records)

        # Callers may aggregate the same parse more than once
        states = copy.deepcopy(text.hook_states)
        if stuck_hook is not None:
            states[stuck_hook].mark_failed(
                ErrorDetail(
                    type=FailureType.TIMEOUT,
                    message=timeout_message or f"{stuck_hook.value} hook did not finish",
                )
            )
        if not instrumented_hooks:
            suite_duration = None
            if report is not None and report.suite_duration_ms is not None:
                suite_duration = report.suite_duration_ms
            elif text.suite_duration_ms is not None:
                suite_duration = text.suite_duration_ms
            elif not timed_out:
                suite_duration = duration_ms
            estimate_hook_durations(states, records, suite_duration, text.hooks_seen)
        hook_info = merge_hook_info(states, instrumented_hooks)

        text_errors: Iterable[ErrorDetail] = text.errors
        if structured is not None:
            text_errors = [e for e in text.errors if e.type != FailureType.PARSER_ERROR]
        errors = _merge_errors(report.errors if report is not None else (), text_errors)

        reported = None
        if report is not None and report.summary.counts is not None:
            reported = report.summary.counts
        elif text.summary.counts is not None:
            reported = text.summary.counts
        summary = reconcile_counts(reported, records)

        failed = (
            timed_out
            or error is not None
            or exit_code != 0
            or summary.failed > 0
            or any(e.type == FailureType.SUITE_FAILURE for e in errors)
            or any(h.status == HookStatus.FAILED for h in hook_info.values())
        )
        status = ResultStatus.FAILED if failed else ResultStatus.PASSED

        if error is None and timed_out:
            error = timeout_message

        return ExecutionResult(
            status=status,
            file_path=item.file_path,
            worker_id=item.worker_id,
            strategy=item.strategy,
            test_results=tuple(records),
            hook_info=hook_info,
            exit_code=exit_code,
            duration_ms=duration_ms,
            summary=summary,
            errors=errors,
            error=error,
            timed_out=timed_out,
            test_name_filter=item.test_name_filter,
        )

    def failed_result(
        self,
        item: WorkItem,
        error: str,
        exit_code: Optional[int] = None,
        duration_ms: float = 0.0,
        failure_type: FailureType = FailureType.UNKNOWN_FAILURE,
    ) -> ExecutionResult:
        """Terminal result for a WorkItem that produced no parsable run."""
        return ExecutionResult(
            status=ResultStatus.FAILED,
            file_path=item.file_path,
            worker_id=item.worker_id,
            strategy=item.strategy,
            hook_info={hook: HookRecord(hook) for hook in HookType},
            exit_code=exit_code,
            duration_ms=duration_ms,
            errors=(ErrorDetail(type=failure_type, message=error),),
            error=error,
            test_name_filter=item.test_name_filter,
        )
