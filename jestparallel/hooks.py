"""
Hook timing and status estimation.

Two sources feed the per-file HookRecords:

- the instrumented side channel written by ``resources/hook_timer_setup.js``
  (invocation count, cumulative duration and errors per hook, keyed by the
  test file path); trusted exactly when present;
- the text parser's observations (hook-failure headers, log lines that
  mention a hook), turned into durations by distributing the suite time the
  tests did not account for. Durations from this path are never reported as
  measured.
"""
import base64
import json
import logging
import re
import shutil
from dataclasses import dataclass, field, replace
from importlib import resources
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Pattern, Sequence, Set, Tuple

from jestparallel.types import (
    ErrorDetail,
    HookRecord,
    HookStatus,
    HookType,
    TestRecord,
    utc_now,
)

logger = logging.getLogger(__name__)

HOOKS_DIR_ENV = "JEST_PARALLEL_HOOKS_DIR"
HOOK_TIMER_RESOURCE = "hook_timer_setup.js"

# beforeAll gets the majority of unexplained suite time
HOOK_WEIGHTS: Dict[HookType, float] = {
    HookType.BEFORE_ALL: 0.6,
    HookType.BEFORE_EACH: 0.2,
    HookType.AFTER_ALL: 0.1,
    HookType.AFTER_EACH: 0.1,
}

_HOOK_NAME_PATTERNS: Dict[HookType, str] = {
    HookType.BEFORE_ALL: r"before\s?all",
    HookType.BEFORE_EACH: r"before\s?each",
    HookType.AFTER_ALL: r"after\s?all",
    HookType.AFTER_EACH: r"after\s?each",
}

HOOK_INDICATORS: Dict[HookType, Pattern[str]] = {
    hook: re.compile(
        rf"\b{name}\b.*\b(?:hook|execut\w*|run\w*|start\w*|complete\w*|done|finish\w*"
        rf"|setup|set up|cleanup|clean up|teardown|called)\b",
        re.IGNORECASE,
    )
    for hook, name in _HOOK_NAME_PATTERNS.items()
}

_HOOK_STARTED: Dict[HookType, Pattern[str]] = {
    hook: re.compile(rf"\b{name}\b.*\b(?:starting|started|setup|set up|cleanup|running)\b", re.IGNORECASE)
    for hook, name in _HOOK_NAME_PATTERNS.items()
}
_HOOK_FINISHED: Dict[HookType, Pattern[str]] = {
    hook: re.compile(rf"\b{name}\b.*\b(?:completed?|done|finished|executed)\b", re.IGNORECASE)
    for hook, name in _HOOK_NAME_PATTERNS.items()
}


@dataclass
class HookState:
    """Mutable per-hook accumulator used while a file's output is parsed.

    Errors from a direct hook-failure header take precedence over errors
    inferred from a test failure that merely mentions the hook; for a given
    suite only one of the two is reported.
    """

    hook_type: HookType
    status: HookStatus = HookStatus.NOT_FOUND
    duration_ms: float = 0.0
    duration_estimated: bool = False
    executions: Optional[int] = None
    direct_errors: List[ErrorDetail] = field(default_factory=list)
    inferred_errors: List[ErrorDetail] = field(default_factory=list)

    def mark_failed(self, error: Optional[ErrorDetail] = None, direct: bool = True) -> None:
        self.status = HookStatus.FAILED
        if error is None:
            return
        if direct:
            self.direct_errors.append(error)
        else:
            self.inferred_errors.append(error)

    @property
    def errors(self) -> Tuple[ErrorDetail, ...]:
        direct_suites = {e.suite for e in self.direct_errors}
        inferred = [e for e in self.inferred_errors if e.suite not in direct_suites]
        return tuple(self.direct_errors) + tuple(inferred)

    def freeze(self) -> HookRecord:
        return HookRecord(
            hook_type=self.hook_type,
            status=self.status,
            duration_ms=self.duration_ms,
            errors=self.errors,
            executions=self.executions,
            duration_estimated=self.duration_estimated,
        )


def new_hook_states() -> Dict[HookType, HookState]:
    return {hook: HookState(hook) for hook in HookType}


def hooks_indicated(line: str) -> List[HookType]:
    """Hooks a log line says something about (``beforeAll executed``)."""
    return [hook for hook, pattern in HOOK_INDICATORS.items() if pattern.search(line)]


def hook_timer_setup_file() -> Path:
    """Filesystem path of the packaged hook timer setup file."""
    return Path(str(resources.files("jestparallel.resources").joinpath(HOOK_TIMER_RESOURCE)))


def side_channel_name(test_path: str) -> str:
    """File name the setup file uses for a test path (unpadded base64url + .json)."""
    encoded = base64.urlsafe_b64encode(test_path.encode("utf-8")).decode("ascii")
    return f"{encoded.rstrip('=')}.json"


def _hook_record_from_entry(hook: HookType, entry: dict) -> HookRecord:
    status = {
        "executed": HookStatus.EXECUTED,
        "failed": HookStatus.FAILED,
    }.get(entry.get("status"), HookStatus.NOT_FOUND)
    errors = tuple(
        ErrorDetail(
            type=hook.failure_type,
            message=str(e.get("message", "")),
            timestamp=e.get("time") or utc_now(),
        )
        for e in entry.get("errors") or []
        if isinstance(e, dict)
    )
    return HookRecord(
        hook_type=hook,
        status=status,
        duration_ms=float(entry.get("duration") or 0),
        errors=errors,
        executions=int(entry.get("executions") or 0),
    )


def read_instrumented_hooks(hooks_dir: Path, test_path: str) -> Optional[Dict[HookType, HookRecord]]:
    """
    Read the side-channel file for one test path.

    The directory is private to one WorkItem, so when the exact key is
    missing (the runner saw a differently resolved path) a lone file in the
    directory is used instead.

    Returns:
        HookRecords for all four hook types, or None if nothing usable was written
    """
    if not hooks_dir.is_dir():
        return None
    path = hooks_dir / side_channel_name(test_path)
    if not path.exists():
        candidates = sorted(hooks_dir.glob("*.json"))
        if len(candidates) != 1:
            logger.debug(f"No hook timing file for {test_path} in {hooks_dir}")
            return None
        path = candidates[0]

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        logger.warning(f"Unreadable hook timing file {path}: {e}")
        return None
    if not isinstance(data, dict):
        logger.warning(f"Unexpected hook timing content in {path}")
        return None

    return {
        hook: _hook_record_from_entry(hook, data.get(hook.value) or {})
        for hook in HookType
    }


def remove_hooks_dir(hooks_dir: Path) -> None:
    shutil.rmtree(hooks_dir, ignore_errors=True)


def estimate_hook_durations(
    states: Dict[HookType, HookState],
    records: Sequence[TestRecord],
    suite_duration_ms: Optional[float],
    hooks_seen: Iterable[HookType],
) -> None:
    """
    Distribute unexplained suite time over hooks believed to be active.

    ``remaining = max(0, suite duration - sum of test durations)`` is split
    by HOOK_WEIGHTS among hooks that were seen in the output or failed.
    Hooks that get a duration this way are marked ``estimated`` unless they
    already failed.
    """
    seen: Set[HookType] = set(hooks_seen)
    active = [
        hook for hook in HookType
        if hook in seen or states[hook].status == HookStatus.FAILED
    ]
    if not active:
        return

    test_time = sum(r.duration_ms for r in records)
    remaining = max(0.0, (suite_duration_ms or 0.0) - test_time)
    weight_total = sum(HOOK_WEIGHTS[hook] for hook in active)

    for hook in active:
        state = states[hook]
        state.duration_ms = round(remaining * HOOK_WEIGHTS[hook] / weight_total, 1)
        state.duration_estimated = True
        if state.status != HookStatus.FAILED:
            state.status = HookStatus.ESTIMATED


def merge_hook_info(
    states: Dict[HookType, HookState],
    instrumented: Optional[Dict[HookType, HookRecord]],
) -> Dict[HookType, HookRecord]:
    """Freeze hook states, letting instrumented records override per hook."""
    merged = {hook: state.freeze() for hook, state in states.items()}
    if not instrumented:
        return merged

    for hook, precise in instrumented.items():
        errors = precise.errors
        if precise.status == HookStatus.FAILED:
            known = {e.message for e in errors}
            errors += tuple(e for e in merged[hook].errors if e.message not in known)
        merged[hook] = replace(precise, errors=errors)
    return merged


def detect_hook_timeout(text: str) -> Optional[HookType]:
    """
    Name the hook a timed-out run was most likely stuck in.

    Looks for log lines announcing that a hook started (``beforeAll
    starting``, ``afterAll cleanup``) with no later line saying it finished.
    """
    in_progress: Optional[HookType] = None
    for line in text.splitlines():
        for hook in HookType:
            if _HOOK_FINISHED[hook].search(line):
                if in_progress == hook:
                    in_progress = None
            elif _HOOK_STARTED[hook].search(line):
                in_progress = hook
    return in_progress
