"""Tests for hook timing and status estimation."""

import json
from pathlib import Path

import pytest

from jestparallel.hooks import (
    HOOK_WEIGHTS,
    detect_hook_timeout,
    estimate_hook_durations,
    hook_timer_setup_file,
    hooks_indicated,
    merge_hook_info,
    new_hook_states,
    read_instrumented_hooks,
    remove_hooks_dir,
    side_channel_name,
)
from jestparallel.types import ErrorDetail, FailureType, HookRecord, HookStatus, HookType, TestRecord, TestStatus


def record(name: str, duration_ms: float) -> TestRecord:
    return TestRecord(test_id=name, name=name, status=TestStatus.PASSED, duration_ms=duration_ms)


class TestEstimateHookDurations:
    """Tests for the heuristic path."""

    def test_distributes_remaining_time_by_weight(self):
        """Test that unexplained time is split across active hooks."""
        states = new_hook_states()

        estimate_hook_durations(
            states,
            [record("a", 100), record("b", 100)],
            suite_duration_ms=1000,
            hooks_seen=[HookType.BEFORE_ALL, HookType.AFTER_ALL],
        )

        weight = HOOK_WEIGHTS[HookType.BEFORE_ALL] + HOOK_WEIGHTS[HookType.AFTER_ALL]
        assert states[HookType.BEFORE_ALL].duration_ms == pytest.approx(800 * 0.6 / weight, abs=0.1)
        assert states[HookType.AFTER_ALL].duration_ms == pytest.approx(800 * 0.1 / weight, abs=0.1)
        assert states[HookType.BEFORE_ALL].status == HookStatus.ESTIMATED
        assert states[HookType.BEFORE_EACH].status == HookStatus.NOT_FOUND
        assert states[HookType.BEFORE_EACH].duration_ms == 0.0

    def test_never_claims_executed(self):
        """Test that heuristic durations are flagged as estimated."""
        states = new_hook_states()
        estimate_hook_durations(states, [], 500, [HookType.BEFORE_EACH])

        frozen = states[HookType.BEFORE_EACH].freeze()
        assert frozen.status == HookStatus.ESTIMATED
        assert frozen.duration_estimated is True

    def test_remaining_time_is_not_negative(self):
        """Test that tests outlasting the suite time leave zero for hooks."""
        states = new_hook_states()
        estimate_hook_durations(states, [record("a", 900)], 500, [HookType.BEFORE_ALL])

        assert states[HookType.BEFORE_ALL].duration_ms == 0.0

    def test_failed_hook_keeps_failed_status(self):
        """Test that a failed hook gets a duration but stays failed."""
        states = new_hook_states()
        states[HookType.BEFORE_ALL].mark_failed(ErrorDetail(FailureType.HOOK_FAILURE_BEFOREALL, "boom"))

        estimate_hook_durations(states, [], 300, [])

        assert states[HookType.BEFORE_ALL].status == HookStatus.FAILED
        assert states[HookType.BEFORE_ALL].duration_ms == 300.0

    def test_no_active_hooks(self):
        """Test that nothing changes when no hook was seen."""
        states = new_hook_states()
        estimate_hook_durations(states, [], 1000, [])

        assert all(s.status == HookStatus.NOT_FOUND for s in states.values())


class TestInstrumentedHooks:
    """Tests for the side channel written by the setup file."""

    def write_side_channel(self, hooks_dir: Path, test_path: str, data: dict) -> Path:
        hooks_dir.mkdir(parents=True, exist_ok=True)
        path = hooks_dir / side_channel_name(test_path)
        path.write_text(json.dumps(data))
        return path

    def test_reads_exact_file(self, tmp_path: Path):
        """Test reading precise hook timings for a test path."""
        hooks_dir = tmp_path / "hooks"
        self.write_side_channel(
            hooks_dir,
            "/app/tests/a.test.js",
            {
                "beforeAll": {"executions": 1, "duration": 120.5, "status": "executed", "errors": []},
                "afterEach": {
                    "executions": 3,
                    "duration": 9,
                    "status": "failed",
                    "errors": [{"message": "cleanup failed", "time": "2024-01-01T00:00:00Z"}],
                },
            },
        )

        hooks = read_instrumented_hooks(hooks_dir, "/app/tests/a.test.js")

        assert hooks[HookType.BEFORE_ALL].status == HookStatus.EXECUTED
        assert hooks[HookType.BEFORE_ALL].duration_ms == 120.5
        assert hooks[HookType.BEFORE_ALL].executions == 1
        assert hooks[HookType.AFTER_EACH].status == HookStatus.FAILED
        assert hooks[HookType.AFTER_EACH].errors[0].message == "cleanup failed"
        assert hooks[HookType.AFTER_EACH].errors[0].type == FailureType.HOOK_FAILURE_AFTEREACH
        assert hooks[HookType.BEFORE_EACH].status == HookStatus.NOT_FOUND

    def test_falls_back_to_lone_file(self, tmp_path: Path):
        """Test that a differently keyed lone file is still used."""
        hooks_dir = tmp_path / "hooks"
        self.write_side_channel(hooks_dir, "/private/app/a.test.js", {"beforeEach": {"status": "executed"}})

        hooks = read_instrumented_hooks(hooks_dir, "/app/a.test.js")

        assert hooks[HookType.BEFORE_EACH].status == HookStatus.EXECUTED

    def test_missing_or_broken(self, tmp_path: Path):
        """Test that absent or unreadable side channels give None."""
        assert read_instrumented_hooks(tmp_path / "nothing", "/a.test.js") is None

        hooks_dir = tmp_path / "hooks"
        hooks_dir.mkdir()
        (hooks_dir / side_channel_name("/a.test.js")).write_text("{not json")
        assert read_instrumented_hooks(hooks_dir, "/a.test.js") is None

    def test_side_channel_name_is_unpadded_base64url(self):
        """Test the file naming shared with the setup file."""
        name = side_channel_name("/a/b?.js")
        assert name.endswith(".json")
        assert "=" not in name and "/" not in name and "+" not in name

    def test_remove_hooks_dir(self, tmp_path: Path):
        hooks_dir = tmp_path / "hooks"
        self.write_side_channel(hooks_dir, "/a.test.js", {})
        remove_hooks_dir(hooks_dir)
        assert not hooks_dir.exists()

    def test_setup_file_is_packaged(self):
        """Test that the injected setup file ships with the package."""
        path = hook_timer_setup_file()
        assert path.name == "hook_timer_setup.js"
        assert "JEST_PARALLEL_HOOKS_DIR" in path.read_text()

    def test_setup_file_keeps_done_callback_hooks(self):
        """Test that hooks declaring a done parameter are wrapped with one."""
        source = hook_timer_setup_file().read_text()
        assert "fn.length > 0" in source
        assert "return function (done)" in source


class TestMergeHookInfo:
    """Tests for precise-over-heuristic merging."""

    def test_precise_overrides_estimate(self):
        """Test that instrumented records replace estimates."""
        states = new_hook_states()
        estimate_hook_durations(states, [], 1000, [HookType.BEFORE_ALL])

        merged = merge_hook_info(
            states,
            {HookType.BEFORE_ALL: HookRecord(HookType.BEFORE_ALL, HookStatus.EXECUTED, 42.0, executions=1)},
        )

        assert merged[HookType.BEFORE_ALL].status == HookStatus.EXECUTED
        assert merged[HookType.BEFORE_ALL].duration_ms == 42.0
        assert merged[HookType.BEFORE_ALL].duration_estimated is False

    def test_text_errors_enrich_failed_precise_hook(self):
        """Test that parsed error detail is kept when the instrumented hook failed too."""
        states = new_hook_states()
        states[HookType.AFTER_ALL].mark_failed(
            ErrorDetail(FailureType.HOOK_FAILURE_AFTERALL, "Error: socket hang up\n  at close (a.js:1:1)")
        )
        precise = HookRecord(
            HookType.AFTER_ALL,
            HookStatus.FAILED,
            5.0,
            errors=(ErrorDetail(FailureType.HOOK_FAILURE_AFTERALL, "socket hang up"),),
        )

        merged = merge_hook_info(states, {HookType.AFTER_ALL: precise})

        assert len(merged[HookType.AFTER_ALL].errors) == 2

    def test_without_instrumentation(self):
        """Test that states are frozen as they are."""
        merged = merge_hook_info(new_hook_states(), None)
        assert set(merged) == set(HookType)
        assert all(r.status == HookStatus.NOT_FOUND for r in merged.values())


class TestHookIndicators:
    """Tests for hook activity and timeout detection."""

    @pytest.mark.parametrize(
        "line,expected",
        [
            ("beforeAll hook executed", [HookType.BEFORE_ALL]),
            ("Running before each setup", [HookType.BEFORE_EACH]),
            ("afterAll cleanup done", [HookType.AFTER_ALL]),
            ("nothing to see here", []),
            ("beforeAll", []),
        ],
    )
    def test_hooks_indicated(self, line, expected):
        assert hooks_indicated(line) == expected

    def test_detects_unfinished_hook(self):
        """Test that a started but unfinished hook is named."""
        output = "beforeAll starting\nbeforeAll completed\nafterAll cleanup starting\n"
        assert detect_hook_timeout(output) == HookType.AFTER_ALL

    def test_no_hook_in_progress(self):
        """Test that finished hooks are not blamed."""
        assert detect_hook_timeout("beforeAll starting\nbeforeAll done\n") is None
        assert detect_hook_timeout("") is None
