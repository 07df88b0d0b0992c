"""Tests for error classification."""

from textwrap import dedent

import pytest

from jestparallel.parsers.classify import (
    classify_error,
    extract_message,
    extract_stack_trace,
    hook_for_failure_type,
    strip_ansi,
)
from jestparallel.types import FailureType, HookType


class TestClassifyError:
    """Tests for classify_error."""

    @pytest.mark.parametrize(
        "text,expected",
        [
            ("expect(received).toBe(expected)\n\nExpected: 5\nReceived: 4", FailureType.ASSERTION_FAILURE),
            ("AssertionError: values differ", FailureType.ASSERTION_FAILURE),
            (
                "thrown: \"Exceeded timeout of 5000 ms for a test.\"\n"
                "Add a timeout value to this test to increase the timeout",
                FailureType.TIMEOUT,
            ),
            ("ReferenceError: window is not defined", FailureType.REFERENCE_ERROR),
            ("TypeError: Cannot read properties of null (reading 'x')", FailureType.TYPE_ERROR),
            ("SyntaxError: Unexpected token '}'", FailureType.SYNTAX_ERROR),
            ("Detected a race condition between writers", FailureType.RACE_CONDITION),
            ("Something odd happened", FailureType.UNKNOWN_FAILURE),
            ("", FailureType.UNKNOWN_FAILURE),
        ],
    )
    def test_taxonomy(self, text, expected):
        """Test priority-ordered keyword classification."""
        assert classify_error(text) == expected

    def test_message_outranks_code_frame(self):
        """Test that the thrown message decides before the code frame is consulted."""
        text = dedent("""
            TypeError: client.close is not a function

              12 |   afterAll(() => {
            > 13 |     client.close();
                 |            ^

              at Object.<anonymous> (tests/api.test.js:13:12)
        """).strip()

        assert classify_error(text) == FailureType.TYPE_ERROR

    def test_hook_mention_in_frame(self):
        """Test that an otherwise unrecognized message falls back to a hook mention."""
        text = dedent("""
            Error: connection reset

              3 | beforeEach(async () => {
            > 4 |   await db.reset();
        """).strip()

        assert classify_error(text) == FailureType.HOOK_FAILURE_BEFOREEACH

    def test_explicit_hook(self):
        """Test that a direct hook header wins over the text."""
        assert classify_error("expect(x).toBe(y)", hook=HookType.AFTER_ALL) == FailureType.HOOK_FAILURE_AFTERALL


class TestExtraction:
    """Tests for message and stack trace extraction."""

    def test_stack_trace_frames(self):
        """Test that only call frames are kept, without the at prefix."""
        text = dedent("""
            Error: boom
                at Object.<anonymous> (/app/tests/a.test.js:3:9)
                at Promise.then.completed (/app/node_modules/jest-circus/build/utils.js:298:28)
                at new Promise (<anonymous>)
                at processTicksAndRejections (node:internal/process/task_queues:95:5)
            some trailing text
        """).strip()

        assert extract_stack_trace(text) == (
            "Object.<anonymous> (/app/tests/a.test.js:3:9)",
            "Promise.then.completed (/app/node_modules/jest-circus/build/utils.js:298:28)",
            "new Promise (<anonymous>)",
            "processTicksAndRejections (node:internal/process/task_queues:95:5)",
        )

    def test_message_stops_at_frames(self):
        """Test that the message excludes code frames."""
        text = "Error: boom\nmore detail\n  1 | code\n    at f (a.js:1:1)"
        assert extract_message(text) == "Error: boom\nmore detail"

    def test_strip_ansi(self):
        assert strip_ansi("\x1b[1m\x1b[31mred\x1b[39m\x1b[22m") == "red"


class TestHookForFailureType:
    """Tests for hook_for_failure_type."""

    def test_round_trip(self):
        for hook in HookType:
            assert hook_for_failure_type(hook.failure_type) == hook

    def test_non_hook(self):
        assert hook_for_failure_type(FailureType.TIMEOUT) is None
        assert hook_for_failure_type(None) is None
