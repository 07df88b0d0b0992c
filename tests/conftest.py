"""Pytest configuration and fixtures for jestparallel tests."""

import json
import sys
import uuid
from pathlib import Path
from textwrap import dedent

import pytest

from jestparallel.config import RunnerConfig

FAKE_JEST = Path(__file__).parent / "fixtures" / "fake_jest.py"


MATH_TEST_SOURCE = dedent("""
    const { add } = require('./helpers');

    describe('Math operations', () => {
      test('adds numbers', () => {
        expect(add(1, 2)).toBe(3);
      });

      it('subtracts numbers', () => {
        expect(3 - 1).toBe(2);
      });

      test("multiplies numbers", () => {
        expect(2 * 3).toBe(6);
      });

      test('broken arithmetic', () => {
        expect(2 + 2).toBe(5);
      });
    });
""").lstrip()


MATH_TEXT_OUTPUT = dedent("""
    FAIL tests/math.test.js
      Math operations
        ✓ adds numbers (3 ms)
        ✓ subtracts numbers (1 ms)
        ✓ multiplies numbers
        ✕ broken arithmetic (5 ms)

      ● Math operations › broken arithmetic

        expect(received).toBe(expected) // Object.is equality

        Expected: 5
        Received: 4

          16 |   test('broken arithmetic', () => {
        > 17 |     expect(2 + 2).toBe(5);
             |                   ^
          18 |   });

          at Object.toBe (tests/math.test.js:17:19)

    Test Suites: 1 failed, 1 total
    Tests:       1 failed, 3 passed, 4 total
    Snapshots:   0 total
    Time:        0.512 s
    Ran all test suites matching /tests\\/math.test.js/i.
""").lstrip()


BEFORE_ALL_TEXT_OUTPUT = dedent("""
    FAIL tests/db.test.js
      Database
        ✕ reads rows (1 ms)
        ✕ writes rows

      ● Database › reads rows

        Connection refused in beforeAll

          at Object.<anonymous> (tests/db.test.js:4:11)

      ● Database › writes rows

        Connection refused in beforeAll

          at Object.<anonymous> (tests/db.test.js:4:11)

    Tests:       2 failed, 2 total
    Time:        1.2 s
""").lstrip()


def math_json_report(test_path: str = "/project/tests/math.test.js") -> dict:
    """Jest --json report matching MATH_TEXT_OUTPUT."""
    def assertion(title, status, duration, failures=()):
        return {
            "ancestorTitles": ["Math operations"],
            "fullName": f"Math operations {title}",
            "title": title,
            "status": status,
            "duration": duration,
            "failureMessages": list(failures),
        }

    return {
        "numTotalTests": 4,
        "numPassedTests": 3,
        "numFailedTests": 1,
        "numPendingTests": 0,
        "numTodoTests": 0,
        "success": False,
        "testResults": [
            {
                "name": test_path,
                "status": "failed",
                "message": "",
                "perfStats": {"start": 1000, "end": 1512},
                "assertionResults": [
                    assertion("adds numbers", "passed", 3),
                    assertion("subtracts numbers", "passed", 1),
                    assertion("multiplies numbers", "passed", 0),
                    assertion(
                        "broken arithmetic",
                        "failed",
                        5,
                        [
                            "Error: expect(received).toBe(expected) // Object.is equality\n\n"
                            "Expected: 5\nReceived: 4\n"
                            "    at Object.toBe (/project/tests/math.test.js:17:19)"
                        ],
                    ),
                ],
            }
        ],
    }


@pytest.fixture
def math_text_output() -> str:
    return MATH_TEXT_OUTPUT


@pytest.fixture
def before_all_text_output() -> str:
    return BEFORE_ALL_TEXT_OUTPUT


@pytest.fixture
def math_report() -> dict:
    return math_json_report()


@pytest.fixture
def math_report_for():
    """Build the math report for a specific test file path."""
    return math_json_report


@pytest.fixture
def math_test_file(tmp_path: Path) -> Path:
    """A Jest test file inside a throwaway project."""
    tests_dir = tmp_path / "tests"
    tests_dir.mkdir()
    test_file = tests_dir / "math.test.js"
    test_file.write_text(MATH_TEST_SOURCE)
    return test_file


@pytest.fixture
def fake_runner_config(tmp_path: Path):
    """Factory for a RunnerConfig that runs the fake Jest script with a scenario."""

    def make(scenario: dict, **overrides) -> RunnerConfig:
        scenario_path = tmp_path / f"scenario-{uuid.uuid4().hex[:8]}.json"
        scenario_path.write_text(json.dumps(scenario))
        values = {
            "runner_command": [sys.executable, str(FAKE_JEST)],
            "project_root": tmp_path,
            "extra_env": {"FAKE_JEST_SCENARIO": str(scenario_path)},
            "max_workers": 2,
            "grace_period_ms": 500,
        }
        values.update(overrides)
        return RunnerConfig(**values)

    return make
