"""Tests for the test-file transformer."""

from pathlib import Path
from textwrap import dedent

import pytest

from jestparallel.errors import TransformError
from jestparallel.transformer import (
    TEMP_MARKER,
    temp_path_for,
    transform,
    transform_source,
    transformed_copy,
)


class TestTransformSource:
    """Tests for the lexical rewrite."""

    def test_marks_test_and_it_declarations(self):
        """Test that test( and it( gain .concurrent for every quote style."""
        source = dedent("""
            test('one', () => {});
            it("two", () => {});
            test(`three`, () => {});
            test  (  'four', () => {});
        """)

        transformed, count = transform_source(source)

        assert count == 4
        assert "test.concurrent('one'" in transformed
        assert 'it.concurrent("two"' in transformed
        assert "test.concurrent(`three`" in transformed
        assert "test.concurrent  (  'four'" in transformed

    def test_idempotent(self):
        """Test that already-concurrent declarations are not marked twice."""
        once, _ = transform_source("test('a', () => {});\nit.concurrent('b', () => {});\n")
        twice, count = transform_source(once)

        assert twice == once
        assert count == 0
        assert "concurrent.concurrent" not in twice

    @pytest.mark.parametrize(
        "line",
        [
            "xit('skipped', () => {});",
            "fit('focused', () => {});",
            "test.skip('skipped', () => {});",
            "const ok = /abc/.test('abc');",
            "latest('x');",
            "$it('x');",
            "describe('suite', () => {});",
            "test(name, () => {});",
        ],
    )
    def test_leaves_other_calls_alone(self, line):
        """Test that only plain test/it declarations with literal names change."""
        transformed, count = transform_source(line)

        assert count == 0
        assert transformed == line


class TestTransform:
    """Tests for the temp copy and its cleanup."""

    def test_copy_is_colocated_and_removed(self, math_test_file: Path):
        """Test that the copy sits next to the original and cleanup deletes it."""
        target, cleanup = transform(math_test_file)

        assert target.parent == math_test_file.parent
        assert TEMP_MARKER in target.name
        assert target.name.endswith(".test.js")
        assert "test.concurrent('adds numbers'" in target.read_text()
        assert "test('adds numbers'" in math_test_file.read_text()

        cleanup()
        cleanup()

        assert not target.exists()
        assert math_test_file.exists()

    def test_unique_names(self, math_test_file: Path):
        """Test that two copies of one file never collide."""
        assert temp_path_for(math_test_file) != temp_path_for(math_test_file)

    def test_missing_source_raises(self, tmp_path: Path):
        """Test that an unreadable source raises TransformError."""
        with pytest.raises(TransformError) as exc_info:
            transform(tmp_path / "missing.test.js")

        assert exc_info.value.path.endswith("missing.test.js")
        assert list(tmp_path.iterdir()) == []

    def test_context_manager_cleans_up_on_error(self, math_test_file: Path):
        """Test that the scoped copy is removed when the body raises."""
        seen = []
        with pytest.raises(RuntimeError):
            with transformed_copy(math_test_file) as target:
                seen.append(target)
                assert target.exists()
                raise RuntimeError("runner blew up")

        assert not seen[0].exists()
        assert sorted(p.name for p in math_test_file.parent.iterdir()) == ["math.test.js"]
