"""
Test file transformation for intra-file concurrency.

Rewrites ``test(...)`` / ``it(...)`` declarations into ``test.concurrent(...)``
in a temporary copy next to the original file, so relative imports keep
resolving. The substitution is lexical: declarations built dynamically or
split across unusual formatting are left untouched.
"""
import logging
import os
import re
import secrets
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Iterator, Tuple, Union

from jestparallel.errors import TransformError

logger = logging.getLogger(__name__)

TEMP_MARKER = ".jp-"

# test('name', ...) / it("name", ...) / test(`name`, ...) not preceded by
# an identifier character, a dot or a $, so test.concurrent(, xit( and
# regex.test( are never touched.
DECLARATION_PATTERN = re.compile(r"(?<![\w.$])(test|it)(\s*\(\s*)(['\"`])")


def transform_source(source: str) -> Tuple[str, int]:
    """
    Mark sequential test declarations as concurrent.

    Args:
        source: JavaScript/TypeScript test file content

    Returns:
        Tuple of (transformed content, number of declarations rewritten)
    """
    return DECLARATION_PATTERN.subn(r"\1.concurrent\2\3", source)


def temp_path_for(source_path: Path) -> Path:
    """Unique sibling path that keeps the original's test suffix (``.test.js``)."""
    stem, dot, suffixes = source_path.name.partition(".")
    token = f"{int(time.time() * 1000)}-{secrets.token_hex(3)}"
    return source_path.with_name(f"{stem}{TEMP_MARKER}{token}{dot}{suffixes}")


def transform(source_path: Union[str, Path]) -> Tuple[Path, Callable[[], None]]:
    """
    Write a concurrent copy of a test file next to the original.

    The returned cleanup callable removes the copy; it is safe to call more
    than once and from any exit path.

    Raises:
        TransformError: If the source cannot be read or the copy cannot be written
    """
    source = Path(source_path)
    try:
        content = source.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise TransformError(str(source), str(e)) from e

    transformed, count = transform_source(content)
    target = temp_path_for(source)
    try:
        # Exclusive create: two items transforming the same file never share a copy
        with open(target, "x", encoding="utf-8") as f:
            f.write(transformed)
    except OSError as e:
        raise TransformError(str(source), str(e)) from e

    logger.debug(f"Transformed {count} declaration(s) in {source} -> {target.name}")

    cleaned = False

    def cleanup() -> None:
        nonlocal cleaned
        if cleaned:
            return
        cleaned = True
        try:
            os.unlink(target)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Could not remove transformed file {target}: {e}")

    return target, cleanup


@contextmanager
def transformed_copy(source_path: Union[str, Path]) -> Iterator[Path]:
    """Scoped transformed copy; removed on success, error, timeout and cancellation."""
    target, cleanup = transform(source_path)
    try:
        yield target
    finally:
        cleanup()
