"""
Work planning: turns test files and their known test names into WorkItems.

Test-name discovery itself happens elsewhere; callers pass
``(file_path, test_names)`` pairs and may pass an empty name list when the
names are unknown.
"""
import logging
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Tuple

from jestparallel.config import RunnerConfig
from jestparallel.transformer import TEMP_MARKER
from jestparallel.types import Strategy, WorkItem

logger = logging.getLogger(__name__)

EXCLUDED_DIRS = ("node_modules", ".git")


def find_test_files(config: RunnerConfig, root: Optional[Path] = None) -> List[str]:
    """
    Expand the ``test_match`` globs under the project root.

    Transformed temp copies left behind by an interrupted run and anything
    inside ``node_modules`` are skipped.

    Returns:
        Sorted, de-duplicated file paths
    """
    base = Path(root or config.project_root)
    found = set()
    for pattern in config.test_match:
        for path in base.glob(pattern):
            if not path.is_file():
                continue
            if TEMP_MARKER in path.name or any(part in EXCLUDED_DIRS for part in path.parts):
                continue
            found.add(str(path))
    files = sorted(found)
    logger.debug(f"Found {len(files)} test file(s) matching {config.test_match} under {base}")
    return files


def plan_work_items(
    config: RunnerConfig,
    files: Iterable[Tuple[str, Sequence[str]]],
) -> List[WorkItem]:
    """
    Build WorkItems in input order.

    Per-test-isolated mode yields one item per known test name, filtered to
    that test; a file whose names are unknown runs as one isolated item.
    The other modes yield one item per file.

    Args:
        config: Runner configuration
        files: ``(file_path, test_names)`` pairs

    Returns:
        WorkItems with ``worker_id`` 0, assigned by the pool at dispatch
    """
    items: List[WorkItem] = []
    for file_path, test_names in files:
        names = list(dict.fromkeys(test_names or ()))
        if config.mode == Strategy.PER_TEST_ISOLATED and names:
            for name in names:
                items.append(
                    WorkItem(
                        file_path=file_path,
                        strategy=Strategy.PER_TEST_ISOLATED,
                        test_name_filter=name,
                        timeout_ms=config.timeout_ms,
                        test_count_hint=1,
                    )
                )
            continue

        items.append(
            WorkItem(
                file_path=file_path,
                strategy=config.mode,
                timeout_ms=config.timeout_ms,
                test_count_hint=len(names) or None,
            )
        )

    logger.info(f"Planned {len(items)} work item(s) in {config.mode.value} mode")
    return items
