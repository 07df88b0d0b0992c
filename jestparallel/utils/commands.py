"""
Command building utilities for runner execution.

Provides the Jest argv for a RunPlan, the environment handed to the
runner, and discovery of the project's own ``setupFilesAfterEnv`` entries
(passing ``--setupFilesAfterEnv`` on the command line replaces the configured
list, so the project's entries are passed again ahead of ours).
"""
import json
import logging
import os
import shutil
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence

from jestparallel.config import RunnerConfig
from jestparallel.errors import RunnerNotFoundError
from jestparallel.hooks import HOOKS_DIR_ENV

logger = logging.getLogger(__name__)

BASE_RUNNER_FLAGS = (
    "--verbose",
    "--no-cache",
    "--no-coverage",
    "--forceExit",
    "--passWithNoTests=false",
)


def resolve_executable(command: Sequence[str]) -> str:
    """
    Locate the runner executable.

    Raises:
        RunnerNotFoundError: If the first element of ``command`` cannot be found
    """
    executable = command[0]
    if os.sep in executable or (os.altsep and os.altsep in executable):
        if Path(executable).exists():
            return executable
        raise RunnerNotFoundError(executable)
    found = shutil.which(executable)
    if found is None:
        raise RunnerNotFoundError(executable)
    return found


def _setup_files_from(config: Mapping[str, Any], base: Path) -> List[str]:
    entries = config.get("setupFilesAfterEnv")
    if not isinstance(entries, list):
        return []
    files = []
    for entry in entries:
        if not isinstance(entry, str):
            continue
        entry = entry.replace("<rootDir>", str(base))
        files.append(entry if Path(entry).is_absolute() or not entry.startswith(".") else str(base / entry))
    return files


def _read_json(path: Path) -> Optional[Dict[str, Any]]:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        logger.debug(f"Cannot read {path}: {e}")
        return None
    return data if isinstance(data, dict) else None


def discover_setup_files(project_root: Path, runner_config_path: Optional[Path] = None) -> List[str]:
    """
    Find the project's ``setupFilesAfterEnv`` entries.

    Only JSON sources are read: an explicit ``.json`` runner config,
    ``jest.config.json`` and the ``"jest"`` key of ``package.json``.
    JavaScript configs would need Node to evaluate and are skipped.
    """
    if runner_config_path is not None:
        if runner_config_path.suffix == ".json":
            data = _read_json(runner_config_path)
            if data is not None:
                return _setup_files_from(data, runner_config_path.parent)
        return []

    config_json = project_root / "jest.config.json"
    if config_json.exists():
        data = _read_json(config_json)
        if data is not None:
            return _setup_files_from(data, project_root)

    package_json = project_root / "package.json"
    if package_json.exists():
        data = _read_json(package_json)
        jest_section = data.get("jest") if data else None
        if isinstance(jest_section, dict):
            return _setup_files_from(jest_section, project_root)
    return []


def build_runner_command(
    config: RunnerConfig,
    test_path: str,
    plan_args: Sequence[str],
    report_path: Optional[Path] = None,
    setup_files: Sequence[str] = (),
) -> List[str]:
    """
    Build the runner argv for one WorkItem.

    Args:
        config: Runner configuration (command, Jest config path)
        test_path: File to run (the transformed copy when there is one)
        plan_args: Strategy-specific flags from the RunPlan
        report_path: Where Jest should write its JSON report, if requested
        setup_files: ``--setupFilesAfterEnv`` entries in order

    Returns:
        Argument list for the subprocess
    """
    argv = [*config.runner_command, "--runTestsByPath", test_path, *BASE_RUNNER_FLAGS]
    if config.runner_config_path is not None:
        argv += ["--config", str(config.runner_config_path)]
    if report_path is not None:
        argv += ["--json", "--outputFile", str(report_path)]
    for setup_file in setup_files:
        argv += ["--setupFilesAfterEnv", setup_file]
    argv += list(plan_args)
    return argv


def build_runner_env(
    config: RunnerConfig,
    worker_id: int,
    hooks_dir: Optional[Path] = None,
    base_env: Optional[Mapping[str, str]] = None,
) -> Dict[str, str]:
    """Environment for the runner: caller env, config extras, then our own variables."""
    env = dict(os.environ if base_env is None else base_env)
    env.update(config.extra_env)
    env["FORCE_COLOR"] = "0"
    env["JEST_PARALLEL_WORKER_ID"] = str(worker_id)
    if hooks_dir is not None:
        env[HOOKS_DIR_ENV] = str(hooks_dir)
    return env
