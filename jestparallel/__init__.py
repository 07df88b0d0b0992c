"""jestparallel - Parallel execution orchestrator for Jest test files."""

from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version("jestparallel")
except PackageNotFoundError:
    # Package not installed, fallback to pyproject.toml version
    __version__ = "0.3.0"
