"""Exception types for jestparallel."""

from typing import Optional


RUNNER_REMEDIATION = (
    "Install Jest in the project (npm install --save-dev jest) or point "
    "runner_command at an existing Jest executable."
)


class JestParallelError(Exception):
    """Base error for jestparallel."""

    pass


class ConfigError(JestParallelError):
    """Configuration could not be read or failed validation."""

    def __init__(self, message: str, path: Optional[str] = None) -> None:
        super().__init__(f"{path}: {message}" if path else message)
        self.path = path


class RunnerNotFoundError(JestParallelError):
    """The runner executable cannot be located. Aborts the whole run."""

    def __init__(self, executable: str, remediation: str = RUNNER_REMEDIATION) -> None:
        super().__init__(f"Test runner not found: {executable}. {remediation}")
        self.executable = executable
        self.remediation = remediation


class RunnerSpawnError(JestParallelError):
    """A single runner subprocess could not be started."""

    def __init__(
        self,
        executable: str,
        cause: BaseException,
        remediation: str = RUNNER_REMEDIATION,
    ) -> None:
        super().__init__(f"Failed to start {executable}: {cause}. {remediation}")
        self.executable = executable
        self.cause = cause
        self.remediation = remediation


class TransformError(JestParallelError):
    """A test file could not be rewritten into its concurrent form."""

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"Cannot transform {path}: {reason}")
        self.path = path
        self.reason = reason


class ReportingError(JestParallelError):
    """Remote reporting is misconfigured."""

    pass
