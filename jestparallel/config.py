"""
Configuration loading and validation for jestparallel.

Two pydantic models cover the whole surface:

1. RemoteReportingConfig - optional batched delivery of flattened test
   records to a remote endpoint. Disabled unless an endpoint is given.

2. RunnerConfig - root configuration consumed by the strategy selector and
   the process pool (mode, worker bound, timeouts, runner command, hook
   instrumentation, logging).

Configuration files use camelCase keys (``maxWorkers``, ``testMatch``) the
way the JavaScript side of a project writes them; they are normalized to the
snake_case field names before validation. Precedence is explicit overrides,
then the file, then the model defaults.
"""
import json
import logging
import os
import shlex
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from jestparallel.errors import ConfigError
from jestparallel.types import Strategy

logger = logging.getLogger(__name__)

CONFIG_FILENAMES = (
    "jest-parallel.config.yaml",
    "jest-parallel.config.yml",
    "jest-parallel.config.json",
    ".jest-parallelrc",
    ".jest-parallelrc.json",
)
PACKAGE_JSON_KEY = "jest-parallel"

MIN_TIMEOUT_MS = 1000

# Historical mode names still found in project configs
MODE_ALIASES: Dict[str, Strategy] = {
    "native-parallel": Strategy.WHOLE_FILE,
    "parallel-file": Strategy.WHOLE_FILE,
    "jest-parallel": Strategy.WHOLE_FILE,
    "file": Strategy.WHOLE_FILE,
    "parallel-test": Strategy.TRANSFORMED_CONCURRENT,
    "concurrent": Strategy.TRANSFORMED_CONCURRENT,
    "isolated": Strategy.PER_TEST_ISOLATED,
    "per-test": Strategy.PER_TEST_ISOLATED,
}

_KEY_ALIASES: Dict[str, str] = {
    "maxWorkers": "max_workers",
    "timeout": "timeout_ms",
    "timeoutMs": "timeout_ms",
    "gracePeriodMs": "grace_period_ms",
    "testMatch": "test_match",
    "runnerConfigPath": "runner_config_path",
    "config": "runner_config_path",
    "runnerCommand": "runner_command",
    "rootDir": "project_root",
    "jsonReport": "json_report",
    "instrumentHooks": "instrument_hooks",
    "forceConcurrent": "force_concurrent",
    "outputGrammar": "output_grammar",
    "logLevel": "log_level",
    "logFile": "log_file",
    "env": "extra_env",
    "batchSize": "batch_size",
    "flushEvery": "flush_every",
    "apiKey": "api_key",
    "buildId": "build_id",
    "timeoutSeconds": "timeout_seconds",
}

_PATH_FIELDS = ("runner_config_path", "project_root", "log_file")


class RemoteReportingConfig(BaseModel):
    """Remote result reporting settings."""
    enabled: bool = Field(default=False, description="Send flattened results to a remote endpoint")
    endpoint: Optional[str] = Field(default=None, description="URL receiving result batches")
    api_key: Optional[str] = Field(
        default=None,
        description="Bearer token (or use JEST_PARALLEL_REPORT_TOKEN env var)",
    )
    build_id: Optional[str] = Field(default=None, description="Build identifier attached to every record")
    batch_size: int = Field(default=50, ge=1, description="Records per request")
    flush_every: int = Field(default=10, ge=1, description="Auto-flush after this many queued records")
    timeout_seconds: int = Field(default=30, ge=1, description="HTTP timeout per request")

    @model_validator(mode="after")
    def validate_endpoint(self) -> "RemoteReportingConfig":
        """Remote reporting needs somewhere to send results."""
        if self.enabled and not self.endpoint:
            raise ValueError("remote reporting is enabled but no endpoint is configured")
        if self.api_key is None:
            self.api_key = os.environ.get("JEST_PARALLEL_REPORT_TOKEN")
        return self


class RunnerConfig(BaseModel):
    """Main configuration model."""
    mode: Strategy = Field(default=Strategy.WHOLE_FILE, description="Parallelization strategy")
    max_workers: int = Field(
        default_factory=lambda: os.cpu_count() or 1,
        description="Maximum concurrently running runner subprocesses",
    )
    timeout_ms: int = Field(default=30000, description="Per-WorkItem timeout in milliseconds")
    grace_period_ms: int = Field(default=2000, ge=0, description="Delay between SIGTERM and SIGKILL")
    test_match: List[str] = Field(default_factory=lambda: ["tests/**/*.test.js"])
    runner_config_path: Optional[Path] = Field(default=None, description="Jest config passed via --config")
    runner_command: List[str] = Field(default_factory=lambda: ["npx", "jest"])
    project_root: Path = Field(default=Path("."), description="Working directory of the runner")
    json_report: bool = Field(default=True, description="Request Jest's JSON report")
    instrument_hooks: bool = Field(default=True, description="Inject the hook timer setup file")
    force_concurrent: bool = Field(default=False, description="Upgrade whole-file runs to transformed-concurrent")
    output_grammar: str = Field(default="jest", description="Registered output grammar name")
    verbose: bool = False
    log_level: str = "INFO"
    log_file: Optional[Path] = None
    extra_env: Dict[str, str] = Field(default_factory=dict, description="Extra environment for the runner")
    remote: RemoteReportingConfig = Field(default_factory=RemoteReportingConfig)

    @field_validator("mode", mode="before")
    @classmethod
    def validate_mode(cls, v: Any) -> Any:
        """Map legacy mode names onto strategies."""
        if isinstance(v, str) and v in MODE_ALIASES:
            return MODE_ALIASES[v]
        return v

    @field_validator("max_workers")
    @classmethod
    def validate_max_workers(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"maxWorkers must be at least 1, got {v}")
        return v

    @field_validator("timeout_ms")
    @classmethod
    def validate_timeout(cls, v: int) -> int:
        if v < MIN_TIMEOUT_MS:
            raise ValueError(f"timeout must be at least {MIN_TIMEOUT_MS}ms, got {v}")
        return v

    @field_validator("test_match", mode="before")
    @classmethod
    def validate_test_match(cls, v: Any) -> Any:
        return [v] if isinstance(v, str) else v

    @field_validator("runner_command", mode="before")
    @classmethod
    def validate_runner_command(cls, v: Any) -> Any:
        if isinstance(v, str):
            v = shlex.split(v)
        if not v:
            raise ValueError("runner_command must not be empty")
        return v

    @field_validator("output_grammar")
    @classmethod
    def validate_output_grammar(cls, v: str) -> str:
        """Validate grammar name against the registry."""
        from jestparallel.parsers import list_grammars

        available = list_grammars()
        if v not in available:
            raise ValueError(f"Output grammar '{v}' not registered. Available: {available}")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown log level: {v}")
        return level

    @model_validator(mode="after")
    def apply_force_concurrent(self) -> "RunnerConfig":
        """forceConcurrent turns plain whole-file runs into transformed ones."""
        if self.force_concurrent and self.mode == Strategy.WHOLE_FILE:
            self.mode = Strategy.TRANSFORMED_CONCURRENT
        return self

    @property
    def effective_log_level(self) -> str:
        return "DEBUG" if self.verbose else self.log_level


def normalize_keys(raw: Mapping[str, Any]) -> Dict[str, Any]:
    """Rename camelCase config keys to field names, recursing into ``remote``."""
    normalized: Dict[str, Any] = {}
    for key, value in raw.items():
        name = _KEY_ALIASES.get(key, key)
        if name == "remote" and isinstance(value, Mapping):
            value = normalize_keys(value)
        normalized[name] = value
    return normalized


def find_config_file(start_path: Optional[Path] = None) -> Optional[Path]:
    """
    Find a jest-parallel config file in current or parent directories.

    A ``package.json`` counts only when it carries a ``"jest-parallel"`` key.

    Args:
        start_path: Starting directory (defaults to current working directory)

    Returns:
        Path to config file, or None if not found
    """
    current = start_path or Path.cwd()

    # Search up to 5 levels
    for _ in range(5):
        for name in CONFIG_FILENAMES:
            config_path = current / name
            if config_path.exists():
                return config_path

        package_json = current / "package.json"
        if package_json.exists() and _package_json_section(package_json) is not None:
            return package_json

        parent = current.parent
        if parent == current:
            # Reached filesystem root
            break
        current = parent

    return None


def _package_json_section(path: Path) -> Optional[Dict[str, Any]]:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return None
    section = data.get(PACKAGE_JSON_KEY) if isinstance(data, dict) else None
    return section if isinstance(section, dict) else None


def read_config_file(config_path: Path) -> Dict[str, Any]:
    """
    Read a config file into normalized, unvalidated values.

    Relative paths are resolved against the file's directory.

    Raises:
        ConfigError: If the file is missing, unparsable or not a mapping
    """
    if not config_path.exists():
        raise ConfigError("config file not found", str(config_path))

    if config_path.name == "package.json":
        raw = _package_json_section(config_path)
        if raw is None:
            raise ConfigError(f"no '{PACKAGE_JSON_KEY}' section", str(config_path))
    else:
        try:
            with open(config_path, "r", encoding="utf-8") as f:
                raw = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"invalid YAML/JSON: {e}", str(config_path)) from e
        if raw is None:
            raw = {}
        if not isinstance(raw, dict):
            raise ConfigError("top-level value must be a mapping", str(config_path))

    values = normalize_keys(raw)
    for name in _PATH_FIELDS:
        value = values.get(name)
        if value and not Path(value).is_absolute():
            values[name] = config_path.parent / value
    if "project_root" not in values:
        values["project_root"] = config_path.parent
    return values


def merge_configs(
    overrides: Optional[Mapping[str, Any]] = None,
    file_values: Optional[Mapping[str, Any]] = None,
) -> RunnerConfig:
    """
    Build a validated RunnerConfig with overrides > file > defaults.

    ``None`` override values are ignored so callers can pass every option
    they know about without clobbering the file.

    Raises:
        ConfigError: If the merged values fail validation
    """
    merged: Dict[str, Any] = dict(normalize_keys(file_values or {}))
    for key, value in normalize_keys(overrides or {}).items():
        if value is None:
            continue
        if key == "remote" and isinstance(value, Mapping) and isinstance(merged.get("remote"), Mapping):
            value = {**merged["remote"], **{k: v for k, v in value.items() if v is not None}}
        merged[key] = value

    try:
        return RunnerConfig(**merged)
    except ValidationError as e:
        raise ConfigError(_format_validation_error(e)) from e


def load_config(
    config_path: Optional[Union[str, Path]] = None,
    overrides: Optional[Mapping[str, Any]] = None,
) -> RunnerConfig:
    """
    Load configuration from an explicit file or by discovery.

    Args:
        config_path: Explicit config file; discovered from the cwd when None
        overrides: Values taking precedence over the file

    Returns:
        Validated RunnerConfig instance

    Raises:
        ConfigError: If configuration is unreadable or invalid
    """
    path = Path(config_path) if config_path else find_config_file()
    file_values: Dict[str, Any] = {}
    if path is not None:
        logger.debug(f"Loading configuration from {path}")
        file_values = read_config_file(path)
    return merge_configs(overrides, file_values)


def _format_validation_error(error: ValidationError) -> str:
    parts = []
    for item in error.errors():
        location = ".".join(str(p) for p in item.get("loc", ())) or "config"
        parts.append(f"{location}: {item.get('msg')}")
    return "; ".join(parts)
