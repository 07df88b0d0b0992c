"""Optional integrations that consume ExecutionResults."""

from jestparallel.integrations.remote import RemoteResultReporter, flatten_result, generate_build_id

__all__ = ["RemoteResultReporter", "flatten_result", "generate_build_id"]
