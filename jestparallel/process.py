"""
Async subprocess execution with timeout escalation.

One call runs one runner process to completion:

- stdout and stderr are drained concurrently as raw bytes;
- at ``timeout_ms`` the process group gets SIGTERM, and SIGKILL if it is
  still alive after the grace period;
- the outcome is settled once, after the process has definitely exited,
  whichever of exit and timeout happened first.

The runner is started in its own session so the signals reach the Node
processes npx spawns underneath it.
"""
import asyncio
import logging
import os
import signal
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Union

logger = logging.getLogger(__name__)

READ_CHUNK_SIZE = 64 * 1024
# Bound on waiting for pipes to close after the process itself is gone
DRAIN_TIMEOUT_S = 2.0
_SIGKILL = getattr(signal, "SIGKILL", signal.SIGTERM)


@dataclass
class ProcessOutcome:
    """What one subprocess did."""

    command: List[str]
    exit_code: Optional[int] = None
    stdout: bytes = b""
    stderr: bytes = b""
    duration_ms: float = 0.0
    timed_out: bool = False
    killed: bool = False
    spawn_error: Optional[OSError] = None

    @property
    def stdout_text(self) -> str:
        return self.stdout.decode("utf-8", errors="replace")

    @property
    def stderr_text(self) -> str:
        return self.stderr.decode("utf-8", errors="replace")

    @property
    def combined_text(self) -> str:
        """Jest writes results to stderr and console output to stdout."""
        return "\n".join(part for part in (self.stderr_text, self.stdout_text) if part)


async def _drain(stream: Optional[asyncio.StreamReader], buffer: bytearray) -> None:
    if stream is None:
        return
    while True:
        chunk = await stream.read(READ_CHUNK_SIZE)
        if not chunk:
            break
        buffer.extend(chunk)


class ProcessExecutor:
    """Runs runner subprocesses with a timeout and SIGTERM/SIGKILL escalation."""

    def __init__(self, grace_period_ms: int = 2000) -> None:
        self.grace_period_ms = grace_period_ms

    async def execute(
        self,
        argv: Sequence[str],
        timeout_ms: int,
        cwd: Optional[Union[str, Path]] = None,
        env: Optional[Dict[str, str]] = None,
    ) -> ProcessOutcome:
        """
        Run ``argv`` to completion or until it is killed.

        Args:
            argv: Command and arguments
            timeout_ms: Time before SIGTERM is sent
            cwd: Working directory
            env: Full environment for the child

        Returns:
            ProcessOutcome; spawn failures are reported in ``spawn_error``
        """
        command = list(argv)
        start = time.monotonic()
        try:
            proc = await asyncio.create_subprocess_exec(
                *command,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(cwd) if cwd is not None else None,
                env=env,
                start_new_session=os.name == "posix",
            )
        except OSError as e:
            logger.error(f"Failed to spawn {command[0]}: {e}")
            return ProcessOutcome(
                command=command,
                duration_ms=(time.monotonic() - start) * 1000,
                spawn_error=e,
            )

        logger.debug(f"Started pid {proc.pid}: {' '.join(command)}")
        stdout_buffer = bytearray()
        stderr_buffer = bytearray()
        stdout_task = asyncio.ensure_future(_drain(proc.stdout, stdout_buffer))
        stderr_task = asyncio.ensure_future(_drain(proc.stderr, stderr_buffer))
        wait_task = asyncio.ensure_future(proc.wait())

        timed_out = False
        killed = False
        try:
            done, _ = await asyncio.wait({wait_task}, timeout=timeout_ms / 1000)
            # The process may have exited in the same tick the timer fired
            if not done and not wait_task.done():
                timed_out = True
                logger.warning(f"pid {proc.pid} exceeded {timeout_ms}ms, sending SIGTERM")
                self._signal(proc, signal.SIGTERM)
                done, _ = await asyncio.wait({wait_task}, timeout=self.grace_period_ms / 1000)
                if not done and not wait_task.done():
                    killed = True
                    logger.warning(f"pid {proc.pid} ignored SIGTERM, sending SIGKILL")
                    self._signal(proc, _SIGKILL)
                    await wait_task
        except asyncio.CancelledError:
            self._signal(proc, _SIGKILL)
            for task in (stdout_task, stderr_task, wait_task):
                task.cancel()
            raise

        await self._wait_for_pipes(stdout_task, stderr_task, proc.pid)
        outcome = ProcessOutcome(
            command=command,
            exit_code=wait_task.result(),
            stdout=bytes(stdout_buffer),
            stderr=bytes(stderr_buffer),
            duration_ms=(time.monotonic() - start) * 1000,
            timed_out=timed_out,
            killed=killed,
        )
        logger.debug(f"pid {proc.pid} exited with {outcome.exit_code} after {outcome.duration_ms:.0f}ms")
        return outcome

    async def _wait_for_pipes(
        self,
        stdout_task: "asyncio.Future[None]",
        stderr_task: "asyncio.Future[None]",
        pid: int,
    ) -> None:
        # A grandchild that escaped the process group can hold the pipes open
        _, pending = await asyncio.wait({stdout_task, stderr_task}, timeout=DRAIN_TIMEOUT_S)
        for task in pending:
            logger.warning(f"Output pipe of pid {pid} still open after exit, keeping what was read")
            task.cancel()

    @staticmethod
    def _signal(proc: "asyncio.subprocess.Process", sig: int) -> None:
        if proc.returncode is not None:
            return
        try:
            if os.name == "posix":
                os.killpg(proc.pid, sig)
            elif sig == _SIGKILL:
                proc.kill()
            else:
                proc.terminate()
        except ProcessLookupError:
            pass
        except PermissionError as e:
            logger.warning(f"Cannot signal pid {proc.pid}: {e}")

