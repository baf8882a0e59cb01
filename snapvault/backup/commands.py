"""
External command execution for backup drivers.

Commands are always run from an argument vector, never through a shell.
A nonzero exit code is returned to the caller as data; only a command that
cannot be started or that exceeds its timeout raises ExecutionError.
"""

import logging
import os
import signal
import subprocess
import time
from dataclasses import dataclass
from typing import Mapping, Optional, Sequence


logger = logging.getLogger(__name__)


class ExecutionError(Exception):
    """Raised when a command cannot be spawned or times out."""

    def __init__(self, message: str, cause: str, command: str = ''):
        super().__init__(message)
        self.cause = cause
        self.command = command


@dataclass(frozen=True)
class CommandResult:
    """Captured outcome of a finished command."""
    exit_code: int
    stdout: str
    stderr: str
    duration_ms: float = 0.0

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


class CommandExecutor:
    """
    Runs external commands with a working directory and timeout.

    Children are started in their own session so that a timeout kills the
    whole process group, not just the direct child.
    """

    def __init__(self, default_timeout: float = 3600):
        """
        Initialize command executor.

        Args:
            default_timeout: Timeout in seconds used when run() is given none
        """
        self.default_timeout = default_timeout

    def run(
        self,
        command: str,
        args: Sequence[str] = (),
        timeout: Optional[float] = None,
        cwd: Optional[str] = None,
        env: Optional[Mapping[str, str]] = None
    ) -> CommandResult:
        """
        Run a command to completion.

        Args:
            command: Executable name or path
            args: Arguments passed verbatim (no shell interpretation)
            timeout: Seconds before the process is killed (default: executor default)
            cwd: Working directory for the child
            env: Extra environment variables merged over the current environment

        Returns:
            CommandResult with exit code and captured output

        Raises:
            ExecutionError: If the process cannot be spawned (cause='spawn')
                or the timeout elapses (cause='timeout')
        """
        argv = [command, *[str(arg) for arg in args]]
        timeout = self.default_timeout if timeout is None else timeout

        child_env = None
        if env:
            child_env = os.environ.copy()
            child_env.update(env)

        logger.debug(f"Running {command} with {len(argv) - 1} args (cwd={cwd or os.getcwd()}, timeout={timeout}s)")
        started = time.monotonic()

        try:
            proc = subprocess.Popen(
                argv,
                cwd=cwd,
                env=child_env,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                errors='replace',
                start_new_session=(os.name == 'posix')
            )
        except OSError as e:
            raise ExecutionError(f"Failed to start {command}: {e}", cause='spawn', command=command)

        try:
            stdout, stderr = proc.communicate(timeout=timeout)
        except subprocess.TimeoutExpired:
            self._kill(proc)
            # Reap the child so nothing outlives this call
            proc.communicate()
            raise ExecutionError(
                f"{command} timed out after {timeout}s",
                cause='timeout',
                command=command
            )
        except BaseException:
            # Interrupted (e.g. SIGTERM converted to SystemExit): do not leave the child running
            self._kill(proc)
            proc.wait()
            raise

        duration_ms = (time.monotonic() - started) * 1000
        logger.debug(f"{command} exited with {proc.returncode} in {duration_ms:.0f}ms")

        return CommandResult(
            exit_code=proc.returncode,
            stdout=stdout or '',
            stderr=stderr or '',
            duration_ms=duration_ms
        )

    @staticmethod
    def _kill(proc: subprocess.Popen):
        """Kill the child and its process group."""
        if proc.poll() is not None:
            return
        try:
            if os.name == 'posix':
                os.killpg(proc.pid, signal.SIGKILL)
            else:
                proc.kill()
        except ProcessLookupError:
            pass
