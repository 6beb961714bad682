"""CommandRunner: standardized subprocess execution for stagebus.

Every external command a stage runs (test runners, linters, deploy CLIs, gh)
goes through this module so that timeouts, output capture and process
termination behave the same everywhere.

On timeout the whole process group receives SIGTERM, and SIGKILL after a
grace period, so children spawned by the command do not outlive the stage.
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import subprocess
import sys
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Mapping
    from pathlib import Path

logger = logging.getLogger(__name__)

# Exit code reported for timed-out commands (matches coreutils `timeout`)
TIMEOUT_EXIT_CODE = 124

# Seconds between SIGTERM and SIGKILL when terminating a timed-out command
DEFAULT_KILL_GRACE_SECONDS = 2.0

_IS_POSIX = sys.platform != "win32"


def tail(text: str, max_chars: int = 800, max_lines: int = 20) -> str:
    """Truncate text to last N lines and M characters.

    Args:
        text: The text to truncate.
        max_chars: Maximum number of characters to keep.
        max_lines: Maximum number of lines to keep.

    Returns:
        The truncated text.
    """
    if not text:
        return ""
    lines = text.splitlines()
    if len(lines) > max_lines:
        lines = lines[-max_lines:]
    clipped = "\n".join(lines)
    if len(clipped) > max_chars:
        return clipped[-max_chars:]
    return clipped


def _decode(data: bytes | str | None) -> str:
    if data is None:
        return ""
    if isinstance(data, str):
        return data
    return data.decode(errors="replace")


@dataclass
class CommandResult:
    """Result of running an external command."""

    command: list[str] | str
    returncode: int
    stdout: str = ""
    stderr: str = ""
    duration_seconds: float = 0.0
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and not self.timed_out

    def stdout_tail(self, max_chars: int = 800, max_lines: int = 20) -> str:
        return tail(self.stdout, max_chars=max_chars, max_lines=max_lines)

    def stderr_tail(self, max_chars: int = 800, max_lines: int = 20) -> str:
        return tail(self.stderr, max_chars=max_chars, max_lines=max_lines)


class CommandRunner:
    """Runs commands with a default working directory and timeout.

    Usage:
        runner = CommandRunner(cwd=repo_path, timeout_seconds=60)
        result = runner.run(["pytest", "-q"])
        if not result.ok:
            print(result.stderr_tail())
    """

    def __init__(
        self,
        cwd: Path | None = None,
        timeout_seconds: float | None = None,
        kill_grace_seconds: float = DEFAULT_KILL_GRACE_SECONDS,
    ):
        """Initialize CommandRunner.

        Args:
            cwd: Default working directory for commands.
            timeout_seconds: Default timeout; None means no timeout.
            kill_grace_seconds: Delay between SIGTERM and SIGKILL on timeout.
        """
        self.cwd = cwd
        self.timeout_seconds = timeout_seconds
        self.kill_grace_seconds = kill_grace_seconds

    def _build_env(self, env: Mapping[str, str] | None) -> dict[str, str] | None:
        if not env:
            return None
        return {**os.environ, **env}

    def _signal(self, pid: int, sig: int, use_process_group: bool) -> None:
        try:
            if use_process_group and _IS_POSIX:
                os.killpg(pid, sig)
            else:
                os.kill(pid, sig)
        except (ProcessLookupError, PermissionError):
            pass

    def run(
        self,
        cmd: list[str] | str,
        env: Mapping[str, str] | None = None,
        timeout: float | None = None,
        use_process_group: bool | None = None,
        shell: bool = False,
        cwd: Path | None = None,
    ) -> CommandResult:
        """Run a command synchronously.

        Args:
            cmd: Command to run. Can be a list of strings or a shell string.
            env: Environment variables to set (merged with os.environ).
            timeout: Override the runner's default timeout (seconds).
            use_process_group: Start the command in its own process group so
                the whole group is terminated on timeout. Defaults to True
                on POSIX.
            shell: If True, run command through shell.
            cwd: Override working directory for this command.

        Returns:
            CommandResult. Timed-out commands report TIMEOUT_EXIT_CODE.

        Raises:
            OSError: If the process cannot be started.
        """
        effective_timeout = timeout if timeout is not None else self.timeout_seconds
        group = _IS_POSIX if use_process_group is None else use_process_group
        start = time.monotonic()
        proc = subprocess.Popen(
            cmd,
            cwd=cwd or self.cwd,
            env=self._build_env(env),
            shell=shell,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            stdin=subprocess.DEVNULL,
            text=True,
            errors="replace",
            start_new_session=group and _IS_POSIX,
        )
        try:
            try:
                stdout, stderr = proc.communicate(timeout=effective_timeout)
            except subprocess.TimeoutExpired:
                logger.debug("Command timed out after %ss: %s", effective_timeout, cmd)
                stdout, stderr = self._terminate(proc, group)
                return CommandResult(
                    command=cmd,
                    returncode=TIMEOUT_EXIT_CODE,
                    stdout=stdout,
                    stderr=stderr,
                    duration_seconds=time.monotonic() - start,
                    timed_out=True,
                )
        finally:
            if proc.poll() is None:
                self._signal(proc.pid, signal.SIGKILL, group)
                proc.wait()
        return CommandResult(
            command=cmd,
            returncode=proc.returncode,
            stdout=stdout or "",
            stderr=stderr or "",
            duration_seconds=time.monotonic() - start,
        )

    def _terminate(self, proc: subprocess.Popen[str], group: bool) -> tuple[str, str]:
        """SIGTERM, wait out the grace period, then SIGKILL. Returns output."""
        self._signal(proc.pid, signal.SIGTERM, group)
        try:
            stdout, stderr = proc.communicate(timeout=self.kill_grace_seconds)
            return stdout or "", stderr or ""
        except subprocess.TimeoutExpired:
            pass
        self._signal(proc.pid, signal.SIGKILL, group)
        proc.wait()
        try:
            stdout, stderr = proc.communicate(timeout=self.kill_grace_seconds)
        except subprocess.TimeoutExpired as e:
            # Surviving children still hold the pipes open.
            stdout, stderr = _decode(e.output), _decode(e.stderr)
            for stream in (proc.stdout, proc.stderr):
                if stream is not None:
                    stream.close()
        return stdout or "", stderr or ""

    async def run_async(
        self,
        cmd: list[str] | str,
        env: Mapping[str, str] | None = None,
        timeout: float | None = None,
        use_process_group: bool | None = None,
        shell: bool = False,
        cwd: Path | None = None,
    ) -> CommandResult:
        """Run a command asynchronously. Same contract as run().

        Output captured before a timeout is discarded; timed-out results
        carry empty stdout/stderr.
        """
        effective_timeout = timeout if timeout is not None else self.timeout_seconds
        group = _IS_POSIX if use_process_group is None else use_process_group
        start = time.monotonic()
        kwargs = {
            "cwd": cwd or self.cwd,
            "env": self._build_env(env),
            "stdout": asyncio.subprocess.PIPE,
            "stderr": asyncio.subprocess.PIPE,
            "stdin": asyncio.subprocess.DEVNULL,
            "start_new_session": group and _IS_POSIX,
        }
        if shell:
            proc = await asyncio.create_subprocess_shell(str(cmd), **kwargs)
        else:
            proc = await asyncio.create_subprocess_exec(*cmd, **kwargs)
        try:
            try:
                stdout, stderr = await asyncio.wait_for(
                    proc.communicate(), timeout=effective_timeout
                )
            except TimeoutError:
                logger.debug("Command timed out after %ss: %s", effective_timeout, cmd)
                self._signal(proc.pid, signal.SIGTERM, group)
                try:
                    await asyncio.wait_for(proc.wait(), timeout=self.kill_grace_seconds)
                except TimeoutError:
                    self._signal(proc.pid, signal.SIGKILL, group)
                    await proc.wait()
                return CommandResult(
                    command=cmd,
                    returncode=TIMEOUT_EXIT_CODE,
                    duration_seconds=time.monotonic() - start,
                    timed_out=True,
                )
        finally:
            if proc.returncode is None:
                self._signal(proc.pid, signal.SIGKILL, group)
                await proc.wait()
        return CommandResult(
            command=cmd,
            returncode=proc.returncode if proc.returncode is not None else -1,
            stdout=_decode(stdout),
            stderr=_decode(stderr),
            duration_seconds=time.monotonic() - start,
        )


def run_command(
    cmd: list[str] | str,
    cwd: Path | None = None,
    env: Mapping[str, str] | None = None,
    timeout_seconds: float | None = None,
    shell: bool = False,
) -> CommandResult:
    """Run a command once with a throwaway CommandRunner."""
    return CommandRunner(cwd=cwd, timeout_seconds=timeout_seconds).run(
        cmd, env=env, shell=shell
    )


async def run_command_async(
    cmd: list[str] | str,
    cwd: Path | None = None,
    env: Mapping[str, str] | None = None,
    timeout_seconds: float | None = None,
    shell: bool = False,
) -> CommandResult:
    """Async counterpart of run_command()."""
    return await CommandRunner(cwd=cwd, timeout_seconds=timeout_seconds).run_async(
        cmd, env=env, shell=shell
    )
