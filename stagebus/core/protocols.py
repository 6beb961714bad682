"""Protocol definitions for stagebus ports.

The domain layer depends on these structural interfaces rather than on the
infra implementations, so tests can inject in-memory fakes.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence
    from pathlib import Path

    from stagebus.domain.aggregator import Report


# =============================================================================
# Command Runner Protocols
# =============================================================================


@runtime_checkable
class CommandResultProtocol(Protocol):
    """Protocol for command execution results.

    Matches the interface of stagebus.infra.command_runner.CommandResult.
    """

    ok: bool
    returncode: int
    stdout: str
    stderr: str
    timed_out: bool
    duration_seconds: float

    def stdout_tail(self, max_chars: int = 800, max_lines: int = 20) -> str: ...

    def stderr_tail(self, max_chars: int = 800, max_lines: int = 20) -> str: ...


@runtime_checkable
class CommandRunnerPort(Protocol):
    """Protocol for abstracting command execution.

    The canonical implementation is CommandRunner in
    stagebus/infra/command_runner.py.
    """

    def run(
        self,
        cmd: list[str] | str,
        env: Mapping[str, str] | None = None,
        timeout: float | None = None,
        use_process_group: bool | None = None,
        shell: bool = False,
        cwd: Path | None = None,
    ) -> CommandResultProtocol:
        """Run a command synchronously.

        Args:
            cmd: Command to run. Can be a list of strings or a shell string.
            env: Environment variables to set (merged with os.environ).
            timeout: Timeout for command execution in seconds.
            use_process_group: Whether to use process group for termination.
            shell: If True, run command through shell.
            cwd: Override working directory for this command.

        Returns:
            CommandResultProtocol with execution details.

        Raises:
            OSError: If the process cannot be started.
        """
        ...

    async def run_async(
        self,
        cmd: list[str] | str,
        env: Mapping[str, str] | None = None,
        timeout: float | None = None,
        use_process_group: bool | None = None,
        shell: bool = False,
        cwd: Path | None = None,
    ) -> CommandResultProtocol:
        """Run a command asynchronously. Same contract as run()."""
        ...


# =============================================================================
# Collaborator Protocols
# =============================================================================


@runtime_checkable
class ArtifactStorePort(Protocol):
    """Durable storage for files a stage produced.

    Fire-and-forget from the caller's perspective: nothing is returned that
    the pipeline depends on.
    """

    def store(self, name: str, paths: Sequence[Path], retention_days: int) -> None:
        """Store a named set of files under a retention period."""
        ...


@runtime_checkable
class NotificationSink(Protocol):
    """A destination for the rendered pipeline report."""

    name: str

    def deliver(self, report: Report) -> str | None:
        """Deliver the report.

        Returns:
            A locator for what was created (comment id, issue URL, path),
            or None when there is nothing to point at.

        Raises:
            SinkDeliveryError: If delivery failed.
        """
        ...
