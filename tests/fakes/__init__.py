"""In-memory fake implementations for testing.

Fakes implement the stagebus ports (CommandRunnerPort, NotificationSink,
ArtifactStorePort) with deterministic behavior. They are preferred over
mocks because they catch interface mismatches and let tests assert on
outputs and recorded state instead of call order.

Available fakes:
- FakeCommandRunner: Scripted command results, fail-closed on unknown commands
- RecordingSink: Notification sink that keeps every delivered report
- FailingSink: Notification sink that always raises
- FakeArtifactStore: Records store() calls in memory

Usage:
    from tests.fakes import FakeCommandRunner

    def test_something():
        runner = FakeCommandRunner()
        runner.add("pytest", returncode=1, stderr="1 failed")
"""

from tests.fakes.command_runner import FakeCommandRunner, UnexpectedCommandError
from tests.fakes.sinks import FailingSink, FakeArtifactStore, RecordingSink

__all__ = [
    "FailingSink",
    "FakeArtifactStore",
    "FakeCommandRunner",
    "RecordingSink",
    "UnexpectedCommandError",
]
