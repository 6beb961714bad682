"""ResultStore: run-scoped registry of stage results.

One ResultStore is created per pipeline run and passed explicitly to every
component that needs it. Each stage id is written at most once; entries are
immutable, so concurrent writers for different stages cannot race.
"""

from __future__ import annotations

import threading
from collections.abc import Iterator, Mapping
from types import MappingProxyType
from typing import TYPE_CHECKING

from stagebus.core.errors import ConfigurationError

if TYPE_CHECKING:
    from stagebus.core.models import StageResult


class StoreSnapshot(Mapping[str, "StageResult"]):
    """Read-only view of a ResultStore at one point in time.

    Iterates in insertion order. Later inserts into the store are not
    visible through an existing snapshot.
    """

    def __init__(self, results: Mapping[str, StageResult]) -> None:
        self._results = MappingProxyType(dict(results))

    def __getitem__(self, stage_id: str) -> StageResult:
        return self._results[stage_id]

    def __iter__(self) -> Iterator[str]:
        return iter(self._results)

    def __len__(self) -> int:
        return len(self._results)

    def __repr__(self) -> str:
        return f"StoreSnapshot({list(self._results)!r})"


class ResultStore:
    """Keyed registry of StageResult for a single pipeline run."""

    def __init__(self) -> None:
        self._results: dict[str, StageResult] = {}
        # Stage ids claimed by a runner that has not inserted its result yet
        self._reserved: set[str] = set()
        self._lock = threading.Lock()

    def insert(self, result: StageResult, *, reserved: bool = False) -> None:
        """Record a stage result.

        Args:
            result: The result to record.
            reserved: True when the caller holds the reservation for
                result.stage_id from reserve(). Without it, an id reserved
                by another caller is rejected.

        Raises:
            ConfigurationError: If a result for the same stage_id exists, or
                the id is reserved by someone else.
        """
        stage_id = result.stage_id
        with self._lock:
            if stage_id in self._results:
                raise ConfigurationError(
                    f"Duplicate stage_id {stage_id!r}: a result was already recorded"
                )
            if stage_id in self._reserved and not reserved:
                raise ConfigurationError(
                    f"Duplicate stage_id {stage_id!r}: the stage is already running"
                )
            if reserved and stage_id not in self._reserved:
                raise ConfigurationError(f"Stage {stage_id!r} was not reserved")
            self._reserved.discard(stage_id)
            self._results[stage_id] = result

    def reserve(self, stage_id: str) -> None:
        """Claim a stage id before running the stage.

        Lets a runner fail fast on duplicates before executing anything, and
        keeps two concurrent runners from executing the same stage.

        Raises:
            ConfigurationError: If stage_id is already recorded or reserved.
        """
        with self._lock:
            if stage_id in self._results or stage_id in self._reserved:
                raise ConfigurationError(
                    f"Duplicate stage_id {stage_id!r}: a result was already recorded"
                )
            self._reserved.add(stage_id)

    def release(self, stage_id: str) -> None:
        """Drop a reservation whose stage never produced a result."""
        with self._lock:
            self._reserved.discard(stage_id)

    def get(self, stage_id: str) -> StageResult | None:
        return self._results.get(stage_id)

    def stage_ids(self) -> list[str]:
        """Recorded stage ids in insertion order."""
        with self._lock:
            return list(self._results)

    def snapshot(self) -> StoreSnapshot:
        with self._lock:
            return StoreSnapshot(self._results)

    def __contains__(self, stage_id: object) -> bool:
        return stage_id in self._results

    def __len__(self) -> int:
        return len(self._results)
