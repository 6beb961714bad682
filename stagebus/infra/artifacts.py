"""Local artifact store.

Copies the files a stage produced into ``<root>/<name>/`` and records a
manifest with the retention period. prune() deletes sets past their expiry.
"""

from __future__ import annotations

import json
import logging
import shutil
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Sequence
    from pathlib import Path

logger = logging.getLogger(__name__)

MANIFEST_NAME = "manifest.json"


class LocalArtifactStore:
    """Filesystem implementation of ArtifactStorePort."""

    def __init__(self, root: Path):
        self.root = root

    def store(self, name: str, paths: Sequence[Path], retention_days: int) -> None:
        """Copy paths into the named set, replacing a previous set of that name.

        Raises:
            OSError: If copying fails.
        """
        dest = self.root / name
        if dest.exists():
            shutil.rmtree(dest)
        dest.mkdir(parents=True)

        stored: list[str] = []
        for path in paths:
            target = dest / path.name
            if path.is_dir():
                shutil.copytree(path, target, dirs_exist_ok=True)
            else:
                shutil.copy2(path, target)
            stored.append(path.name)

        now = datetime.now(UTC)
        manifest = {
            "name": name,
            "files": stored,
            "retention_days": retention_days,
            "stored_at": now.isoformat(),
            "expires_at": (now + timedelta(days=retention_days)).isoformat(),
        }
        (dest / MANIFEST_NAME).write_text(json.dumps(manifest, indent=2) + "\n")
        logger.info("Stored %d artifact(s) as %s (retention %dd)", len(stored), name, retention_days)

    def prune(self, now: datetime | None = None) -> list[str]:
        """Delete artifact sets whose retention has expired.

        Sets with a missing or unreadable manifest are left alone.

        Returns:
            Names of the deleted sets.
        """
        if not self.root.exists():
            return []
        now = now or datetime.now(UTC)
        removed: list[str] = []
        for manifest_path in sorted(self.root.glob(f"*/{MANIFEST_NAME}")):
            try:
                manifest = json.loads(manifest_path.read_text())
                expires_at = datetime.fromisoformat(manifest["expires_at"])
            except (OSError, json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
                logger.warning("Skipping artifact set %s: %s", manifest_path.parent, e)
                continue
            if expires_at <= now:
                shutil.rmtree(manifest_path.parent)
                removed.append(manifest_path.parent.name)
        return removed
