"""
Persistent generational state for garbage collection cycles.

This module stores the identity sets observed at the end of the previous
cycle and the last-run marker, so the next cycle can confirm idleness
against them. Every write goes to a temporary file in the state directory
and is then renamed over the target, so a reader sees either the old
content or the new content, never a partial file.
"""

import json
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Optional, Set

from docker_gc.logging_utils import get_logger

logger = get_logger(__name__)

# Names of the persisted records
PREV_EXITED_CONTAINERS = "exited-containers"
PREV_ALL_IMAGES = "all-images"
LAST_RUN = "last-run"

TMP_SUFFIX = ".tmp"


class StateStore:
    """Named identity sets and timestamp markers kept in a directory."""

    def __init__(self, state_dir):
        """
        Initialize state store.

        Args:
            state_dir: Directory holding the state files (created if missing)
        """
        self.state_dir = Path(state_dir)
        self.state_dir.mkdir(parents=True, exist_ok=True)

    def get_set_path(self, name: str) -> Path:
        return self.state_dir / f"{name}.json"

    def get_marker_path(self, name: str) -> Path:
        return self.state_dir / name

    def read(self, name: str) -> Optional[Set[str]]:
        """
        Load a persisted identity set.

        Args:
            name: Record name (e.g. 'exited-containers')

        Returns:
            The stored ids, or None if the record does not exist or is unreadable
        """
        path = self.get_set_path(name)

        if not path.exists():
            return None

        try:
            with open(path, "r") as f:
                data = json.load(f)
            ids = data["ids"]
            if not isinstance(ids, list):
                raise ValueError(f"'ids' must be a list, got {type(ids).__name__}")
            return {str(i) for i in ids}
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.error(f"Failed to load state from {path}, treating it as absent: {e}")
            return None

    def write(self, name: str, ids: Iterable[str]) -> Path:
        """
        Atomically replace a persisted identity set.

        Args:
            name: Record name
            ids: Identities to store (order is irrelevant; stored sorted)

        Returns:
            Path to the written file
        """
        path = self.get_set_path(name)
        document = {
            "name": name,
            "updated_at": datetime.now(timezone.utc).isoformat(),
            "ids": sorted(set(ids)),
        }
        self._atomic_write(path, json.dumps(document, indent=2).encode("utf-8"))
        logger.debug(f"State saved: {path} ({len(document['ids'])} ids)")
        return path

    def read_timestamp(self, name: str) -> Optional[datetime]:
        """Modification time of a marker as an aware UTC datetime, or None if absent."""
        path = self.get_marker_path(name)
        try:
            mtime = path.stat().st_mtime
        except FileNotFoundError:
            return None
        return datetime.fromtimestamp(mtime, tz=timezone.utc)

    def touch(self, name: str) -> datetime:
        """Create or refresh a marker to the current time; other records are untouched."""
        path = self.get_marker_path(name)
        if not path.exists():
            self._atomic_write(path, b"")
        os.utime(path, None)
        stamp = self.read_timestamp(name)
        logger.debug(f"Marker {path} set to {stamp.isoformat()}")
        return stamp

    def _atomic_write(self, path: Path, content: bytes) -> None:
        """Write content using tmp file + rename so the target is never partial."""
        fd, tmp_path_str = tempfile.mkstemp(
            suffix=TMP_SUFFIX,
            prefix=path.name + ".",
            dir=path.parent,
        )
        tmp_path = Path(tmp_path_str)

        try:
            with os.fdopen(fd, "wb") as f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())

            os.replace(tmp_path, path)
        except BaseException:
            if tmp_path.exists():
                tmp_path.unlink()
            raise
