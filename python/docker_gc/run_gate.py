"""
Run gating for unattended invocation.

Two independent guards sit in front of a cycle:

- the minimum interval, measured from the last-run marker, so a timer that
  fires more often than configured does not shorten the confirmation window;
- an exclusive, non-blocking ``flock`` on ``<state_dir>/.lock`` so two
  overlapping invocations never read and write the generational sets at the
  same time.
"""

import fcntl
import os
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

from docker_gc.logging_utils import get_logger
from docker_gc.state_store import LAST_RUN, StateStore

logger = get_logger(__name__)

LOCK_FILE_NAME = ".lock"


class RunLockHeldError(Exception):
    """Raised when another cycle already holds the run lock."""


def should_run(
    state_store: StateStore,
    min_interval: int,
    force: bool = False,
    now: Optional[datetime] = None,
) -> bool:
    """Decide whether enough time has passed since the last cycle.

    Args:
        state_store: Store holding the last-run marker
        min_interval: Minimum seconds between cycles
        force: Bypass the interval check
        now: Current time (aware UTC); defaults to the wall clock

    Returns:
        True if a cycle should start now
    """
    if force:
        logger.info("Force flag set, skipping minimum-interval check")
        return True

    last_run = state_store.read_timestamp(LAST_RUN)
    if last_run is None:
        return True

    now = now or datetime.now(timezone.utc)
    elapsed = now - last_run
    if elapsed < timedelta(0):
        logger.warning(f"Last cycle marker {last_run.isoformat()} is in the future (clock skew?); running anyway")
        return True
    if elapsed < timedelta(seconds=min_interval):
        remaining = timedelta(seconds=min_interval) - elapsed
        logger.info(
            f"Last cycle ran at {last_run.isoformat()}, {int(remaining.total_seconds())}s left "
            f"of the {min_interval}s minimum interval; skipping (use --force to override)"
        )
        return False
    return True


class RunLock:
    """Cross-process exclusive lock on the state directory.

    Example usage:
        with RunLock(state_dir):
            # Only one cycle at a time in here
            ...
    """

    def __init__(self, state_dir):
        self.lock_path = Path(state_dir) / LOCK_FILE_NAME
        self._fd: Optional[int] = None

    def acquire(self) -> None:
        """Take the lock without waiting.

        Raises:
            RunLockHeldError: if another process holds it
        """
        self.lock_path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(str(self.lock_path), os.O_RDWR | os.O_CREAT, 0o644)
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            os.close(fd)
            raise RunLockHeldError(f"Another docker-gc cycle holds {self.lock_path}")
        except Exception:
            os.close(fd)
            raise

        os.ftruncate(fd, 0)
        os.write(fd, f"{os.getpid()}\n".encode())
        self._fd = fd
        logger.debug(f"Acquired run lock {self.lock_path}")

    def release(self) -> None:
        if self._fd is None:
            return
        try:
            fcntl.flock(self._fd, fcntl.LOCK_UN)
        finally:
            os.close(self._fd)
            self._fd = None
        logger.debug(f"Released run lock {self.lock_path}")

    @property
    def held(self) -> bool:
        return self._fd is not None

    def __enter__(self) -> "RunLock":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.release()
