"""
Per-epic run locks shared across processes.

Each epic has one lock file holding the id of the run that owns it. Ownership
is an exclusive flock on an open descriptor; the kernel drops it when the
owning process exits, so a crashed run never leaves its epic locked.

Directory structure:
{lock_dir}/
    {epic_id}.lock
"""

from __future__ import annotations

import fcntl
import os
import threading
from pathlib import Path

from epicpilot.domain.exceptions import CheckpointFailure, ConcurrentRunConflict


class RunLockFiles:
    """
    Exclusive per-epic run locks under one directory.

    flock locks belong to the open file description, so two claims for the
    same epic conflict even inside one process.
    """

    def __init__(self, lock_dir: str | Path) -> None:
        self._lock_dir = Path(lock_dir)
        self._held: dict[str, tuple[str, int]] = {}  # epic_id -> (run_id, fd)
        self._lock = threading.Lock()

    def lock_path(self, epic_id: str) -> Path:
        return self._lock_dir / f"{epic_id}.lock"

    def claim(self, epic_id: str, run_id: str) -> None:
        """
        Take the lock for an epic without blocking.

        Raises:
            ConcurrentRunConflict: If another run holds the lock
            CheckpointFailure: If the lock file cannot be opened or written
        """
        path = self.lock_path(epic_id)
        with self._lock:
            try:
                path.parent.mkdir(parents=True, exist_ok=True)
                fd = os.open(path, os.O_RDWR | os.O_CREAT, 0o644)
            except OSError as e:
                raise CheckpointFailure(f"Could not open run lock {path}: {e}") from e

            try:
                fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
            except BlockingIOError:
                holder = os.pread(fd, 256, 0).decode(errors="replace").strip()
                os.close(fd)
                raise ConcurrentRunConflict(epic_id, holder or "unknown") from None
            except OSError as e:
                os.close(fd)
                raise CheckpointFailure(f"Could not lock {path}: {e}") from e

            try:
                os.ftruncate(fd, 0)
                os.pwrite(fd, run_id.encode(), 0)
            except OSError as e:
                fcntl.flock(fd, fcntl.LOCK_UN)
                os.close(fd)
                raise CheckpointFailure(f"Could not record run lock {path}: {e}") from e
            self._held[epic_id] = (run_id, fd)

    def release(self, epic_id: str, run_id: str) -> None:
        """Give up the lock; a no-op unless ``run_id`` holds it."""
        with self._lock:
            held = self._held.get(epic_id)
            if held is None or held[0] != run_id:
                return
            del self._held[epic_id]
            fd = held[1]
            try:
                os.ftruncate(fd, 0)
            finally:
                fcntl.flock(fd, fcntl.LOCK_UN)
                os.close(fd)
