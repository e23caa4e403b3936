"""
JSON-file and in-memory checkpoint stores.

Both keep an append-only, per-epic ordered log of checkpoint messages. The
filesystem store also snapshots the content of every captured artifact so a
checkpoint can be inspected without version control.
"""

import json
import threading
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from epicpilot.domain.checkpoints import parse_checkpoint_message
from epicpilot.domain.exceptions import CheckpointFailure, ConcurrentRunConflict
from epicpilot.domain.interfaces import CheckpointStoreInterface
from epicpilot.domain.models import Checkpoint
from epicpilot.infrastructure.persistence.locks import RunLockFiles


class FilesystemCheckpointStore(CheckpointStoreInterface):
    """
    Persistent storage for pipeline checkpoints.

    Directory structure:
    {base_dir}/
        checkpoints/
            {prefix}/{checkpoint_id}.json
        checkpoint_index.json  # Maps epic_id -> checkpoint_ids
        locks/
            {epic_id}.lock  # Run lock, see RunLockFiles
    """

    def __init__(self, base_dir: str, repo_root: str = "."):
        """
        Args:
            base_dir: Directory holding the checkpoint objects and index
            repo_root: Root that relative artifact paths are resolved against
        """
        self._base_dir = Path(base_dir)
        self._repo_root = Path(repo_root)
        self._checkpoints_dir = self._base_dir / "checkpoints"
        self._index_path = self._base_dir / "checkpoint_index.json"
        self._cache: dict[str, Checkpoint] = {}
        self._lock = threading.Lock()
        self._run_locks = RunLockFiles(self._base_dir / "locks")
        self._index: dict[str, Any] = self._load_or_create_index()

    def _load_or_create_index(self) -> dict[str, Any]:
        """Load existing index or create new one."""
        self._base_dir.mkdir(parents=True, exist_ok=True)
        self._checkpoints_dir.mkdir(parents=True, exist_ok=True)

        if self._index_path.exists():
            with open(self._index_path) as f:
                result: dict[str, Any] = json.load(f)
                return result

        return {
            "version": "1.0",
            "checkpoints": {},  # checkpoint_id -> metadata
            "by_epic": {},  # epic_id -> [checkpoint_ids]
        }

    def _update_index_atomic(self) -> None:
        """Atomically update the index using write-to-temp + rename."""
        temp_path = self._index_path.with_suffix(".tmp")
        with open(temp_path, "w") as f:
            json.dump(self._index, f, indent=2)
        temp_path.replace(self._index_path)  # Atomic on POSIX

    def _get_checkpoint_path(self, checkpoint_id: str) -> Path:
        """Get filesystem path for checkpoint (using prefix directories)."""
        prefix = checkpoint_id[:2]
        return self._checkpoints_dir / prefix / f"{checkpoint_id}.json"

    def _snapshot(self, files: tuple[str, ...]) -> dict[str, str]:
        contents = {}
        for name in files:
            path = Path(name)
            if not path.is_absolute():
                path = self._repo_root / path
            if path.is_file():
                contents[name] = path.read_text(encoding="utf-8")
        return contents

    def commit(self, epic_id: str, files: tuple[str, ...], message: str) -> str:
        """
        Write the checkpoint object, then publish it through the index.

        A crash between the two steps leaves an orphan object that no
        history lists, never a half-recorded checkpoint.
        """
        checkpoint_id = uuid.uuid4().hex
        created_at = datetime.now(timezone.utc).isoformat()

        with self._lock:
            try:
                data = {
                    "checkpoint_id": checkpoint_id,
                    "epic_id": epic_id,
                    "created_at": created_at,
                    "message": message,
                    "files": self._snapshot(files),
                }
                object_path = self._get_checkpoint_path(checkpoint_id)
                object_path.parent.mkdir(parents=True, exist_ok=True)
                with open(object_path, "w") as f:
                    json.dump(data, f, indent=2)

                self._index["checkpoints"][checkpoint_id] = {
                    "path": str(object_path.relative_to(self._base_dir)),
                    "epic_id": epic_id,
                    "created_at": created_at,
                }
                self._index["by_epic"].setdefault(epic_id, []).append(checkpoint_id)
                self._update_index_atomic()
            except OSError as e:
                self._index["checkpoints"].pop(checkpoint_id, None)
                ids = self._index["by_epic"].get(epic_id, [])
                if checkpoint_id in ids:
                    ids.remove(checkpoint_id)
                raise CheckpointFailure(f"Could not write checkpoint: {e}") from e

        return checkpoint_id

    def history(self, epic_id: str) -> list[str]:
        with self._lock:
            return list(self._index["by_epic"].get(epic_id, []))

    def claim(self, epic_id: str, run_id: str) -> None:
        self._run_locks.claim(epic_id, run_id)

    def release(self, epic_id: str, run_id: str) -> None:
        self._run_locks.release(epic_id, run_id)

    def get_checkpoint(self, checkpoint_id: str) -> Checkpoint:
        """
        Retrieve checkpoint by ID (cache-first).

        Raises:
            KeyError: If the index does not list the checkpoint
            CheckpointFailure: If the checkpoint object is unreadable
        """
        with self._lock:
            if checkpoint_id in self._cache:
                return self._cache[checkpoint_id]
            if checkpoint_id not in self._index["checkpoints"]:
                raise KeyError(f"Checkpoint not found: {checkpoint_id}")
            rel_path = self._index["checkpoints"][checkpoint_id]["path"]

        try:
            with open(self._base_dir / rel_path) as f:
                data = json.load(f)
            checkpoint = parse_checkpoint_message(
                checkpoint_id,
                data["message"],
                files=tuple(data["files"]),
                created_at=data["created_at"],
            )
        except (OSError, ValueError, KeyError, TypeError) as e:
            raise CheckpointFailure(
                f"Checkpoint {checkpoint_id} is unreadable: {e}"
            ) from e
        with self._lock:
            self._cache[checkpoint_id] = checkpoint
        return checkpoint

    def get_snapshot(self, checkpoint_id: str) -> dict[str, str]:
        """Artifact contents captured by a checkpoint, keyed by path."""
        with self._lock:
            if checkpoint_id not in self._index["checkpoints"]:
                raise KeyError(f"Checkpoint not found: {checkpoint_id}")
            rel_path = self._index["checkpoints"][checkpoint_id]["path"]
        with open(self._base_dir / rel_path) as f:
            files: dict[str, str] = json.load(f)["files"]
        return files


class InMemoryCheckpointStore(CheckpointStoreInterface):
    """
    In-memory checkpoint storage for testing.
    """

    def __init__(self) -> None:
        self._messages: dict[str, tuple[str, tuple[str, ...], str]] = {}
        self._by_epic: dict[str, list[str]] = {}
        self._claims: dict[str, str] = {}  # epic_id -> run_id
        self._lock = threading.Lock()

    def claim(self, epic_id: str, run_id: str) -> None:
        with self._lock:
            holder = self._claims.get(epic_id)
            if holder is not None:
                raise ConcurrentRunConflict(epic_id, holder)
            self._claims[epic_id] = run_id

    def release(self, epic_id: str, run_id: str) -> None:
        with self._lock:
            if self._claims.get(epic_id) == run_id:
                del self._claims[epic_id]

    def commit(self, epic_id: str, files: tuple[str, ...], message: str) -> str:
        checkpoint_id = uuid.uuid4().hex
        created_at = datetime.now(timezone.utc).isoformat()
        with self._lock:
            self._messages[checkpoint_id] = (message, tuple(files), created_at)
            self._by_epic.setdefault(epic_id, []).append(checkpoint_id)
        return checkpoint_id

    def history(self, epic_id: str) -> list[str]:
        with self._lock:
            return list(self._by_epic.get(epic_id, []))

    def get_checkpoint(self, checkpoint_id: str) -> Checkpoint:
        with self._lock:
            if checkpoint_id not in self._messages:
                raise KeyError(f"Checkpoint not found: {checkpoint_id}")
            message, files, created_at = self._messages[checkpoint_id]
        return parse_checkpoint_message(checkpoint_id, message, files, created_at)
