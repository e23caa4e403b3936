"""
Git-backed checkpoint store.

Each checkpoint is a commit on the current branch of the target repository
that captures exactly the epic's artifacts. The run state lives in the commit
message trailers, so ``git log`` is the durable history.
"""

import logging
import re
import subprocess
import threading
from pathlib import Path

from epicpilot.domain.checkpoints import TRAILER_EPIC, parse_checkpoint_message, parse_trailers
from epicpilot.domain.exceptions import CheckpointFailure
from epicpilot.domain.interfaces import CheckpointStoreInterface
from epicpilot.domain.models import Checkpoint
from epicpilot.infrastructure.persistence.locks import RunLockFiles

logger = logging.getLogger(__name__)

_COMMIT_ID = re.compile(r"^[0-9a-f]{4,64}$")
_FIELD_SEP = "\x1f"
_RECORD_SEP = "\x1e"


class GitCheckpointStore(CheckpointStoreInterface):
    """
    Checkpoints as commits in the epic's repository.

    All git calls are serialized through one lock: the index is shared by
    every epic running against the same working tree.
    """

    def __init__(
        self,
        repo_root: str,
        author_name: str | None = None,
        author_email: str | None = None,
        timeout: float = 60.0,
        lock_dir: str | None = None,
    ):
        """
        Args:
            repo_root: Working tree of an existing git repository
            author_name: Overrides user.name for checkpoint commits
            author_email: Overrides user.email for checkpoint commits
            timeout: Seconds allowed per git command
            lock_dir: Run lock directory (default: .epicpilot/locks in the repository)
        """
        self._repo_root = Path(repo_root)
        self._author_name = author_name
        self._author_email = author_email
        self._timeout = timeout
        self._lock = threading.Lock()
        self._cache: dict[str, Checkpoint] = {}
        self._run_locks = RunLockFiles(
            lock_dir if lock_dir is not None else self._repo_root / ".epicpilot" / "locks"
        )

    def _git(self, *args: str) -> str:
        command = ["git"]
        if self._author_name:
            command += ["-c", f"user.name={self._author_name}"]
        if self._author_email:
            command += ["-c", f"user.email={self._author_email}"]
        command += list(args)

        result = subprocess.run(
            command,
            cwd=self._repo_root,
            capture_output=True,
            text=True,
            timeout=self._timeout,
            check=True,
        )
        return result.stdout

    def _has_head(self) -> bool:
        try:
            self._git("rev-parse", "--verify", "--quiet", "HEAD")
        except subprocess.CalledProcessError:
            return False
        return True

    def commit(self, epic_id: str, files: tuple[str, ...], message: str) -> str:
        """
        Commit exactly the listed files, leaving anything else staged alone.

        An unchanged artifact set still produces a commit, so every
        transition is recorded.
        """
        with self._lock:
            try:
                existing = [f for f in files if (self._repo_root / f).exists()]
                if existing:
                    self._git("add", "-A", "--", *existing)
                    self._git("commit", "--allow-empty", "--only", "-m", message, "--", *existing)
                else:
                    self._git("commit", "--allow-empty", "-m", message)
                checkpoint_id = self._git("rev-parse", "HEAD").strip()
            except subprocess.CalledProcessError as e:
                raise CheckpointFailure(
                    f"git failed for epic {epic_id}: "
                    f"{(e.stderr or '').strip()}"
                ) from e
            except subprocess.TimeoutExpired as e:
                raise CheckpointFailure(f"git timed out for epic {epic_id}") from e
            except OSError as e:
                raise CheckpointFailure(f"Could not run git: {e}") from e

        logger.debug("Epic %s: committed %s", epic_id, checkpoint_id[:12])
        return checkpoint_id

    def claim(self, epic_id: str, run_id: str) -> None:
        self._run_locks.claim(epic_id, run_id)

    def release(self, epic_id: str, run_id: str) -> None:
        self._run_locks.release(epic_id, run_id)

    def history(self, epic_id: str) -> list[str]:
        """
        Checkpoint commits for an epic, oldest first.

        ``--grep`` narrows the log; the exact trailer match happens here so
        epic "4" never picks up the commits of epic "42".
        """
        with self._lock:
            try:
                if not self._has_head():
                    return []
                output = self._git(
                    "log",
                    "--reverse",
                    f"--format=%H{_FIELD_SEP}%B{_RECORD_SEP}",
                    "--fixed-strings",
                    f"--grep={TRAILER_EPIC}: {epic_id}",
                )
            except (subprocess.SubprocessError, OSError) as e:
                raise CheckpointFailure(f"Could not read git history: {e}") from e

        ids = []
        for record in output.split(_RECORD_SEP):
            record = record.strip("\n")
            if not record:
                continue
            commit_id, _, message = record.partition(_FIELD_SEP)
            if parse_trailers(message).get(TRAILER_EPIC) == epic_id:
                ids.append(commit_id)
        return ids

    def get_checkpoint(self, checkpoint_id: str) -> Checkpoint:
        if checkpoint_id in self._cache:
            return self._cache[checkpoint_id]
        if not _COMMIT_ID.match(checkpoint_id):
            raise KeyError(f"Checkpoint not found: {checkpoint_id}")

        with self._lock:
            try:
                header = self._git(
                    "show", "-s", f"--format=%cI{_FIELD_SEP}%B", f"{checkpoint_id}^{{commit}}"
                )
                names = self._git(
                    "show", "--name-only", "--format=", f"{checkpoint_id}^{{commit}}"
                )
            except subprocess.CalledProcessError as e:
                raise KeyError(f"Checkpoint not found: {checkpoint_id}") from e
            except (subprocess.TimeoutExpired, OSError) as e:
                raise CheckpointFailure(f"Could not read checkpoint: {e}") from e

        created_at, _, message = header.partition(_FIELD_SEP)
        try:
            checkpoint = parse_checkpoint_message(
                checkpoint_id,
                message.strip("\n"),
                files=tuple(line for line in names.splitlines() if line),
                created_at=created_at.strip(),
            )
        except ValueError as e:
            raise KeyError(f"Checkpoint not found: {checkpoint_id}") from e

        self._cache[checkpoint_id] = checkpoint
        return checkpoint
