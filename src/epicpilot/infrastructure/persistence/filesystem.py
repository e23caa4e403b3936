"""
Filesystem implementation of the artifact store.

Artifacts live in the repository the agent works on:

    {repo_root}/
        {specs_dir}/{epic_id}/spec.md | plan.md | tasks.md
        {memory_dir}/constitution.md | architecture.md

Every write goes through write-to-temp + rename, so readers never observe a
half-written artifact.
"""

import threading
from pathlib import Path

from epicpilot.domain import markers
from epicpilot.domain.interfaces import ArtifactStoreInterface
from epicpilot.domain.models import ArtifactName, MarkerOp


class FilesystemArtifactStore(ArtifactStoreInterface):
    """
    Epic-scoped artifacts stored as plain files under the repository root.

    Paths are namespaced per epic, so concurrent runs for different epics
    never touch the same file.
    """

    def __init__(
        self,
        repo_root: str,
        specs_dir: str = "specs",
        memory_dir: str = ".specify/memory",
    ):
        self._repo_root = Path(repo_root).resolve()
        self._specs_dir = self._repo_root / specs_dir
        self._memory_dir = self._repo_root / memory_dir
        self._lock = threading.Lock()

    @property
    def repo_root(self) -> Path:
        return self._repo_root

    def _path(self, epic_id: str, name: ArtifactName) -> Path:
        if name.is_context_document:
            return self._memory_dir / name.value
        return self._specs_dir / epic_id / name.value

    def _write_atomic(self, path: Path, content: str) -> None:
        """Atomically replace a file using write-to-temp + rename."""
        path.parent.mkdir(parents=True, exist_ok=True)
        temp_path = path.with_name(f".{path.name}.tmp")
        with open(temp_path, "w", encoding="utf-8") as f:
            f.write(content)
        temp_path.replace(path)  # Atomic on POSIX

    def artifact_path(self, epic_id: str, name: ArtifactName) -> str:
        return str(self._path(epic_id, name))

    def read_artifact(self, epic_id: str, name: ArtifactName) -> str:
        path = self._path(epic_id, name)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError as e:
            raise KeyError(f"Artifact not found: {path}") from e

    def write_artifact(self, epic_id: str, name: ArtifactName, content: str) -> None:
        with self._lock:
            self._write_atomic(self._path(epic_id, name), content)

    def write_marker(
        self,
        epic_id: str,
        name: ArtifactName,
        marker: str,
        op: MarkerOp,
        payload: str = "",
    ) -> None:
        """Read-modify-write of a single marker, held under the store lock."""
        with self._lock:
            text = self.read_artifact(epic_id, name)
            if op is MarkerOp.SET:
                updated = markers.set_marker(text, marker, payload)
            else:
                updated = markers.clear_marker(text, marker)
            if updated != text:
                self._write_atomic(self._path(epic_id, name), updated)

    def exists(self, epic_id: str, name: ArtifactName) -> bool:
        return self._path(epic_id, name).is_file()
