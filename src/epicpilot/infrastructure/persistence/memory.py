"""
In-memory artifact store.

Useful for testing and for driving the orchestrator with scripted agents.
"""

import threading

from epicpilot.domain import markers
from epicpilot.domain.interfaces import ArtifactStoreInterface
from epicpilot.domain.models import ArtifactName, MarkerOp


class InMemoryArtifactStore(ArtifactStoreInterface):
    """Simple dict-backed artifact store for testing."""

    def __init__(self, specs_dir: str = "specs", memory_dir: str = ".specify/memory"):
        self._specs_dir = specs_dir
        self._memory_dir = memory_dir
        self._artifacts: dict[str, str] = {}
        self._lock = threading.Lock()

    def artifact_path(self, epic_id: str, name: ArtifactName) -> str:
        if name.is_context_document:
            return f"{self._memory_dir}/{name.value}"
        return f"{self._specs_dir}/{epic_id}/{name.value}"

    def read_artifact(self, epic_id: str, name: ArtifactName) -> str:
        path = self.artifact_path(epic_id, name)
        with self._lock:
            if path not in self._artifacts:
                raise KeyError(f"Artifact not found: {path}")
            return self._artifacts[path]

    def write_artifact(self, epic_id: str, name: ArtifactName, content: str) -> None:
        with self._lock:
            self._artifacts[self.artifact_path(epic_id, name)] = content

    def write_marker(
        self,
        epic_id: str,
        name: ArtifactName,
        marker: str,
        op: MarkerOp,
        payload: str = "",
    ) -> None:
        path = self.artifact_path(epic_id, name)
        with self._lock:
            if path not in self._artifacts:
                raise KeyError(f"Artifact not found: {path}")
            text = self._artifacts[path]
            if op is MarkerOp.SET:
                self._artifacts[path] = markers.set_marker(text, marker, payload)
            else:
                self._artifacts[path] = markers.clear_marker(text, marker)

    def exists(self, epic_id: str, name: ArtifactName) -> bool:
        with self._lock:
            return self.artifact_path(epic_id, name) in self._artifacts

