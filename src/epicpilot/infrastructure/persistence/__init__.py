"""
Persistence adapters for artifacts and checkpoints.
"""

from epicpilot.infrastructure.persistence.checkpoint import (
    FilesystemCheckpointStore,
    InMemoryCheckpointStore,
)
from epicpilot.infrastructure.persistence.filesystem import FilesystemArtifactStore
from epicpilot.infrastructure.persistence.git import GitCheckpointStore
from epicpilot.infrastructure.persistence.memory import InMemoryArtifactStore

__all__ = [
    "InMemoryArtifactStore",
    "FilesystemArtifactStore",
    "InMemoryCheckpointStore",
    "FilesystemCheckpointStore",
    "GitCheckpointStore",
]
