"""
Domain interfaces (Ports) for the epic pipeline.

These abstract base classes define the contracts that adapters must satisfy.
They have no external dependencies and represent the core domain boundaries.
"""

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from epicpilot.domain.models import (
        AgentReport,
        ArtifactName,
        Checkpoint,
        MarkerOp,
    )


class AgentGatewayInterface(ABC):
    """
    Port for the external coding agent.

    Note (Side Effects):
        An invocation may mutate any artifact it was pointed at. Every such
        mutation must be visible to the artifact store by the time invoke()
        returns; there is no asynchronous completion.

    Note (Retries):
        Adapters never retry. A failed invocation surfaces as
        AgentUnavailable or AgentTimeout; deliberate re-invocation belongs to
        the bounded-loop logic of the orchestrator.
    """

    @abstractmethod
    def invoke(self, skill_name: str, args: str) -> "AgentReport":
        """
        Run one skill to completion.

        Args:
            skill_name: Externally defined unit of work (e.g. "speckit.clarify")
            args: Rendered phase context

        Returns:
            The agent's free-text report

        Raises:
            AgentUnavailable: If the agent cannot be started or reached
            AgentTimeout: If the agent does not return in time
        """
        pass


class ArtifactStoreInterface(ABC):
    """
    Port for epic-scoped text artifacts.

    Paths are namespaced per epic so runs for different epics never share
    files.
    """

    @abstractmethod
    def read_artifact(self, epic_id: str, name: "ArtifactName") -> str:
        """
        Read an artifact's raw content.

        Raises:
            KeyError: If the artifact does not exist
        """
        pass

    @abstractmethod
    def write_artifact(self, epic_id: str, name: "ArtifactName", content: str) -> None:
        """Replace an artifact's content atomically."""
        pass

    @abstractmethod
    def write_marker(
        self,
        epic_id: str,
        name: "ArtifactName",
        marker: str,
        op: "MarkerOp",
        payload: str = "",
    ) -> None:
        """
        Set or clear a control marker as one atomic edit.

        Raises:
            KeyError: If the artifact does not exist
        """
        pass

    @abstractmethod
    def exists(self, epic_id: str, name: "ArtifactName") -> bool:
        pass

    @abstractmethod
    def artifact_path(self, epic_id: str, name: "ArtifactName") -> str:
        """Location of the artifact as handed to the agent (pure, no I/O)."""
        pass


class CheckpointStoreInterface(ABC):
    """
    Port for append-only, per-epic ordered checkpoints.

    A commit captures all listed files or none of them, and never rewrites
    earlier history.

    Note (Run Lock):
        The store also owns the per-epic run lock. A claim must exclude every
        other run writing to the same history, including runs in other
        processes.
    """

    @abstractmethod
    def claim(self, epic_id: str, run_id: str) -> None:
        """
        Take the exclusive run lock for an epic.

        Raises:
            ConcurrentRunConflict: If another run holds the lock
            CheckpointFailure: If the lock cannot be taken
        """
        pass

    @abstractmethod
    def release(self, epic_id: str, run_id: str) -> None:
        """Give up the run lock; a no-op unless ``run_id`` holds it."""
        pass

    @abstractmethod
    def commit(
        self,
        epic_id: str,
        files: tuple[str, ...],
        message: str,
    ) -> str:
        """
        Durably snapshot the listed files with a message.

        Args:
            epic_id: Epic the checkpoint belongs to
            files: Artifact paths captured by the checkpoint
            message: Commit message (subject, body and trailers)

        Returns:
            The checkpoint id
        """
        pass

    @abstractmethod
    def history(self, epic_id: str) -> list[str]:
        """Checkpoint ids for an epic, oldest first."""
        pass

    @abstractmethod
    def get_checkpoint(self, checkpoint_id: str) -> "Checkpoint":
        """
        Retrieve a checkpoint by id.

        Raises:
            KeyError: If the checkpoint is not found
        """
        pass
