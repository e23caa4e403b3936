"""Checkpoint Committer: records every run transition in the checkpoint store.

Separates commit-message construction and failure translation from the
orchestrator's control flow.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from epicpilot.domain.checkpoints import (
    format_checkpoint_message,
    parse_checkpoint_message,
)
from epicpilot.domain.exceptions import CheckpointFailure
from epicpilot.domain.models import EPIC_ARTIFACTS, Checkpoint, CheckpointOutcome

if TYPE_CHECKING:
    from epicpilot.domain.interfaces import (
        ArtifactStoreInterface,
        CheckpointStoreInterface,
    )
    from epicpilot.domain.models import Epic

logger = logging.getLogger(__name__)


class CheckpointCommitter:
    """Wraps each transition's artifact state in an append-only checkpoint."""

    def __init__(
        self,
        checkpoint_store: CheckpointStoreInterface,
        artifact_store: ArtifactStoreInterface,
    ) -> None:
        """
        Args:
            checkpoint_store: Durable, ordered checkpoint storage.
            artifact_store: Store the captured artifacts live in.
        """
        self._checkpoint_store = checkpoint_store
        self._artifact_store = artifact_store

    def epic_files(self, epic_id: str) -> tuple[str, ...]:
        """Paths of the epic's artifacts that currently exist."""
        return tuple(
            self._artifact_store.artifact_path(epic_id, name)
            for name in EPIC_ARTIFACTS
            if self._artifact_store.exists(epic_id, name)
        )

    def checkpoint(
        self,
        epic: Epic,
        outcome: CheckpointOutcome,
        summary: str,
        phase: str | None,
        next_phase: str | None,
        rounds: tuple[tuple[str, int], ...] = (),
        findings: str = "",
        failure: str = "",
    ) -> Checkpoint:
        """Commit the epic's current artifact state with a transition record.

        Args:
            epic: Epic being checkpointed.
            outcome: Transition kind.
            summary: Commit subject text.
            phase: Phase that was just processed.
            next_phase: Phase the run resumes at.
            rounds: Round counters per loop group after the transition.
            findings: Findings payload consumed by this transition.
            failure: FailureKind value for FAILED checkpoints.

        Returns:
            The recorded Checkpoint.

        Raises:
            CheckpointFailure: If the store could not record the transition.
        """
        files = self.epic_files(epic.epic_id)
        message = format_checkpoint_message(
            epic.epic_id,
            outcome,
            summary,
            phase=phase,
            next_phase=next_phase,
            rounds=rounds,
            findings=findings,
            failure=failure,
        )
        try:
            checkpoint_id = self._checkpoint_store.commit(epic.epic_id, files, message)
        except CheckpointFailure:
            raise
        except OSError as e:
            raise CheckpointFailure(
                f"Epic {epic.epic_id}: could not record {outcome.value} checkpoint: {e}"
            ) from e

        logger.debug(
            "Epic %s: checkpoint %s (%s, next=%s)",
            epic.epic_id,
            checkpoint_id,
            outcome.value,
            next_phase,
        )
        return parse_checkpoint_message(checkpoint_id, message, files)

    def history(self, epic_id: str) -> list[str]:
        """Checkpoint ids for an epic, oldest first."""
        return self._checkpoint_store.history(epic_id)

    def records(self, epic_id: str) -> list[Checkpoint]:
        """Full checkpoint records for an epic, oldest first."""
        return [
            self._checkpoint_store.get_checkpoint(checkpoint_id)
            for checkpoint_id in self._checkpoint_store.history(epic_id)
        ]

    def claim(self, epic_id: str, run_id: str) -> None:
        """
        Take the epic's run lock for ``run_id``.

        Raises:
            ConcurrentRunConflict: If another run, in any process, holds it
        """
        self._checkpoint_store.claim(epic_id, run_id)
        logger.debug("Epic %s: run lock taken by %s", epic_id, run_id)

    def release(self, epic_id: str, run_id: str) -> None:
        self._checkpoint_store.release(epic_id, run_id)
