"""
EpicOrchestrator: drives one epic through the phase pipeline.

Runs phases sequentially, applies the bounded-loop retry policy, inspects
artifact markers after every invocation and checkpoints every transition
before building the next phase context.
"""

import logging
from collections.abc import Callable
from dataclasses import replace

from epicpilot.application.committer import CheckpointCommitter
from epicpilot.domain import markers
from epicpilot.domain.context import build_phase_context
from epicpilot.domain.exceptions import (
    AgentInvocationError,
    CheckpointFailure,
    MarkerConflict,
    MissingArtifact,
    RetryExhausted,
)
from epicpilot.domain.interfaces import (
    AgentGatewayInterface,
    ArtifactStoreInterface,
    CheckpointStoreInterface,
)
from epicpilot.domain.models import (
    CheckpointOutcome,
    Epic,
    FailureKind,
    MarkerOp,
    PipelineConfig,
    RunFailure,
    RunState,
    RunStatus,
)
from epicpilot.domain.phases import (
    PIPELINE,
    PhaseDefinition,
    get_phase,
    loop_phase_of_group,
    next_phase,
    with_max_rounds,
)
from epicpilot.domain.recovery import prepare_resume, recover_state

logger = logging.getLogger(__name__)

_FAILURE_KINDS: tuple[tuple[type[Exception], FailureKind], ...] = (
    (RetryExhausted, FailureKind.RETRY_EXHAUSTED),
    (MissingArtifact, FailureKind.MISSING_ARTIFACT),
    (AgentInvocationError, FailureKind.AGENT_INVOCATION),
)


class EpicOrchestrator:
    """
    State machine for a single epic: Pending -> Running(phase) -> Completed | Failed.

    Holds no run state of its own; every execute() call starts from the
    state recovered from artifacts and checkpoints, so instances can be
    shared across runs for different epics.
    """

    def __init__(
        self,
        gateway: AgentGatewayInterface,
        artifact_store: ArtifactStoreInterface,
        checkpoint_store: CheckpointStoreInterface,
        config: PipelineConfig | None = None,
        phases: tuple[PhaseDefinition, ...] = PIPELINE,
    ):
        """
        Args:
            gateway: Agent invoked once per phase round
            artifact_store: Epic-scoped artifacts the agent mutates
            checkpoint_store: Durable, ordered transition history
            config: Immutable run configuration (defaults if None)
            phases: Ordered phase table
        """
        self._config = config or PipelineConfig()
        self._gateway = gateway
        self._store = artifact_store
        self._committer = CheckpointCommitter(checkpoint_store, artifact_store)
        self._phases = with_max_rounds(phases, self._config.max_rounds)

    @property
    def phases(self) -> tuple[PhaseDefinition, ...]:
        return self._phases

    @property
    def committer(self) -> CheckpointCommitter:
        return self._committer

    def recover(self, epic_id: str) -> RunState:
        """Rebuild an epic's state from artifacts and checkpoint history."""
        return recover_state(
            epic_id, self._phases, self._store, self._committer.records(epic_id)
        )

    def attempt_of(self, state: RunState) -> int:
        """Invocation count reported for the phase the state points at."""
        if state.phase is None:
            return 0
        group = get_phase(self._phases, state.phase).loop_group
        if group is not None:
            return state.rounds_for(group)
        return 0 if state.status is RunStatus.PENDING else 1

    def execute(
        self,
        epic: Epic,
        state: RunState | None = None,
        should_cancel: Callable[[], bool] | None = None,
        on_transition: Callable[[RunState], None] | None = None,
    ) -> RunState:
        """
        Run the epic until completion, failure or cancellation.

        Args:
            epic: The epic to drive
            state: Starting state (recovered from storage if None)
            should_cancel: Polled between phases; True cancels the run
            on_transition: Called with the new state after every checkpoint

        Returns:
            The final RunState (COMPLETED or FAILED with failure detail)
        """
        if state is None:
            try:
                state = self.recover(epic.epic_id)
            except CheckpointFailure as e:
                return self._checkpoint_failed(epic, RunState(phase=None), None, e)
        state = prepare_resume(state, self._phases)
        notify = on_transition or (lambda _state: None)

        if state.status is RunStatus.COMPLETED:
            logger.info("Epic %s: already completed", epic.epic_id)
            notify(state)
            return state

        try:
            start = self._committer.checkpoint(
                epic,
                CheckpointOutcome.STARTED,
                f"start pipeline at {state.phase}",
                phase=None,
                next_phase=state.phase,
                rounds=state.rounds,
                findings=state.feedback,
            )
        except CheckpointFailure as e:
            return self._checkpoint_failed(epic, state, state.phase, e)
        state = replace(state, last_checkpoint_id=start.checkpoint_id)
        logger.info("Epic %s: pipeline started at %s", epic.epic_id, state.phase)
        notify(state)

        while state.phase is not None:
            if should_cancel is not None and should_cancel():
                return self._cancel(epic, state)

            phase = get_phase(self._phases, state.phase)
            try:
                state = self._run_phase(epic, phase, state)
            except CheckpointFailure as e:
                return self._checkpoint_failed(epic, state, phase.name, e)
            except (AgentInvocationError, RetryExhausted, MissingArtifact) as e:
                return self._fail(epic, phase, state, e)
            notify(state)

        logger.info("Epic %s: pipeline completed", epic.epic_id)
        return state

    # -------------------------------------------------------------------------
    # Phase execution
    # -------------------------------------------------------------------------

    def _run_phase(
        self, epic: Epic, phase: PhaseDefinition, state: RunState
    ) -> RunState:
        """Invoke one phase round and checkpoint the resulting transition."""
        if phase.is_loop:
            used = state.rounds_for(phase.loop_group)
            if used >= phase.max_rounds:
                raise RetryExhausted(phase.name, phase.max_rounds)

        context = build_phase_context(epic, phase, state, self._config, self._store)
        logger.info(
            "Epic %s: running %s (round %d/%d)",
            epic.epic_id,
            phase.name,
            context.round,
            context.max_rounds,
        )
        report = self._gateway.invoke(phase.skill, context.render())
        logger.debug(
            "Epic %s: %s reported %d characters",
            epic.epic_id,
            phase.name,
            len(report.report_text),
        )

        self._require_artifacts(epic, phase)

        if phase.is_loop:
            state = state.with_rounds(phase.loop_group, used + 1)
            return self._after_loop_round(epic, phase, state)
        if phase.is_verify:
            return self._after_verify(epic, phase, state)
        return self._advance(epic, phase, state)

    def _require_artifacts(self, epic: Epic, phase: PhaseDefinition) -> None:
        for name in phase.produces:
            if not self._store.exists(epic.epic_id, name):
                raise MissingArtifact(epic.epic_id, name.value)

    def _after_loop_round(
        self, epic: Epic, phase: PhaseDefinition, state: RunState
    ) -> RunState:
        """Advance if the done marker is present, otherwise record a retry."""
        artifact = phase.marker_artifact
        text = self._store.read_artifact(epic.epic_id, artifact)
        done = markers.has_marker(text, phase.done_marker)
        findings = self._consume_findings(
            epic, phase, text, (phase.done_marker,) if done else ()
        )

        if done and findings is None:
            # Normalize stray duplicates to a single marker
            self._store.write_marker(
                epic.epic_id, artifact, phase.done_marker, MarkerOp.SET
            )
            return self._advance(epic, phase, state)

        used = state.rounds_for(phase.loop_group)
        logger.info(
            "Epic %s: %s round %d/%d did not converge",
            epic.epic_id,
            phase.name,
            used,
            phase.max_rounds,
        )
        checkpoint = self._committer.checkpoint(
            epic,
            CheckpointOutcome.RETRY,
            f"{phase.name} round {used} needs another round",
            phase=phase.name,
            next_phase=phase.name,
            rounds=state.rounds,
            findings=findings or "",
        )
        return replace(
            state,
            feedback=findings or "",
            last_checkpoint_id=checkpoint.checkpoint_id,
        )

    def _after_verify(
        self, epic: Epic, phase: PhaseDefinition, state: RunState
    ) -> RunState:
        """Advance, or loop back when the loop phase's done marker was revoked."""
        loop = loop_phase_of_group(self._phases, phase.loop_group)
        artifact = phase.marker_artifact
        text = self._store.read_artifact(epic.epic_id, artifact)
        loop_done = markers.has_marker(text, loop.done_marker)
        present = tuple(
            marker
            for marker in (loop.done_marker, phase.done_marker)
            if markers.has_marker(text, marker)
        )
        findings = self._consume_findings(epic, phase, text, present)

        if findings is None and loop_done:
            self._store.write_marker(
                epic.epic_id, artifact, phase.done_marker, MarkerOp.SET
            )
            return self._advance(epic, phase, state)

        for marker in (loop.done_marker, phase.done_marker):
            self._store.write_marker(epic.epic_id, artifact, marker, MarkerOp.CLEAR)

        logger.info(
            "Epic %s: %s found issues, returning to %s (%d/%d rounds used)",
            epic.epic_id,
            phase.name,
            loop.name,
            state.rounds_for(loop.loop_group),
            loop.max_rounds,
        )
        checkpoint = self._committer.checkpoint(
            epic,
            CheckpointOutcome.LOOP_BACK,
            f"{phase.name} found issues, returning to {loop.name}",
            phase=phase.name,
            next_phase=loop.name,
            rounds=state.rounds,
            findings=findings or "",
        )
        return replace(
            state,
            phase=loop.name,
            feedback=findings or "",
            last_checkpoint_id=checkpoint.checkpoint_id,
        )

    def _consume_findings(
        self,
        epic: Epic,
        phase: PhaseDefinition,
        text: str,
        done_markers: tuple[str, ...],
    ) -> str | None:
        """
        Take the findings marker out of the artifact and return its payload.

        Done markers found next to findings are a conflict: it is logged and
        they are cleared, so the findings win.

        Args:
            done_markers: Done markers present in the artifact

        Returns:
            The payload ("" for a bare marker), or None if no findings marker
        """
        if phase.findings_marker is None:
            return None
        payload = markers.marker_payload(text, phase.findings_marker)
        if payload is None:
            return None

        if done_markers:
            conflict = MarkerConflict(
                phase.marker_artifact.value, (*done_markers, phase.findings_marker)
            )
            logger.warning(
                "Epic %s: %s; treating findings as authoritative", epic.epic_id, conflict
            )
        for marker in (phase.findings_marker, *done_markers):
            self._store.write_marker(
                epic.epic_id, phase.marker_artifact, marker, MarkerOp.CLEAR
            )
        return payload

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    def _advance(
        self, epic: Epic, phase: PhaseDefinition, state: RunState
    ) -> RunState:
        following = next_phase(self._phases, phase.name)
        if following is None:
            checkpoint = self._committer.checkpoint(
                epic,
                CheckpointOutcome.COMPLETED,
                f"{phase.name} complete, pipeline finished",
                phase=phase.name,
                next_phase=None,
                rounds=state.rounds,
            )
            return replace(
                state,
                phase=None,
                status=RunStatus.COMPLETED,
                feedback="",
                last_checkpoint_id=checkpoint.checkpoint_id,
            )

        checkpoint = self._committer.checkpoint(
            epic,
            CheckpointOutcome.ADVANCED,
            f"{phase.name} complete",
            phase=phase.name,
            next_phase=following.name,
            rounds=state.rounds,
        )
        logger.info(
            "Epic %s: %s complete, advancing to %s",
            epic.epic_id,
            phase.name,
            following.name,
        )
        return replace(
            state,
            phase=following.name,
            feedback="",
            last_checkpoint_id=checkpoint.checkpoint_id,
        )

    def _fail(
        self,
        epic: Epic,
        phase: PhaseDefinition,
        state: RunState,
        error: Exception,
    ) -> RunState:
        """Record a fatal error and end the run."""
        kind = next(k for exc, k in _FAILURE_KINDS if isinstance(error, exc))
        failed_phase = error.phase if isinstance(error, RetryExhausted) else phase.name
        failure = RunFailure(kind, failed_phase, str(error))
        logger.error("Epic %s: %s failed: %s", epic.epic_id, failed_phase, error)

        state = replace(state, status=RunStatus.FAILED, failure=failure)
        try:
            checkpoint = self._committer.checkpoint(
                epic,
                CheckpointOutcome.FAILED,
                f"{failed_phase} failed ({kind.value})",
                phase=failed_phase,
                next_phase=failed_phase,
                rounds=state.rounds,
                findings=state.feedback,
                failure=kind.value,
            )
        except CheckpointFailure as e:
            logger.error(
                "Epic %s: failure could not be checkpointed: %s", epic.epic_id, e
            )
            return state
        return replace(state, last_checkpoint_id=checkpoint.checkpoint_id)

    def _cancel(self, epic: Epic, state: RunState) -> RunState:
        """Stop between phases, recording the state at cancellation."""
        logger.warning("Epic %s: run cancelled before %s", epic.epic_id, state.phase)
        state = replace(
            state,
            status=RunStatus.FAILED,
            failure=RunFailure(FailureKind.CANCELLED, state.phase, "Cancelled"),
        )
        try:
            checkpoint = self._committer.checkpoint(
                epic,
                CheckpointOutcome.CANCELLED,
                f"cancelled before {state.phase}",
                phase=None,
                next_phase=state.phase,
                rounds=state.rounds,
                findings=state.feedback,
            )
        except CheckpointFailure as e:
            return self._checkpoint_failed(epic, state, state.phase, e)
        return replace(state, last_checkpoint_id=checkpoint.checkpoint_id)

    def _checkpoint_failed(
        self,
        epic: Epic,
        state: RunState,
        phase: str | None,
        error: CheckpointFailure,
    ) -> RunState:
        """End the run without further writes; the last checkpoint stands."""
        logger.error("Epic %s: checkpoint failed: %s", epic.epic_id, error)
        return replace(
            state,
            status=RunStatus.FAILED,
            failure=RunFailure(FailureKind.CHECKPOINT_FAILURE, phase, str(error)),
        )
