"""
Run state recovery from durable artifacts.

There is no separate state store: the phase pointer and round counters are
rebuilt from the checkpoint history, then reconciled against the markers
present in the artifacts (markers are authoritative for loop phases).
"""

from dataclasses import replace

from epicpilot.domain import markers
from epicpilot.domain.interfaces import ArtifactStoreInterface
from epicpilot.domain.models import (
    Checkpoint,
    CheckpointOutcome,
    FailureKind,
    RunFailure,
    RunState,
    RunStatus,
)
from epicpilot.domain.phases import PhaseDefinition, get_phase, next_phase


def state_from_checkpoint(checkpoint: Checkpoint) -> RunState:
    """Run state implied by a single checkpoint record."""
    base = RunState(
        phase=checkpoint.next_phase,
        rounds=checkpoint.rounds,
        last_checkpoint_id=checkpoint.checkpoint_id,
    )

    if checkpoint.outcome is CheckpointOutcome.COMPLETED:
        return replace(base, phase=None, status=RunStatus.COMPLETED)

    if checkpoint.outcome is CheckpointOutcome.CANCELLED:
        return replace(
            base,
            status=RunStatus.FAILED,
            failure=RunFailure(FailureKind.CANCELLED, checkpoint.next_phase),
        )

    if checkpoint.outcome is CheckpointOutcome.FAILED:
        kind = (
            FailureKind(checkpoint.failure)
            if checkpoint.failure
            else FailureKind.AGENT_INVOCATION
        )
        return replace(
            base,
            status=RunStatus.FAILED,
            failure=RunFailure(kind, checkpoint.phase),
            feedback=checkpoint.findings,
        )

    # STARTED / ADVANCED / RETRY / LOOP_BACK: the run was mid-flight
    return replace(base, status=RunStatus.IN_PROGRESS, feedback=checkpoint.findings)


def recover_state(
    epic_id: str,
    phases: tuple[PhaseDefinition, ...],
    store: ArtifactStoreInterface,
    history: list[Checkpoint],
) -> RunState:
    """
    Rebuild run state from the checkpoint history and artifact markers.

    Args:
        epic_id: Epic whose state is recovered
        phases: Phase table the run uses
        store: Artifact store holding the epic's artifacts
        history: The epic's checkpoints, oldest first

    Returns:
        The state as of the last checkpoint
    """
    if not history:
        return RunState(phase=phases[0].name, status=RunStatus.PENDING)

    state = state_from_checkpoint(history[-1])
    if state.status is not RunStatus.IN_PROGRESS or state.phase is None:
        return state
    return _reconcile_markers(epic_id, phases, store, state)


def _reconcile_markers(
    epic_id: str,
    phases: tuple[PhaseDefinition, ...],
    store: ArtifactStoreInterface,
    state: RunState,
) -> RunState:
    """
    Advance past a loop phase whose done marker is already present.

    Covers a crash after the agent signalled completion but before the
    orchestrator committed the transition.
    """
    phase = get_phase(phases, state.phase)
    if not phase.is_loop or phase.marker_artifact is None:
        return state
    if not store.exists(epic_id, phase.marker_artifact):
        return state

    text = store.read_artifact(epic_id, phase.marker_artifact)
    done = markers.has_marker(text, phase.done_marker)
    findings = phase.findings_marker and markers.has_marker(
        text, phase.findings_marker
    )
    if not done or findings:
        return state

    used = state.rounds_for(phase.loop_group)
    following = next_phase(phases, phase.name)
    state = state.with_rounds(phase.loop_group, min(used + 1, phase.max_rounds))
    return replace(
        state,
        phase=following.name if following else None,
        feedback="",
    )


def prepare_resume(
    state: RunState, phases: tuple[PhaseDefinition, ...]
) -> RunState:
    """
    State a fresh run starts from.

    A run that failed with RetryExhausted gets a fresh budget for the
    exhausted loop group; everything else resumes exactly where it stopped.
    """
    if state.status is RunStatus.COMPLETED:
        return state

    if (
        state.failure is not None
        and state.failure.kind is FailureKind.RETRY_EXHAUSTED
        and state.failure.phase is not None
    ):
        group = get_phase(phases, state.failure.phase).loop_group
        if group is not None:
            state = state.with_rounds(group, 0)

    return replace(state, status=RunStatus.IN_PROGRESS, failure=None)
