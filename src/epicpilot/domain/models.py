"""
Domain models for the epic pipeline.

Pure data structures. All models are immutable (frozen dataclasses); state
changes produce new instances via dataclasses.replace.
"""

import re
from dataclasses import dataclass, field, replace
from enum import Enum

EPIC_ID_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")


# =============================================================================
# EPIC AND ARTIFACTS
# =============================================================================


@dataclass(frozen=True)
class Epic:
    """A unit of scoped work that traverses the phase pipeline once."""

    epic_id: str  # Namespaces artifact paths and checkpoint trailers
    title: str
    epic_file: str | None = None  # Source description read by the Specify phase

    def __post_init__(self) -> None:
        if not EPIC_ID_PATTERN.match(self.epic_id):
            raise ValueError(f"Invalid epic id: {self.epic_id!r}")


class ArtifactName(Enum):
    """Named text resources a phase may read or mutate."""

    SPEC = "spec.md"
    PLAN = "plan.md"
    TASKS = "tasks.md"
    # Shared, read-only context documents (not scoped to one epic)
    CONSTITUTION = "constitution.md"
    ARCHITECTURE = "architecture.md"

    @property
    def is_context_document(self) -> bool:
        return self in (ArtifactName.CONSTITUTION, ArtifactName.ARCHITECTURE)


EPIC_ARTIFACTS: tuple[ArtifactName, ...] = (
    ArtifactName.SPEC,
    ArtifactName.PLAN,
    ArtifactName.TASKS,
)


class MarkerOp(Enum):
    """Edit applied by ArtifactStoreInterface.write_marker."""

    SET = "set"
    CLEAR = "clear"


# =============================================================================
# PHASES
# =============================================================================


class RetryClass(Enum):
    """How the orchestrator treats a phase that did not signal completion."""

    SINGLE_SHOT = "single-shot"  # Advance after one successful invocation
    BOUNDED_LOOP = "bounded-loop"  # Re-invoke until done marker, up to max


# =============================================================================
# AGENT
# =============================================================================


@dataclass(frozen=True)
class AgentReport:
    """Free-text report returned by the agent gateway."""

    report_text: str
    skill: str = ""
    duration_seconds: float = 0.0


# =============================================================================
# CHECKPOINTS
# =============================================================================


class CheckpointOutcome(Enum):
    """Transition recorded by a checkpoint."""

    STARTED = "started"  # Run entered (or re-entered) the pipeline
    ADVANCED = "advanced"  # Phase done, pointer moved forward
    RETRY = "retry"  # Loop phase needs another round
    LOOP_BACK = "loop-back"  # Verify phase sent the run back to its loop phase
    COMPLETED = "completed"  # Last phase done
    FAILED = "failed"  # Fatal error
    CANCELLED = "cancelled"  # Operator cancelled between phases


@dataclass(frozen=True)
class Checkpoint:
    """
    Immutable record of one transition, paired with the artifact state.

    Checkpoints are append-only and totally ordered per epic.
    """

    checkpoint_id: str
    epic_id: str
    outcome: CheckpointOutcome
    phase: str | None  # Phase that was just processed
    next_phase: str | None  # Phase the run resumes at (None when completed)
    rounds: tuple[tuple[str, int], ...] = ()  # (loop group, rounds used)
    message: str = ""
    files: tuple[str, ...] = ()
    findings: str = ""  # Consumed findings payload, fed to the next round
    failure: str = ""  # FailureKind value for FAILED checkpoints
    created_at: str = ""  # ISO timestamp


# =============================================================================
# RUN STATE
# =============================================================================


class RunStatus(Enum):
    """Terminal status of a pipeline run."""

    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    FAILED = "failed"


class FailureKind(Enum):
    """Why a run ended in FAILED."""

    AGENT_INVOCATION = "agent-invocation"
    RETRY_EXHAUSTED = "retry-exhausted"
    MISSING_ARTIFACT = "missing-artifact"
    CHECKPOINT_FAILURE = "checkpoint-failure"
    CANCELLED = "cancelled"
    INTERNAL_ERROR = "internal-error"  # Unexpected exception, run left mid-phase


@dataclass(frozen=True)
class RunFailure:
    """Failure detail reported to the operator."""

    kind: FailureKind
    phase: str | None
    message: str = ""


@dataclass(frozen=True)
class RunState:
    """
    Reconstructible state of a pipeline run.

    Everything here can be derived from artifact markers and the checkpoint
    history, so a crashed orchestrator resumes from the last checkpoint.
    """

    phase: str | None  # Next phase to run (None once completed)
    rounds: tuple[tuple[str, int], ...] = ()
    status: RunStatus = RunStatus.PENDING
    failure: RunFailure | None = None
    feedback: str = ""  # Findings carried into the next invocation
    last_checkpoint_id: str | None = None

    def rounds_for(self, group: str | None) -> int:
        if group is None:
            return 0
        return dict(self.rounds).get(group, 0)

    def with_rounds(self, group: str, count: int) -> "RunState":
        rounds = dict(self.rounds)
        rounds[group] = count
        return replace(self, rounds=tuple(sorted(rounds.items())))


@dataclass(frozen=True)
class RunReport:
    """Operator-facing status of a run: phase, attempt and state."""

    run_id: str
    epic_id: str
    phase: str | None
    attempt: int
    state: RunStatus
    failure: RunFailure | None = None
    last_checkpoint_id: str | None = None


# =============================================================================
# CONFIGURATION
# =============================================================================


@dataclass(frozen=True)
class PipelineConfig:
    """
    Immutable configuration passed to the orchestrator at run start.

    Replaces ambient shell state (base branch, test and lint commands).
    """

    repo_root: str = "."
    specs_dir: str = "specs"
    base_branch: str = "main"
    test_cmd: str = ""
    lint_cmd: str = ""
    work_dir: str = "."
    agent_command: tuple[str, ...] = field(default=("claude", "-p"))
    agent_timeout: float = 1800.0
    max_rounds: int = 5
    gateway: str = "ClaudeCliGateway"
    checkpoint_store: str = "git"  # "git" or "filesystem"
    state_dir: str = ".epicpilot"  # Checkpoints and run locks, relative to repo_root
