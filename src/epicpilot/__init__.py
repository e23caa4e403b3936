"""
epicpilot: phase orchestrator for agent-driven feature delivery.

Drives an epic through specify, clarify, plan, tasks, analyze, implement,
review and crystallize. The coding agent does the work; the orchestrator
decides which skill runs next from the markers the agent leaves in the
epic's artifacts, bounds the refinement loops, and checkpoints every
transition so a crashed run resumes where it stopped.

Example:
    from epicpilot import EpicOrchestrator, RunController
    from epicpilot.infrastructure import (
        ClaudeCliGateway,
        FilesystemArtifactStore,
        GitCheckpointStore,
    )

    orchestrator = EpicOrchestrator(
        ClaudeCliGateway(cwd="."),
        FilesystemArtifactStore("."),
        GitCheckpointStore("."),
    )
    with RunController(orchestrator) as runs:
        run_id = runs.start_run("042", "Add login")
        report = runs.wait(run_id)
"""

# Application layer (orchestration)
from epicpilot.application import (
    CheckpointCommitter,
    EpicOrchestrator,
    PipelineRun,
    RunController,
)
from epicpilot.config import load_config

# Domain exceptions
from epicpilot.domain.exceptions import (
    AgentInvocationError,
    AgentTimeout,
    AgentUnavailable,
    CheckpointFailure,
    ConcurrentRunConflict,
    MarkerConflict,
    MissingArtifact,
    PipelineError,
    RetryExhausted,
    UnknownRun,
)

# Domain interfaces (for type hints and custom adapters)
from epicpilot.domain.interfaces import (
    AgentGatewayInterface,
    ArtifactStoreInterface,
    CheckpointStoreInterface,
)
from epicpilot.domain.models import (
    AgentReport,
    ArtifactName,
    Checkpoint,
    CheckpointOutcome,
    Epic,
    FailureKind,
    PipelineConfig,
    RunFailure,
    RunReport,
    RunState,
    RunStatus,
)
from epicpilot.domain.phases import PIPELINE, PhaseDefinition

__version__ = "0.1.0"

__all__ = [
    # Version
    "__version__",
    # Application
    "CheckpointCommitter",
    "EpicOrchestrator",
    "PipelineRun",
    "RunController",
    "load_config",
    # Phases
    "PIPELINE",
    "PhaseDefinition",
    # Models
    "AgentReport",
    "ArtifactName",
    "Checkpoint",
    "CheckpointOutcome",
    "Epic",
    "FailureKind",
    "PipelineConfig",
    "RunFailure",
    "RunReport",
    "RunState",
    "RunStatus",
    # Interfaces
    "AgentGatewayInterface",
    "ArtifactStoreInterface",
    "CheckpointStoreInterface",
    # Exceptions
    "PipelineError",
    "AgentInvocationError",
    "AgentUnavailable",
    "AgentTimeout",
    "RetryExhausted",
    "MissingArtifact",
    "MarkerConflict",
    "ConcurrentRunConflict",
    "CheckpointFailure",
    "UnknownRun",
]
