"""
Domain layer for the epic pipeline.

Contains the state-machine vocabulary with no external dependencies.
"""

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
    MarkerOp,
    PipelineConfig,
    RetryClass,
    RunFailure,
    RunReport,
    RunState,
    RunStatus,
)
from epicpilot.domain.phases import PIPELINE, PhaseDefinition

__all__ = [
    # Models
    "AgentReport",
    "ArtifactName",
    "Checkpoint",
    "CheckpointOutcome",
    "Epic",
    "FailureKind",
    "MarkerOp",
    "PipelineConfig",
    "RetryClass",
    "RunFailure",
    "RunReport",
    "RunState",
    "RunStatus",
    # Phases
    "PIPELINE",
    "PhaseDefinition",
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
