"""
Infrastructure layer for the epic pipeline.

Contains adapters for external concerns (persistence, agents, registry).
"""

from epicpilot.infrastructure.agents import (
    ClaudeCliGateway,
    ScriptedAgentGateway,
)
from epicpilot.infrastructure.persistence import (
    FilesystemArtifactStore,
    FilesystemCheckpointStore,
    GitCheckpointStore,
    InMemoryArtifactStore,
    InMemoryCheckpointStore,
)
from epicpilot.infrastructure.registry import GatewayRegistry

__all__ = [
    # Persistence
    "InMemoryArtifactStore",
    "FilesystemArtifactStore",
    "InMemoryCheckpointStore",
    "FilesystemCheckpointStore",
    "GitCheckpointStore",
    # Agents
    "ClaudeCliGateway",
    "ScriptedAgentGateway",
    # Registry
    "GatewayRegistry",
]
