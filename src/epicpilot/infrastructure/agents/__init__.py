"""
Agent gateway adapters.
"""

from epicpilot.infrastructure.agents.claude_cli import ClaudeCliGateway
from epicpilot.infrastructure.agents.mock import ScriptedAgentGateway

__all__ = [
    "ClaudeCliGateway",
    "ScriptedAgentGateway",
]
