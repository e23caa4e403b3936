"""
Application layer for the epic pipeline.

Contains orchestration logic that coordinates domain objects.
"""

from epicpilot.application.committer import CheckpointCommitter
from epicpilot.application.orchestrator import EpicOrchestrator
from epicpilot.application.run_control import PipelineRun, RunController

__all__ = [
    "CheckpointCommitter",
    "EpicOrchestrator",
    "PipelineRun",
    "RunController",
]
