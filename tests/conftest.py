"""Shared pytest fixtures for epicpilot tests."""

from collections.abc import Callable

import pytest

from epicpilot.application.orchestrator import EpicOrchestrator
from epicpilot.domain import markers
from epicpilot.domain.models import ArtifactName, Epic, PipelineConfig
from epicpilot.infrastructure.agents.mock import ScriptedAgentGateway
from epicpilot.infrastructure.persistence.checkpoint import InMemoryCheckpointStore
from epicpilot.infrastructure.persistence.memory import InMemoryArtifactStore

EPIC_ID = "042"


def raw_marker(name: str, payload: str = "") -> str:
    """Marker text as an agent would type it into a document."""
    if payload:
        return f"\n<!-- {name}: {payload} -->\n"
    return f"\n<!-- {name} -->\n"


class ArtifactSteps:
    """
    Builds scripted agent steps that edit artifacts the way the real skills do.

    Every factory returns a callable accepted by ScriptedAgentGateway.
    """

    def __init__(self, store: InMemoryArtifactStore, epic_id: str = EPIC_ID):
        self._store = store
        self._epic_id = epic_id

    def write(self, name: ArtifactName, content: str) -> Callable[[str, str], str]:
        def step(_skill: str, _args: str) -> str:
            self._store.write_artifact(self._epic_id, name, content)
            return f"Wrote {name.value}"

        return step

    def append(self, name: ArtifactName, text: str) -> Callable[[str, str], str]:
        def step(_skill: str, _args: str) -> str:
            current = ""
            if self._store.exists(self._epic_id, name):
                current = self._store.read_artifact(self._epic_id, name)
            self._store.write_artifact(self._epic_id, name, current + text)
            return f"Updated {name.value}"

        return step

    def mark(
        self, name: ArtifactName, marker: str, payload: str = ""
    ) -> Callable[[str, str], str]:
        return self.append(name, raw_marker(marker, payload))

    def unmark(self, name: ArtifactName, marker: str) -> Callable[[str, str], str]:
        """Remove a marker, as a verify skill does when it revokes completion."""

        def step(_skill: str, _args: str) -> str:
            text = self._store.read_artifact(self._epic_id, name)
            self._store.write_artifact(self._epic_id, name, markers.clear_marker(text, marker))
            return f"Removed {marker} from {name.value}"

        return step

    def noop(self, report: str = "Nothing to change") -> Callable[[str, str], str]:
        def step(_skill: str, _args: str) -> str:
            return report

        return step

    def happy_script(self) -> dict[str, list]:
        """Steps for an epic that converges on the first round of every loop."""
        return {
            "speckit.specify": [self.write(ArtifactName.SPEC, "# Spec\n\nLogin flow.\n")],
            "speckit.clarify": [self.mark(ArtifactName.SPEC, "CLARIFY_COMPLETE")],
            "epicpilot.clarify-verify": [self.noop("All clarifications hold")],
            "speckit.plan": [self.write(ArtifactName.PLAN, "# Plan\n")],
            "speckit.tasks": [self.write(ArtifactName.TASKS, "# Tasks\n\n- [ ] T001\n")],
            # analyze, then analyze-verify (same skill)
            "speckit.analyze": [
                self.mark(ArtifactName.TASKS, "ANALYZED"),
                self.noop("No inconsistencies"),
            ],
            "speckit.implement": [self.noop("Implemented T001")],
            "epicpilot.review": [self.noop("Review clean")],
            "epicpilot.crystallize": [self.noop("Architecture notes updated")],
        }


@pytest.fixture
def epic() -> Epic:
    """Create a sample Epic for testing."""
    return Epic(epic_id=EPIC_ID, title="Add login", epic_file="docs/epics/042.md")


@pytest.fixture
def config() -> PipelineConfig:
    """Configuration with deterministic paths and validation commands."""
    return PipelineConfig(
        repo_root="/repo",
        base_branch="main",
        test_cmd="pytest -q",
        lint_cmd="ruff check .",
        work_dir="backend",
    )


@pytest.fixture
def artifact_store() -> InMemoryArtifactStore:
    """Create an in-memory artifact store."""
    return InMemoryArtifactStore()


@pytest.fixture
def checkpoint_store() -> InMemoryCheckpointStore:
    """Create an in-memory checkpoint store."""
    return InMemoryCheckpointStore()


@pytest.fixture
def steps(artifact_store: InMemoryArtifactStore) -> ArtifactSteps:
    """Agent step factories bound to the shared artifact store."""
    return ArtifactSteps(artifact_store)


@pytest.fixture
def make_orchestrator(
    artifact_store: InMemoryArtifactStore,
    checkpoint_store: InMemoryCheckpointStore,
    config: PipelineConfig,
) -> Callable[..., tuple[EpicOrchestrator, ScriptedAgentGateway]]:
    """Factory wiring an orchestrator to a scripted agent and in-memory stores."""

    def _make(
        script: dict[str, list], **config_overrides: object
    ) -> tuple[EpicOrchestrator, ScriptedAgentGateway]:
        from dataclasses import replace

        gateway = ScriptedAgentGateway(script)
        orchestrator = EpicOrchestrator(
            gateway,
            artifact_store,
            checkpoint_store,
            config=replace(config, **config_overrides),
        )
        return orchestrator, gateway

    return _make
