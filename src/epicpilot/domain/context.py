"""
Phase context: the structured input handed to the agent for one invocation.

Building a context is a pure function of the epic, the phase, the run state
and the configuration. Only paths are passed; artifact content is left for
the agent to read.
"""

from dataclasses import dataclass

from epicpilot.domain.interfaces import ArtifactStoreInterface
from epicpilot.domain.models import Epic, PipelineConfig, RunState
from epicpilot.domain.phases import PhaseDefinition


@dataclass(frozen=True)
class PhaseContext:
    """Immutable context for one agent invocation."""

    epic_id: str
    title: str
    phase: str
    round: int  # 1-based round within the loop group (1 for single-shot)
    max_rounds: int
    repo_root: str
    artifact_paths: tuple[tuple[str, str], ...]  # (artifact name, path)
    epic_file: str | None = None
    base_branch: str = "main"
    work_dir: str = "."
    test_cmd: str = ""
    lint_cmd: str = ""
    feedback: str = ""  # Findings from the previous round

    def render(self) -> str:
        """Render as the argument string passed to the skill."""
        parts = [
            f"# EPIC\n{self.epic_id}: {self.title}",
            f"# PHASE\n{self.phase} (round {self.round} of {self.max_rounds})",
            f"# REPOSITORY\nroot: {self.repo_root}\nbase branch: {self.base_branch}",
        ]
        if self.epic_file:
            parts.append(f"# EPIC FILE\n{self.epic_file}")

        if self.artifact_paths:
            lines = [f"{name}: {path}" for name, path in self.artifact_paths]
            parts.append("# ARTIFACTS\n" + "\n".join(lines))

        commands = []
        if self.test_cmd:
            commands.append(f"test: cd {self.work_dir} && {self.test_cmd}")
        if self.lint_cmd:
            commands.append(f"lint: cd {self.work_dir} && {self.lint_cmd}")
        if commands:
            parts.append("# VALIDATION\n" + "\n".join(commands))

        if self.feedback:
            parts.append(f"# FINDINGS FROM PREVIOUS ROUND\n{self.feedback}")

        return "\n\n".join(parts)


def build_phase_context(
    epic: Epic,
    phase: PhaseDefinition,
    state: RunState,
    config: PipelineConfig,
    store: ArtifactStoreInterface,
) -> PhaseContext:
    """Compose the context for the next invocation of ``phase``."""
    paths = []
    for name in (*phase.reads, *phase.produces):
        entry = (name.value, store.artifact_path(epic.epic_id, name))
        if entry not in paths:
            paths.append(entry)

    if phase.loop_group is not None:
        # Loop phases start a new round; verify phases run inside the current one
        used = state.rounds_for(phase.loop_group)
        current = used + 1 if phase.is_loop else max(used, 1)
    else:
        current = 1

    return PhaseContext(
        epic_id=epic.epic_id,
        title=epic.title,
        phase=phase.name,
        round=current,
        max_rounds=phase.max_rounds if phase.is_loop else 1,
        repo_root=config.repo_root,
        artifact_paths=tuple(paths),
        epic_file=epic.epic_file,
        base_branch=config.base_branch,
        work_dir=config.work_dir,
        test_cmd=config.test_cmd,
        lint_cmd=config.lint_cmd,
        feedback=state.feedback,
    )
