"""
Phase definitions: the ordered catalogue an epic traverses.

Each phase declares the skill it invokes, the artifact holding its markers,
the artifacts it must produce, and its retry class. Verify phases name the
loop phase they may send the run back to; that is the only non-linear edge.
"""

from dataclasses import dataclass, replace

from epicpilot.domain import markers
from epicpilot.domain.models import ArtifactName, RetryClass

SPECIFY = "specify"
CLARIFY = "clarify"
CLARIFY_VERIFY = "clarify-verify"
PLAN = "plan"
TASKS = "tasks"
ANALYZE = "analyze"
ANALYZE_VERIFY = "analyze-verify"
IMPLEMENT = "implement"
REVIEW = "review"
CRYSTALLIZE = "crystallize"

DEFAULT_MAX_ROUNDS = 5


@dataclass(frozen=True)
class PhaseDefinition:
    """Single pipeline step."""

    name: str
    skill: str  # Skill the agent gateway is asked to run
    retry: RetryClass = RetryClass.SINGLE_SHOT
    max_rounds: int = 1
    marker_artifact: ArtifactName | None = None  # Holds done/findings markers
    produces: tuple[ArtifactName, ...] = ()  # Must exist after invocation
    reads: tuple[ArtifactName, ...] = ()  # Paths handed to the agent
    done_marker: str | None = None
    findings_marker: str | None = None
    loop_group: str | None = None  # Shared round budget for loop + verify
    loops_back_to: str | None = None  # Verify phases only

    @property
    def is_loop(self) -> bool:
        return self.retry is RetryClass.BOUNDED_LOOP

    @property
    def is_verify(self) -> bool:
        return self.loops_back_to is not None


_CONTEXT_DOCS = (ArtifactName.CONSTITUTION, ArtifactName.ARCHITECTURE)

PIPELINE: tuple[PhaseDefinition, ...] = (
    PhaseDefinition(
        name=SPECIFY,
        skill="speckit.specify",
        produces=(ArtifactName.SPEC,),
        reads=_CONTEXT_DOCS,
    ),
    PhaseDefinition(
        name=CLARIFY,
        skill="speckit.clarify",
        retry=RetryClass.BOUNDED_LOOP,
        max_rounds=DEFAULT_MAX_ROUNDS,
        marker_artifact=ArtifactName.SPEC,
        produces=(ArtifactName.SPEC,),
        reads=(*_CONTEXT_DOCS, ArtifactName.SPEC),
        done_marker=markers.CLARIFY_COMPLETE,
        findings_marker=markers.VERIFY_FINDINGS,
        loop_group=CLARIFY,
    ),
    PhaseDefinition(
        name=CLARIFY_VERIFY,
        skill="epicpilot.clarify-verify",
        marker_artifact=ArtifactName.SPEC,
        produces=(ArtifactName.SPEC,),
        reads=(*_CONTEXT_DOCS, ArtifactName.SPEC),
        done_marker=markers.CLARIFY_VERIFIED,
        findings_marker=markers.VERIFY_FINDINGS,
        loop_group=CLARIFY,
        loops_back_to=CLARIFY,
    ),
    PhaseDefinition(
        name=PLAN,
        skill="speckit.plan",
        produces=(ArtifactName.PLAN,),
        reads=(*_CONTEXT_DOCS, ArtifactName.SPEC),
    ),
    PhaseDefinition(
        name=TASKS,
        skill="speckit.tasks",
        produces=(ArtifactName.TASKS,),
        reads=(ArtifactName.SPEC, ArtifactName.PLAN),
    ),
    PhaseDefinition(
        name=ANALYZE,
        skill="speckit.analyze",
        retry=RetryClass.BOUNDED_LOOP,
        max_rounds=DEFAULT_MAX_ROUNDS,
        marker_artifact=ArtifactName.TASKS,
        produces=(ArtifactName.TASKS,),
        reads=(*_CONTEXT_DOCS, ArtifactName.SPEC, ArtifactName.PLAN, ArtifactName.TASKS),
        done_marker=markers.ANALYZED,
        findings_marker=markers.ANALYZE_FINDINGS,
        loop_group=ANALYZE,
    ),
    PhaseDefinition(
        name=ANALYZE_VERIFY,
        skill="speckit.analyze",
        marker_artifact=ArtifactName.TASKS,
        produces=(ArtifactName.TASKS,),
        reads=(*_CONTEXT_DOCS, ArtifactName.SPEC, ArtifactName.PLAN, ArtifactName.TASKS),
        done_marker=markers.ANALYZE_VERIFIED,
        findings_marker=markers.ANALYZE_FINDINGS,
        loop_group=ANALYZE,
        loops_back_to=ANALYZE,
    ),
    PhaseDefinition(
        name=IMPLEMENT,
        skill="speckit.implement",
        reads=(*_CONTEXT_DOCS, ArtifactName.SPEC, ArtifactName.PLAN, ArtifactName.TASKS),
    ),
    PhaseDefinition(
        name=REVIEW,
        skill="epicpilot.review",
        reads=(*_CONTEXT_DOCS, ArtifactName.SPEC, ArtifactName.TASKS),
    ),
    PhaseDefinition(
        name=CRYSTALLIZE,
        skill="epicpilot.crystallize",
        reads=_CONTEXT_DOCS,
    ),
)


def with_max_rounds(
    phases: tuple[PhaseDefinition, ...], max_rounds: int
) -> tuple[PhaseDefinition, ...]:
    """Copy of the table with every bounded-loop ceiling set to ``max_rounds``."""
    if max_rounds < 1:
        raise ValueError(f"max_rounds must be at least 1, got {max_rounds}")
    return tuple(
        replace(phase, max_rounds=max_rounds) if phase.is_loop else phase
        for phase in phases
    )


def get_phase(phases: tuple[PhaseDefinition, ...], name: str) -> PhaseDefinition:
    """
    Look up a phase by name.

    Raises:
        KeyError: If no phase has that name
    """
    for phase in phases:
        if phase.name == name:
            return phase
    raise KeyError(f"Unknown phase: {name}")


def first_phase(phases: tuple[PhaseDefinition, ...]) -> PhaseDefinition:
    return phases[0]


def next_phase(
    phases: tuple[PhaseDefinition, ...], name: str
) -> PhaseDefinition | None:
    """Phase following ``name``, or None after the last one."""
    names = [phase.name for phase in phases]
    index = names.index(name)
    if index + 1 < len(phases):
        return phases[index + 1]
    return None


def loop_phase_of_group(
    phases: tuple[PhaseDefinition, ...], group: str
) -> PhaseDefinition:
    """The bounded-loop phase whose round counter a group shares."""
    for phase in phases:
        if phase.loop_group == group and phase.is_loop:
            return phase
    raise KeyError(f"No bounded-loop phase in group: {group}")
