"""Tests for EpicOrchestrator: phase sequencing, bounded loops and failures."""

import logging
from collections.abc import Callable

import pytest

from epicpilot.application.orchestrator import EpicOrchestrator
from epicpilot.domain import markers
from epicpilot.domain.exceptions import AgentTimeout, AgentUnavailable, CheckpointFailure
from epicpilot.domain.models import (
    ArtifactName,
    CheckpointOutcome,
    Epic,
    FailureKind,
    RunState,
    RunStatus,
)
from epicpilot.infrastructure.agents.mock import ScriptedAgentGateway
from epicpilot.infrastructure.persistence.checkpoint import InMemoryCheckpointStore
from epicpilot.infrastructure.persistence.memory import InMemoryArtifactStore

MakeOrchestrator = Callable[..., tuple[EpicOrchestrator, ScriptedAgentGateway]]


def _outcomes(orchestrator: EpicOrchestrator, epic: Epic) -> list[CheckpointOutcome]:
    return [record.outcome for record in orchestrator.committer.records(epic.epic_id)]


class FailingCheckpointStore(InMemoryCheckpointStore):
    """Accepts a fixed number of commits, then fails."""

    def __init__(self, accept: int, error: Exception):
        super().__init__()
        self._accept = accept
        self._error = error

    def commit(self, epic_id: str, files: tuple[str, ...], message: str) -> str:
        if self._accept <= 0:
            raise self._error
        self._accept -= 1
        return super().commit(epic_id, files, message)


class TestHappyPath:
    """An epic that converges on the first round of each loop."""

    def test_runs_every_phase_once(
        self, epic: Epic, steps, make_orchestrator: MakeOrchestrator
    ) -> None:
        orchestrator, gateway = make_orchestrator(steps.happy_script())

        state = orchestrator.execute(epic)

        assert state.status is RunStatus.COMPLETED
        assert state.phase is None
        assert state.failure is None
        assert [skill for skill, _ in gateway.calls] == [
            "speckit.specify",
            "speckit.clarify",
            "epicpilot.clarify-verify",
            "speckit.plan",
            "speckit.tasks",
            "speckit.analyze",
            "speckit.analyze",
            "speckit.implement",
            "epicpilot.review",
            "epicpilot.crystallize",
        ]

    def test_checkpoints_every_transition(
        self, epic: Epic, steps, make_orchestrator: MakeOrchestrator
    ) -> None:
        orchestrator, _ = make_orchestrator(steps.happy_script())

        state = orchestrator.execute(epic)

        outcomes = _outcomes(orchestrator, epic)
        assert outcomes[0] is CheckpointOutcome.STARTED
        assert outcomes[1:-1] == [CheckpointOutcome.ADVANCED] * 9
        assert outcomes[-1] is CheckpointOutcome.COMPLETED
        assert state.last_checkpoint_id == orchestrator.committer.history(epic.epic_id)[-1]

    def test_verify_markers_set_by_orchestrator(
        self,
        epic: Epic,
        steps,
        make_orchestrator: MakeOrchestrator,
        artifact_store: InMemoryArtifactStore,
    ) -> None:
        orchestrator, _ = make_orchestrator(steps.happy_script())

        orchestrator.execute(epic)

        spec = artifact_store.read_artifact(epic.epic_id, ArtifactName.SPEC)
        tasks = artifact_store.read_artifact(epic.epic_id, ArtifactName.TASKS)
        assert markers.markers_present(spec) == (
            markers.CLARIFY_COMPLETE,
            markers.CLARIFY_VERIFIED,
        )
        assert markers.markers_present(tasks) == (
            markers.ANALYZED,
            markers.ANALYZE_VERIFIED,
        )

    def test_checkpoints_capture_epic_artifacts(
        self, epic: Epic, steps, make_orchestrator: MakeOrchestrator
    ) -> None:
        orchestrator, _ = make_orchestrator(steps.happy_script())

        orchestrator.execute(epic)

        last = orchestrator.committer.records(epic.epic_id)[-1]
        assert last.files == (
            "specs/042/spec.md",
            "specs/042/plan.md",
            "specs/042/tasks.md",
        )

    def test_each_phase_starts_after_a_checkpoint_pointing_at_it(
        self,
        epic: Epic,
        steps,
        make_orchestrator: MakeOrchestrator,
        checkpoint_store: InMemoryCheckpointStore,
    ) -> None:
        seen: list[str | None] = []

        def record_pointer(step):
            def wrapped(skill: str, args: str) -> str:
                last = checkpoint_store.history(epic.epic_id)[-1]
                seen.append(checkpoint_store.get_checkpoint(last).next_phase)
                return step(skill, args)

            return wrapped

        script = {
            skill: [record_pointer(step) for step in queue]
            for skill, queue in steps.happy_script().items()
        }
        orchestrator, _ = make_orchestrator(script)

        orchestrator.execute(epic)

        assert seen == [phase.name for phase in orchestrator.phases]

    def test_transitions_reported(
        self, epic: Epic, steps, make_orchestrator: MakeOrchestrator
    ) -> None:
        orchestrator, _ = make_orchestrator(steps.happy_script())
        states: list[RunState] = []

        orchestrator.execute(epic, on_transition=states.append)

        assert states[0].phase == "specify"
        assert states[0].status is RunStatus.IN_PROGRESS
        assert states[-1].status is RunStatus.COMPLETED
        assert len(states) == 11

    def test_context_passed_to_agent(
        self, epic: Epic, steps, make_orchestrator: MakeOrchestrator
    ) -> None:
        orchestrator, gateway = make_orchestrator(steps.happy_script())

        orchestrator.execute(epic)

        skill, args = gateway.calls[1]
        assert skill == "speckit.clarify"
        assert "# PHASE\nclarify (round 1 of 5)" in args
        assert "spec.md: specs/042/spec.md" in args
        assert "test: cd backend && pytest -q" in args

    def test_completed_epic_is_not_rerun(
        self, epic: Epic, steps, make_orchestrator: MakeOrchestrator
    ) -> None:
        orchestrator, _ = make_orchestrator(steps.happy_script())
        orchestrator.execute(epic)
        again, gateway = make_orchestrator({})

        state = again.execute(epic)

        assert state.status is RunStatus.COMPLETED
        assert gateway.call_count == 0


class TestClarifyLoop:
    """Bounded-loop semantics for Clarify and ClarifyVerify."""

    def test_zero_observations_advances_without_second_round(
        self, epic: Epic, steps, make_orchestrator: MakeOrchestrator
    ) -> None:
        """Scenario A."""
        orchestrator, gateway = make_orchestrator(steps.happy_script())

        orchestrator.execute(epic)

        assert gateway.calls_for("speckit.clarify") == 1
        records = orchestrator.committer.records(epic.epic_id)
        clarify = next(r for r in records if r.phase == "clarify")
        assert clarify.outcome is CheckpointOutcome.ADVANCED
        assert clarify.next_phase == "clarify-verify"
        assert clarify.rounds == (("clarify", 1),)

    def test_never_converging_fails_after_max_rounds(
        self, epic: Epic, steps, make_orchestrator: MakeOrchestrator
    ) -> None:
        """Scenario B."""
        script = steps.happy_script()
        script["speckit.clarify"] = [steps.noop(f"{n} open questions") for n in range(5, 0, -1)]
        orchestrator, gateway = make_orchestrator(script)

        state = orchestrator.execute(epic)

        assert gateway.calls_for("speckit.clarify") == 5
        assert state.status is RunStatus.FAILED
        assert state.failure is not None
        assert state.failure.kind is FailureKind.RETRY_EXHAUSTED
        assert state.failure.phase == "clarify"
        assert "did not converge in 5 rounds" in state.failure.message
        assert _outcomes(orchestrator, epic) == [
            CheckpointOutcome.STARTED,
            CheckpointOutcome.ADVANCED,
            *[CheckpointOutcome.RETRY] * 5,
            CheckpointOutcome.FAILED,
        ]
        assert gateway.calls_for("speckit.plan") == 0

    def test_rounds_numbered_in_context(
        self, epic: Epic, steps, make_orchestrator: MakeOrchestrator
    ) -> None:
        script = steps.happy_script()
        script["speckit.clarify"] = [
            steps.noop(),
            steps.noop(),
            steps.mark(ArtifactName.SPEC, markers.CLARIFY_COMPLETE),
        ]
        orchestrator, gateway = make_orchestrator(script)

        orchestrator.execute(epic)

        rounds = [args for skill, args in gateway.calls if skill == "speckit.clarify"]
        for number, args in enumerate(rounds, start=1):
            assert f"(round {number} of 5)" in args

    def test_verify_findings_loop_back_with_counter_carried(
        self,
        epic: Epic,
        steps,
        make_orchestrator: MakeOrchestrator,
        artifact_store: InMemoryArtifactStore,
    ) -> None:
        """Scenario C."""
        script = steps.happy_script()
        script["speckit.clarify"] = [
            steps.mark(ArtifactName.SPEC, markers.CLARIFY_COMPLETE),
            steps.mark(ArtifactName.SPEC, markers.CLARIFY_COMPLETE),
        ]
        script["epicpilot.clarify-verify"] = [
            steps.mark(ArtifactName.SPEC, markers.VERIFY_FINDINGS, "missing error states"),
            steps.noop(),
        ]
        orchestrator, gateway = make_orchestrator(script)

        state = orchestrator.execute(epic)

        assert state.status is RunStatus.COMPLETED
        records = orchestrator.committer.records(epic.epic_id)
        loop_back = next(r for r in records if r.outcome is CheckpointOutcome.LOOP_BACK)
        assert loop_back.phase == "clarify-verify"
        assert loop_back.next_phase == "clarify"
        assert loop_back.rounds == (("clarify", 1),)
        assert loop_back.findings == "missing error states"

        second_round = [args for skill, args in gateway.calls if skill == "speckit.clarify"][1]
        assert "(round 2 of 5)" in second_round
        assert "# FINDINGS FROM PREVIOUS ROUND\nmissing error states" in second_round

        spec = artifact_store.read_artifact(epic.epic_id, ArtifactName.SPEC)
        assert not markers.has_marker(spec, markers.VERIFY_FINDINGS)

    def test_loop_back_clears_done_marker(
        self,
        epic: Epic,
        steps,
        make_orchestrator: MakeOrchestrator,
        artifact_store: InMemoryArtifactStore,
    ) -> None:
        spec_at_second_round: list[str] = []

        def capture(_skill: str, _args: str) -> str:
            spec_at_second_round.append(
                artifact_store.read_artifact(epic.epic_id, ArtifactName.SPEC)
            )
            return steps.mark(ArtifactName.SPEC, markers.CLARIFY_COMPLETE)(_skill, _args)

        script = steps.happy_script()
        script["speckit.clarify"] = [
            steps.mark(ArtifactName.SPEC, markers.CLARIFY_COMPLETE),
            capture,
        ]
        script["epicpilot.clarify-verify"] = [
            steps.mark(ArtifactName.SPEC, markers.VERIFY_FINDINGS, "x"),
            steps.noop(),
        ]
        orchestrator, _ = make_orchestrator(script)

        orchestrator.execute(epic)

        assert markers.markers_present(spec_at_second_round[0]) == ()

    def test_shared_ceiling_across_loop_backs(
        self, epic: Epic, steps, make_orchestrator: MakeOrchestrator
    ) -> None:
        script = steps.happy_script()
        script["speckit.clarify"] = [
            steps.mark(ArtifactName.SPEC, markers.CLARIFY_COMPLETE) for _ in range(5)
        ]
        script["epicpilot.clarify-verify"] = [
            steps.mark(ArtifactName.SPEC, markers.VERIFY_FINDINGS, f"issue {n}")
            for n in range(5)
        ]
        orchestrator, gateway = make_orchestrator(script)

        state = orchestrator.execute(epic)

        assert gateway.calls_for("speckit.clarify") == 5
        assert gateway.calls_for("epicpilot.clarify-verify") == 5
        assert state.failure is not None
        assert state.failure.kind is FailureKind.RETRY_EXHAUSTED
        assert state.failure.phase == "clarify"
        assert state.feedback == "issue 4"

    def test_configured_ceiling(
        self, epic: Epic, steps, make_orchestrator: MakeOrchestrator
    ) -> None:
        script = steps.happy_script()
        script["speckit.clarify"] = [steps.noop(), steps.noop()]
        orchestrator, gateway = make_orchestrator(script, max_rounds=2)

        state = orchestrator.execute(epic)

        assert gateway.calls_for("speckit.clarify") == 2
        assert state.failure is not None
        assert state.failure.kind is FailureKind.RETRY_EXHAUSTED

    def test_no_marker_consumes_a_round(
        self, epic: Epic, steps, make_orchestrator: MakeOrchestrator
    ) -> None:
        script = steps.happy_script()
        script["speckit.clarify"] = [
            steps.noop("I made some edits"),
            steps.mark(ArtifactName.SPEC, markers.CLARIFY_COMPLETE),
        ]
        orchestrator, _ = make_orchestrator(script)

        state = orchestrator.execute(epic)

        assert state.status is RunStatus.COMPLETED
        retry = next(
            r
            for r in orchestrator.committer.records(epic.epic_id)
            if r.outcome is CheckpointOutcome.RETRY
        )
        assert retry.rounds == (("clarify", 1),)
        assert retry.findings == ""

    def test_findings_from_loop_phase_retry_with_feedback(
        self, epic: Epic, steps, make_orchestrator: MakeOrchestrator
    ) -> None:
        script = steps.happy_script()
        script["speckit.clarify"] = [
            steps.mark(ArtifactName.SPEC, markers.VERIFY_FINDINGS, "3 open questions"),
            steps.mark(ArtifactName.SPEC, markers.CLARIFY_COMPLETE),
        ]
        orchestrator, gateway = make_orchestrator(script)

        orchestrator.execute(epic)

        second = [args for skill, args in gateway.calls if skill == "speckit.clarify"][1]
        assert "3 open questions" in second

    def test_conflicting_markers_resolved_toward_findings(
        self,
        epic: Epic,
        steps,
        make_orchestrator: MakeOrchestrator,
        artifact_store: InMemoryArtifactStore,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        script = steps.happy_script()
        script["speckit.clarify"] = [
            steps.append(
                ArtifactName.SPEC,
                "\n<!-- CLARIFY_COMPLETE -->\n<!-- VERIFY_FINDINGS: still vague -->\n",
            ),
            steps.mark(ArtifactName.SPEC, markers.CLARIFY_COMPLETE),
        ]
        orchestrator, gateway = make_orchestrator(script)

        with caplog.at_level(logging.WARNING):
            state = orchestrator.execute(epic)

        assert state.status is RunStatus.COMPLETED
        assert gateway.calls_for("speckit.clarify") == 2
        assert "Conflicting markers in 'spec.md'" in caplog.text
        spec = artifact_store.read_artifact(epic.epic_id, ArtifactName.SPEC)
        assert markers.conflicts(spec) == ()
        assert markers.count_markers(spec, markers.CLARIFY_COMPLETE) == 1

    def test_verify_revoking_done_marker_loops_back(
        self,
        epic: Epic,
        steps,
        make_orchestrator: MakeOrchestrator,
        artifact_store: InMemoryArtifactStore,
    ) -> None:
        script = steps.happy_script()
        script["speckit.clarify"] = [
            steps.mark(ArtifactName.SPEC, markers.CLARIFY_COMPLETE),
            steps.mark(ArtifactName.SPEC, markers.CLARIFY_COMPLETE),
        ]
        script["epicpilot.clarify-verify"] = [
            steps.unmark(ArtifactName.SPEC, markers.CLARIFY_COMPLETE),
            steps.noop(),
        ]
        orchestrator, gateway = make_orchestrator(script)

        state = orchestrator.execute(epic)

        assert state.status is RunStatus.COMPLETED
        assert gateway.calls_for("speckit.clarify") == 2
        loop_back = next(
            r
            for r in orchestrator.committer.records(epic.epic_id)
            if r.outcome is CheckpointOutcome.LOOP_BACK
        )
        assert loop_back.phase == "clarify-verify"
        assert loop_back.next_phase == "clarify"
        assert loop_back.rounds == (("clarify", 1),)
        assert loop_back.findings == ""
        assert state.rounds == (("analyze", 1), ("clarify", 2))
        spec = artifact_store.read_artifact(epic.epic_id, ArtifactName.SPEC)
        assert markers.markers_present(spec) == (
            markers.CLARIFY_COMPLETE,
            markers.CLARIFY_VERIFIED,
        )

    def test_verify_findings_next_to_done_marker_logged_as_conflict(
        self,
        epic: Epic,
        steps,
        make_orchestrator: MakeOrchestrator,
        artifact_store: InMemoryArtifactStore,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        """Verify adds findings but leaves CLARIFY_COMPLETE in place."""
        spec_at_second_round: list[str] = []

        def capture(_skill: str, _args: str) -> str:
            spec_at_second_round.append(
                artifact_store.read_artifact(epic.epic_id, ArtifactName.SPEC)
            )
            return steps.mark(ArtifactName.SPEC, markers.CLARIFY_COMPLETE)(_skill, _args)

        script = steps.happy_script()
        script["speckit.clarify"] = [
            steps.mark(ArtifactName.SPEC, markers.CLARIFY_COMPLETE),
            capture,
        ]
        script["epicpilot.clarify-verify"] = [
            steps.mark(ArtifactName.SPEC, markers.VERIFY_FINDINGS, "gap"),
            steps.noop(),
        ]
        orchestrator, gateway = make_orchestrator(script)

        with caplog.at_level(logging.WARNING):
            state = orchestrator.execute(epic)

        assert state.status is RunStatus.COMPLETED
        assert gateway.calls_for("speckit.clarify") == 2
        assert (
            "Conflicting markers in 'spec.md': CLARIFY_COMPLETE, VERIFY_FINDINGS"
            in caplog.text
        )
        assert markers.markers_present(spec_at_second_round[0]) == ()


class TestAnalyzeLoop:
    """Analyze mirrors Clarify with its own round budget."""

    def test_analyze_loop_back(
        self, epic: Epic, steps, make_orchestrator: MakeOrchestrator
    ) -> None:
        script = steps.happy_script()
        script["speckit.analyze"] = [
            steps.mark(ArtifactName.TASKS, markers.ANALYZED),
            steps.mark(ArtifactName.TASKS, markers.ANALYZE_FINDINGS, "T003 untested"),
            steps.mark(ArtifactName.TASKS, markers.ANALYZED),
            steps.noop(),
        ]
        orchestrator, gateway = make_orchestrator(script)

        state = orchestrator.execute(epic)

        assert state.status is RunStatus.COMPLETED
        assert gateway.calls_for("speckit.analyze") == 4
        assert state.rounds == (("analyze", 2), ("clarify", 1))

    def test_verify_revoking_analyzed_loops_back(
        self, epic: Epic, steps, make_orchestrator: MakeOrchestrator
    ) -> None:
        script = steps.happy_script()
        script["speckit.analyze"] = [
            steps.mark(ArtifactName.TASKS, markers.ANALYZED),
            steps.unmark(ArtifactName.TASKS, markers.ANALYZED),
            steps.mark(ArtifactName.TASKS, markers.ANALYZED),
            steps.noop(),
        ]
        orchestrator, gateway = make_orchestrator(script)

        state = orchestrator.execute(epic)

        assert state.status is RunStatus.COMPLETED
        assert gateway.calls_for("speckit.analyze") == 4
        loop_back = next(
            r
            for r in orchestrator.committer.records(epic.epic_id)
            if r.outcome is CheckpointOutcome.LOOP_BACK
        )
        assert loop_back.phase == "analyze-verify"
        assert loop_back.next_phase == "analyze"
        assert loop_back.rounds == (("analyze", 1), ("clarify", 1))
        assert loop_back.findings == ""
        assert state.rounds == (("analyze", 2), ("clarify", 1))
        second_analyze = [args for skill, args in gateway.calls if skill == "speckit.analyze"][2]
        assert "(round 2 of 5)" in second_analyze

    def test_groups_have_independent_budgets(
        self, epic: Epic, steps, make_orchestrator: MakeOrchestrator
    ) -> None:
        script = steps.happy_script()
        script["speckit.clarify"] = [steps.noop() for _ in range(4)] + [
            steps.mark(ArtifactName.SPEC, markers.CLARIFY_COMPLETE)
        ]
        script["speckit.analyze"] = [steps.noop() for _ in range(4)] + [
            steps.mark(ArtifactName.TASKS, markers.ANALYZED),
            steps.noop(),
        ]
        orchestrator, _ = make_orchestrator(script)

        state = orchestrator.execute(epic)

        assert state.status is RunStatus.COMPLETED
        assert state.rounds == (("analyze", 5), ("clarify", 5))


class TestFailures:
    """Fatal errors end the run with a FAILED checkpoint."""

    def test_missing_artifact(
        self, epic: Epic, steps, make_orchestrator: MakeOrchestrator
    ) -> None:
        script = steps.happy_script()
        script["speckit.plan"] = [steps.noop("Could not plan")]
        orchestrator, gateway = make_orchestrator(script)

        state = orchestrator.execute(epic)

        assert state.status is RunStatus.FAILED
        assert state.failure is not None
        assert state.failure.kind is FailureKind.MISSING_ARTIFACT
        assert state.failure.phase == "plan"
        assert "plan.md" in state.failure.message
        assert gateway.calls_for("speckit.tasks") == 0
        last = orchestrator.committer.records(epic.epic_id)[-1]
        assert last.outcome is CheckpointOutcome.FAILED
        assert last.failure == "missing-artifact"

    @pytest.mark.parametrize(
        "error",
        [AgentUnavailable("claude not found"), AgentTimeout("too slow", 1800.0)],
    )
    def test_agent_failure_is_not_retried(
        self, epic: Epic, steps, make_orchestrator: MakeOrchestrator, error: Exception
    ) -> None:
        script = steps.happy_script()
        script["speckit.clarify"] = [error]
        orchestrator, gateway = make_orchestrator(script)

        state = orchestrator.execute(epic)

        assert gateway.calls_for("speckit.clarify") == 1
        assert state.failure is not None
        assert state.failure.kind is FailureKind.AGENT_INVOCATION
        assert state.failure.phase == "clarify"
        assert state.rounds_for("clarify") == 0

    def test_checkpoint_failure_stops_without_further_writes(
        self,
        epic: Epic,
        steps,
        artifact_store: InMemoryArtifactStore,
    ) -> None:
        store = FailingCheckpointStore(accept=2, error=CheckpointFailure("disk full"))
        gateway = ScriptedAgentGateway(steps.happy_script())
        orchestrator = EpicOrchestrator(gateway, artifact_store, store)

        state = orchestrator.execute(epic)

        assert state.status is RunStatus.FAILED
        assert state.failure is not None
        assert state.failure.kind is FailureKind.CHECKPOINT_FAILURE
        assert state.failure.phase == "clarify"
        assert len(store.history(epic.epic_id)) == 2
        assert state.last_checkpoint_id == store.history(epic.epic_id)[-1]
        assert gateway.calls_for("epicpilot.clarify-verify") == 0

    def test_os_error_from_store_is_checkpoint_failure(
        self, epic: Epic, steps, artifact_store: InMemoryArtifactStore
    ) -> None:
        store = FailingCheckpointStore(accept=0, error=OSError("read-only filesystem"))
        gateway = ScriptedAgentGateway(steps.happy_script())
        orchestrator = EpicOrchestrator(gateway, artifact_store, store)

        state = orchestrator.execute(epic)

        assert state.failure is not None
        assert state.failure.kind is FailureKind.CHECKPOINT_FAILURE
        assert "read-only filesystem" in state.failure.message
        assert gateway.call_count == 0


class TestCancellation:
    def test_cancel_between_phases(
        self, epic: Epic, steps, make_orchestrator: MakeOrchestrator
    ) -> None:
        cancelled = []
        script = steps.happy_script()
        plan = script["speckit.plan"][0]

        def plan_then_cancel(skill: str, args: str) -> str:
            cancelled.append(True)
            return plan(skill, args)

        script["speckit.plan"] = [plan_then_cancel]
        orchestrator, gateway = make_orchestrator(script)

        state = orchestrator.execute(epic, should_cancel=lambda: bool(cancelled))

        assert state.status is RunStatus.FAILED
        assert state.failure is not None
        assert state.failure.kind is FailureKind.CANCELLED
        assert state.failure.phase == "tasks"
        assert gateway.calls_for("speckit.plan") == 1
        assert gateway.calls_for("speckit.tasks") == 0
        last = orchestrator.committer.records(epic.epic_id)[-1]
        assert last.outcome is CheckpointOutcome.CANCELLED
        assert last.next_phase == "tasks"


class TestResume:
    """A new run continues from the last checkpoint without replaying phases."""

    def test_resume_after_cancel(
        self, epic: Epic, steps, make_orchestrator: MakeOrchestrator
    ) -> None:
        script = steps.happy_script()
        first, _ = make_orchestrator(script)
        first.execute(epic, should_cancel=lambda: True)

        remaining = steps.happy_script()
        second, gateway = make_orchestrator(remaining)
        state = second.execute(epic)

        assert state.status is RunStatus.COMPLETED
        assert gateway.calls_for("speckit.specify") == 1

    def test_resume_after_retry_exhausted_gets_fresh_budget(
        self, epic: Epic, steps, make_orchestrator: MakeOrchestrator
    ) -> None:
        script = steps.happy_script()
        script["speckit.clarify"] = [steps.noop() for _ in range(5)]
        first, _ = make_orchestrator(script)
        assert first.execute(epic).failure is not None

        remaining = steps.happy_script()
        del remaining["speckit.specify"]
        second, gateway = make_orchestrator(remaining)
        state = second.execute(epic)

        assert state.status is RunStatus.COMPLETED
        assert gateway.calls_for("speckit.specify") == 0
        first_call = gateway.calls[0]
        assert first_call[0] == "speckit.clarify"
        assert "(round 1 of 5)" in first_call[1]

    def test_resume_after_agent_failure_retries_same_round(
        self, epic: Epic, steps, make_orchestrator: MakeOrchestrator
    ) -> None:
        script = steps.happy_script()
        script["speckit.clarify"] = [steps.noop(), AgentTimeout("slow", 1.0)]
        first, _ = make_orchestrator(script)
        first.execute(epic)

        remaining = steps.happy_script()
        del remaining["speckit.specify"]
        second, gateway = make_orchestrator(remaining)
        state = second.execute(epic)

        assert state.status is RunStatus.COMPLETED
        assert "(round 2 of 5)" in gateway.calls[0][1]
