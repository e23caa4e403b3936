"""
Run control surface: start, observe and cancel pipeline runs.

Each run executes on its own worker thread; runs for different epics proceed
in parallel. A second run for an epic with an active run is rejected, whether
the first run belongs to this controller or to another process: every run
holds the epic's lock in the checkpoint store until it ends.
"""

from __future__ import annotations

import logging
import threading
import uuid
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import replace
from typing import TYPE_CHECKING

from epicpilot.domain.exceptions import ConcurrentRunConflict, UnknownRun
from epicpilot.domain.models import (
    Epic,
    FailureKind,
    RunFailure,
    RunReport,
    RunState,
    RunStatus,
)

if TYPE_CHECKING:
    from epicpilot.application.orchestrator import EpicOrchestrator

logger = logging.getLogger(__name__)


class PipelineRun:
    """
    Live handle on one run of an epic through the pipeline.

    Owns the in-memory view of the run's state; the durable state lives in
    the artifacts and checkpoints.
    """

    def __init__(self, run_id: str, epic: Epic) -> None:
        self.run_id = run_id
        self.epic = epic
        self.cancel_requested = threading.Event()
        self.future: Future[RunState] | None = None
        self._state = RunState(phase=None)
        self._lock = threading.Lock()

    @property
    def state(self) -> RunState:
        with self._lock:
            return self._state

    def update(self, state: RunState) -> None:
        with self._lock:
            self._state = state


class RunController:
    """
    Starts runs on a worker pool and answers status/cancel requests.

    Example usage:
        with RunController(orchestrator) as runs:
            run_id = runs.start_run("042", "Add login")
            report = runs.wait(run_id)
    """

    def __init__(self, orchestrator: EpicOrchestrator, max_workers: int = 4) -> None:
        """
        Args:
            orchestrator: Drives each run; shared across epics
            max_workers: Maximum number of runs executing in parallel
        """
        self._orchestrator = orchestrator
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="epicpilot-run"
        )
        self._lock = threading.Lock()
        self._runs: dict[str, PipelineRun] = {}
        self._active: dict[str, str] = {}  # epic_id -> run_id

    def __enter__(self) -> RunController:
        return self

    def __exit__(self, *_exc: object) -> None:
        self.shutdown()

    def start_run(self, epic_id: str, title: str, epic_file: str | None = None) -> str:
        """
        Start (or resume) the pipeline for an epic.

        Args:
            epic_id: Stable epic identifier
            title: Human-readable epic title
            epic_file: Optional path of the epic description

        Returns:
            The new run id

        Raises:
            ConcurrentRunConflict: If the epic already has an active run
            CheckpointFailure: If the epic's run lock cannot be taken
        """
        epic = Epic(epic_id=epic_id, title=title, epic_file=epic_file)

        with self._lock:
            active = self._active.get(epic_id)
            if active is not None:
                raise ConcurrentRunConflict(epic_id, active)
            run = PipelineRun(str(uuid.uuid4()), epic)
            self._orchestrator.committer.claim(epic_id, run.run_id)
            self._runs[run.run_id] = run
            self._active[epic_id] = run.run_id

        logger.info("Epic %s: starting run %s", epic_id, run.run_id)
        try:
            run.future = self._executor.submit(self._execute, run)
        except RuntimeError:
            self._release(run)
            raise
        return run.run_id

    def status(self, run_id: str) -> RunReport:
        """
        Current phase, attempt and state of a run.

        Raises:
            UnknownRun: If no run has this id
        """
        run = self._get(run_id)
        state = run.state
        if state.status is RunStatus.PENDING:
            return RunReport(
                run_id=run.run_id,
                epic_id=run.epic.epic_id,
                phase=state.phase,
                attempt=0,
                state=RunStatus.PENDING,
            )
        return RunReport(
            run_id=run.run_id,
            epic_id=run.epic.epic_id,
            phase=state.phase if state.failure is None else state.failure.phase,
            attempt=self._orchestrator.attempt_of(state),
            state=state.status,
            failure=state.failure,
            last_checkpoint_id=state.last_checkpoint_id,
        )

    def cancel(self, run_id: str) -> None:
        """
        Request cancellation; honoured at the next phase boundary.

        An in-flight agent invocation is never interrupted.
        """
        run = self._get(run_id)
        logger.info("Epic %s: cancellation requested for run %s", run.epic.epic_id, run_id)
        run.cancel_requested.set()

    def wait(self, run_id: str, timeout: float | None = None) -> RunReport:
        """
        Block until a run finishes and return its final status.

        Raises:
            TimeoutError: If the run is still going after ``timeout`` seconds
        """
        run = self._get(run_id)
        if run.future is not None:
            run.future.result(timeout=timeout)
        return self.status(run_id)

    def is_active(self, epic_id: str) -> bool:
        with self._lock:
            return epic_id in self._active

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting runs; with ``wait`` block until active runs end."""
        self._executor.shutdown(wait=wait)

    def _get(self, run_id: str) -> PipelineRun:
        with self._lock:
            run = self._runs.get(run_id)
        if run is None:
            raise UnknownRun(run_id)
        return run

    def _execute(self, run: PipelineRun) -> RunState:
        try:
            state = self._orchestrator.execute(
                run.epic,
                should_cancel=run.cancel_requested.is_set,
                on_transition=run.update,
            )
            run.update(state)
            return state
        except Exception as e:
            state = run.state
            logger.exception(
                "Epic %s: run %s crashed in %s", run.epic.epic_id, run.run_id, state.phase
            )
            run.update(
                replace(
                    state,
                    status=RunStatus.FAILED,
                    failure=RunFailure(
                        FailureKind.INTERNAL_ERROR, state.phase, str(e) or type(e).__name__
                    ),
                )
            )
            raise
        finally:
            self._release(run)

    def _release(self, run: PipelineRun) -> None:
        with self._lock:
            if self._active.get(run.epic.epic_id) == run.run_id:
                del self._active[run.epic.epic_id]
        self._orchestrator.committer.release(run.epic.epic_id, run.run_id)
