"""
Domain exceptions for the epic pipeline.

These represent rule violations and fatal run conditions in the domain layer.
"""


class PipelineError(Exception):
    """Base class for all pipeline errors."""


class AgentInvocationError(PipelineError):
    """
    Raised when the agent gateway fails outright.

    Fatal to the current run. The bounded-loop logic never retries on this;
    only a missing completion marker consumes another round.
    """


class AgentUnavailable(AgentInvocationError):
    """The agent could not be reached or started."""


class AgentTimeout(AgentInvocationError):
    """The agent did not return within the configured timeout."""

    def __init__(self, message: str, timeout: float):
        """
        Args:
            message: Human-readable error message
            timeout: The timeout in seconds that expired
        """
        super().__init__(message)
        self.timeout = timeout


class RetryExhausted(PipelineError):
    """
    Raised when a bounded-loop phase does not converge within its budget.

    Requires operator intervention before the epic can progress.
    """

    def __init__(self, phase: str, max_rounds: int):
        """
        Args:
            phase: Name of the loop phase that did not converge
            max_rounds: The round ceiling that was reached
        """
        super().__init__(f"Phase '{phase}' did not converge in {max_rounds} rounds")
        self.phase = phase
        self.max_rounds = max_rounds


class MissingArtifact(PipelineError):
    """A phase finished without producing an artifact it is required to produce."""

    def __init__(self, epic_id: str, artifact: str):
        super().__init__(f"Epic {epic_id}: required artifact '{artifact}' is missing")
        self.epic_id = epic_id
        self.artifact = artifact


class MarkerConflict(PipelineError):
    """
    Mutually exclusive markers were found together in one artifact.

    Not fatal: the orchestrator resolves it in favour of the findings marker
    and logs the conflict.
    """

    def __init__(self, artifact: str, markers: tuple[str, ...]):
        super().__init__(
            f"Conflicting markers in '{artifact}': {', '.join(markers)}"
        )
        self.artifact = artifact
        self.markers = markers


class ConcurrentRunConflict(PipelineError):
    """A run was started for an epic that already has an active run."""

    def __init__(self, epic_id: str, active_run_id: str):
        super().__init__(f"Epic {epic_id} already has an active run: {active_run_id}")
        self.epic_id = epic_id
        self.active_run_id = active_run_id


class CheckpointFailure(PipelineError):
    """
    The checkpoint store could not record a transition.

    No progress after the last successful checkpoint may be assumed durable.
    """


class UnknownRun(PipelineError, KeyError):
    """No run with the given identifier is known to the controller."""

    def __init__(self, run_id: str):
        super().__init__(f"Run not found: {run_id}")
        self.run_id = run_id

    def __str__(self) -> str:
        return str(self.args[0])
