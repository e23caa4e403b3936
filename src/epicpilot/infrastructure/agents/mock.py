"""
Scripted agent gateway for testing without a real agent.

Each skill has a queue of steps consumed one per invocation. A step is the
report text to return, an exception to raise, or a callable that performs the
agent's side effects (typically writing artifacts) and returns the report.
"""

import threading
import time
from collections.abc import Callable
from typing import Union

from epicpilot.domain.interfaces import AgentGatewayInterface
from epicpilot.domain.models import AgentReport

ScriptStep = Union[str, BaseException, Callable[[str, str], Union[str, None]]]


class ScriptedAgentGateway(AgentGatewayInterface):
    """Plays back predefined steps per skill for testing."""

    def __init__(
        self,
        script: dict[str, list[ScriptStep]] | None = None,
        default: ScriptStep | None = None,
    ):
        """
        Args:
            script: Steps to play back in order, keyed by skill name
            default: Step used once a skill's queue is empty (None raises)
        """
        self._script = {skill: list(steps) for skill, steps in (script or {}).items()}
        self._default = default
        self._calls: list[tuple[str, str]] = []
        self._lock = threading.Lock()

    def add(self, skill_name: str, *steps: ScriptStep) -> "ScriptedAgentGateway":
        """Append steps to a skill's queue."""
        with self._lock:
            self._script.setdefault(skill_name, []).extend(steps)
        return self

    def invoke(self, skill_name: str, args: str) -> AgentReport:
        """Consume the next step for the skill."""
        with self._lock:
            self._calls.append((skill_name, args))
            queue = self._script.get(skill_name, [])
            if queue:
                step = queue.pop(0)
            elif self._default is not None:
                step = self._default
            else:
                raise RuntimeError(f"ScriptedAgentGateway exhausted steps for {skill_name}")

        started = time.monotonic()
        if isinstance(step, BaseException):
            raise step
        if callable(step):
            text = step(skill_name, args) or ""
        else:
            text = step
        return AgentReport(
            report_text=text,
            skill=skill_name,
            duration_seconds=time.monotonic() - started,
        )

    @property
    def calls(self) -> list[tuple[str, str]]:
        """(skill, args) for every invocation, in order."""
        with self._lock:
            return list(self._calls)

    @property
    def call_count(self) -> int:
        """Number of times invoke() has been called."""
        with self._lock:
            return len(self._calls)

    def calls_for(self, skill_name: str) -> int:
        """Number of invocations of one skill."""
        return sum(1 for skill, _ in self.calls if skill == skill_name)
