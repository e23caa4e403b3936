"""
Agent gateway that shells out to a non-interactive coding-agent CLI.

The skill is passed as a slash command followed by the rendered phase
context, e.g. ``claude -p "/speckit.clarify <context>"``. The agent edits the
repository in place; its stdout is the free-text report.
"""

import logging
import subprocess
import time
from typing import TYPE_CHECKING

from epicpilot.domain.exceptions import (
    AgentInvocationError,
    AgentTimeout,
    AgentUnavailable,
)
from epicpilot.domain.interfaces import AgentGatewayInterface
from epicpilot.domain.models import AgentReport

if TYPE_CHECKING:
    from epicpilot.domain.models import PipelineConfig

logger = logging.getLogger(__name__)


class ClaudeCliGateway(AgentGatewayInterface):
    """
    Runs each skill as one blocking agent CLI process.

    Never retries: a missing executable, a timeout or a non-zero exit is
    reported to the orchestrator as an AgentInvocationError.
    """

    def __init__(
        self,
        command: tuple[str, ...] | list[str] = ("claude", "-p"),
        cwd: str = ".",
        timeout: float = 1800.0,
    ):
        """
        Args:
            command: Executable and leading arguments; the prompt is appended
            cwd: Working directory of the agent (the repository root)
            timeout: Seconds before the invocation is abandoned
        """
        if not command:
            raise ValueError("Agent command must not be empty")
        self._command = tuple(command)
        self._cwd = cwd
        self._timeout = timeout

    @classmethod
    def from_config(cls, config: "PipelineConfig") -> "ClaudeCliGateway":
        return cls(
            command=config.agent_command,
            cwd=config.repo_root,
            timeout=config.agent_timeout,
        )

    def invoke(self, skill_name: str, args: str) -> AgentReport:
        prompt = f"/{skill_name} {args}"
        logger.debug("Invoking %s via %s", skill_name, self._command[0])

        started = time.monotonic()
        try:
            result = subprocess.run(
                [*self._command, prompt],
                cwd=self._cwd,
                capture_output=True,
                text=True,
                timeout=self._timeout,
            )
        except FileNotFoundError as e:
            raise AgentUnavailable(
                f"Agent executable not found: {self._command[0]}"
            ) from e
        except subprocess.TimeoutExpired as e:
            raise AgentTimeout(
                f"Agent did not finish {skill_name} within {self._timeout}s",
                self._timeout,
            ) from e
        except OSError as e:
            raise AgentUnavailable(f"Could not start agent: {e}") from e
        duration = time.monotonic() - started

        if result.returncode != 0:
            stderr = (result.stderr or "").strip()
            raise AgentInvocationError(
                f"Agent exited with status {result.returncode} during {skill_name}"
                + (f": {stderr[-500:]}" if stderr else "")
            )

        logger.debug("%s finished in %.1fs", skill_name, duration)
        return AgentReport(
            report_text=result.stdout,
            skill=skill_name,
            duration_seconds=duration,
        )
