"""
Checkpoint message encoding.

A checkpoint is stored as a commit message: a conventional-commit subject
followed by ``Key: value`` trailers. The trailers carry everything needed to
rebuild run state, so stores only ever persist (files, message) and parse
back through parse_checkpoint_message.
"""

from epicpilot.domain.models import Checkpoint, CheckpointOutcome

TRAILER_EPIC = "Epic-Id"
TRAILER_PHASE = "Phase"
TRAILER_OUTCOME = "Outcome"
TRAILER_NEXT_PHASE = "Next-Phase"
TRAILER_ROUNDS = "Rounds"
TRAILER_FINDINGS = "Findings"
TRAILER_FAILURE = "Failure"

_COMMIT_TYPES = {
    CheckpointOutcome.STARTED: "chore",
    CheckpointOutcome.ADVANCED: "docs",
    CheckpointOutcome.RETRY: "fix",
    CheckpointOutcome.LOOP_BACK: "fix",
    CheckpointOutcome.COMPLETED: "feat",
    CheckpointOutcome.FAILED: "chore",
    CheckpointOutcome.CANCELLED: "chore",
}


def _flatten(value: str) -> str:
    return " ".join(value.split())


def format_rounds(rounds: tuple[tuple[str, int], ...]) -> str:
    return ",".join(f"{group}={count}" for group, count in rounds)


def parse_rounds(value: str) -> tuple[tuple[str, int], ...]:
    result = []
    for item in value.split(","):
        item = item.strip()
        if not item:
            continue
        group, _, count = item.partition("=")
        result.append((group.strip(), int(count)))
    return tuple(sorted(result))


def format_checkpoint_message(
    epic_id: str,
    outcome: CheckpointOutcome,
    summary: str,
    phase: str | None,
    next_phase: str | None,
    rounds: tuple[tuple[str, int], ...] = (),
    findings: str = "",
    failure: str = "",
) -> str:
    """Build the commit message for a transition."""
    subject = f"{_COMMIT_TYPES[outcome]}({epic_id}): {_flatten(summary)}"
    trailers = [
        f"{TRAILER_EPIC}: {epic_id}",
        f"{TRAILER_OUTCOME}: {outcome.value}",
    ]
    if phase:
        trailers.append(f"{TRAILER_PHASE}: {phase}")
    if next_phase:
        trailers.append(f"{TRAILER_NEXT_PHASE}: {next_phase}")
    if rounds:
        trailers.append(f"{TRAILER_ROUNDS}: {format_rounds(rounds)}")
    if findings:
        trailers.append(f"{TRAILER_FINDINGS}: {_flatten(findings)}")
    if failure:
        trailers.append(f"{TRAILER_FAILURE}: {_flatten(failure)}")
    return subject + "\n\n" + "\n".join(trailers) + "\n"


def parse_trailers(message: str) -> dict[str, str]:
    """Extract ``Key: value`` trailers (last occurrence wins)."""
    trailers: dict[str, str] = {}
    for line in message.splitlines()[1:]:
        key, sep, value = line.partition(": ")
        if sep and key and " " not in key:
            trailers[key] = value.strip()
    return trailers


def parse_checkpoint_message(
    checkpoint_id: str,
    message: str,
    files: tuple[str, ...] = (),
    created_at: str = "",
) -> Checkpoint:
    """
    Rebuild a Checkpoint from its stored message.

    Raises:
        ValueError: If the message lacks the epic or outcome trailer
    """
    trailers = parse_trailers(message)
    if TRAILER_EPIC not in trailers or TRAILER_OUTCOME not in trailers:
        raise ValueError(f"Not a pipeline checkpoint: {checkpoint_id}")
    return Checkpoint(
        checkpoint_id=checkpoint_id,
        epic_id=trailers[TRAILER_EPIC],
        outcome=CheckpointOutcome(trailers[TRAILER_OUTCOME]),
        phase=trailers.get(TRAILER_PHASE),
        next_phase=trailers.get(TRAILER_NEXT_PHASE),
        rounds=parse_rounds(trailers.get(TRAILER_ROUNDS, "")),
        message=message,
        files=files,
        findings=trailers.get(TRAILER_FINDINGS, ""),
        failure=trailers.get(TRAILER_FAILURE, ""),
        created_at=created_at,
    )
