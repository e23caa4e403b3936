"""Command-line interface for driving epics through the pipeline.

Usage:
    epicpilot run 042 "Add login" --epic-file docs/epics/042.md
    epicpilot status 042
    epicpilot history 042
    epicpilot phases
"""

from __future__ import annotations

import logging
from pathlib import Path

import click
import jsonschema
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from epicpilot.application import CheckpointCommitter, EpicOrchestrator, RunController
from epicpilot.config import load_config
from epicpilot.domain import markers
from epicpilot.domain.checkpoints import format_rounds
from epicpilot.domain.exceptions import PipelineError
from epicpilot.domain.interfaces import (
    AgentGatewayInterface,
    CheckpointStoreInterface,
)
from epicpilot.domain.models import (
    EPIC_ARTIFACTS,
    PipelineConfig,
    RunReport,
    RunStatus,
)
from epicpilot.domain.phases import PIPELINE, with_max_rounds
from epicpilot.domain.recovery import recover_state
from epicpilot.infrastructure import (
    FilesystemArtifactStore,
    FilesystemCheckpointStore,
    GatewayRegistry,
    GitCheckpointStore,
)

logger = logging.getLogger("epicpilot.cli")

console = Console()

_HANDLER_TAG = "_epicpilot_cli"


def _install(root: logging.Logger, handler: logging.Handler) -> None:
    setattr(handler, _HANDLER_TAG, True)
    root.addHandler(handler)


def _configure_logging(debug: bool, log_file: str | None = None) -> None:
    """Set up logging.

    When *log_file* is set, detailed logs go to the file **and** a
    concise summary stream is kept on stderr so the user sees progress.
    """
    level = logging.DEBUG if debug else logging.INFO
    root = logging.getLogger()
    root.setLevel(level)
    # Replace, never stack, the handlers of an earlier invocation.
    for handler in root.handlers[:]:
        if getattr(handler, _HANDLER_TAG, False):
            root.removeHandler(handler)
            handler.close()

    fmt_detailed = logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )
    fmt_concise = logging.Formatter("%(levelname)s - %(message)s")

    if log_file:
        # File gets everything.
        fh = logging.FileHandler(log_file, mode="a")
        fh.setLevel(level)
        fh.setFormatter(fmt_detailed)
        _install(root, fh)
        # Terminal gets INFO+ with a shorter format.
        sh = logging.StreamHandler()
        sh.setLevel(logging.INFO)
        sh.setFormatter(fmt_concise)
        _install(root, sh)
    else:
        sh = logging.StreamHandler()
        sh.setLevel(level)
        sh.setFormatter(fmt_detailed)
        _install(root, sh)


def _report(msg: str, *, warn: bool = False, fg: str | None = None) -> None:
    """Log a message and echo it to the terminal."""
    if warn:
        logger.warning(msg)
    else:
        logger.info(msg)
    styled = click.style(msg, fg=fg) if fg else msg
    click.echo(styled)


# =========================================================================
# Wiring
# =========================================================================


def _load(ctx: click.Context, **overrides: object) -> PipelineConfig:
    try:
        return load_config(ctx.obj.get("config_path"), **overrides)
    except jsonschema.ValidationError as e:
        raise click.ClickException(f"Invalid configuration: {e.message}") from e
    except (OSError, ValueError) as e:
        raise click.ClickException(f"Could not load configuration: {e}") from e


def _artifact_store(config: PipelineConfig) -> FilesystemArtifactStore:
    return FilesystemArtifactStore(config.repo_root, specs_dir=config.specs_dir)


def _checkpoint_store(config: PipelineConfig) -> CheckpointStoreInterface:
    state_dir = Path(config.repo_root) / config.state_dir
    if config.checkpoint_store == "filesystem":
        return FilesystemCheckpointStore(str(state_dir), repo_root=config.repo_root)
    return GitCheckpointStore(config.repo_root, lock_dir=str(state_dir / "locks"))


def _gateway(config: PipelineConfig) -> AgentGatewayInterface:
    try:
        return GatewayRegistry.build(config)
    except KeyError as e:
        raise click.ClickException(str(e.args[0])) from e


def _print_report(report: RunReport) -> None:
    if report.state is RunStatus.COMPLETED:
        console.print(
            Panel(
                f"Epic {report.epic_id} completed\n"
                f"Last checkpoint: {report.last_checkpoint_id}",
                title="Success",
                border_style="green",
            )
        )
        return

    content = Text(f"Epic {report.epic_id} failed", style="bold red")
    details = [f"Phase: {report.phase}", f"Attempt: {report.attempt}"]
    if report.failure is not None:
        details.append(f"Reason: {report.failure.kind.value}")
        if report.failure.message:
            details.append(report.failure.message)
    details.append(f"Last checkpoint: {report.last_checkpoint_id or '(none)'}")
    content.append("\n" + "\n".join(details), style="dim")
    console.print(Panel(content, title="Failed", border_style="red"))


# =========================================================================
# Commands
# =========================================================================


@click.group()
@click.option("--debug", is_flag=True, help="Enable debug logging")
@click.option(
    "--log-file",
    default=None,
    type=click.Path(),
    help="Write detailed logs to file",
)
@click.option(
    "--config",
    "config_path",
    default=None,
    type=click.Path(exists=True, dir_okay=False),
    help="Configuration file (default: epicpilot.json in the repository)",
)
@click.pass_context
def cli(ctx: click.Context, debug: bool, log_file: str | None, config_path: str | None) -> None:
    """Drive epics through specify, clarify, plan, tasks, analyze and implement."""
    _configure_logging(debug, log_file=log_file)
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path


@cli.command()
@click.argument("epic_id")
@click.argument("title")
@click.option(
    "--epic-file",
    default=None,
    type=click.Path(dir_okay=False),
    help="Epic description handed to the agent",
)
@click.option(
    "--repo-root",
    default=None,
    type=click.Path(exists=True, file_okay=False),
    help="Repository the agent works on",
)
@click.option("--max-rounds", default=None, type=int, help="Round ceiling per loop")
@click.pass_context
def run(
    ctx: click.Context,
    epic_id: str,
    title: str,
    epic_file: str | None,
    repo_root: str | None,
    max_rounds: int | None,
) -> None:
    """Run (or resume) the pipeline for EPIC_ID until it completes or fails.

    Ctrl-C cancels the run after the phase in progress.
    """
    config = _load(ctx, repo_root=repo_root, max_rounds=max_rounds)
    orchestrator = EpicOrchestrator(
        _gateway(config),
        _artifact_store(config),
        _checkpoint_store(config),
        config=config,
    )

    with RunController(orchestrator, max_workers=1) as runs:
        try:
            run_id = runs.start_run(epic_id, title, epic_file)
        except (ValueError, PipelineError) as e:
            raise click.ClickException(str(e)) from e

        _report(f"Running epic {epic_id} ({run_id})")
        try:
            report = runs.wait(run_id)
        except KeyboardInterrupt:
            _report("Cancelling after the current phase...", warn=True, fg="yellow")
            runs.cancel(run_id)
            report = runs.wait(run_id)

    _print_report(report)
    if report.state is not RunStatus.COMPLETED:
        ctx.exit(1)


@cli.command()
@click.argument("epic_id")
@click.option("--repo-root", default=None, type=click.Path(exists=True, file_okay=False))
@click.pass_context
def status(ctx: click.Context, epic_id: str, repo_root: str | None) -> None:
    """Show the recovered state of EPIC_ID."""
    config = _load(ctx, repo_root=repo_root)
    artifacts = _artifact_store(config)
    committer = CheckpointCommitter(_checkpoint_store(config), artifacts)
    phases = with_max_rounds(PIPELINE, config.max_rounds)
    try:
        state = recover_state(epic_id, phases, artifacts, committer.records(epic_id))
    except PipelineError as e:
        raise click.ClickException(str(e)) from e

    table = Table(show_header=False, box=None)
    table.add_column("Key", style="cyan")
    table.add_column("Value")
    table.add_row("Epic", epic_id)
    table.add_row("State", state.status.value)
    phase = state.failure.phase if state.failure is not None else state.phase
    table.add_row("Phase", phase or "-")
    table.add_row("Rounds", format_rounds(state.rounds) or "-")
    if state.failure is not None:
        table.add_row("Failure", state.failure.kind.value)
    if state.feedback:
        table.add_row("Open findings", state.feedback)
    table.add_row("Last checkpoint", state.last_checkpoint_id or "-")

    for name in EPIC_ARTIFACTS:
        if artifacts.exists(epic_id, name):
            present = markers.markers_present(artifacts.read_artifact(epic_id, name))
            table.add_row(name.value, ", ".join(present) or "(no markers)")
        else:
            table.add_row(name.value, "[dim]missing[/dim]")

    console.print(table)


@cli.command()
@click.argument("epic_id")
@click.option("--repo-root", default=None, type=click.Path(exists=True, file_okay=False))
@click.pass_context
def history(ctx: click.Context, epic_id: str, repo_root: str | None) -> None:
    """List the checkpoints recorded for EPIC_ID, oldest first."""
    config = _load(ctx, repo_root=repo_root)
    committer = CheckpointCommitter(_checkpoint_store(config), _artifact_store(config))
    try:
        records = committer.records(epic_id)
    except PipelineError as e:
        raise click.ClickException(str(e)) from e

    if not records:
        click.echo(f"No checkpoints for epic {epic_id}")
        return

    table = Table(show_header=True, box=None)
    table.add_column("Checkpoint", style="cyan")
    table.add_column("Outcome", style="magenta")
    table.add_column("Phase")
    table.add_column("Next")
    table.add_column("Rounds")
    table.add_column("Findings", style="yellow")
    for record in records:
        table.add_row(
            record.checkpoint_id[:12],
            record.outcome.value,
            record.phase or "-",
            record.next_phase or "-",
            format_rounds(record.rounds) or "-",
            record.findings[:60],
        )
    console.print(table)


@cli.command()
@click.option("--max-rounds", default=5, type=click.IntRange(min=1), show_default=True)
def phases(max_rounds: int) -> None:
    """Print the phase table."""
    table = Table(show_header=True)
    table.add_column("#", style="dim")
    table.add_column("Phase", style="cyan")
    table.add_column("Skill")
    table.add_column("Retry")
    table.add_column("Markers in")
    table.add_column("Done marker")
    table.add_column("Findings marker")
    table.add_column("Loops back to")
    for index, phase in enumerate(with_max_rounds(PIPELINE, max_rounds), 1):
        retry = phase.retry.value
        if phase.is_loop:
            retry = f"{retry} (max {phase.max_rounds})"
        table.add_row(
            str(index),
            phase.name,
            phase.skill,
            retry,
            phase.marker_artifact.value if phase.marker_artifact else "-",
            phase.done_marker or "-",
            phase.findings_marker or "-",
            phase.loops_back_to or "-",
        )
    console.print(table)


if __name__ == "__main__":
    cli()
