"""Command-line interface for Consensus Loop."""

import asyncio
import json
import logging
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from consensus_loop import ConsensusLoopError, RegistryCorruptionError, __version__
from consensus_loop.artifacts.document import DocumentMutator, TextDocument
from consensus_loop.config import Config, load_config, validate_config
from consensus_loop.escalation import ConsoleEscalator, SkipAllEscalator
from consensus_loop.formatter import ReportFormatter, format_report_as_json
from consensus_loop.models.escalation import RunReport
from consensus_loop.orchestrator.pool import PoolConfig, ReviewerPool
from consensus_loop.orchestrator.scheduler import RoundScheduler
from consensus_loop.orchestrator.synthesizer import SynthesizerConfig
from consensus_loop.reviewers.http import HttpReviewer, HttpReviewerConfig
from consensus_loop.storage.store import ConsensusStore

console = Console()


def setup_logging(verbose: bool = False) -> None:
    """Configure logging with rich handler."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
    )


def _load_valid_config(config_path: str | None) -> Config:
    config = load_config(Path(config_path) if config_path else None)
    errors = validate_config(config)
    if errors:
        for error in errors:
            console.print(f"[red]Config error:[/red] {error}")
        sys.exit(1)
    return config


def _open_store(state_dir: str, fresh: bool = False) -> ConsensusStore:
    try:
        return ConsensusStore.in_directory(state_dir, fresh=fresh)
    except RegistryCorruptionError as e:
        console.print(f"[red]State is unreadable:[/red] {e}")
        console.print("Start a fresh run with [bold]--fresh[/bold].")
        sys.exit(1)


@click.group()
@click.version_option(version=__version__)
@click.option("-v", "--verbose", is_flag=True, help="Enable verbose output")
def cli(verbose: bool) -> None:
    """Consensus Loop - consensus-gated multi-reviewer convergence."""
    setup_logging(verbose)


@cli.command("run")
@click.argument("artifact", type=click.Path(exists=True, dir_okay=False))
@click.option("--config", "config_path", type=click.Path(exists=True), help="Config file path")
@click.option("--fresh", is_flag=True, help="Discard stored state and start a new run")
@click.option("--max-rounds", type=int, default=None, help="Override scheduler.max_rounds")
@click.option(
    "--output", type=click.Choice(["console", "json", "markdown"]), default="console"
)
@click.option("--no-input", is_flag=True, help="Skip escalated findings instead of prompting")
def run(
    artifact: str,
    config_path: str | None,
    fresh: bool,
    max_rounds: int | None,
    output: str,
    no_input: bool,
) -> None:
    """Review ARTIFACT in rounds until the reviewers converge.

    Resumes the stored run in the state directory unless --fresh is given.
    """
    asyncio.run(
        run_async(
            artifact_path=Path(artifact),
            config_path=Path(config_path) if config_path else None,
            fresh=fresh,
            max_rounds=max_rounds,
            output=output,
            interactive=not no_input,
        )
    )


async def run_async(
    artifact_path: Path,
    config_path: Path | None = None,
    fresh: bool = False,
    max_rounds: int | None = None,
    output: str = "console",
    interactive: bool = True,
) -> RunReport:
    """Async implementation of a review run against a text document."""
    config = _load_valid_config(str(config_path) if config_path else None)
    if max_rounds is not None:
        if max_rounds < 1:
            console.print("[red]--max-rounds must be at least 1[/red]")
            sys.exit(1)
        config.scheduler.max_rounds = max_rounds

    store = _open_store(config.storage.state_dir, fresh=fresh)

    reviewers = [
        HttpReviewer(
            HttpReviewerConfig(
                name=settings.name,
                url=settings.url,
                timeout_seconds=settings.timeout_seconds or config.scheduler.reviewer_timeout_seconds,
                headers=settings.headers,
            )
        )
        for settings in config.reviewers
    ]
    pool = ReviewerPool(
        reviewers,
        config=PoolConfig(
            timeout_seconds=config.scheduler.reviewer_timeout_seconds,
            reviewer_timeouts={
                s.name: s.timeout_seconds for s in config.reviewers if s.timeout_seconds is not None
            },
        ),
    )

    escalator = ConsoleEscalator(console) if interactive and config.escalation.interactive else SkipAllEscalator()

    console.print(
        f"🔍 Reviewing [bold]{artifact_path}[/bold] with {len(reviewers)} reviewers "
        f"(max {config.scheduler.max_rounds} rounds)"
    )

    try:
        scheduler = RoundScheduler(
            pool=pool,
            mutator=DocumentMutator(),
            artifact=TextDocument(artifact_path),
            store=store,
            escalator=escalator,
            max_rounds=config.scheduler.max_rounds,
            synthesizer_config=SynthesizerConfig(
                similarity_threshold=config.synthesizer.similarity_threshold
            ),
        )
        report = await scheduler.run(fresh=fresh)
    except RegistryCorruptionError as e:
        console.print(f"[red]Cannot resume:[/red] {e}")
        console.print("Start a fresh run with [bold]--fresh[/bold].")
        sys.exit(1)
    except ConsensusLoopError as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)
    finally:
        store.close()
        for reviewer in reviewers:
            await reviewer.close()

    if output == "json":
        print(json.dumps(format_report_as_json(report), indent=2))
    elif output == "markdown":
        print(ReportFormatter().format_markdown(report))
    else:
        ReportFormatter().print_report(console, report)

    return report


@cli.command("status")
@click.option("--config", "config_path", type=click.Path(exists=True), help="Config file path")
def status(config_path: str | None) -> None:
    """Show the stored run and its round log."""
    config = load_config(Path(config_path) if config_path else None)
    with _open_store(config.storage.state_dir) as store:
        try:
            state = store.load_run()
        except RegistryCorruptionError as e:
            console.print(f"[red]State is unreadable:[/red] {e}")
            sys.exit(1)

        if state is None:
            console.print("No run recorded yet.")
            return

        finished = " (finalized)" if state.finalized else ""
        console.print(
            f"[bold]Run {state.run_id}[/bold]: {state.status.value}{finished}, "
            f"round {state.current_round}/{state.max_rounds}"
        )
        if state.outcomes:
            console.print(ReportFormatter().rounds_table(state.outcomes))
        console.print(
            f"Deferred findings: {len(store.entries())} | Pending escalations: {len(store.pending())}"
        )


@cli.command("registry")
@click.option("--config", "config_path", type=click.Path(exists=True), help="Config file path")
def registry(config_path: str | None) -> None:
    """List deferred findings awaiting cross-round consensus."""
    config = load_config(Path(config_path) if config_path else None)
    with _open_store(config.storage.state_dir) as store:
        try:
            entries = store.entries()
        except RegistryCorruptionError as e:
            console.print(f"[red]Registry is unreadable:[/red] {e}")
            sys.exit(1)

    if not entries:
        console.print("Registry is empty.")
        return

    table = Table(title="Deferred findings")
    table.add_column("Round", justify="right")
    table.add_column("Reviewer")
    table.add_column("Severity")
    table.add_column("Location")
    table.add_column("Summary")
    for entry in entries:
        table.add_row(
            str(entry.round_deferred),
            entry.finding.source,
            entry.finding.severity.value,
            entry.finding.location,
            entry.finding.summary,
        )
    console.print(table)


@cli.group("config")
def config_group() -> None:
    """Configuration commands."""
    pass


@config_group.command("validate")
@click.option("--config", "config_path", type=click.Path(exists=True), help="Config file path")
def config_validate(config_path: str | None) -> None:
    """Validate configuration file."""
    try:
        config = load_config(Path(config_path) if config_path else None)
        errors = validate_config(config)

        if errors:
            console.print("[red]Configuration is invalid:[/red]")
            for error in errors:
                console.print(f"  • {error}")
            sys.exit(1)
        else:
            console.print("[green]✓ Configuration is valid[/green]")
    except (OSError, ValueError, TypeError) as e:
        console.print(f"[red]Error loading config:[/red] {e}")
        sys.exit(1)


@config_group.command("show")
@click.option("--config", "config_path", type=click.Path(exists=True), help="Config file path")
def config_show(config_path: str | None) -> None:
    """Show current configuration."""
    config = load_config(Path(config_path) if config_path else None)

    console.print("\n[bold]Current Configuration[/bold]\n")

    table = Table(title="Configured Reviewers")
    table.add_column("Name")
    table.add_column("URL")
    table.add_column("Timeout")

    for reviewer in config.reviewers:
        timeout = reviewer.timeout_seconds or config.scheduler.reviewer_timeout_seconds
        table.add_row(reviewer.name, reviewer.url, f"{timeout:g}s")

    console.print(table)

    console.print(f"\n[bold]Max rounds:[/bold] {config.scheduler.max_rounds}")
    console.print(f"[bold]Similarity threshold:[/bold] {config.synthesizer.similarity_threshold}")
    console.print(f"[bold]State directory:[/bold] {config.storage.state_dir}")
    console.print(f"[bold]Interactive escalation:[/bold] {config.escalation.interactive}")


if __name__ == "__main__":
    cli()
