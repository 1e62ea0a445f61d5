"""CLI for running reviewer analyses from the command line."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Dict, Literal, Optional

import click
from rich.console import Console
from rich.table import Table

from pair_review.analysis.availability import AvailabilityCache
from pair_review.analysis.constants import LEVEL_IDS, LEVEL_SLOTS, ORCHESTRATION_SLOT, resolve_level
from pair_review.analysis.extraction import extract_json
from pair_review.analysis.logging_utils import setup_logging
from pair_review.analysis.orchestrator import AnalysisOrchestrator, LevelTask, TaskOutcome
from pair_review.analysis.providers.registry import ProviderRegistry
from pair_review.analysis.utils.config import load_settings

console = Console()
logger = logging.getLogger(__name__)

STATUS_STYLES = {
    "running": "cyan",
    "completed": "green",
    "failed": "red",
    "cancelled": "yellow",
    "skipped": "dim",
    "pending": "dim",
}


def format_progress_line(slot: str, level: Dict[str, Any]) -> str:
    """Render one level of a progress message as a console line."""
    status = level.get("status", "pending")
    style = STATUS_STYLES.get(status, "white")
    line = f"[{style}][Level {slot}][/{style}] {level.get('progress', '')}"
    event = level.get("streamEvent")
    if event and event.get("text"):
        line = f"{line} [dim]{event['text']}[/dim]"
    return line


async def print_progress(subscription) -> None:
    """Print level lines whenever their rendering changes."""
    last: Dict[str, str] = {}
    async for message in subscription:
        for slot, level in message.get("levels", {}).items():
            line = format_progress_line(slot, level)
            if last.get(slot) != line and level.get("status") != "skipped":
                last[slot] = line
                console.print(line, highlight=False)


def print_outcome(outcome: TaskOutcome, output: Literal["json", "terminal"]) -> None:
    if outcome.cancelled:
        console.print("[yellow]Analysis cancelled[/yellow]")
        return
    if outcome.error is not None:
        raise click.ClickException(str(outcome.error))

    if output == "json":
        console.print_json(json.dumps(outcome.result))
        return

    if not outcome.parsed:
        console.print("[yellow]Reviewer output could not be parsed as JSON, raw response follows[/yellow]")
        console.print(outcome.result.get("raw", ""), markup=False, highlight=False)
        return

    console.print()
    console.print("[cyan]Analysis complete[/cyan]")
    if isinstance(outcome.result, dict):
        suggestions = outcome.result.get("suggestions") or []
        console.print(f"[dim]Suggestions: {len(suggestions)}[/dim]")
        if outcome.result.get("summary"):
            console.print(f"[dim]Summary: {outcome.result['summary']}[/dim]")
    console.print_json(json.dumps(outcome.result))


@click.group(name="pair-review-engine")
def main() -> None:
    """Run AI reviewer CLIs and track their progress."""


@main.command()
@click.option(
    "--priority",
    type=str,
    default=None,
    help="Provider to check first (typically your default provider)",
)
@click.option(
    "--config",
    "config_path",
    type=click.Path(path_type=Path),
    default=None,
    help="Config file (default: $PAIR_REVIEW_CONFIG or ~/.pair-review/config.toml)",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
def providers(priority: Optional[str], config_path: Optional[Path], verbose: bool) -> None:
    """Show which reviewer CLIs are installed."""
    setup_logging(verbose)
    settings = load_settings(config_path)
    cache = AvailabilityCache(settings)

    try:
        statuses = asyncio.run(cache.check_all_providers(priority))
    except KeyboardInterrupt:
        console.print("\n[yellow]Availability check interrupted[/yellow]")
        return

    table = Table(title="Reviewer providers")
    table.add_column("Provider")
    table.add_column("Default model")
    table.add_column("Status")
    table.add_column("Notes")

    for provider_id in ProviderRegistry.get_all_ids():
        status = statuses.get(provider_id)
        try:
            model = ProviderRegistry.resolve_model(provider_id, settings=settings)
        except ValueError:
            model = "-"
        if status and status.available:
            table.add_row(provider_id, model, "[green]available[/green]", "")
        else:
            notes = "\n".join(filter(None, [status.error, status.install_instructions])) if status else ""
            table.add_row(provider_id, model, "[red]unavailable[/red]", notes)

    console.print(table)


@main.command()
@click.argument("prompt_file", type=click.File("r"), default="-")
@click.option("--provider", "provider_id", default="claude", help="Provider id (default: claude)")
@click.option("--model", default=None, help="Model id or tier (fast, balanced, thorough)")
@click.option(
    "--level",
    type=click.Choice(list(LEVEL_IDS)),
    default="1",
    help="Analysis level to run (default: 1)",
)
@click.option(
    "--cwd",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    default=None,
    help="Working directory for the reviewer (default: current directory)",
)
@click.option("--timeout", type=float, default=None, help="Timeout in seconds (default: from config, 300)")
@click.option(
    "--output",
    type=click.Choice(["json", "terminal"]),
    default="terminal",
    help="Output format (default: terminal)",
)
@click.option(
    "--config",
    "config_path",
    type=click.Path(path_type=Path),
    default=None,
    help="Config file (default: $PAIR_REVIEW_CONFIG or ~/.pair-review/config.toml)",
)
@click.option("--yolo", is_flag=True, help="Run the reviewer without sandbox restrictions")
@click.option("--trace-stream", is_flag=True, help="Log every raw line the reviewer streams")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
def analyze(
    prompt_file,
    provider_id: str,
    model: Optional[str],
    level: str,
    cwd: Optional[Path],
    timeout: Optional[float],
    output: Literal["json", "terminal"],
    config_path: Optional[Path],
    yolo: bool,
    trace_stream: bool,
    verbose: bool,
) -> None:
    """Run one prompt through one reviewer CLI.

    The prompt is read from PROMPT_FILE, or from stdin when omitted. Progress
    is printed per level while the reviewer works; Ctrl-C cancels the run and
    terminates the reviewer process.
    """
    setup_logging(verbose, trace_stream=trace_stream)
    settings = load_settings(config_path)
    if yolo:
        settings = settings.model_copy(update={"unrestricted": True})

    prompt = prompt_file.read()
    if not prompt.strip():
        raise click.ClickException("Prompt is empty")
    if provider_id not in ProviderRegistry.get_all_ids():
        names = ", ".join(ProviderRegistry.get_all_ids())
        raise click.ClickException(f"Unknown provider '{provider_id}'. Available providers: {names}")

    slot, _ = resolve_level(level)
    skip_levels = [s for s in LEVEL_SLOTS if s != slot and s != ORCHESTRATION_SLOT]

    async def run_analyze() -> TaskOutcome:
        orchestrator = AnalysisOrchestrator(settings)
        run_id = orchestrator.start_run(skip_levels=skip_levels)
        task = LevelTask(
            level=level,
            provider_id=provider_id,
            prompt=prompt,
            model=model,
            cwd=str(cwd) if cwd else None,
            timeout_seconds=timeout,
        )

        printer = None
        if output == "terminal":
            console.print(f"[cyan]Starting analysis with {provider_id}...[/cyan]")
            console.print(f"[dim]Run: {run_id}[/dim]")
            printer = asyncio.create_task(print_progress(orchestrator.broadcaster.subscribe(run_id)))
        try:
            outcomes = await orchestrator.run_analysis(run_id, [task])
        finally:
            if printer is not None:
                await asyncio.wait([printer], timeout=1.0)
                printer.cancel()
        return outcomes[0]

    try:
        outcome = asyncio.run(run_analyze())
    except KeyboardInterrupt:
        console.print("\n[yellow]Analysis interrupted[/yellow]")
        return
    except click.ClickException:
        raise
    except Exception as e:
        console.print(f"[red]Error: {e}[/red]")
        raise click.ClickException(str(e))

    print_outcome(outcome, output)


@main.command()
@click.argument("input_file", type=click.File("r"), default="-")
@click.option("--level", default="unknown", help="Level label used in log messages")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
def extract(input_file, level: str, verbose: bool) -> None:
    """Recover the JSON object embedded in a reviewer response."""
    setup_logging(verbose)
    result = extract_json(input_file.read(), level=level)
    if not result.success:
        preview = f"\n{result.preview}" if result.preview else ""
        raise click.ClickException(f"{result.error}{preview}")
    logger.debug(f"Extracted with strategy '{result.strategy}'")
    click.echo(json.dumps(result.data, indent=2))


if __name__ == "__main__":
    main()
