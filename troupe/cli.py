"""CLI entry point for Troupe."""

import asyncio
import logging
from pathlib import Path
from typing import Any, Optional

import typer
import yaml
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from troupe import __version__
from troupe.companions import CompanionRegistry
from troupe.config import GenerationParams, Settings, create_default_config, get_settings, load_settings
from troupe.conversation import AuditLog, HistoryEntry
from troupe.dispatch import GenerationJob, JobContext, create_dispatcher
from troupe.errors import InvalidConfigError, TroupeError
from troupe.orchestrator import create_scheduler
from troupe.utils.logging import setup_logging

app = typer.Typer(
    name="troupe",
    help="Generation backend client and turn-taking for multi-companion chats",
    add_completion=True,
    no_args_is_help=True,
)

console = Console()


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"[bold]Troupe[/bold] version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    config: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to configuration file",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable verbose output",
    ),
    version: bool = typer.Option(
        None,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
) -> None:
    """Troupe - talk to a generation backend and schedule companion turns."""
    setup_logging(level=logging.WARNING, verbose=verbose)
    if config:
        load_settings(config_path=config, force_reload=True)


@app.command()
def generate(
    prompt: str = typer.Argument(..., help="Prompt to send"),
    temperature: Optional[float] = typer.Option(None, "--temperature", "-t", help="Sampling temperature"),
    max_tokens: Optional[int] = typer.Option(None, "--max-tokens", "-m", help="Token limit for the reply"),
    stream: Optional[bool] = typer.Option(None, "--stream/--no-stream", help="Ask for an event-stream reply"),
    action: Optional[str] = typer.Option(None, "--action", "-a", help="Backend preset to run"),
) -> None:
    """Dispatch one generation job and print the reply."""
    params = GenerationParams(temperature=temperature, max_tokens=max_tokens, stream=stream)
    job = GenerationJob(prompt=prompt, params=params, context=JobContext(action=action))
    try:
        asyncio.run(_generate(job))
    except TroupeError as e:
        console.print(f"[red]{escape(str(e))}[/red]")
        raise typer.Exit(1)


async def _generate(job: GenerationJob) -> None:
    settings = get_settings()
    audit_log = AuditLog(settings.storage.resolved_database_path)
    await audit_log.initialize()

    async with create_dispatcher(settings, audit_log) as dispatcher:
        response = await dispatcher.dispatch(job)

    console.print(escape(response.response) if response.response else "[dim](empty reply)[/dim]")
    console.print(
        f"[dim]job {response.id}: {response.input_tokens or 0} tokens in, "
        f"{response.output_tokens or 0} tokens out[/dim]"
    )


def _load_scenario(path: Path) -> tuple[CompanionRegistry, list[HistoryEntry], dict[str, Any]]:
    """Read companions and history from a scenario file.

    The file is a mapping with a ``companions`` list, a ``history`` list of
    ``{speaker, message, timestamp}`` entries (timestamp defaults to the
    entry's position) and an optional ``context`` mapping.
    """
    with open(path, "r", encoding="utf-8") as f:
        content = yaml.safe_load(f) or {}
    if not isinstance(content, dict):
        raise InvalidConfigError("scenario", str(path), "expected a mapping")

    registry = CompanionRegistry.from_configs(content.get("companions") or [])
    history = []
    for index, raw in enumerate(content.get("history") or []):
        if not isinstance(raw, dict) or "speaker" not in raw:
            raise InvalidConfigError(f"history[{index}]", raw, "missing speaker")
        history.append(
            HistoryEntry(
                speaker=registry.get(raw["speaker"]),
                message=str(raw.get("message", "")),
                timestamp=float(raw.get("timestamp", index)),
            )
        )
    return registry, history, content.get("context") or {}


@app.command("next-speaker")
def next_speaker(
    scenario: Path = typer.Argument(..., exists=True, dir_okay=False, help="Scenario YAML file"),
    target: Optional[str] = typer.Option(None, "--target", help="Explicitly requested speaker"),
    exclude: Optional[list[str]] = typer.Option(None, "--exclude", help="Participant to leave out (repeatable)"),
    action: Optional[str] = typer.Option(None, "--action", help="Action asked of the target"),
    moderator: bool = typer.Option(False, "--moderator", help="Ask the backend when no rule decides"),
) -> None:
    """Decide who speaks next in a scenario."""
    try:
        asyncio.run(_next_speaker(scenario, target, exclude or [], action, moderator))
    except TroupeError as e:
        console.print(f"[red]{escape(str(e))}[/red]")
        raise typer.Exit(1)


async def _next_speaker(
    scenario: Path,
    target: Optional[str],
    exclude: list[str],
    action: Optional[str],
    use_moderator: bool,
) -> None:
    settings = get_settings()
    registry, history, context = _load_scenario(scenario)

    dispatcher = None
    if use_moderator:
        audit_log = AuditLog(settings.storage.resolved_database_path)
        await audit_log.initialize()
        dispatcher = create_dispatcher(settings, audit_log)
    try:
        scheduler = create_scheduler(registry, dispatcher=dispatcher, settings=settings)
        decision = await scheduler.select_next_speakers(
            history=history,
            participants=registry.list_participants(),
            target=registry.get(target) if target else None,
            excluded=[registry.get(name) for name in exclude],
            recent_messages=history if use_moderator else None,
            action=action,
            context=JobContext(
                chat_id=context.get("chat_id"),
                situation_id=context.get("situation_id"),
                interaction_id=context.get("interaction_id"),
            ),
        )
    finally:
        if dispatcher is not None:
            await dispatcher.aclose()

    table = Table(title=f"Next speaker(s) via {decision.rule}")
    table.add_column("#", justify="right")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Name", style="green")
    table.add_column("Kind", style="blue")
    for position, participant in enumerate(decision, start=1):
        table.add_row(str(position), participant.id, participant.name, participant.kind.value)
    console.print(table)


@app.command()
def prompts(
    limit: int = typer.Option(20, "--limit", "-l", help="Number of records to show"),
) -> None:
    """List recorded prompt attempts, newest first."""
    asyncio.run(_list_prompts(limit))


async def _list_prompts(limit: int) -> None:
    settings = get_settings()
    audit_log = AuditLog(settings.storage.resolved_database_path)

    try:
        await audit_log.initialize()
        records = await audit_log.list_prompt_records(limit=limit)

        if not records:
            console.print("[dim]No prompt records found.[/dim]")
            return

        table = Table(title="Prompt Records")
        table.add_column("ID", style="cyan", no_wrap=True)
        table.add_column("Timestamp", style="yellow")
        table.add_column("Prompt", style="green")
        table.add_column("Result")

        for record in records:
            result = escape(record.result[:60])
            table.add_row(
                str(record.id),
                str(record.timestamp),
                escape(record.prompt[:60].replace("\n", " ")),
                f"[red]{result}[/red]" if record.is_error else result,
            )

        console.print(table)

    except TroupeError as e:
        console.print(f"[red]Error listing prompt records: {escape(str(e))}[/red]")


@app.command()
def config(
    init: bool = typer.Option(False, "--init", help="Write the default config file if missing"),
) -> None:
    """Show current configuration."""
    if init:
        path = create_default_config()
        console.print(f"[green]Config file:[/green] {path}")
        return

    settings: Settings = get_settings()

    console.print(Panel("[bold]Current Configuration[/bold]", border_style="blue"))

    console.print("\n[bold]Backend:[/bold]")
    console.print(f"  URL:     {settings.backend.base_url}{settings.backend.path}")
    console.print(f"  API key: {'✓ Set' if settings.resolved_api_key else '✗ Not set'}")
    console.print(f"  Timeout: {settings.backend.timeout_seconds}s")

    console.print("\n[bold]Generation defaults:[/bold]")
    for key, value in settings.generation.to_payload().items():
        console.print(f"  {key}: {value}")

    console.print("\n[bold]Conversation:[/bold]")
    console.print(f"  Speaker selection: {settings.conversation.speaker_selection}")
    console.print(f"  Repeat speaker:    {settings.conversation.allow_repeat_speaker}")
    console.print(f"  Username:          {settings.conversation.username}")
    console.print(f"  Moderator timeout: {settings.conversation.moderator_timeout_seconds}s")

    console.print("\n[bold]Storage:[/bold]")
    console.print(f"  Database: {settings.storage.resolved_database_path}")


if __name__ == "__main__":
    app()
