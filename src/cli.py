"""Click CLI: serve the MCP bridge over stdio, or run one deliberation in the terminal."""

import asyncio
import logging
import sys
from pathlib import Path

import click
from dotenv import load_dotenv
from rich.console import Console
from rich.logging import RichHandler

from config.config_loader import AppConfig, load_config
from src.client import WisepanelClient
from src.errors import ConfigError, StartError
from src.events import AgentResponseEvent, ErrorEvent, PhaseStartEvent
from src.models import StreamOptions
from src.output import console, format_final_result, print_agent_response, print_transcript, save_transcript
from src.question_file import merge_options, parse_file
from src.runs import RunManager

logger = logging.getLogger(__name__)

# stdout belongs to the MCP protocol when serving
err_console = Console(stderr=True, legacy_windows=False)

TOPOLOGIES = ("tetrahedron", "octahedron", "icosahedron")
MODEL_GROUPS = ("mixed", "fast", "smart", "informed")


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=err_console, rich_tracebacks=True, show_path=False)],
    )


def _load_config_or_exit(settings_path: Path | None) -> AppConfig:
    try:
        return load_config(settings_path) if settings_path else load_config()
    except FileNotFoundError as exc:
        err_console.print(f"[bold red]Config error:[/bold red] {exc}")
        sys.exit(1)


def _build_manager(config: AppConfig) -> RunManager:
    try:
        client = WisepanelClient(config.api, config.stream)
    except ConfigError as exc:
        err_console.print(f"[bold red]Config error:[/bold red] {exc}")
        sys.exit(1)
    return RunManager(
        client,
        poll_timeout_sec=config.polling.timeout_sec,
        start_timeout_sec=config.polling.start_timeout_sec,
        max_rounds=config.stream.max_rounds,
    )


async def _run_ask(
    manager: RunManager,
    options: StreamOptions,
    output_dir: Path,
    slug_override: str | None = None,
) -> Path | None:
    """Run one deliberation to completion, printing responses as they arrive.

    Returns the saved transcript path, or None if the run did not complete.
    """
    try:
        started = await manager.start(options)
        run_id = started["run_id"]
        console.print(
            f"\n[bold cyan]Wisepanel[/bold cyan] run {run_id}: "
            f"{started.get('agents', '?')} panelists"
        )
        if started.get("estimated_cost"):
            console.print(f"[dim]Estimated cost: {started['estimated_cost']}[/dim]")

        while True:
            snapshot = await manager.next_events(run_id)
            for event in snapshot.new_events:
                if isinstance(event, AgentResponseEvent):
                    print_agent_response(event)
                elif isinstance(event, PhaseStartEvent):
                    console.print(f"[dim]Phase: {event.phase or 'next'}[/dim]")
                elif isinstance(event, ErrorEvent):
                    console.print(f"[bold red]Error:[/bold red] {event.message or 'unknown error'}")
            if snapshot.status != "running":
                break
            console.print(
                f"[dim]{snapshot.agents_responded} responses so far "
                f"({snapshot.agents_total} panelists)[/dim]"
            )
    finally:
        await manager.aclose()

    result = manager.log.get_result(run_id)
    if result.status != "completed" or result.result is None:
        console.print(f"[bold red]Run {run_id} ended with status: {result.status}[/bold red]")
        return None

    print_transcript(format_final_result(result.result))
    return save_transcript(result.result, output_dir, slug_override=slug_override)


@click.group()
def main() -> None:
    """Wisepanel -- multi-model deliberations over MCP.

    \b
    Examples:
      wisepanel serve
      wisepanel ask "Should we use REST or GraphQL?"
      wisepanel ask --file question.md --topology octahedron --rounds 2
    """
    # Reconfigure stdout/stderr to UTF-8 on Windows so panelist responses containing
    # Unicode chars don't crash the ANSI render path.
    if sys.platform == "win32":
        if hasattr(sys.stdout, "reconfigure"):
            sys.stdout.reconfigure(encoding="utf-8", errors="replace")
        if hasattr(sys.stderr, "reconfigure"):
            sys.stderr.reconfigure(encoding="utf-8", errors="replace")
    load_dotenv()


@main.command()
@click.option("--settings", "settings_path", type=click.Path(exists=True, dir_okay=False, path_type=Path),
              default=None, help="Settings file (default: config/settings.yaml)")
@click.option("--verbose", is_flag=True, help="Enable DEBUG-level logging")
def serve(settings_path: Path | None, verbose: bool) -> None:
    """Run the MCP server on stdio."""
    from src.server import build_server

    _setup_logging(verbose)
    config = _load_config_or_exit(settings_path)
    manager = _build_manager(config)
    logger.info("Serving Wisepanel MCP tools against %s", config.api.base_url)
    build_server(manager).run()


@main.command()
@click.argument("question", required=False)
@click.option("--file", "question_file", type=click.Path(exists=True, dir_okay=False, path_type=Path),
              help="Read question from .md file (frontmatter may set topology, model_group, rounds, context)")
@click.option("--topology", type=click.Choice(TOPOLOGIES), default=None,
              help="Panel geometry: tetrahedron (4), octahedron (6), icosahedron (12)")
@click.option("--model-group", type=click.Choice(MODEL_GROUPS), default=None, help="Model selection")
@click.option("--rounds", type=int, default=None, help="Deliberation rounds (default: from config)")
@click.option("--context", default=None, help="Additional context to frame the deliberation")
@click.option("--short", "short_responses", is_flag=True, help="Request concise panelist responses")
@click.option("--output", "output_path", type=click.Path(file_okay=False, path_type=Path), default=None,
              help="Output directory (default: from config)")
@click.option("--settings", "settings_path", type=click.Path(exists=True, dir_okay=False, path_type=Path),
              default=None, help="Settings file (default: config/settings.yaml)")
@click.option("--verbose", is_flag=True, help="Enable DEBUG-level logging")
def ask(
    question: str | None,
    question_file: Path | None,
    topology: str | None,
    model_group: str | None,
    rounds: int | None,
    context: str | None,
    short_responses: bool,
    output_path: Path | None,
    settings_path: Path | None,
    verbose: bool,
) -> None:
    """Run one deliberation and save its transcript as markdown."""
    _setup_logging(verbose)
    config = _load_config_or_exit(settings_path)

    cli_values = {
        "topology": topology,
        "model_group": model_group,
        "rounds": rounds,
        "context": context,
        "short_responses": short_responses,
    }
    slug_override: str | None = None
    if question_file:
        question_text, meta = parse_file(question_file)
        slug_override = question_file.stem
    elif question:
        question_text, meta = question, {}
    else:
        console.print("[bold red]Error:[/bold red] Provide a QUESTION argument or --file.")
        sys.exit(1)

    options = merge_options(question_text, cli_values, meta)
    output_dir = output_path if output_path else config.output.dir
    manager = _build_manager(config)

    try:
        saved = asyncio.run(_run_ask(manager, options, output_dir, slug_override=slug_override))
    except StartError as exc:
        console.print(f"[bold red]Error:[/bold red] {exc}")
        sys.exit(1)

    if saved is None:
        sys.exit(1)
    console.print(f"\n[dim]Saved to: {saved}[/dim]")


if __name__ == "__main__":
    main()
