"""Markdown rendering of deliberation events, rich console output, and transcript save."""

import logging
import math
import re
from collections.abc import Mapping
from datetime import datetime
from pathlib import Path

from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.rule import Rule

from src.events import AgentResponseEvent, FinalEvent, records

logger = logging.getLogger(__name__)

console = Console(legacy_windows=False)


def _slug(text: str, max_len: int = 40) -> str:
    """Convert text to a filename-safe slug."""
    slug = re.sub(r"[^\w\s-]", "", text.lower())
    slug = re.sub(r"[\s_-]+", "-", slug).strip("-")
    return slug[:max_len]


def model_label(provider: str | None, model: str | None) -> str:
    """``provider/model``, or just the model when the provider is unknown."""
    model = model or "unknown"
    return f"{provider}/{model}" if provider else model


def _count(value: object) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
        return 0
    return int(value)


def format_agent_response(event: AgentResponseEvent) -> str:
    label = model_label(event.provider, event.model)
    return f"**{event.agent}** ({event.role}) — _{label}_\n\n{event.message}"


def format_final_result(final: FinalEvent) -> str:
    """Render a terminal ``final`` event as a markdown transcript."""
    conv: Mapping = final.conversation or {}
    agents = final.agents
    lines: list[str] = [
        "# Wisepanel Deliberation",
        f"**Topic:** {conv.get('topic') or 'N/A'}",
        f"**Rounds:** {conv.get('total_rounds') or 0} | "
        f"**Panelists:** {len(agents)} | "
        f"**Tokens:** {_count(conv.get('total_tokens')):,}",
        "",
    ]

    if agents:
        lines.append("## Panel")
        for a in agents:
            lines.append(f"- **{a.get('name')}** ({a.get('role')}) — _{a.get('provider')}/{a.get('model')}_")
        lines.append("")

    for round_result in records(conv.get("round_results")):
        for node in records(round_result.get("node_results")):
            lines.append(f"## Round {node.get('round')}")
            for r in records(node.get("responses")):
                lines.append(
                    f"### {r.get('agent_name')} ({r.get('agent_role')}) — _{r.get('provider')}/{r.get('model')}_"
                )
                lines.append(str(r.get("message") or ""))
                lines.append("")

    return "\n".join(lines)


def print_agent_response(event: AgentResponseEvent) -> None:
    """Print one panelist response to the console."""
    console.print(
        Panel(
            Markdown(event.message),
            title=f"[bold]{event.agent}[/bold] ({event.role})",
            subtitle=model_label(event.provider, event.model),
            border_style="dim",
        )
    )


def print_transcript(markdown: str) -> None:
    console.print(Rule("[bold green]Deliberation Complete[/bold green]"))
    console.print(Markdown(markdown))


def save_transcript(final: FinalEvent, output_dir: Path, slug_override: str | None = None) -> Path:
    """Save the rendered transcript of a finished run as a markdown file.

    Args:
        final: The run's terminal ``final`` event.
        output_dir: Directory to save the file in.
        slug_override: If provided, use this as the filename stem instead of
            deriving one from the topic.

    Returns:
        Path to the saved file.
    """
    output_dir.mkdir(parents=True, exist_ok=True)

    topic = str((final.conversation or {}).get("topic") or "deliberation")
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    slug = slug_override if slug_override is not None else _slug(topic)
    filepath = output_dir / f"{timestamp}_{slug}.md"

    filepath.write_text(format_final_result(final), encoding="utf-8")
    logger.info("Transcript saved to: %s", filepath)
    return filepath
