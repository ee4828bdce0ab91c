"""Markdown question files with optional YAML frontmatter."""

from pathlib import Path

import frontmatter

from src.models import StreamOptions

_OPTION_KEYS = ("topology", "model_group", "rounds", "context", "short_responses")


def parse_file(file_path: Path) -> tuple[str, dict]:
    """Parse a markdown file with optional YAML frontmatter.

    Returns:
        (content, metadata) where content is the body text and metadata
        may hold: topology (str), model_group (str), rounds (int),
        context (str), short_responses (bool). If no frontmatter, metadata is {}.
    """
    post = frontmatter.load(str(file_path))
    content = post.content.strip()
    metadata = dict(post.metadata)
    return content, metadata


def merge_options(question: str, cli: dict, meta: dict) -> StreamOptions:
    """Build stream options; CLI values win, frontmatter fills the gaps.

    Unset values stay None so the configured stream defaults apply.
    """
    values: dict = {}
    for key in _OPTION_KEYS:
        if cli.get(key) not in (None, False):
            values[key] = cli[key]
        elif key in meta:
            values[key] = meta[key]
    if "rounds" in values:
        values["rounds"] = int(values["rounds"])
    if "short_responses" in values:
        values["short_responses"] = bool(values["short_responses"])
    for key in ("topology", "model_group", "context"):
        if key in values:
            values[key] = str(values[key])
    return StreamOptions(question=question, **values)
