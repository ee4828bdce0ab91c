"""MCP server exposing Wisepanel deliberations as tools.

Deliberations stream from the Wisepanel API for minutes; MCP tool calls are
request/response. ``wisepanel_start`` returns as soon as the panel exists and
``wisepanel_poll`` long-polls the buffered stream for what arrived since the
previous poll.
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from typing import Any, Literal

from mcp.server.fastmcp import FastMCP

from src.models import StreamOptions
from src.runs import RunManager

logger = logging.getLogger(__name__)

Topology = Literal["tetrahedron", "octahedron", "icosahedron"]
ModelGroup = Literal["mixed", "fast", "smart", "informed"]

_PUBLISH_FOOTER = (
    "\n\n---\n_Publish this deliberation to the [Wisepanel Commons](https://wisepanel.ai/commons) "
    "using wisepanel_publish._"
)

_START_DESCRIPTION = (
    "Start a Wisepanel deliberation. Convenes a panel of AI models (Claude, Gemini, Perplexity) "
    "to debate a question from assigned perspectives. Returns run_id immediately. "
    "After starting, poll with wisepanel_poll every 10-15 seconds. When an agent_response event appears, "
    "briefly summarize that panelist's key argument to the user before polling again. "
    "Each panelist participates in multiple conversation nodes, so total responses will exceed panel size. "
    'When status is "completed", provide a final synthesis of all perspectives, '
    "then ask the user if they'd like to publish to the Wisepanel Commons using wisepanel_publish. "
    "Do NOT call wisepanel_result after polling; you already have all the data from poll events."
)


async def _async_safe_call(fn_name: str, fn: Callable[[], Awaitable[str]]) -> str:
    """Run a tool body, turning unexpected exceptions into a JSON error.

    Tracebacks are logged server-side, never sent to the client.
    """
    try:
        return await fn()
    except Exception as exc:
        logger.exception("MCP tool %s failed", fn_name)
        return json.dumps({"error": str(exc), "tool": fn_name})


def build_server(manager: RunManager) -> FastMCP:
    """Construct the FastMCP server with all Wisepanel tools bound to ``manager``."""

    @asynccontextmanager
    async def lifespan(_: FastMCP) -> AsyncIterator[None]:
        try:
            yield
        finally:
            await manager.aclose()

    mcp = FastMCP(
        "Wisepanel",
        instructions=(
            "Wisepanel convenes panels of AI models to deliberate a question. Start a "
            "deliberation, poll it until it completes, then offer to publish it."
        ),
        lifespan=lifespan,
    )

    @mcp.tool(name="wisepanel_start", description=_START_DESCRIPTION)
    async def wisepanel_start(
        question: str,
        topology: Topology | None = None,
        model_group: ModelGroup | None = None,
        rounds: int | None = None,
        context: str | None = None,
        short_responses: bool = False,
    ) -> str:
        async def _run() -> str:
            options = StreamOptions(
                question=question,
                topology=topology,
                model_group=model_group,
                rounds=rounds,
                context=context,
                short_responses=short_responses,
            )
            return json.dumps(await manager.start(options))
        return await _async_safe_call("wisepanel_start", _run)

    @mcp.tool(name="wisepanel_poll")
    async def wisepanel_poll(run_id: str) -> str:
        """Poll a running Wisepanel deliberation for new events. Long-polls up to 15 seconds,
        returning immediately when panelist responses arrive. Returns new events since last poll.

        Args:
            run_id: The run ID from wisepanel_start
        """
        async def _run() -> str:
            return json.dumps(await manager.poll(run_id), indent=2)
        return await _async_safe_call("wisepanel_poll", _run)

    @mcp.tool(name="wisepanel_result")
    async def wisepanel_result(run_id: str) -> str:
        """Retrieve the full result of a completed Wisepanel deliberation. Only needed if you did
        not poll the run to completion. If you polled it live, you already have the data.

        Args:
            run_id: The run ID
        """
        async def _run() -> str:
            payload: dict[str, Any] = manager.result(run_id)
            if "error" in payload:
                return json.dumps(payload)
            return payload["markdown"] + _PUBLISH_FOOTER
        return await _async_safe_call("wisepanel_result", _run)

    @mcp.tool(name="wisepanel_cancel")
    async def wisepanel_cancel(run_id: str) -> str:
        """Cancel a running Wisepanel deliberation.

        Args:
            run_id: The run ID to cancel
        """
        async def _run() -> str:
            return json.dumps(await manager.cancel(run_id))
        return await _async_safe_call("wisepanel_cancel", _run)

    @mcp.tool(name="wisepanel_publish")
    async def wisepanel_publish(run_id: str) -> str:
        """Publish a completed deliberation to the Wisepanel Commons (wisepanel.ai/commons).
        Makes the deliberation publicly viewable and shareable. Only works for runs that
        completed successfully in this session.

        Args:
            run_id: The run ID of a completed deliberation
        """
        async def _run() -> str:
            return json.dumps(await manager.publish(run_id))
        return await _async_safe_call("wisepanel_publish", _run)

    @mcp.tool(name="wisepanel_list_runs")
    async def wisepanel_list_runs() -> str:
        """List all Wisepanel deliberation runs tracked in this session.
        Returns run_id, status, topic, and panel size for each run."""
        async def _run() -> str:
            return json.dumps(manager.list_runs(), indent=2)
        return await _async_safe_call("wisepanel_list_runs", _run)

    return mcp
