"""HTTP + SSE transport for the Wisepanel API."""

from __future__ import annotations

import json
import logging
import time
from collections.abc import AsyncIterable, Callable
from dataclasses import asdict

import aiohttp

from config.config_loader import ApiConfig, StreamDefaults
from src.errors import ConfigError, PublishError, WisepanelAPIError
from src.models import PublishData, PublishResult, StreamOptions

logger = logging.getLogger(__name__)

_START_STREAM_PATH = "/v1/context-engine/orchestrator/runs/start-stream"
_PUBLISH_PATH = "/v1/commons/publish"


def build_stream_body(options: StreamOptions, defaults: StreamDefaults) -> dict[str, object]:
    """Request body for start-stream. Context, when given, is prepended to the question."""
    topic = f"{options.context}\n\n{options.question}" if options.context else options.question
    return {
        "topic": topic,
        "session_id": f"mcp-{int(time.time() * 1000)}",
        "polyhedron_type": options.topology or defaults.topology,
        "num_rounds": options.rounds or defaults.rounds,
        "model_group": options.model_group or defaults.model_group,
        "short_response_mode": bool(options.short_responses or defaults.short_responses),
        "context_strategy": defaults.context_strategy,
    }


def publish_payload(data: PublishData) -> dict[str, object]:
    """Commons publish body: camelCase keys, optional fields left out when unset."""
    payload: dict[str, object] = {
        "topic": data.topic,
        "topologyType": data.topology_type,
        "numRounds": data.num_rounds,
        "modelGroup": data.model_group,
        "agentCount": data.agent_count,
        "responses": [
            {k: v for k, v in asdict(r).items() if v is not None}
            for r in data.responses
        ],
    }
    if data.run_id:
        payload["runId"] = data.run_id
    if data.total_tokens is not None:
        payload["totalTokens"] = data.total_tokens
    if data.duration_seconds is not None:
        payload["durationSeconds"] = data.duration_seconds
    return payload


def publish_error(status: int, text: str) -> PublishError:
    """Build a PublishError from an error response, preferring the server's own message."""
    parsed: dict | None = None
    try:
        decoded = json.loads(text)
        if isinstance(decoded, dict):
            parsed = decoded
    except json.JSONDecodeError:
        pass
    message = None
    code = None
    if parsed:
        message = parsed.get("message") or parsed.get("error")
        code = parsed.get("code") or None
    return PublishError(
        str(message) if message else f"Publish failed ({status}): {text}",
        status,
        code=code,
        details=parsed,
    )


async def read_sse_stream(
    lines: AsyncIterable[bytes],
    on_event: Callable[[dict], None],
) -> None:
    """Decode an SSE body and hand each JSON object to ``on_event``, in order.

    ``data:`` lines of one block are joined; a blank line ends the block.
    Blocks that don't decode to a JSON object are skipped.
    """
    data_lines: list[str] = []

    def flush() -> None:
        if not data_lines:
            return
        payload = "".join(data_lines)
        data_lines.clear()
        try:
            event = json.loads(payload)
        except json.JSONDecodeError:
            logger.debug("Skipping malformed SSE payload: %.80s", payload)
            return
        if isinstance(event, dict):
            on_event(event)

    async for raw in lines:
        line = raw.decode("utf-8", errors="replace").rstrip("\r\n")
        if not line:
            flush()
            continue
        if line.startswith(":"):
            continue
        if line.startswith("data:"):
            data_lines.append(line[len("data:"):].removeprefix(" "))
    flush()


class WisepanelClient:
    """Wisepanel API client: start-stream, Commons publish and run cancel."""

    def __init__(self, api: ApiConfig, stream_defaults: StreamDefaults) -> None:
        if not api.api_key:
            raise ConfigError(
                f"{api.api_key_env} environment variable is required. "
                "Generate one at wisepanel.ai/settings"
            )
        self._api = api
        self._stream_defaults = stream_defaults

    @property
    def api_url(self) -> str:
        return self._api.base_url

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._api.api_key}",
            "Content-Type": "application/json",
        }

    def _make_url(self, path: str) -> str:
        return f"{self._api.base_url}{path}"

    async def start_stream(self, options: StreamOptions, on_event: Callable[[dict], None]) -> None:
        """Open a deliberation stream and feed every decoded event to ``on_event``.

        Runs until the server closes the stream. Cancel the awaiting task to abort.

        Raises:
            WisepanelAPIError: On an HTTP error status.
        """
        body = build_stream_body(options, self._stream_defaults)
        # stream stays open for the whole deliberation
        timeout = aiohttp.ClientTimeout(total=None, sock_connect=self._api.http_timeout_sec)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.post(
                self._make_url(_START_STREAM_PATH),
                headers={**self._headers(), "Accept": "text/event-stream"},
                json=body,
            ) as resp:
                if resp.status >= 400:
                    text = await resp.text()
                    raise WisepanelAPIError(f"API {resp.status}: {text}", resp.status)
                logger.info("Stream opened (topology=%s, rounds=%s)", body["polyhedron_type"], body["num_rounds"])
                await read_sse_stream(resp.content, on_event)
        logger.info("Stream closed by server")

    async def publish_to_commons(self, data: PublishData) -> PublishResult:
        """Publish a completed deliberation.

        Raises:
            PublishError: On any HTTP error status.
        """
        timeout = aiohttp.ClientTimeout(total=self._api.http_timeout_sec)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.post(
                self._make_url(_PUBLISH_PATH),
                headers=self._headers(),
                json=publish_payload(data),
            ) as resp:
                text = await resp.text()
                if resp.status >= 400:
                    raise publish_error(resp.status, text)
        body = json.loads(text)
        return PublishResult(
            slug=str(body.get("slug", "")),
            url=str(body.get("url", "")),
            existing=bool(body.get("existing", False)),
        )

    async def cancel_run(self, run_id: str) -> None:
        """Ask the server to stop a run.

        Raises:
            WisepanelAPIError: On any HTTP error status.
        """
        url = self._make_url(f"/v1/context-engine/orchestrator/runs/{run_id}/cancel")
        timeout = aiohttp.ClientTimeout(total=self._api.http_timeout_sec)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.post(url, headers=self._headers()) as resp:
                if resp.status >= 400:
                    raise WisepanelAPIError(f"Cancel failed: {resp.status}", resp.status)
