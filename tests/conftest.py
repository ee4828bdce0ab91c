"""Shared pytest fixtures."""

import asyncio
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from config.config_loader import ApiConfig, AppConfig, OutputConfig, PollingConfig, StreamDefaults
from src.event_log import EventLog
from src.models import PublishResult, StreamOptions
from src.runs import RunManager
from src.waiters import WaiterCoordinator


@pytest.fixture
def sample_api_config() -> ApiConfig:
    return ApiConfig(
        base_url="https://api.test.wisepanel.ai",
        api_key_env="TEST_WISEPANEL_KEY",
        http_timeout_sec=5,
        api_key="test-key",
    )


@pytest.fixture
def sample_stream_defaults() -> StreamDefaults:
    return StreamDefaults(
        topology="tetrahedron",
        model_group="mixed",
        rounds=1,
        max_rounds=5,
        short_responses=False,
        context_strategy="moderate",
    )


@pytest.fixture
def sample_app_config(
    sample_api_config: ApiConfig,
    sample_stream_defaults: StreamDefaults,
    tmp_path: Path,
) -> AppConfig:
    return AppConfig(
        api=sample_api_config,
        polling=PollingConfig(timeout_sec=0.2, start_timeout_sec=0.5),
        stream=sample_stream_defaults,
        output=OutputConfig(dir=tmp_path / "output"),
    )


@pytest.fixture
def event_log() -> EventLog:
    return EventLog()


@pytest.fixture
def coordinator(event_log: EventLog) -> WaiterCoordinator:
    return WaiterCoordinator(event_log)


@pytest.fixture
def final_payload() -> dict:
    """Terminal event: two rounds, one node each, two responses per node."""
    return {
        "type": "final",
        "status": "completed",
        "agents": [
            {"name": "Ada", "role": "Skeptic", "provider": "anthropic", "model": "claude"},
            {"name": "Brin", "role": "Optimist", "provider": "google", "model": "gemini"},
        ],
        "conversation": {
            "topic": "Monorepo or polyrepo?",
            "total_rounds": 2,
            "total_tokens": 12345,
            "model_group": "smart",
            "duration_seconds": 42.5,
            "round_results": [
                {
                    "node_results": [
                        {
                            "round": 1,
                            "responses": [
                                {"agent_name": "Ada", "agent_role": "Skeptic",
                                 "message": "<think>hmm</think>Polyrepo.", "model": "claude",
                                 "provider": "anthropic"},
                                {"agent_name": "Brin", "agent_role": "Optimist",
                                 "message": "Monorepo.", "model": "gemini", "provider": "google"},
                            ],
                        }
                    ]
                },
                {
                    "node_results": [
                        {
                            "round": 2,
                            "responses": [
                                {"agent_name": "Ada", "agent_role": "Skeptic",
                                 "message": "Still polyrepo.\n<think>\nsure?\n</think>", "model": "claude",
                                 "provider": "anthropic"},
                                {"agent_name": "Brin", "agent_role": "Optimist",
                                 "message": "Monorepo, with tooling.", "model": "gemini",
                                 "provider": "google"},
                            ],
                        }
                    ]
                },
            ],
        },
    }


def agent_response(agent: str = "Ada", message: str = "An argument.") -> dict:
    return {
        "type": "agent_response",
        "agent": agent,
        "role": "Skeptic",
        "message": message,
        "model": "claude",
        "provider": "anthropic",
    }


class FakeClient:
    """Test double WisepanelClient.

    ``start_stream`` replays ``events`` through the callback, then raises
    ``fail_with`` if set, else stays open until ``release`` is set.
    """

    def __init__(
        self,
        events: list | None = None,
        hold_open: bool = True,
        fail_with: Exception | None = None,
    ) -> None:
        self.events = list(events or [])
        self.hold_open = hold_open
        self.fail_with = fail_with
        self.release = asyncio.Event()
        self.on_event = None
        self.options: StreamOptions | None = None
        self.cancel_run = AsyncMock(return_value=None)
        self.publish_to_commons = AsyncMock(
            return_value=PublishResult(slug="monorepo-or-polyrepo", url="https://wisepanel.ai/c/x", existing=False)
        )

    async def start_stream(self, options: StreamOptions, on_event) -> None:
        self.options = options
        self.on_event = on_event
        for payload in self.events:
            on_event(payload)
        if self.fail_with is not None:
            raise self.fail_with
        if self.hold_open:
            await self.release.wait()

    def push(self, payload: dict) -> None:
        self.on_event(payload)


def opening_events(run_id: str = "run-1", count: int = 4) -> list[dict]:
    return [
        {"type": "connection", "run_id": run_id, "topic": "Monorepo or polyrepo?"},
        {"type": "cost_estimation", "estimated_cost": 0.12},
        {"type": "agents_created", "count": count},
    ]


@pytest.fixture
def fake_client() -> FakeClient:
    return FakeClient(opening_events())


@pytest.fixture
async def manager(fake_client: FakeClient):
    mgr = RunManager(fake_client, poll_timeout_sec=0.2, start_timeout_sec=0.5, max_rounds=5)
    yield mgr
    await mgr.aclose()
