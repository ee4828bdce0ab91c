"""Pure dataclasses for the Wisepanel bridge. No logic, no deps."""

from dataclasses import dataclass, field
from typing import Literal

RunStatus = Literal["running", "completed", "failed", "canceled"]


@dataclass
class StreamOptions:
    question: str
    topology: str | None = None        # "tetrahedron", "octahedron", "icosahedron"
    model_group: str | None = None     # "mixed", "fast", "smart", "informed"
    rounds: int | None = None
    context: str | None = None
    short_responses: bool = False


@dataclass
class PollSnapshot:
    status: RunStatus
    new_events: list = field(default_factory=list)
    agents_responded: int = 0
    agents_total: int = 0


@dataclass
class RunResult:
    status: RunStatus
    result: object | None  # FinalEvent once the run completed


@dataclass
class RunInfo:
    status: RunStatus
    agents_total: int
    agents_responded: int
    estimated_cost: float


@dataclass
class RunSummary:
    run_id: str
    status: RunStatus
    topic: str
    agents_total: int
    agents_responded: int


@dataclass
class PublishResponse:
    round: int
    agent: str
    role: str
    message: str
    model: str | None = None
    provider: str | None = None


@dataclass
class PublishData:
    topic: str
    topology_type: str
    num_rounds: int
    model_group: str
    agent_count: int
    responses: list[PublishResponse] = field(default_factory=list)
    run_id: str | None = None
    total_tokens: int | None = None
    duration_seconds: float | None = None


@dataclass
class PublishResult:
    slug: str
    url: str
    existing: bool
