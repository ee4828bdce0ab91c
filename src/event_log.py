"""Run registry and per-run event log.

Owns every tracked run for the lifetime of the process: the append-only event
history, the counters derived from it, and the read cursor that marks how much
of the history polling has already handed out.
"""

import logging
import re
from collections.abc import Callable
from dataclasses import dataclass, field

from src.events import (
    AgentResponseEvent,
    AgentsCreatedEvent,
    CancelledEvent,
    ConnectionEvent,
    CostEstimationEvent,
    ErrorEvent,
    Event,
    FinalEvent,
    is_interesting,
    records,
)
from src.models import (
    PollSnapshot,
    PublishData,
    PublishResponse,
    RunInfo,
    RunResult,
    RunStatus,
    RunSummary,
)

logger = logging.getLogger(__name__)

_THINK_RE = re.compile(r"<think>.*?</think>", re.DOTALL)


@dataclass
class RunState:
    events: list[Event] = field(default_factory=list)
    last_poll_index: int = 0
    status: RunStatus = "running"
    agents_total: int = 0
    agents_responded: int = 0
    estimated_cost: float = 0.0
    final_result: FinalEvent | None = None
    topic: str = ""


def strip_think_tags(message: str) -> str:
    """Remove <think>...</think> reasoning traces from a panelist message."""
    return _THINK_RE.sub("", message).strip()


def infer_topology(agent_count: int) -> str:
    """Coarse topology label for payloads that don't name one."""
    if agent_count <= 4:
        return "small"
    if agent_count <= 6:
        return "medium"
    return "large"


class EventLog:
    """Process-wide registry of runs.

    Subscribers registered with :meth:`subscribe` are called with a run id
    whenever that run gains an interesting event or leaves ``running``.
    """

    def __init__(self) -> None:
        self._runs: dict[str, RunState] = {}
        self._subscribers: list[Callable[[str], None]] = []

    def subscribe(self, callback: Callable[[str], None]) -> None:
        self._subscribers.append(callback)

    def _notify(self, run_id: str) -> None:
        for callback in list(self._subscribers):
            callback(run_id)

    def create_run(self, run_id: str) -> None:
        if run_id in self._runs:
            logger.debug("Run %s already tracked, ignoring duplicate confirmation", run_id)
            return
        self._runs[run_id] = RunState()
        logger.info("Tracking run %s", run_id)

    def has(self, run_id: str) -> bool:
        return run_id in self._runs

    def add_event(self, run_id: str, event: Event) -> None:
        run = self._runs.get(run_id)
        if run is None:
            logger.debug("Dropping %s event for unknown run %s", event.type_tag, run_id)
            return
        run.events.append(event)

        if isinstance(event, ConnectionEvent):
            if event.topic and not run.topic:
                run.topic = event.topic
        elif isinstance(event, AgentsCreatedEvent):
            run.agents_total = event.count
        elif isinstance(event, AgentResponseEvent):
            run.agents_responded += 1
        elif isinstance(event, CostEstimationEvent):
            run.estimated_cost = event.estimated_cost
        elif isinstance(event, FinalEvent):
            run.status = "canceled" if event.status == "canceled" else "completed"
            run.final_result = event
            if not run.topic and event.conversation:
                topic = event.conversation.get("topic")
                if isinstance(topic, str):
                    run.topic = topic
            logger.info("Run %s finished: %s", run_id, run.status)
        elif isinstance(event, ErrorEvent):
            run.status = "failed"
            logger.warning("Run %s reported an error: %s", run_id, event.message or "unknown error")
        elif isinstance(event, CancelledEvent):
            run.status = "canceled"

        if is_interesting(event) or isinstance(event, CancelledEvent):
            self._notify(run_id)

    def has_pending(self, run_id: str) -> bool:
        """True if an interesting event sits past the run's read cursor."""
        run = self._runs.get(run_id)
        if run is None:
            return False
        return any(is_interesting(e) for e in run.events[run.last_poll_index:])

    def is_ready(self, run_id: str) -> bool:
        """Whether a poll for this run should skip waiting entirely."""
        run = self._runs.get(run_id)
        if run is None or run.status != "running":
            return True
        return self.has_pending(run_id)

    def get_new_events(self, run_id: str) -> PollSnapshot | None:
        run = self._runs.get(run_id)
        if run is None:
            return None
        new_events = [e for e in run.events[run.last_poll_index:] if is_interesting(e)]
        run.last_poll_index = len(run.events)
        return PollSnapshot(
            status=run.status,
            new_events=new_events,
            agents_responded=run.agents_responded,
            agents_total=run.agents_total,
        )

    def get_result(self, run_id: str) -> RunResult | None:
        run = self._runs.get(run_id)
        if run is None:
            return None
        return RunResult(status=run.status, result=run.final_result)

    def get_run_info(self, run_id: str) -> RunInfo | None:
        run = self._runs.get(run_id)
        if run is None:
            return None
        return RunInfo(
            status=run.status,
            agents_total=run.agents_total,
            agents_responded=run.agents_responded,
            estimated_cost=run.estimated_cost,
        )

    def get_publish_data(self, run_id: str) -> PublishData | None:
        """Flatten a completed run's terminal payload into Commons publish data.

        Returns None unless the run completed and its ``final`` event carries a
        ``conversation`` mapping.
        """
        run = self._runs.get(run_id)
        if run is None or run.status != "completed" or run.final_result is None:
            return None
        conv = run.final_result.conversation
        if not conv:
            return None

        connection = next((e for e in run.events if isinstance(e, ConnectionEvent)), None)
        api_run_id = connection.run_id if connection and connection.run_id else run_id

        topology_type = (
            conv.get("polyhedron_type")
            or conv.get("topology_type")
            or conv.get("topology")
            or infer_topology(run.agents_total)
        )

        responses: list[PublishResponse] = []
        for round_result in records(conv.get("round_results")):
            for node in records(round_result.get("node_results")):
                round_num = node.get("round") or 1
                for r in records(node.get("responses")):
                    responses.append(PublishResponse(
                        round=round_num,
                        agent=r.get("agent_name") or "",
                        role=r.get("agent_role") or "",
                        message=strip_think_tags(r.get("message") or ""),
                        model=r.get("model") or None,
                        provider=r.get("provider") or None,
                    ))

        return PublishData(
            run_id=api_run_id,
            topic=conv.get("topic") or "",
            topology_type=topology_type,
            num_rounds=conv.get("total_rounds") or 1,
            model_group=conv.get("model_group") or "mixed",
            agent_count=run.agents_total,
            total_tokens=conv.get("total_tokens") or None,
            duration_seconds=conv.get("duration_seconds") or conv.get("duration") or None,
            responses=responses,
        )

    def list_runs(self) -> list[RunSummary]:
        return [
            RunSummary(
                run_id=run_id,
                status=run.status,
                topic=run.topic,
                agents_total=run.agents_total,
                agents_responded=run.agents_responded,
            )
            for run_id, run in self._runs.items()
        ]

    def set_status(self, run_id: str, status: RunStatus) -> None:
        run = self._runs.get(run_id)
        if run is None:
            return
        run.status = status
        if status != "running":
            # a run outside "running" never leaves a poller waiting
            self._notify(run_id)
