"""Typed upstream events.

Every message decoded from the Wisepanel stream becomes one frozen dataclass
picked by its ``type`` tag. The raw payload rides along so publish-data
extraction and poll pass-through see exactly what the server sent.
"""

from __future__ import annotations

import math
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, ClassVar


@dataclass(frozen=True)
class Event:
    type: ClassVar[str] = ""
    raw: Mapping[str, Any] = field(default_factory=dict, repr=False, compare=False)

    @property
    def type_tag(self) -> str:
        return self.type or str(self.raw.get("type", ""))


@dataclass(frozen=True)
class ConnectionEvent(Event):
    type: ClassVar[str] = "connection"
    run_id: str = ""
    topic: str = ""


@dataclass(frozen=True)
class AgentsCreatedEvent(Event):
    type: ClassVar[str] = "agents_created"
    count: int = 0


@dataclass(frozen=True)
class AgentResponseEvent(Event):
    type: ClassVar[str] = "agent_response"
    agent: str = ""
    role: str = ""
    message: str = ""
    model: str = ""
    provider: str = ""


@dataclass(frozen=True)
class PhaseStartEvent(Event):
    type: ClassVar[str] = "phase_start"
    phase: str = ""


@dataclass(frozen=True)
class ConversationCompleteEvent(Event):
    type: ClassVar[str] = "conversation_complete"


@dataclass(frozen=True)
class FinalEvent(Event):
    type: ClassVar[str] = "final"
    status: str = ""
    conversation: Mapping[str, Any] | None = None
    agents: tuple[Mapping[str, Any], ...] = ()


@dataclass(frozen=True)
class ErrorEvent(Event):
    type: ClassVar[str] = "error"
    message: str = ""


@dataclass(frozen=True)
class CostEstimationEvent(Event):
    type: ClassVar[str] = "cost_estimation"
    estimated_cost: float = 0.0


@dataclass(frozen=True)
class BillingCompleteEvent(Event):
    type: ClassVar[str] = "billing_complete"


@dataclass(frozen=True)
class RolesGeneratedEvent(Event):
    type: ClassVar[str] = "roles_generated"


@dataclass(frozen=True)
class CancelledEvent(Event):
    type: ClassVar[str] = "cancelled"


@dataclass(frozen=True)
class UnknownEvent(Event):
    """Any type tag outside the known set. Logged, never delivered."""


INTERESTING_TYPES: frozenset[str] = frozenset({
    AgentResponseEvent.type,
    PhaseStartEvent.type,
    ConversationCompleteEvent.type,
    FinalEvent.type,
    ErrorEvent.type,
    CostEstimationEvent.type,
    AgentsCreatedEvent.type,
    BillingCompleteEvent.type,
    RolesGeneratedEvent.type,
})


def is_interesting(event: Event) -> bool:
    return event.type_tag in INTERESTING_TYPES


def _str(payload: Mapping[str, Any], key: str) -> str:
    value = payload.get(key)
    return value if isinstance(value, str) else ""


def _number(payload: Mapping[str, Any], key: str) -> float:
    value = payload.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0
    if not math.isfinite(value):
        return 0
    return value


def records(value: object) -> list[Mapping]:
    """The mapping elements of a JSON list; anything else yields nothing."""
    if not isinstance(value, list):
        return []
    return [v for v in value if isinstance(v, Mapping)]


def _mapping(payload: Mapping[str, Any], key: str) -> Mapping[str, Any] | None:
    value = payload.get(key)
    return value if isinstance(value, Mapping) else None


def parse_event(payload: object) -> Event | None:
    """Build the typed event for a decoded stream message.

    Returns None for malformed messages: anything that is not a mapping or
    has no string ``type``.
    """
    if not isinstance(payload, Mapping):
        return None
    event_type = payload.get("type")
    if not isinstance(event_type, str) or not event_type:
        return None

    raw = dict(payload)
    if event_type == ConnectionEvent.type:
        return ConnectionEvent(raw=raw, run_id=_str(raw, "run_id"), topic=_str(raw, "topic"))
    if event_type == AgentsCreatedEvent.type:
        return AgentsCreatedEvent(raw=raw, count=int(_number(raw, "count")))
    if event_type == AgentResponseEvent.type:
        return AgentResponseEvent(
            raw=raw,
            agent=_str(raw, "agent"),
            role=_str(raw, "role"),
            message=_str(raw, "message"),
            model=_str(raw, "model"),
            provider=_str(raw, "provider"),
        )
    if event_type == PhaseStartEvent.type:
        return PhaseStartEvent(raw=raw, phase=_str(raw, "phase"))
    if event_type == ConversationCompleteEvent.type:
        return ConversationCompleteEvent(raw=raw)
    if event_type == FinalEvent.type:
        return FinalEvent(
            raw=raw,
            status=_str(raw, "status"),
            conversation=_mapping(raw, "conversation"),
            agents=tuple(records(raw.get("agents"))),
        )
    if event_type == ErrorEvent.type:
        return ErrorEvent(raw=raw, message=_str(raw, "message") or _str(raw, "error"))
    if event_type == CostEstimationEvent.type:
        return CostEstimationEvent(raw=raw, estimated_cost=float(_number(raw, "estimated_cost")))
    if event_type == BillingCompleteEvent.type:
        return BillingCompleteEvent(raw=raw)
    if event_type == RolesGeneratedEvent.type:
        return RolesGeneratedEvent(raw=raw)
    if event_type == CancelledEvent.type:
        return CancelledEvent(raw=raw)
    return UnknownEvent(raw=raw)
