"""Tests for src/event_log.py."""

import pytest

from src.event_log import EventLog, infer_topology, strip_think_tags
from src.events import parse_event
from tests.conftest import agent_response


def _add(log: EventLog, run_id: str, payload: dict) -> None:
    log.add_event(run_id, parse_event(payload))


def test_create_run_is_idempotent(event_log):
    event_log.create_run("R1")
    _add(event_log, "R1", {"type": "agents_created", "count": 4})
    event_log.create_run("R1")
    info = event_log.get_run_info("R1")
    assert info.agents_total == 4
    assert len(event_log.list_runs()) == 1


def test_unknown_run_returns_none(event_log):
    assert event_log.get_new_events("missing") is None
    assert event_log.get_result("missing") is None
    assert event_log.get_run_info("missing") is None
    assert event_log.get_publish_data("missing") is None
    assert not event_log.has("missing")


def test_events_for_unknown_run_are_dropped(event_log):
    _add(event_log, "ghost", agent_response())
    assert not event_log.has("ghost")
    assert event_log.list_runs() == []


def test_agents_counted_scenario(event_log):
    event_log.create_run("R1")
    _add(event_log, "R1", {"type": "connection", "run_id": "R1", "topic": "X"})
    _add(event_log, "R1", {"type": "agents_created", "count": 4})
    assert event_log.get_run_info("R1").agents_total == 4

    for name in ("A", "B", "C", "D"):
        _add(event_log, "R1", agent_response(agent=name))

    snapshot = event_log.get_new_events("R1")
    assert snapshot.agents_responded == 4
    assert snapshot.status == "running"
    assert [e.type_tag for e in snapshot.new_events] == ["agents_created"] + ["agent_response"] * 4
    assert [e.agent for e in snapshot.new_events[1:]] == ["A", "B", "C", "D"]


def test_cursor_never_returns_an_event_twice(event_log):
    event_log.create_run("R1")
    _add(event_log, "R1", agent_response(agent="A"))
    first = event_log.get_new_events("R1")
    _add(event_log, "R1", agent_response(agent="B"))
    second = event_log.get_new_events("R1")
    third = event_log.get_new_events("R1")

    assert [e.agent for e in first.new_events] == ["A"]
    assert [e.agent for e in second.new_events] == ["B"]
    assert third.new_events == []
    assert event_log._runs["R1"].last_poll_index == len(event_log._runs["R1"].events)


def test_uninteresting_events_are_logged_not_delivered(event_log):
    event_log.create_run("R1")
    _add(event_log, "R1", {"type": "connection", "run_id": "R1"})
    _add(event_log, "R1", {"type": "token_usage", "tokens": 5})
    _add(event_log, "R1", {"type": "phase_start", "phase": "debate"})

    snapshot = event_log.get_new_events("R1")
    assert [e.type_tag for e in snapshot.new_events] == ["phase_start"]
    assert len(event_log._runs["R1"].events) == 3


def test_log_is_append_only(event_log):
    event_log.create_run("R1")
    seen = []
    for i in range(5):
        _add(event_log, "R1", agent_response(agent=f"agent-{i}"))
        events = event_log._runs["R1"].events
        assert events[: len(seen)] == seen
        seen = list(events)
        event_log.get_new_events("R1")
    assert len(seen) == 5


def test_connection_topic_seeds_only_once(event_log):
    event_log.create_run("R1")
    _add(event_log, "R1", {"type": "connection", "run_id": "R1", "topic": "First"})
    _add(event_log, "R1", {"type": "connection", "run_id": "R1", "topic": "Second"})
    assert event_log.list_runs()[0].topic == "First"


def test_cost_estimation_overwrites(event_log):
    event_log.create_run("R1")
    _add(event_log, "R1", {"type": "cost_estimation", "estimated_cost": 0.5})
    _add(event_log, "R1", {"type": "cost_estimation", "estimated_cost": 0.75})
    assert event_log.get_run_info("R1").estimated_cost == 0.75


def test_final_completes_run_and_backfills_topic(event_log, final_payload):
    event_log.create_run("R1")
    _add(event_log, "R1", final_payload)
    result = event_log.get_result("R1")
    assert result.status == "completed"
    assert result.result.conversation["total_rounds"] == 2
    assert event_log.list_runs()[0].topic == "Monorepo or polyrepo?"


def test_final_with_canceled_status(event_log):
    event_log.create_run("R1")
    _add(event_log, "R1", {"type": "final", "status": "canceled"})
    assert event_log.get_result("R1").status == "canceled"


@pytest.mark.parametrize("payload,status", [
    ({"type": "error", "message": "boom"}, "failed"),
    ({"type": "cancelled"}, "canceled"),
])
def test_terminal_events_set_status(event_log, payload, status):
    event_log.create_run("R1")
    _add(event_log, "R1", payload)
    assert event_log.get_run_info("R1").status == status


def test_events_after_terminal_still_append(event_log, final_payload):
    event_log.create_run("R1")
    _add(event_log, "R1", final_payload)
    _add(event_log, "R1", {"type": "billing_complete"})
    _add(event_log, "R1", agent_response())
    assert event_log.get_run_info("R1").status == "completed"
    assert event_log.get_run_info("R1").agents_responded == 1
    assert len(event_log.get_new_events("R1").new_events) == 3


def test_notifies_subscribers_for_interesting_and_cancelled(event_log):
    calls: list[str] = []
    event_log.subscribe(calls.append)
    event_log.create_run("R1")
    _add(event_log, "R1", {"type": "connection", "run_id": "R1"})
    _add(event_log, "R1", {"type": "token_usage"})
    assert calls == []
    _add(event_log, "R1", agent_response())
    _add(event_log, "R1", {"type": "cancelled"})
    assert calls == ["R1", "R1"]


def test_set_status_overrides_and_notifies(event_log):
    calls: list[str] = []
    event_log.subscribe(calls.append)
    event_log.create_run("R1")
    event_log.set_status("R1", "canceled")
    event_log.set_status("missing", "failed")
    assert event_log.get_run_info("R1").status == "canceled"
    assert calls == ["R1"]


def test_is_ready(event_log):
    assert event_log.is_ready("missing")
    event_log.create_run("R1")
    assert not event_log.is_ready("R1")
    _add(event_log, "R1", {"type": "token_usage"})
    assert not event_log.is_ready("R1")
    _add(event_log, "R1", agent_response())
    assert event_log.is_ready("R1")
    event_log.get_new_events("R1")
    assert not event_log.is_ready("R1")
    event_log.set_status("R1", "failed")
    assert event_log.is_ready("R1")


def test_list_runs_in_insertion_order(event_log):
    for run_id in ("b", "a", "c"):
        event_log.create_run(run_id)
    _add(event_log, "a", {"type": "agents_created", "count": 6})
    runs = event_log.list_runs()
    assert [r.run_id for r in runs] == ["b", "a", "c"]
    assert runs[1].agents_total == 6
    assert runs[1].status == "running"


# --- Publish data ---

def test_publish_data_flattens_rounds(event_log, final_payload):
    event_log.create_run("R1")
    _add(event_log, "R1", {"type": "connection", "run_id": "api-R1", "topic": "Monorepo or polyrepo?"})
    _add(event_log, "R1", {"type": "agents_created", "count": 4})
    _add(event_log, "R1", final_payload)

    data = event_log.get_publish_data("R1")
    assert data is not None
    assert len(data.responses) == 4
    assert [(r.round, r.agent) for r in data.responses] == [(1, "Ada"), (1, "Brin"), (2, "Ada"), (2, "Brin")]
    assert data.responses[0].message == "Polyrepo."
    assert data.responses[2].message == "Still polyrepo."
    assert all("<think>" not in r.message for r in data.responses)
    assert data.run_id == "api-R1"
    assert data.topic == "Monorepo or polyrepo?"
    assert data.num_rounds == 2
    assert data.model_group == "smart"
    assert data.agent_count == 4
    assert data.total_tokens == 12345
    assert data.duration_seconds == 42.5
    assert data.topology_type == "small"


def test_publish_data_prefers_explicit_topology(event_log, final_payload):
    final_payload["conversation"]["polyhedron_type"] = "octahedron"
    event_log.create_run("R1")
    _add(event_log, "R1", final_payload)
    assert event_log.get_publish_data("R1").topology_type == "octahedron"


def test_publish_data_defaults(event_log):
    event_log.create_run("R1")
    _add(event_log, "R1", {"type": "final", "conversation": {"round_results": [
        {"node_results": [{"responses": [{"message": "hi"}]}]},
    ]}})
    data = event_log.get_publish_data("R1")
    assert data.run_id == "R1"
    assert data.num_rounds == 1
    assert data.model_group == "mixed"
    assert data.total_tokens is None
    assert data.responses[0].round == 1
    assert data.responses[0].agent == ""
    assert data.responses[0].model is None


def test_publish_data_unavailable(event_log, final_payload):
    event_log.create_run("running")
    assert event_log.get_publish_data("running") is None

    event_log.create_run("no-conv")
    _add(event_log, "no-conv", {"type": "final"})
    assert event_log.get_publish_data("no-conv") is None

    event_log.create_run("failed")
    _add(event_log, "failed", final_payload)
    event_log.set_status("failed", "failed")
    assert event_log.get_publish_data("failed") is None


@pytest.mark.parametrize("count,label", [(0, "small"), (4, "small"), (5, "medium"), (6, "medium"), (12, "large")])
def test_infer_topology(count, label):
    assert infer_topology(count) == label


def test_strip_think_tags():
    assert strip_think_tags("<think>a\nb</think> Answer ") == "Answer"
    assert strip_think_tags("One<think>x</think> two <think>y</think>") == "One two"
    assert strip_think_tags("plain") == "plain"
