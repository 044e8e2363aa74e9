from __future__ import annotations

import pytest

from hub_mirror.transport.normalize import (
    AgentUpdate,
    ConnectionUpdate,
    CounterIncrement,
    PayloadError,
    TaskUpdate,
    decode_frame,
    normalize_payload,
)


def test_agent_update_with_nested_agent() -> None:
    updates = normalize_payload({"type": "agent_update", "agent": {"id": "main", "status": "active"}})

    assert len(updates) == 1
    assert isinstance(updates[0], AgentUpdate)
    assert updates[0].patch.id == "main"
    assert updates[0].patch.changes() == {"status": "active"}


def test_agent_update_with_inline_fields() -> None:
    updates = normalize_payload({"type": "agent_update", "id": "psych", "messageCount": 9})

    assert isinstance(updates[0], AgentUpdate)
    assert updates[0].patch.changes() == {"message_count": 9}


def test_session_update_carries_tasks() -> None:
    updates = normalize_payload(
        {
            "type": "session_update",
            "sessions": [
                {"id": "spawn-1", "status": "running", "startTime": 1000},
                {"id": "cron-1", "type": "cron", "elapsed": 12},
            ],
        }
    )

    assert [type(u) for u in updates] == [TaskUpdate, TaskUpdate]
    assert [u.patch.id for u in updates] == ["spawn-1", "cron-1"]


def test_connection_update() -> None:
    updates = normalize_payload({"type": "connection_update", "connection": {"id": "c1", "from": "a", "to": "b"}})

    assert isinstance(updates[0], ConnectionUpdate)
    assert updates[0].patch.source == "a"
    assert updates[0].patch.target == "b"


def test_message_event_becomes_counter_increment() -> None:
    assert normalize_payload({"type": "message_event"}) == [CounterIncrement(amount=1)]
    assert normalize_payload({"type": "message_event", "count": 3}) == [CounterIncrement(amount=3)]
    with pytest.raises(PayloadError):
        normalize_payload({"type": "message_event", "count": -1})


def test_batched_update_frame_keeps_order() -> None:
    updates = normalize_payload(
        {
            "type": "update",
            "agents": [{"id": "main"}],
            "sessions": [{"id": "t1", "status": "running"}],
            "connections": [{"id": "c1", "from": "main", "to": "ops"}],
        }
    )

    assert [type(u) for u in updates] == [AgentUpdate, TaskUpdate, ConnectionUpdate]


def test_full_state_object_without_type() -> None:
    updates = normalize_payload({"agents": [{"id": "main"}, {"id": "ops"}], "sessions": []})

    assert [u.patch.id for u in updates] == ["main", "ops"]


def test_bare_array_is_classified_per_record() -> None:
    updates = normalize_payload(
        [
            {"id": "main", "status": "active"},
            {"id": "spawn-1", "status": "running", "startTime": 5},
            {"id": "cron-1", "type": "cron"},
            {"id": "c1", "from": "main", "to": "ops"},
        ]
    )

    assert [type(u) for u in updates] == [AgentUpdate, TaskUpdate, TaskUpdate, ConnectionUpdate]


def test_greeting_and_heartbeat_frames_are_no_ops() -> None:
    assert normalize_payload({"type": "connected"}) == []
    assert normalize_payload({"type": "tick", "ts": 123}) == []


def test_record_without_id_is_dropped_but_siblings_survive() -> None:
    updates = normalize_payload({"type": "agent_update", "agents": [{"status": "active"}, {"id": "ops"}, "junk"]})

    assert [u.patch.id for u in updates] == ["ops"]


@pytest.mark.parametrize(
    "payload",
    [
        {"type": "mystery"},
        {"status": "active"},
        "just a string",
        42,
        {"type": "update", "agents": "not-a-list"},
        {"type": ["x"]},
        {"type": {"kind": "agent_update"}},
    ],
)
def test_unrecognised_payloads_raise(payload: object) -> None:
    with pytest.raises(PayloadError):
        normalize_payload(payload)


def test_decode_frame_rejects_invalid_json() -> None:
    assert decode_frame('{"type": "tick"}') == {"type": "tick"}
    with pytest.raises(PayloadError):
        decode_frame("{not json")
    with pytest.raises(PayloadError):
        decode_frame(b"\xff\xfe")


def test_bare_array_record_with_odd_type_field_is_an_agent() -> None:
    updates = normalize_payload([{"id": "a", "type": ["x"]}, {"id": "t", "status": {"bad": 1}, "elapsed": 3}])

    assert isinstance(updates[0], AgentUpdate)
    assert updates[0].patch.id == "a"
    assert isinstance(updates[1], TaskUpdate)
