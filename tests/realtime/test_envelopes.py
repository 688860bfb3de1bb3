from datetime import datetime
from types import SimpleNamespace

import pytest
from pydantic import ValidationError

from domain.common.exceptions import UnknownEventTypeException
from domain.realtime.events import (
    EVENT_TYPES,
    LIFECYCLE_EVENT_TYPES,
    SCHEMA_VERSION,
    NodeStatusChanged,
    PlanCreated,
    parse_event,
)
from domain.realtime import messages as m


def _assert_iso_utc(ts: str) -> None:
    assert ts.endswith("Z")
    datetime.fromisoformat(ts.replace("Z", "+00:00"))


def test_plan_created_envelope_shape():
    plan = {"id": 7, "title": "Launch", "status": "draft", "owner_id": 3, "created_at": "2024-01-01T00:00:00Z"}
    msg = m.plan_created_message(plan, user_id=3, user_name="Ada").to_wire()

    assert msg["type"] == "plan.created"
    assert msg["payload"]["id"] == "7"
    assert msg["payload"]["ownerId"] == "3"
    assert msg["payload"]["title"] == "Launch"
    meta = msg["metadata"]
    assert meta["userId"] == "3"
    assert meta["userName"] == "Ada"
    assert meta["planId"] == "7"
    assert meta["version"] == SCHEMA_VERSION
    _assert_iso_utc(meta["timestamp"])


def test_node_events_carry_owning_plan_in_metadata():
    node = SimpleNamespace(id="N1", plan_id="P1", parent_id=None, title="Design", status="not_started")
    created = m.node_created_message(node, user_id="u1")
    updated = m.node_updated_message(node, user_id="u1")
    deleted = m.node_deleted_message("N1", "P1", "u1")

    for msg in (created, updated, deleted):
        assert msg.metadata.plan_id == "P1"
        assert msg.plan_id == "P1"
    assert created.payload.id == "N1"
    assert created.to_wire()["payload"]["planId"] == "P1"


def test_node_status_changed_keeps_old_and_new():
    msg = m.node_status_changed_message("N2", "P1", "not_started", "in_progress", "u1")
    assert isinstance(msg, NodeStatusChanged)
    wire = msg.to_wire()
    assert wire["type"] == "node.status_changed"
    assert wire["payload"] == {"id": "N2", "oldStatus": "not_started", "newStatus": "in_progress"}
    assert wire["metadata"]["planId"] == "P1"


def test_node_moved_accepts_dataclass_and_mapping():
    move = m.NodeMove(old_parent_id="A", new_parent_id="B", old_order_index=0, new_order_index=2)
    from_obj = m.node_moved_message("N1", "P1", move, "u1").to_wire()
    from_map = m.node_moved_message(
        "N1", "P1", {"oldParentId": "A", "newParentId": "B", "oldOrderIndex": 0, "newOrderIndex": 2}, "u1"
    ).to_wire()

    expected = {"nodeId": "N1", "oldParentId": "A", "newParentId": "B", "oldOrderIndex": 0, "newOrderIndex": 2}
    assert from_obj["payload"] == expected
    assert from_map["payload"] == expected


def test_missing_user_name_is_null_not_error():
    msg = m.plan_deleted_message("P1", "u1").to_wire()
    assert msg["metadata"]["userName"] is None
    assert msg["payload"] == {"id": "P1"}


def test_factories_tolerate_sparse_records():
    msg = m.comment_added_message({}, plan_id=None)
    wire = msg.to_wire()
    assert wire["type"] == "collaboration.comment_added"
    assert wire["payload"]["id"] is None
    assert wire["metadata"]["planId"] is None


def test_assignment_uses_assigner_as_actor():
    msg = m.user_assigned_message("N1", "P1", "u2", "Bob", "u1", "Ada").to_wire()
    assert msg["payload"] == {"nodeId": "N1", "userId": "u2", "userName": "Bob"}
    assert msg["metadata"]["userId"] == "u1"
    assert msg["metadata"]["userName"] == "Ada"


def test_log_added_defaults_actor_type_to_human():
    log = {"id": 1, "plan_node_id": 9, "user_id": 4, "content": "done"}
    assert m.log_added_message(log, "P1").payload.actor_type == "human"

    agent_log = dict(log, metadata={"actor_type": "agent"})
    assert m.log_added_message(agent_log, "P1").to_wire()["payload"]["actorType"] == "agent"


def test_collaborator_role_change_reports_both_roles():
    collaborator = {"id": "c1", "plan_id": "P1", "user_id": "u2", "role": "editor"}
    wire = m.collaborator_role_changed_message(collaborator, "viewer", "u1").to_wire()
    assert wire["payload"]["oldRole"] == "viewer"
    assert wire["payload"]["role"] == "editor"
    assert wire["metadata"]["planId"] == "P1"


def test_custom_message_has_minimal_metadata():
    msg = m.custom_message("P1", "plan.exported", {"format": "pdf"})
    assert msg["type"] == "plan.exported"
    assert msg["payload"] == {"format": "pdf"}
    assert set(msg["metadata"]) == {"timestamp", "planId"}
    assert msg["metadata"]["planId"] == "P1"


def test_envelopes_are_immutable():
    msg = m.plan_deleted_message("P1", "u1")
    with pytest.raises(ValidationError):
        msg.type = "plan.updated"


def test_event_type_taxonomy():
    assert "node.status_changed" in LIFECYCLE_EVENT_TYPES
    assert "collaborator.role_changed" in LIFECYCLE_EVENT_TYPES
    assert "typing_start" not in LIFECYCLE_EVENT_TYPES
    assert "typing_start" in EVENT_TYPES
    assert "active_users" in EVENT_TYPES


def test_parse_event_round_trips_wire_form():
    wire = m.plan_created_message({"id": "P1", "title": "T"}, "u1").to_wire()
    parsed = parse_event(wire)
    assert isinstance(parsed, PlanCreated)
    assert parsed.payload.title == "T"
    assert parsed.metadata.plan_id == "P1"


def test_parse_event_rejects_unknown_type():
    with pytest.raises(UnknownEventTypeException):
        parse_event({"type": "plan.archived", "payload": {}, "metadata": {}})
    with pytest.raises(UnknownEventTypeException):
        parse_event({"type": "typing_start"})
