import asyncio
import json

import pytest

from application.ports.identity import AuthenticatedUser
from application.services.collaboration_service import CollaborationServer
from domain.realtime.messages import node_status_changed_message


def _server(**kwargs) -> CollaborationServer:
    kwargs.setdefault("typing_timeout", 0.05)
    return CollaborationServer(**kwargs)


async def _join(server, conn, plan_id):
    await server.handle_message(conn, json.dumps({"type": "join_plan", "planId": plan_id}))


@pytest.mark.asyncio
async def test_connect_acknowledges(socket_factory, flush):
    server = _server()
    ws = socket_factory()
    await server.connect(AuthenticatedUser(id="A", name="Ada"), ws)
    await flush()

    assert ws.sent == [{"type": "connection", "status": "connected", "userId": "A"}]
    assert server.connections.get("A").user_name == "Ada"
    await server.aclose()


@pytest.mark.asyncio
async def test_join_plan_notifies_peers_and_sends_snapshot(socket_factory, flush):
    server = _server()
    ws_a, ws_b = socket_factory(), socket_factory()
    conn_b = await server.connect("B", ws_b)
    await _join(server, conn_b, "P1")
    conn_a = await server.connect("A", ws_a)
    await _join(server, conn_a, "P1")
    await flush()

    joined = ws_b.of_type("user_joined_plan")
    assert len(joined) == 1
    assert joined[0]["userId"] == "A"
    assert joined[0]["planId"] == "P1"
    snapshot = ws_a.of_type("active_users")
    assert snapshot == [{"type": "active_users", "planId": "P1", "users": ["A", "B"]}]
    # the joiner is not told about itself
    assert ws_a.of_type("user_joined_plan") == []
    assert server.active_plan_users("P1") == ["A", "B"]
    await server.aclose()


@pytest.mark.asyncio
async def test_joining_another_plan_leaves_the_previous_one(socket_factory, flush):
    server = _server()
    ws_a, ws_b = socket_factory(), socket_factory()
    conn_a = await server.connect("A", ws_a)
    conn_b = await server.connect("B", ws_b)
    await _join(server, conn_a, "P1")
    await _join(server, conn_b, "P1")
    await _join(server, conn_a, "P2")
    await flush()

    assert server.active_plan_users("P1") == ["B"]
    assert server.active_plan_users("P2") == ["A"]
    assert conn_a.current_plan_id == "P2"
    left = ws_b.of_type("user_left_plan")
    assert left and left[0]["userId"] == "A" and left[0]["planId"] == "P1"
    await server.aclose()


@pytest.mark.asyncio
async def test_join_node_sends_viewers(socket_factory, flush):
    server = _server()
    ws_a, ws_b = socket_factory(), socket_factory()
    conn_a = await server.connect("A", ws_a)
    conn_b = await server.connect("B", ws_b)
    await server.handle_message(conn_a, json.dumps({"type": "join_node", "nodeId": "N1"}))
    await server.handle_message(conn_b, json.dumps({"type": "join_node", "nodeId": "N1"}))
    await flush()

    assert ws_a.of_type("user_joined_node")[0]["userId"] == "B"
    assert ws_b.of_type("node_viewers") == [{"type": "node_viewers", "nodeId": "N1", "users": ["A", "B"]}]

    await server.handle_message(conn_b, json.dumps({"type": "leave_node"}))
    await flush()
    assert server.active_node_users("N1") == ["A"]
    assert ws_a.of_type("user_left_node")[0]["nodeId"] == "N1"
    await server.aclose()


@pytest.mark.asyncio
async def test_typing_expires_after_timeout(socket_factory, flush):
    server = _server(typing_timeout=0.05)
    ws_a, ws_b = socket_factory(), socket_factory()
    conn_a = await server.connect("A", ws_a)
    conn_b = await server.connect("B", ws_b)
    for conn in (conn_a, conn_b):
        await server.handle_message(conn, json.dumps({"type": "join_node", "nodeId": "N1"}))

    await server.handle_message(conn_a, json.dumps({"type": "typing_start", "nodeId": "N1"}))
    await flush()
    assert server.typing_users("N1") == ["A"]
    assert ws_b.of_type("typing_start")[0]["userId"] == "A"

    await asyncio.sleep(0.1)
    await flush()
    assert server.typing_users("N1") == []
    stops = ws_b.of_type("typing_stop")
    assert len(stops) == 1 and stops[0]["userId"] == "A" and stops[0]["nodeId"] == "N1"
    # the typist never hears its own indicator
    assert ws_a.of_type("typing_start") == [] and ws_a.of_type("typing_stop") == []
    await server.aclose()


@pytest.mark.asyncio
async def test_typing_restart_resets_the_window(socket_factory, flush):
    server = _server(typing_timeout=0.2, typing_reset_on_restart=True)
    ws_a, ws_b = socket_factory(), socket_factory()
    conn_a = await server.connect("A", ws_a)
    conn_b = await server.connect("B", ws_b)
    await server.handle_message(conn_b, json.dumps({"type": "join_node", "nodeId": "N1"}))

    await server.typing_start(conn_a, "N1")
    await asyncio.sleep(0.12)
    await server.typing_start(conn_a, "N1")
    await asyncio.sleep(0.12)
    # first window elapsed, restarted one has not
    assert server.typing_users("N1") == ["A"]
    assert ws_b.of_type("typing_stop") == []

    await asyncio.sleep(0.2)
    await flush()
    assert server.typing_users("N1") == []
    assert len(ws_b.of_type("typing_stop")) == 1
    await server.aclose()


@pytest.mark.asyncio
async def test_stacked_typing_timers_fire_independently(socket_factory, flush):
    server = _server(typing_timeout=0.05, typing_reset_on_restart=False)
    ws_a, ws_b = socket_factory(), socket_factory()
    conn_a = await server.connect("A", ws_a)
    conn_b = await server.connect("B", ws_b)
    await server.handle_message(conn_b, json.dumps({"type": "join_node", "nodeId": "N1"}))

    await server.typing_start(conn_a, "N1")
    await server.typing_start(conn_a, "N1")
    await asyncio.sleep(0.12)
    await flush()

    assert server.typing_users("N1") == []
    assert len(ws_b.of_type("typing_stop")) == 2
    await server.aclose()


@pytest.mark.asyncio
async def test_explicit_typing_stop_cancels_expiry(socket_factory, flush):
    server = _server(typing_timeout=0.05)
    ws_a, ws_b = socket_factory(), socket_factory()
    conn_a = await server.connect("A", ws_a)
    conn_b = await server.connect("B", ws_b)
    await server.handle_message(conn_b, json.dumps({"type": "join_node", "nodeId": "N1"}))

    await server.handle_message(conn_a, json.dumps({"type": "typing_start", "nodeId": "N1"}))
    await server.handle_message(conn_a, json.dumps({"type": "typing_stop", "nodeId": "N1"}))
    await asyncio.sleep(0.1)
    await flush()

    assert len(ws_b.of_type("typing_stop")) == 1
    await server.aclose()


@pytest.mark.asyncio
async def test_disconnect_clears_memberships_and_notifies(socket_factory, flush):
    server = _server()
    ws_a, ws_b = socket_factory(), socket_factory()
    conn_a = await server.connect("A", ws_a)
    conn_b = await server.connect("B", ws_b)
    for conn in (conn_a, conn_b):
        await _join(server, conn, "P1")
        await server.handle_message(conn, json.dumps({"type": "join_node", "nodeId": "N1"}))
    await server.typing_start(conn_a, "N1")
    await server.typing_start(conn_a, "N9")

    await server.disconnect(conn_a)
    await flush()

    assert server.active_plan_users("P1") == ["B"]
    assert server.active_node_users("N1") == ["B"]
    assert server.typing_users("N1") == []
    assert server.typing_users("N9") == []
    assert server.connections.get("A") is None
    assert ws_b.of_type("user_left_node")[0]["userId"] == "A"
    assert ws_b.of_type("user_left_plan")[0]["userId"] == "A"
    await server.aclose()


@pytest.mark.asyncio
async def test_superseded_socket_close_keeps_newer_connection(socket_factory, flush):
    server = _server()
    old_ws, new_ws = socket_factory(), socket_factory()
    old = await server.connect("A", old_ws)
    await _join(server, old, "P1")
    new = await server.connect("A", new_ws)
    await _join(server, new, "P1")

    await server.disconnect(old)
    await flush()

    assert server.connections.get("A") is new
    assert server.active_plan_users("P1") == ["A"]
    assert await server.send_to_user("A", {"type": "hello"}) is True
    await flush()
    assert new_ws.of_type("hello")
    await server.aclose()


@pytest.mark.asyncio
async def test_routing_respects_exclusion(socket_factory, flush):
    server = _server()
    sockets = {uid: socket_factory() for uid in ("A", "B", "C")}
    for uid, ws in sockets.items():
        conn = await server.connect(uid, ws)
        if uid != "C":
            await _join(server, conn, "P1")

    envelope = node_status_changed_message("N2", "P1", "not_started", "in_progress", "A")
    delivered = await server.broadcast_to_plan("P1", envelope, exclude_user_id="A")
    await flush()

    assert delivered == 1
    received = sockets["B"].of_type("node.status_changed")
    assert len(received) == 1
    assert received[0]["payload"]["newStatus"] == "in_progress"
    assert sockets["A"].of_type("node.status_changed") == []
    assert sockets["C"].of_type("node.status_changed") == []

    assert await server.broadcast_to_all({"type": "announcement"}) == 3
    await server.aclose()


@pytest.mark.asyncio
async def test_broadcast_to_empty_room_is_zero():
    server = _server()
    assert await server.broadcast_to_plan("nobody", {"type": "x"}) == 0
    assert await server.broadcast_to_node("nobody", None, {"type": "x"}) == 0
    assert await server.send_to_user("ghost", {"type": "x"}) is False


@pytest.mark.asyncio
async def test_closed_socket_is_skipped(socket_factory, flush):
    server = _server()
    ws_a, ws_b = socket_factory(), socket_factory()
    conn_a = await server.connect("A", ws_a)
    conn_b = await server.connect("B", ws_b)
    await _join(server, conn_a, "P1")
    await _join(server, conn_b, "P1")
    await ws_b.close()

    assert await server.broadcast_to_plan("P1", {"type": "x"}) == 1
    await server.aclose()


@pytest.mark.asyncio
async def test_failing_socket_does_not_block_peers(socket_factory, broken_socket_factory, flush):
    server = _server()
    ok_ws = socket_factory()
    bad = await server.connect("bad", broken_socket_factory())
    ok = await server.connect("ok", ok_ws)
    await _join(server, bad, "P1")
    await _join(server, ok, "P1")

    await server.broadcast_to_plan("P1", {"type": "x"})
    await flush()
    assert ok_ws.of_type("x")
    await server.aclose()


@pytest.mark.asyncio
async def test_ping_gets_pong(socket_factory, flush):
    server = _server()
    ws = socket_factory()
    conn = await server.connect("A", ws)
    await server.handle_message(conn, '{"type": "ping"}')
    await server.handle_message(conn, '{"type": "pong"}')
    await flush()
    assert ws.of_type("pong") == [{"type": "pong"}]
    await server.aclose()


@pytest.mark.asyncio
async def test_malformed_json_reports_generic_error(socket_factory, flush):
    server = _server()
    ws = socket_factory()
    conn = await server.connect("A", ws)
    await server.handle_message(conn, "{not json")
    await server.handle_message(conn, "[1, 2]")
    await flush()
    assert ws.of_type("error") == [
        {"type": "error", "message": "Failed to process message"},
        {"type": "error", "message": "Failed to process message"},
    ]
    assert server.connections.get("A") is conn
    await server.aclose()


@pytest.mark.asyncio
async def test_unknown_message_type_is_ignored(socket_factory, flush):
    server = _server()
    ws = socket_factory()
    conn = await server.connect("A", ws)
    await server.handle_message(conn, '{"type": "teleport"}')
    await flush()
    assert ws.of_type("error") == []
    await server.aclose()


@pytest.mark.asyncio
async def test_missing_field_names_the_field(socket_factory, flush):
    server = _server()
    ws = socket_factory()
    conn = await server.connect("A", ws)
    await server.handle_message(conn, '{"type": "join_plan"}')
    await flush()
    errors = ws.of_type("error")
    assert errors == [{"type": "error", "message": "planId is required", "field": "planId"}]
    assert conn.current_plan_id is None
    await server.aclose()


@pytest.mark.asyncio
async def test_presence_update_and_relay_reach_plan_peers(socket_factory, flush):
    server = _server()
    ws_a, ws_b = socket_factory(), socket_factory()
    conn_a = await server.connect("A", ws_a)
    conn_b = await server.connect("B", ws_b)
    await _join(server, conn_a, "P1")
    await _join(server, conn_b, "P1")

    await server.handle_message(conn_a, json.dumps({"type": "update_presence", "status": "away"}))
    await server.handle_message(conn_a, json.dumps({"type": "broadcast", "message": {"cursor": 4}}))
    await flush()

    update = ws_b.of_type("presence_update")[0]
    assert update["userId"] == "A" and update["status"] == "away"
    relay = ws_b.of_type("message")[0]
    assert relay["message"] == {"cursor": 4}
    assert ws_a.of_type("presence_update") == []
    await server.aclose()


@pytest.mark.asyncio
async def test_presence_status_is_relayed_as_sent(socket_factory, flush):
    server = _server()
    ws_a, ws_b = socket_factory(), socket_factory()
    conn_a = await server.connect("A", ws_a)
    conn_b = await server.connect("B", ws_b)
    await _join(server, conn_a, "P1")
    await _join(server, conn_b, "P1")

    status = {"state": "away", "idle": 3}
    await server.handle_message(conn_a, json.dumps({"type": "update_presence", "status": status}))
    await server.handle_message(conn_a, json.dumps({"type": "update_presence"}))
    await flush()

    updates = ws_b.of_type("presence_update")
    assert len(updates) == 1
    assert updates[0]["status"] == {"state": "away", "idle": 3}
    assert ws_a.of_type("error") == [{"type": "error", "message": "status is required", "field": "status"}]
    await server.aclose()
