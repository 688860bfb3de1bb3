import asyncio

import pytest
from starlette.websockets import WebSocketDisconnect

from api.routes.ws import _serve
from core.config import settings


class TimedSocket:
    """Delivers each scripted ASGI message at a fixed offset from creation."""

    def __init__(self, script):
        self._loop = asyncio.get_running_loop()
        self._start = self._loop.time()
        self._script = list(script)

    async def receive(self):
        at, message = self._script[0]
        delay = self._start + at - self._loop.time()
        if delay > 0:
            await asyncio.sleep(delay)
        self._script.pop(0)
        return message


class StubConnection:
    user_id = "u1"

    def __init__(self):
        self.sent = []
        self.close_code = None

    async def send(self, payload):
        self.sent.append(payload)
        return True

    async def close(self, code=1000, reason=None):
        self.close_code = code


class RecordingServer:
    def __init__(self):
        self.received = []

    async def handle_message(self, conn, raw):
        self.received.append(raw)


def _text(body):
    return {"type": "websocket.receive", "text": body}


@pytest.fixture
def fast_heartbeat(monkeypatch):
    monkeypatch.setattr(settings.realtime, "idle_ping_interval_s", 0.1)
    monkeypatch.setattr(settings.realtime, "pong_grace_s", 0.1)
    monkeypatch.setattr(settings.realtime, "missed_ping_limit", 1)


@pytest.mark.asyncio
async def test_regular_traffic_resets_missed_heartbeats(fast_heartbeat):
    # two silent heartbeat rounds, each followed by ordinary traffic
    ws = TimedSocket([
        (0.26, _text('{"type": "ping"}')),
        (0.52, _text('{"type": "ping"}')),
        (0.56, {"type": "websocket.disconnect", "code": 1000}),
    ])
    conn, server = StubConnection(), RecordingServer()

    with pytest.raises(WebSocketDisconnect):
        await _serve(ws, conn, server)

    assert conn.close_code is None
    assert len(server.received) == 2
    assert conn.sent == [{"type": "ping"}, {"type": "ping"}]


@pytest.mark.asyncio
async def test_silent_client_is_closed_going_away(fast_heartbeat):
    ws = TimedSocket([(5.0, {"type": "websocket.disconnect", "code": 1000})])
    conn, server = StubConnection(), RecordingServer()

    await _serve(ws, conn, server)

    assert conn.close_code == 1001
    assert server.received == []
