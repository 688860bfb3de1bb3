"""Pytest bootstrap configuration.

Ensure mandatory environment variables are set before test collection
and module imports that depend on application settings.
"""
import asyncio
import os

import pytest
from starlette.websockets import WebSocketState

# Mandatory secret key for settings validation
os.environ.setdefault("SECRET_KEY", "test-secret-key")
# Keep the heartbeat out of the way of TestClient sessions
os.environ.setdefault("REALTIME__IDLE_PING_INTERVAL_S", "0")


class FakeWebSocket:
    """Records what the server sends; enough of the Starlette surface for Connection."""

    def __init__(self) -> None:
        self.client_state = WebSocketState.CONNECTED
        self.application_state = WebSocketState.CONNECTED
        self.sent = []
        self.close_code = None

    async def send_json(self, data) -> None:
        self.sent.append(data)

    async def close(self, code: int = 1000, reason=None) -> None:
        self.close_code = code
        self.application_state = WebSocketState.DISCONNECTED

    def of_type(self, message_type: str) -> list:
        return [m for m in self.sent if m.get("type") == message_type]


class BrokenWebSocket(FakeWebSocket):
    async def send_json(self, data) -> None:
        raise RuntimeError("socket write failed")


@pytest.fixture
def socket_factory():
    return FakeWebSocket


@pytest.fixture
def broken_socket_factory():
    return BrokenWebSocket


@pytest.fixture
def flush():
    async def _flush() -> None:
        # let per-connection sender tasks drain their queues
        await asyncio.sleep(0.01)
    return _flush
