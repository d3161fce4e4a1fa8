"""
Pytest configuration and shared fixtures.

Provides an in-memory WebSocket connection and connector that drive the
client supervisor without any network access.
"""

import asyncio
from types import SimpleNamespace
from typing import Callable, List, Optional

import pytest
import pytest_asyncio

from tvclient import Client, ClientBridge, Command, SessionRegistry, encode_command


# =============================================================================
# Fake transport
# =============================================================================

class FakeConnection:
    """In-memory stand-in for a ``websockets`` client connection."""

    def __init__(self):
        self.sent: List[str] = []
        self.close_code: Optional[int] = None
        self.close_reason: Optional[str] = None
        self.closed = False
        self._inbox: asyncio.Queue = asyncio.Queue()

    async def send(self, message: str) -> None:
        if self.closed:
            raise ConnectionError("connection is closed")
        self.sent.append(message)

    async def close(self, code: int = 1000, reason: str = "") -> None:
        self.drop(code, reason)

    def feed(self, message: str) -> None:
        """Deliver an inbound message from the server."""
        self._inbox.put_nowait(message)

    def drop(self, code: int = 1006, reason: str = "") -> None:
        """Close the connection (server side or after ``close()``)."""
        if self.closed:
            return
        self.closed = True
        self.close_code = code
        self.close_reason = reason
        self._inbox.put_nowait(None)

    def __aiter__(self) -> "FakeConnection":
        return self

    async def __anext__(self) -> str:
        message = await self._inbox.get()
        if message is None:
            raise StopAsyncIteration
        return message


class FakeConnector:
    """Connector that hands out ``FakeConnection`` objects."""

    def __init__(self):
        self.connections: List[FakeConnection] = []
        self.urls: List[str] = []
        self.calls: List[dict] = []
        self.fail_next = 0
        self.hang = False

    async def __call__(self, url: str, *, origin: str, compression: bool) -> FakeConnection:
        self.urls.append(url)
        self.calls.append({"origin": origin, "compression": compression})
        if self.fail_next:
            self.fail_next -= 1
            raise ConnectionRefusedError("connection refused")
        if self.hang:
            await asyncio.Event().wait()
        connection = FakeConnection()
        self.connections.append(connection)
        return connection

    @property
    def latest(self) -> FakeConnection:
        return self.connections[-1]


class RecordingBridge:
    """Client bridge that records commands instead of sending them."""

    def __init__(self):
        self.sent: List[dict] = []
        self.hooks: dict = {}
        self.shutdown_hooks: dict = {}
        self.registry = SessionRegistry()
        self.bridge = ClientBridge(
            send=self.send,
            register_rehydrate_hook=self.register_rehydrate_hook,
            unregister_rehydrate_hook=lambda key: self.hooks.pop(key, None),
            register_shutdown_hook=self.shutdown_hooks.__setitem__,
            unregister_shutdown_hook=lambda key: self.shutdown_hooks.pop(key, None),
            sessions=self.registry,
        )

    def send(self, msg_type, params=None, *, session=None, replayable=False):
        self.sent.append({
            "type": msg_type,
            "params": list(params or []),
            "session": session,
            "replayable": replayable,
        })

    def register_rehydrate_hook(self, key, fn, session=None):
        self.hooks[key] = fn

    def commands(self) -> List[str]:
        return [c["type"] for c in self.sent]

    def deliver(self, msg_type: str, params: list) -> bool:
        """Route a server command through the registry."""
        return self.registry.dispatch(Command(msg_type, params))

    def rehydrate(self) -> None:
        self.sent.clear()
        for fn in list(self.hooks.values()):
            fn()


async def wait_for(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Poll ``predicate`` until it holds or fail after ``timeout`` seconds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.005)


def auth_frame(token: str = "unauthorized_user_token") -> str:
    return encode_command("set_auth_token", [token])


# =============================================================================
# Fixtures
# =============================================================================

FAST_RECONNECT = {
    "reconnect_fast_first_delay_ms": 0,
    "reconnect_base_delay_ms": 5,
    "reconnect_max_delay_ms": 50,
    "reconnect_jitter": False,
}


@pytest.fixture
def connector() -> FakeConnector:
    return FakeConnector()


@pytest.fixture
def fake_bridge() -> RecordingBridge:
    return RecordingBridge()


@pytest.fixture
def user_fetcher():
    """``fetch_user`` replacement returning a fixed auth token."""
    calls = []

    async def fetch_user(session, signature, location):
        calls.append((session, signature, location))
        return SimpleNamespace(auth_token="A")

    fetch_user.calls = calls
    return fetch_user


@pytest_asyncio.fixture
async def client(connector):
    """Unauthenticated client with fast reconnects; ended after the test."""
    c = Client(connector=connector, **FAST_RECONNECT)
    yield c
    await c.end()


@pytest_asyncio.fixture
async def ready_client(client, connector):
    """Client that is connected and has flushed its auth frame."""
    client.connect()
    await client.wait_ready(timeout=2)
    await wait_for(lambda: len(connector.latest.sent) >= 1)
    return client
