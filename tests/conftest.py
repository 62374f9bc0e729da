"""Shared fakes: an in-memory WebSocket, a scripted connector and a fake relay HTTP API."""

from __future__ import annotations

import asyncio
import json
from collections.abc import Callable
from typing import Any

import httpx
import pytest
from pydantic import BaseModel

from jarvis.relay.client import RelayClient
from jarvis.relay.protocol import encode_message

RELAY_URL = "http://relay.test"


class FakeSocket:
    """Stand-in for a websockets client connection, driven by the test."""

    def __init__(self) -> None:
        self.inbox: asyncio.Queue[str | bytes | None] = asyncio.Queue()
        self.sent: list[str] = []
        self.closed = False

    async def send(self, message: str) -> None:
        self.sent.append(message)

    async def close(self) -> None:
        if not self.closed:
            self.closed = True
            self.inbox.put_nowait(None)

    def feed(self, message: BaseModel) -> None:
        self.inbox.put_nowait(encode_message(message))

    def feed_raw(self, raw: str | bytes) -> None:
        self.inbox.put_nowait(raw)

    def drop(self) -> None:
        """Simulate the broker going away."""
        self.closed = True
        self.inbox.put_nowait(None)

    def sent_json(self) -> list[dict[str, Any]]:
        return [json.loads(m) for m in self.sent]

    def __aiter__(self) -> FakeSocket:
        return self

    async def __anext__(self) -> str | bytes:
        item = await self.inbox.get()
        if item is None:
            raise StopAsyncIteration
        return item


class FakeConnector:
    """Connector returning FakeSockets; can refuse connections or hold them on a gate."""

    def __init__(self) -> None:
        self.sockets: list[FakeSocket] = []
        self.urls: list[str] = []
        self.attempts = 0
        self.refuse = False
        self.refuse_next = 0
        self.gate: asyncio.Event | None = None

    async def __call__(self, url: str) -> FakeSocket:
        self.attempts += 1
        self.urls.append(url)
        if self.gate is not None:
            await self.gate.wait()
        if self.refuse or self.refuse_next > 0:
            self.refuse_next = max(0, self.refuse_next - 1)
            raise ConnectionRefusedError(f"connection refused: {url}")
        socket = FakeSocket()
        self.sockets.append(socket)
        return socket

    @property
    def latest(self) -> FakeSocket:
        return self.sockets[-1]


class FakeRelayHTTP:
    """Records /push bodies and answers like the broker does."""

    def __init__(self, clients: int = 1) -> None:
        self.clients = clients
        self.pushes: list[dict[str, Any]] = []
        self.push_status = 200
        self.down = False
        self.on_push: Callable[[dict[str, Any]], None] | None = None

    def handler(self, request: httpx.Request) -> httpx.Response:
        if self.down:
            raise httpx.ConnectError("connection refused", request=request)
        if request.url.path == "/push":
            body = json.loads(request.content)
            self.pushes.append(body)
            if self.push_status != 200:
                return httpx.Response(self.push_status, text="broker exploded")
            if self.on_push is not None:
                self.on_push(body)
            return httpx.Response(200, json={"ok": True, "clients": self.clients})
        if request.url.path == "/status":
            return httpx.Response(200, json={"clients": self.clients})
        return httpx.Response(404, text="not found")

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))


@pytest.fixture
def connector() -> FakeConnector:
    return FakeConnector()


@pytest.fixture
def relay_http() -> FakeRelayHTTP:
    return FakeRelayHTTP()


@pytest.fixture
def make_client(connector: FakeConnector, relay_http: FakeRelayHTTP):
    """Factory for RelayClients wired to the fakes, with fast retry timings."""

    def _make(**overrides: Any) -> RelayClient:
        options: dict[str, Any] = {
            "connect_retries": 1,
            "connect_delay_ms": 0,
            "max_reconnect_attempts": 3,
            "base_reconnect_delay_ms": 10,
        }
        options.update(overrides)
        return RelayClient(
            RELAY_URL,
            http_client=relay_http.client(),
            connector=connector,
            **options,
        )

    return _make


_JARVIS_ENV = (
    "JARVIS_CONFIG",
    "JARVIS_RELAY_URL",
    "JARVIS_RELAY_WS_URL",
    "JARVIS_SOURCE",
    "JARVIS_HOST",
    "JARVIS_PORT",
    "PORT",
    "JARVIS_HEARTBEAT_SECONDS",
    "JARVIS_LOG_LEVEL",
)


@pytest.fixture
def isolated_env(monkeypatch, tmp_path):
    """No JARVIS_* variables and an empty home directory."""
    for name in _JARVIS_ENV:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("HOME", str(tmp_path))
    return tmp_path
