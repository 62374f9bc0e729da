"""
Relay broker — HTTP ingress plus WebSocket fan-out.

Endpoints:
  POST /push    body = Payload JSON → broadcast {"type":"payload","data":...}
  GET  /status  → {"clients": N}
  WS   /        duplex channel for displays and correlation clients

The broker does no correlation. It broadcasts pushes to every open socket,
forwards ``decision``/``approval`` messages verbatim to every *other* socket,
and pings everyone on a fixed interval. Pongs are advisory: a socket that
never answers stays in the broadcast set until it disconnects.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.websockets import WebSocketState

from jarvis import __version__
from jarvis.core.config import JarvisConfig
from jarvis.core.constants import HEARTBEAT_INTERVAL_SECONDS
from jarvis.relay.protocol import MessageType, PingMessage, encode_message

logger = logging.getLogger(__name__)

_PING = encode_message(PingMessage())


class RelayBroker:
    """Owns the set of open client sockets. Stores no payload history."""

    def __init__(self) -> None:
        self._clients: set[WebSocket] = set()
        self._send_lock = asyncio.Lock()

    @property
    def client_count(self) -> int:
        return len(self._clients)

    def status(self) -> int:
        return len(self._clients)

    # ------------------------------------------------------------------
    # Membership
    # ------------------------------------------------------------------

    async def connect(self, websocket: WebSocket) -> None:
        await websocket.accept()
        self._clients.add(websocket)
        logger.info("client connected (total: %d)", len(self._clients))

    def disconnect(self, websocket: WebSocket) -> None:
        self._clients.discard(websocket)
        logger.info("client disconnected (total: %d)", len(self._clients))

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    async def push(self, payload: Any) -> int:
        """Broadcast *payload* wrapped as a ``payload`` message. Returns the client count."""
        await self.broadcast(json.dumps({"type": MessageType.PAYLOAD.value, "data": payload}))
        if isinstance(payload, dict):
            logger.info(
                "broadcast to %d client(s): L%s %r",
                len(self._clients),
                payload.get("level"),
                payload.get("title"),
            )
        else:
            logger.info("broadcast to %d client(s)", len(self._clients))
        return len(self._clients)

    async def broadcast(self, text: str, exclude: WebSocket | None = None) -> int:
        """
        Send *text* to every open socket except *exclude*.

        Broadcasts are serialized, so every socket sees them in call order.
        A failed send is logged; membership only changes on disconnect.
        """
        sent = 0
        async with self._send_lock:
            for websocket in list(self._clients):
                if websocket is exclude:
                    continue
                if websocket.application_state != WebSocketState.CONNECTED:
                    continue
                try:
                    await websocket.send_text(text)
                    sent += 1
                except Exception as exc:  # noqa: BLE001
                    logger.warning("send to client failed: %s", exc)
        return sent

    async def send_ping(self) -> int:
        return await self.broadcast(_PING)

    async def run_heartbeat(self, interval_seconds: float = HEARTBEAT_INTERVAL_SECONDS) -> None:
        """Ping every socket forever, *interval_seconds* apart."""
        while True:
            await asyncio.sleep(interval_seconds)
            await self.send_ping()

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    async def handle_message(self, sender: WebSocket, text: str) -> None:
        """Route one inbound message. Never raises on bad input."""
        try:
            message = json.loads(text)
        except ValueError:
            logger.info("non-JSON message: %.200s", text)
            return
        if not isinstance(message, dict):
            logger.info("message is not an object: %.200s", text)
            return

        try:
            kind = MessageType(message.get("type"))
        except ValueError:
            logger.info("unknown message type: %r", message.get("type"))
            return

        if kind is MessageType.DECISION:
            logger.info(
                "decision source=%s %r -> %r (index=%s)",
                message.get("source") or "-",
                message.get("question"),
                message.get("selectedLabel"),
                message.get("selectedIndex"),
            )
            await self.broadcast(text, exclude=sender)
        elif kind is MessageType.APPROVAL:
            logger.info(
                "approval source=%s %s [%s]",
                message.get("source") or "-",
                "APPROVED" if message.get("approved") else "REJECTED",
                ", ".join(
                    f"{d.get('question')}: {d.get('selectedLabel')}"
                    for d in message.get("decisions") or []
                    if isinstance(d, dict)
                ),
            )
            await self.broadcast(text, exclude=sender)
        elif kind is MessageType.PONG:
            pass
        elif kind in (MessageType.PAYLOAD, MessageType.PING):
            logger.info("ignoring broker-only message type from client: %s", kind)


# ---------------------------------------------------------------------------
# ASGI application
# ---------------------------------------------------------------------------


def create_app(
    broker: RelayBroker | None = None,
    heartbeat_seconds: float = HEARTBEAT_INTERVAL_SECONDS,
) -> FastAPI:
    """Build the relay FastAPI app. ``heartbeat_seconds <= 0`` disables pings."""
    broker = broker or RelayBroker()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        heartbeat: asyncio.Task[None] | None = None
        if heartbeat_seconds > 0:
            heartbeat = asyncio.create_task(
                broker.run_heartbeat(heartbeat_seconds), name="relay-heartbeat"
            )
        logger.info("relay broker started")
        yield
        if heartbeat is not None:
            heartbeat.cancel()
            await asyncio.gather(heartbeat, return_exceptions=True)
        logger.info("relay broker stopped")

    app = FastAPI(title="Jarvis Relay", version=__version__, lifespan=lifespan)
    app.state.broker = broker

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type"],
    )

    @app.get("/status")
    async def status() -> dict[str, int]:
        return {"clients": broker.status()}

    @app.post("/push")
    async def push(request: Request) -> JSONResponse:
        body = await request.body()
        try:
            payload = json.loads(body)
        except ValueError:
            return JSONResponse({"error": "Invalid JSON"}, status_code=400)
        clients = await broker.push(payload)
        return JSONResponse({"ok": True, "clients": clients})

    @app.websocket("/")
    async def relay_socket(websocket: WebSocket) -> None:
        await broker.connect(websocket)
        try:
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    break
                text = message.get("text")
                if text is None:
                    text = (message.get("bytes") or b"").decode("utf-8", errors="replace")
                await broker.handle_message(websocket, text)
        finally:
            broker.disconnect(websocket)

    return app


def serve(config: JarvisConfig) -> None:
    """Run the broker under uvicorn until interrupted."""
    import uvicorn

    app = create_app(heartbeat_seconds=config.server.heartbeat_seconds)
    logger.info(
        "relay listening on %s:%d (ws://, POST /push, GET /status)",
        config.server.host,
        config.server.port,
    )
    uvicorn.run(
        app,
        host=config.server.host,
        port=config.server.port,
        log_level=config.logging.level.lower(),
    )
