"""
RelayClient — agent-side correlation client for the relay broker.

The client keeps one outbound WebSocket to the broker and a registry of
waiters. A prompt round-trip looks like::

    relay = RelayClient("http://localhost:8080")
    await relay.ensure_connected()
    reply = relay.wait_for_decision(correlation_id, timeout_ms=120_000, payload=payload)
    await relay.push_payload(payload)   # register first, then push
    message = await reply
    ...
    await relay.aclose()

``wait_for_decision`` / ``wait_for_approval`` are plain methods: the waiter
exists as soon as they return, before the push goes out. Awaiting the
returned future is what suspends.

When the socket drops unexpectedly while waiters are pending, the client
reconnects with exponential backoff and re-pushes every pending waiter's
original payload, so an in-flight prompt survives a broker restart. Waiter
deadlines keep running throughout.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable, Coroutine
from typing import Any, Protocol, assert_never, cast

import httpx
from websockets.asyncio.client import connect as ws_connect
from websockets.exceptions import ConnectionClosed, WebSocketException

from jarvis.core.config import RelayConfig, derive_ws_url
from jarvis.core.constants import (
    BASE_RECONNECT_DELAY_MS,
    CONNECT_RETRIES,
    CONNECT_RETRY_DELAY_MS,
    DEFAULT_RELAY_URL,
    MAX_RECONNECT_ATTEMPTS,
)
from jarvis.core.exceptions import (
    ClientDisconnectedError,
    RelayConnectionError,
    RelayError,
    RelayHTTPError,
    ReconnectExhaustedError,
)
from jarvis.relay.protocol import (
    ApprovalMessage,
    DecisionMessage,
    MessageType,
    Payload,
    PayloadMessage,
    PingMessage,
    PongMessage,
    PushResult,
    RelayStatus,
    encode_message,
    parse_message,
)
from jarvis.relay.reconnect import (
    ConnectionState,
    ReconnectPhase,
    ReconnectState,
    backoff_delay_ms,
)
from jarvis.relay.waiters import WaiterRegistry

logger = logging.getLogger(__name__)


class WebSocketLike(Protocol):
    async def send(self, message: str) -> None: ...

    async def close(self) -> None: ...

    def __aiter__(self) -> AsyncIterator[str | bytes]: ...


Connector = Callable[[str], Awaitable[WebSocketLike]]


async def open_websocket(url: str) -> WebSocketLike:
    return await ws_connect(url)


class RelayClient:
    """
    Correlation client: one duplex connection, one waiter registry.

    Construct one per process and pass it to whatever issues prompts; tear it
    down with :meth:`aclose` (or use ``async with``).
    """

    def __init__(
        self,
        http_url: str = DEFAULT_RELAY_URL,
        ws_url: str | None = None,
        *,
        connect_retries: int = CONNECT_RETRIES,
        connect_delay_ms: int = CONNECT_RETRY_DELAY_MS,
        max_reconnect_attempts: int = MAX_RECONNECT_ATTEMPTS,
        base_reconnect_delay_ms: int = BASE_RECONNECT_DELAY_MS,
        http_client: httpx.AsyncClient | None = None,
        connector: Connector | None = None,
    ) -> None:
        self.http_url = http_url.rstrip("/")
        self.ws_url = ws_url or derive_ws_url(self.http_url)
        self.connect_retries = connect_retries
        self.connect_delay_ms = connect_delay_ms
        self.base_reconnect_delay_ms = base_reconnect_delay_ms

        self._http = http_client or httpx.AsyncClient()
        self._owns_http = http_client is None
        self._connector: Connector = connector or open_websocket

        self._ws: WebSocketLike | None = None
        self._state = ConnectionState.DISCONNECTED
        self._reader_task: asyncio.Task[None] | None = None
        self._connect_task: asyncio.Task[None] | None = None
        self._reconnect_task: asyncio.Task[None] | None = None
        self._reconnect = ReconnectState(max_attempts=max_reconnect_attempts)
        self._waiters = WaiterRegistry(on_drained=self._on_waiters_drained)
        self._intentional_disconnect = False
        self._generation = 0  # bumped by disconnect(); stale connect attempts check it
        self._background: set[asyncio.Task[Any]] = set()

    @classmethod
    def from_config(cls, config: RelayConfig, **kwargs: Any) -> RelayClient:
        return cls(
            config.url,
            config.resolved_ws_url,
            connect_retries=config.connect_retries,
            connect_delay_ms=config.connect_delay_ms,
            max_reconnect_attempts=config.max_reconnect_attempts,
            base_reconnect_delay_ms=config.base_reconnect_delay_ms,
            **kwargs,
        )

    async def __aenter__(self) -> RelayClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def pending_waiters(self) -> int:
        return len(self._waiters)

    @property
    def reconnect_attempts(self) -> int:
        return self._reconnect.attempts

    @property
    def reconnect_phase(self) -> ReconnectPhase:
        return self._reconnect.phase

    @property
    def is_reconnecting(self) -> bool:
        return self._reconnect_task is not None

    @property
    def max_reconnect_attempts(self) -> int:
        return self._reconnect.max_attempts

    @max_reconnect_attempts.setter
    def max_reconnect_attempts(self, value: int) -> None:
        self._reconnect.max_attempts = value

    # ------------------------------------------------------------------
    # HTTP ingress
    # ------------------------------------------------------------------

    async def push_payload(self, payload: Payload) -> PushResult:
        """POST the payload to ``/push``. Returns the broker's client count."""
        try:
            response = await self._http.post(f"{self.http_url}/push", json=payload.to_wire())
        except httpx.TransportError as exc:
            raise RelayConnectionError(f"Relay unreachable at {self.http_url}: {exc}") from exc
        if not response.is_success:
            raise RelayHTTPError(
                f"Relay push failed ({response.status_code}): {response.text}",
                status_code=response.status_code,
                body=response.text,
            )
        return PushResult.model_validate(response.json())

    async def get_status(self) -> RelayStatus:
        try:
            response = await self._http.get(f"{self.http_url}/status")
        except httpx.TransportError as exc:
            raise RelayConnectionError(f"Relay unreachable at {self.http_url}: {exc}") from exc
        if not response.is_success:
            raise RelayHTTPError(
                f"Relay status failed ({response.status_code})",
                status_code=response.status_code,
                body=response.text,
            )
        return RelayStatus.model_validate(response.json())

    # ------------------------------------------------------------------
    # Connection
    # ------------------------------------------------------------------

    async def ensure_connected(self) -> None:
        """Connect unless already connected. Concurrent callers share one attempt."""
        if self._ws is not None:
            return
        if self._connect_task is None:
            self._state = ConnectionState.CONNECTING
            task = asyncio.create_task(self._connect_once(), name="relay-connect")
            task.add_done_callback(self._connect_done)
            self._connect_task = task
        task = self._connect_task
        try:
            await asyncio.shield(task)
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if task.cancelled() and (current is None or not current.cancelling()):
                raise RelayConnectionError("Client disconnected while connecting") from None
            raise

    async def _connect_once(self) -> None:
        try:
            await self.connect(self.connect_retries, self.connect_delay_ms)
        except BaseException:
            if self._ws is None and self._connect_task is asyncio.current_task():
                self._state = ConnectionState.DISCONNECTED
            raise
        self._intentional_disconnect = False
        self._reconnect.reset()

    def _connect_done(self, task: asyncio.Task[None]) -> None:
        if self._connect_task is task:
            self._connect_task = None
        if not task.cancelled():
            task.exception()  # retrieved here so an abandoned attempt does not warn

    async def connect(
        self,
        retries: int = CONNECT_RETRIES,
        delay_ms: int = CONNECT_RETRY_DELAY_MS,
    ) -> None:
        """
        Open the WebSocket, retrying up to *retries* times *delay_ms* apart.

        Raises:
            RelayConnectionError: when every attempt failed.
        """
        generation = self._generation
        last_error: BaseException | None = None
        for attempt in range(1, retries + 1):
            if generation != self._generation:
                break
            logger.info("connecting to %s (attempt %d/%d)", self.ws_url, attempt, retries)
            try:
                ws = await self._connector(self.ws_url)
            except (OSError, WebSocketException) as exc:
                last_error = exc
                if attempt < retries:
                    logger.warning("connection error, retrying in %dms: %s", delay_ms, exc)
                    await asyncio.sleep(delay_ms / 1000)
                continue
            if generation != self._generation:
                await self._discard(ws)
                break
            self._install(ws)
            return
        if generation != self._generation:
            raise RelayConnectionError("Client disconnected while connecting")
        raise RelayConnectionError(f"Failed to connect after {retries} attempts: {last_error}")

    def _install(self, ws: WebSocketLike) -> None:
        previous = self._ws
        self._ws = ws
        self._state = ConnectionState.CONNECTED
        self._reader_task = asyncio.create_task(self._read_loop(ws), name="relay-reader")
        logger.info("connected to %s", self.ws_url)
        if previous is not None and previous is not ws:
            self._spawn(previous.close())

    async def disconnect(self) -> None:
        """
        Close on purpose: reject every pending waiter and suppress auto-reconnect.

        Safe to call when not connected.
        """
        self._intentional_disconnect = True
        self._generation += 1
        if self._reconnect_task is not None:
            self._reconnect_task.cancel()
        connecting, self._connect_task = self._connect_task, None
        if connecting is not None:
            connecting.cancel()

        ws, self._ws = self._ws, None
        reader, self._reader_task = self._reader_task, None
        self._state = ConnectionState.DISCONNECTED

        rejected = self._waiters.reject_all(ClientDisconnectedError, "Client disconnected")
        if rejected:
            logger.info("disconnect rejected %d pending waiter(s)", rejected)

        if ws is not None:
            await self._discard(ws)
        if reader is not None and not reader.done():
            reader.cancel()

    async def _discard(self, ws: WebSocketLike) -> None:
        try:
            await ws.close()
        except (OSError, WebSocketException) as exc:
            logger.debug("error while closing relay socket: %s", exc)

    async def aclose(self) -> None:
        """Disconnect and release the HTTP client (if this instance created it)."""
        await self.disconnect()
        for task in list(self._background):
            task.cancel()
        if self._owns_http:
            await self._http.aclose()

    # ------------------------------------------------------------------
    # Waiters
    # ------------------------------------------------------------------

    def wait_for_decision(
        self,
        correlation_id: str,
        timeout_ms: int,
        payload: Payload | None = None,
    ) -> asyncio.Future[DecisionMessage]:
        """
        Register a waiter for the ``decision`` carrying *correlation_id*.

        Call this before pushing the payload. Pass *payload* to have it
        re-pushed after an auto-reconnect.
        """
        waiter = self._waiters.register(MessageType.DECISION, correlation_id, timeout_ms, payload)
        return cast("asyncio.Future[DecisionMessage]", waiter.future)

    def wait_for_approval(
        self,
        correlation_id: str,
        timeout_ms: int,
        payload: Payload | None = None,
    ) -> asyncio.Future[ApprovalMessage]:
        """Register a waiter for the ``approval`` carrying *correlation_id*."""
        waiter = self._waiters.register(MessageType.APPROVAL, correlation_id, timeout_ms, payload)
        return cast("asyncio.Future[ApprovalMessage]", waiter.future)

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    async def _read_loop(self, ws: WebSocketLike) -> None:
        try:
            async for raw in ws:
                await self._dispatch(ws, raw)
        except ConnectionClosed as exc:
            logger.info("relay connection closed: %s", exc)
        except OSError as exc:
            logger.warning("relay socket error: %s", exc)
        finally:
            self._handle_close(ws)

    async def _dispatch(self, ws: WebSocketLike, raw: str | bytes) -> None:
        try:
            message = parse_message(raw)
        except ValueError:
            logger.warning("ignoring malformed relay message: %.200r", raw)
            return

        if isinstance(message, PingMessage):
            await ws.send(encode_message(PongMessage()))
        elif isinstance(message, (DecisionMessage, ApprovalMessage)):
            if not self._waiters.resolve(message):
                logger.debug(
                    "no waiter for %s [%s], dropped", message.type, message.correlation_id
                )
        elif isinstance(message, (PayloadMessage, PongMessage)):
            pass  # our own broadcasts echoed back; nothing to correlate
        else:
            assert_never(message)

    def _handle_close(self, ws: WebSocketLike) -> None:
        if ws is not self._ws:
            return  # replaced or intentionally dropped socket
        self._ws = None
        self._reader_task = None
        self._state = ConnectionState.DISCONNECTED
        logger.info("disconnected from relay")

        if self._intentional_disconnect:
            self._waiters.reject_all(ClientDisconnectedError, "Client disconnected")
            return
        if not self._waiters:
            self._reconnect.go_idle()
            return

        logger.warning("%d pending waiter(s), attempting auto-reconnect", len(self._waiters))
        self._start_auto_reconnect()

    # ------------------------------------------------------------------
    # Auto-reconnect
    # ------------------------------------------------------------------

    def _start_auto_reconnect(self) -> None:
        if self._reconnect_task is not None:
            return
        self._reconnect_task = asyncio.create_task(
            self._auto_reconnect(), name="relay-auto-reconnect"
        )

    async def _auto_reconnect(self) -> None:
        state = self._reconnect
        try:
            while not state.exhausted and self._waiters:
                attempt = state.begin_backoff()
                delay = backoff_delay_ms(attempt, self.base_reconnect_delay_ms)
                logger.info(
                    "auto-reconnect attempt %d/%d in %dms", attempt, state.max_attempts, delay
                )
                await asyncio.sleep(delay / 1000)
                if self._ws is not None:
                    logger.info("already reconnected, stopping auto-reconnect")
                    state.connect_succeeded()
                    return

                state.begin_connect()
                try:
                    await self.connect(retries=1, delay_ms=0)
                except RelayConnectionError as exc:
                    logger.warning("auto-reconnect attempt %d failed: %s", attempt, exc)
                    continue

                state.connect_succeeded()
                logger.info("auto-reconnect succeeded, re-pushing pending payloads")
                self._replay_pending()
                return

            if self._waiters:
                logger.error(
                    "auto-reconnect exhausted, rejecting %d waiter(s)", len(self._waiters)
                )
                self._waiters.reject_all(
                    ReconnectExhaustedError, "Auto-reconnect failed after max attempts"
                )
        except asyncio.CancelledError:
            logger.info("auto-reconnect stopped")
            raise
        finally:
            if self._reconnect_task is asyncio.current_task():
                self._reconnect_task = None
            if state.phase is not ReconnectPhase.CONNECTED:
                state.go_idle()

    def _on_waiters_drained(self) -> None:
        if self._reconnect_task is not None and self._reconnect.phase is ReconnectPhase.BACKING_OFF:
            logger.info("no more pending waiters, stopping auto-reconnect")
            self._reconnect_task.cancel()

    def _replay_pending(self) -> None:
        for payload in self._waiters.pending_payloads():
            self._spawn(self._repush(payload))

    async def _repush(self, payload: Payload) -> None:
        try:
            await self.push_payload(payload)
        except (RelayError, ValueError) as exc:
            logger.warning("re-push failed for [%s]: %s", payload.correlation_id, exc)

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> None:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
