"""
DisplayClient — the wearable side of the relay, at its interface boundary.

Receives payload broadcasts, answers heartbeats, and sends the user's
decision or approval back through the broker. Rendering is left to the
caller::

    display = DisplayClient("ws://localhost:8080")
    async for payload in display.payloads():
        render(payload)
        await display.send_decision(payload, option_index=0)

On an unexpected drop the client reconnects a fixed number of times with a
fixed delay, then gives up and the iterator ends.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Sequence
from typing import assert_never

from websockets.exceptions import ConnectionClosed, WebSocketException

from jarvis.core.constants import DISPLAY_MAX_RECONNECT, DISPLAY_RECONNECT_DELAY_MS
from jarvis.core.exceptions import RelayConnectionError
from jarvis.relay.client import Connector, WebSocketLike, open_websocket
from jarvis.relay.protocol import (
    ApprovalMessage,
    DecisionChoice,
    DecisionMessage,
    Payload,
    PayloadMessage,
    PingMessage,
    PongMessage,
    encode_message,
    parse_message,
)
from jarvis.relay.reconnect import ConnectionState

logger = logging.getLogger(__name__)


class DisplayClient:
    def __init__(
        self,
        ws_url: str,
        *,
        max_reconnect: int = DISPLAY_MAX_RECONNECT,
        reconnect_delay_ms: int = DISPLAY_RECONNECT_DELAY_MS,
        connector: Connector | None = None,
    ) -> None:
        self.ws_url = ws_url
        self.max_reconnect = max_reconnect
        self.reconnect_delay_ms = reconnect_delay_ms
        self._connector: Connector = connector or open_websocket
        self._ws: WebSocketLike | None = None
        self._state = ConnectionState.DISCONNECTED
        self._reconnect_attempts = 0
        self._closing = False

    @property
    def state(self) -> ConnectionState:
        return self._state

    async def connect(self) -> None:
        self._state = ConnectionState.CONNECTING
        try:
            self._ws = await self._connector(self.ws_url)
        except BaseException:
            self._state = ConnectionState.DISCONNECTED
            raise
        self._state = ConnectionState.CONNECTED
        self._reconnect_attempts = 0
        self._closing = False
        logger.info("display connected to %s", self.ws_url)

    async def close(self) -> None:
        self._closing = True
        ws, self._ws = self._ws, None
        self._state = ConnectionState.DISCONNECTED
        if ws is not None:
            await ws.close()

    async def payloads(self) -> AsyncIterator[Payload]:
        """Yield payloads as they arrive, across reconnects, until closed."""
        while True:
            if self._ws is None:
                await self.connect()
            ws = self._ws
            assert ws is not None
            try:
                async for raw in ws:
                    try:
                        message = parse_message(raw)
                    except ValueError:
                        logger.warning("display: bad message: %.200r", raw)
                        continue
                    if isinstance(message, PingMessage):
                        await ws.send(encode_message(PongMessage()))
                    elif isinstance(message, PayloadMessage):
                        logger.info(
                            "payload received: L%d %r", message.data.level, message.data.title
                        )
                        yield message.data
                    elif isinstance(message, (DecisionMessage, ApprovalMessage, PongMessage)):
                        pass  # responses from other displays
                    else:
                        assert_never(message)
            except ConnectionClosed as exc:
                logger.info("display connection closed: %s", exc)

            if self._ws is ws:
                self._ws = None
                self._state = ConnectionState.DISCONNECTED
            if self._closing or not await self._reconnect():
                return

    async def _reconnect(self) -> bool:
        while self._reconnect_attempts < self.max_reconnect:
            self._reconnect_attempts += 1
            logger.info(
                "display reconnect %d/%d in %dms",
                self._reconnect_attempts,
                self.max_reconnect,
                self.reconnect_delay_ms,
            )
            await asyncio.sleep(self.reconnect_delay_ms / 1000)
            try:
                await self.connect()
                return True
            except (OSError, WebSocketException) as exc:
                logger.warning("display reconnect failed: %s", exc)
        return False

    # ------------------------------------------------------------------
    # Responses
    # ------------------------------------------------------------------

    async def send_decision(
        self,
        payload: Payload,
        option_index: int,
        decision_index: int = 0,
    ) -> DecisionMessage:
        """Answer decision *decision_index* of *payload* with option *option_index*."""
        if not payload.decisions:
            raise ValueError(f"payload {payload.title!r} carries no decisions")
        decision = payload.decisions[decision_index]
        option = decision.options[option_index]
        message = DecisionMessage(
            correlation_id=payload.correlation_id,
            source=payload.source,
            question=decision.question,
            selected_label=option.label,
            selected_index=option_index,
        )
        await self._send(encode_message(message))
        return message

    async def send_approval(
        self,
        payload: Payload,
        approved: bool,
        selections: Sequence[int] = (),
    ) -> ApprovalMessage:
        """Approve or reject *payload*; *selections* holds one option index per decision."""
        decisions = payload.decisions or ()
        if len(selections) > len(decisions):
            raise ValueError(
                f"{len(selections)} selection(s) for {len(decisions)} decision(s)"
            )
        choices = tuple(
            DecisionChoice(
                question=decision.question,
                selected_label=decision.options[index].label,
                selected_index=index,
            )
            for decision, index in zip(decisions, selections)
        )
        message = ApprovalMessage(
            correlation_id=payload.correlation_id,
            source=payload.source,
            approved=approved,
            decisions=choices,
        )
        await self._send(encode_message(message))
        return message

    async def _send(self, text: str) -> None:
        if self._ws is None:
            raise RelayConnectionError("Display is not connected to the relay")
        await self._ws.send(text)
