"""
Waiter registry — pending futures keyed by response kind and correlation id.

A waiter is registered *before* the matching payload is pushed, so a reply
that arrives immediately after the push is never missed. Matching is a
linear scan in registration order: the first waiter whose kind and
correlation id equal the message's wins, and exactly one waiter is resolved
per message.

Every exit path — match, timeout, reject_all, caller cancellation — removes
the waiter and cancels its timer exactly once.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterator
from dataclasses import dataclass

from jarvis.core.exceptions import WaiterError, WaiterTimeoutError
from jarvis.relay.protocol import ApprovalMessage, DecisionMessage, MessageType, Payload

logger = logging.getLogger(__name__)

Response = DecisionMessage | ApprovalMessage


def format_seconds(timeout_ms: int) -> str:
    """Exact decimal seconds for a millisecond count: 80 -> "0.08", 1500 -> "1.5", 2000 -> "2"."""
    whole, millis = divmod(int(timeout_ms), 1000)
    if not millis:
        return str(whole)
    return f"{whole}.{millis:03d}".rstrip("0")


@dataclass(eq=False)
class Waiter:
    kind: MessageType
    correlation_id: str
    timeout_ms: int
    future: asyncio.Future[Response]
    payload: Payload | None = None
    timer: asyncio.TimerHandle | None = None

    def matches(self, message: Response) -> bool:
        return message.type == self.kind and message.correlation_id == self.correlation_id

    def timeout_error(self) -> WaiterTimeoutError:
        return WaiterTimeoutError(
            f"Timed out waiting for {self.kind} [{self.correlation_id}] "
            f"({format_seconds(self.timeout_ms)}s)"
        )


class WaiterRegistry:
    """Ordered set of pending waiters. Single event loop, no locking."""

    def __init__(self, on_drained: Callable[[], None] | None = None) -> None:
        self._waiters: list[Waiter] = []
        self._on_drained = on_drained

    def __len__(self) -> int:
        return len(self._waiters)

    def __iter__(self) -> Iterator[Waiter]:
        return iter(list(self._waiters))

    def register(
        self,
        kind: MessageType,
        correlation_id: str,
        timeout_ms: int,
        payload: Payload | None = None,
    ) -> Waiter:
        """Add a waiter and arm its deadline. Must be called on the running loop."""
        loop = asyncio.get_running_loop()
        waiter = Waiter(
            kind=kind,
            correlation_id=correlation_id,
            timeout_ms=timeout_ms,
            future=loop.create_future(),
            payload=payload,
        )
        waiter.timer = loop.call_later(timeout_ms / 1000, self._expire, waiter)
        waiter.future.add_done_callback(lambda _f, w=waiter: self._on_future_done(w))
        self._waiters.append(waiter)
        logger.debug("waiter registered: %s [%s]", kind, correlation_id)
        return waiter

    def resolve(self, message: Response) -> bool:
        """Resolve the first waiter matching *message*. Returns False if none matched."""
        for waiter in self._waiters:
            if waiter.matches(message):
                self._remove(waiter)
                if not waiter.future.done():
                    waiter.future.set_result(message)
                return True
        return False

    def reject_all(self, error_type: type[WaiterError], message: str) -> int:
        """Fail every pending waiter with a fresh *error_type*. Returns the count."""
        waiters, self._waiters = self._waiters, []
        for waiter in waiters:
            if waiter.timer is not None:
                waiter.timer.cancel()
            if not waiter.future.done():
                waiter.future.set_exception(error_type(message))
        if waiters:
            self._drained()
        return len(waiters)

    def pending_payloads(self) -> list[Payload]:
        """Original payloads of pending waiters, in registration order."""
        return [w.payload for w in self._waiters if w.payload is not None]

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _expire(self, waiter: Waiter) -> None:
        if waiter not in self._waiters:
            return
        self._remove(waiter)
        if not waiter.future.done():
            logger.info("waiter timed out: %s [%s]", waiter.kind, waiter.correlation_id)
            waiter.future.set_exception(waiter.timeout_error())

    def _on_future_done(self, waiter: Waiter) -> None:
        # Caller cancelled its await; stop tracking the waiter.
        if waiter.future.cancelled() and waiter in self._waiters:
            self._remove(waiter)

    def _remove(self, waiter: Waiter) -> None:
        self._waiters.remove(waiter)
        if waiter.timer is not None:
            waiter.timer.cancel()
        if not self._waiters:
            self._drained()

    def _drained(self) -> None:
        if self._on_drained is not None:
            self._on_drained()
