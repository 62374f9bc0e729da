"""
Auto-reconnect phases and backoff schedule for the correlation client.

Phase transitions::

    idle ──close w/ waiters──▶ backing_off(k) ──timer──▶ connecting
      ▲                          │                        │    │
      │◀──waiters drained────────┘                        │    │
      │◀──attempts exhausted / waiters drained────────────┘    │ success
      │                                                        ▼
      └────────close w/o waiters──────────────────────────  connected

``backing_off`` is the only phase that is interrupted from outside: when the
last waiter leaves the registry (timed out, cancelled) the pending sleep is
cancelled and the machine returns to ``idle``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import StrEnum

from jarvis.core.constants import BASE_RECONNECT_DELAY_MS, MAX_RECONNECT_DELAY_MS

logger = logging.getLogger(__name__)


class ConnectionState(StrEnum):
    """Client-visible connection state."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class ReconnectPhase(StrEnum):
    IDLE = "idle"
    BACKING_OFF = "backing_off"
    CONNECTING = "connecting"
    CONNECTED = "connected"


def backoff_delay_ms(
    attempt: int,
    base_ms: int = BASE_RECONNECT_DELAY_MS,
    cap_ms: int = MAX_RECONNECT_DELAY_MS,
) -> int:
    """Delay before reconnect attempt *attempt* (1-based): ``min(base * 2**(k-1), cap)``."""
    if attempt < 1:
        raise ValueError(f"attempt must be >= 1 (got {attempt})")
    return min(base_ms * 2 ** (attempt - 1), cap_ms)


@dataclass
class ReconnectState:
    """Mutable phase + attempt counter, changed only through the event methods."""

    max_attempts: int
    phase: ReconnectPhase = ReconnectPhase.IDLE
    attempts: int = 0

    @property
    def exhausted(self) -> bool:
        return self.attempts >= self.max_attempts

    def begin_backoff(self) -> int:
        """Enter ``backing_off`` for the next attempt. Returns the attempt number."""
        self.attempts += 1
        self.phase = ReconnectPhase.BACKING_OFF
        return self.attempts

    def begin_connect(self) -> None:
        self.phase = ReconnectPhase.CONNECTING

    def connect_succeeded(self) -> None:
        self.attempts = 0
        self.phase = ReconnectPhase.CONNECTED

    def go_idle(self) -> None:
        self.phase = ReconnectPhase.IDLE

    def reset(self) -> None:
        self.attempts = 0
