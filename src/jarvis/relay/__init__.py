"""
jarvis.relay — the correlation-aware request/response relay.

    protocol   wire models and tagged-union messages
    broker     FastAPI app: POST /push, GET /status, WebSocket fan-out
    client     RelayClient: agent-side waiters, timeouts, auto-reconnect
    display    DisplayClient: wearable-side payload consumer
"""

from __future__ import annotations

from jarvis.relay.client import RelayClient
from jarvis.relay.display import DisplayClient
from jarvis.relay.protocol import (
    ApprovalMessage,
    Decision,
    DecisionChoice,
    DecisionMessage,
    DecisionOption,
    Payload,
    TriageLevel,
)
from jarvis.relay.reconnect import ConnectionState

__all__ = [
    "ApprovalMessage",
    "ConnectionState",
    "Decision",
    "DecisionChoice",
    "DecisionMessage",
    "DecisionOption",
    "DisplayClient",
    "Payload",
    "RelayClient",
    "TriageLevel",
]
