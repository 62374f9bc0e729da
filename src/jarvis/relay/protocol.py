"""
Relay wire protocol — payloads and the messages exchanged over the duplex channel.

Every message on the WebSocket is a JSON object tagged by ``type``::

    broker  → party   {"type": "payload", "data": <Payload>}
                      {"type": "ping"}
    party   → broker  {"type": "decision", ...}
                      {"type": "approval", ...}
                      {"type": "pong"}

The broker forwards ``decision`` and ``approval`` to every other party, so a
correlation client connected as a regular socket sees the same five tags.

Models are frozen and use camelCase aliases on the wire (``hudLines``,
``correlationId``, ``selectedLabel``...). Each family of messages is a closed
discriminated union; consumers dispatch with an ``isinstance`` chain ending in
``assert_never``.
"""

from __future__ import annotations

from enum import IntEnum, StrEnum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic.alias_generators import to_camel


class TriageLevel(IntEnum):
    """Severity / interaction mode of a payload."""

    SILENT = 0
    NOTIFY = 1
    QUICK_DECISION = 2
    INFO_DECISION = 3
    PLAN_APPROVAL = 4


class MessageType(StrEnum):
    PAYLOAD = "payload"
    PING = "ping"
    PONG = "pong"
    DECISION = "decision"
    APPROVAL = "approval"


class _WireModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )


# ---------------------------------------------------------------------------
# Payload
# ---------------------------------------------------------------------------


class DecisionOption(_WireModel):
    label: str
    description: str | None = None


class Decision(_WireModel):
    question: str
    options: tuple[DecisionOption, ...] = Field(min_length=2)


class Payload(_WireModel):
    """The unit of work pushed to displays. Never mutated once built."""

    level: TriageLevel
    title: str
    summary: str | None = None
    hud_lines: tuple[str, ...] | None = None
    decisions: tuple[Decision, ...] | None = None
    risks: tuple[str, ...] | None = None
    source: str | None = None
    correlation_id: str | None = None

    def with_correlation_id(self, correlation_id: str) -> Payload:
        return self.model_copy(update={"correlation_id": correlation_id})

    def to_wire(self) -> dict[str, Any]:
        """JSON-ready dict with camelCase keys and unset fields omitted."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------


class DecisionChoice(_WireModel):
    question: str
    selected_label: str
    selected_index: int


class DecisionMessage(_WireModel):
    """User picked one option of a level 2/3 decision."""

    model_config = ConfigDict(extra="allow")

    type: Literal["decision"] = "decision"
    correlation_id: str | None = None
    source: str | None = None
    question: str
    selected_label: str
    selected_index: int


class ApprovalMessage(_WireModel):
    """User approved or rejected a level 4 plan."""

    model_config = ConfigDict(extra="allow")

    type: Literal["approval"] = "approval"
    correlation_id: str | None = None
    source: str | None = None
    approved: bool
    decisions: tuple[DecisionChoice, ...] = ()


class PayloadMessage(_WireModel):
    type: Literal["payload"] = "payload"
    data: Payload


class PingMessage(_WireModel):
    type: Literal["ping"] = "ping"


class PongMessage(_WireModel):
    type: Literal["pong"] = "pong"


ResponseMessage = Annotated[
    Union[DecisionMessage, ApprovalMessage],
    Field(discriminator="type"),
]
ServerMessage = Annotated[
    Union[PayloadMessage, PingMessage],
    Field(discriminator="type"),
]
ClientMessage = Annotated[
    Union[DecisionMessage, ApprovalMessage, PongMessage],
    Field(discriminator="type"),
]
RelayMessage = Annotated[
    Union[PayloadMessage, PingMessage, DecisionMessage, ApprovalMessage, PongMessage],
    Field(discriminator="type"),
]

_relay_adapter: TypeAdapter[Any] = TypeAdapter(RelayMessage)
_server_adapter: TypeAdapter[Any] = TypeAdapter(ServerMessage)
_client_adapter: TypeAdapter[Any] = TypeAdapter(ClientMessage)


def parse_message(raw: str | bytes) -> RelayMessage:
    """Decode any relay message. Raises ValueError on bad JSON or unknown tags."""
    return _relay_adapter.validate_json(raw)


def parse_server_message(raw: str | bytes) -> ServerMessage:
    return _server_adapter.validate_json(raw)


def parse_client_message(raw: str | bytes) -> ClientMessage:
    return _client_adapter.validate_json(raw)


def encode_message(message: BaseModel) -> str:
    return message.model_dump_json(by_alias=True, exclude_none=True)


# ---------------------------------------------------------------------------
# HTTP ingress results
# ---------------------------------------------------------------------------


class PushResult(BaseModel):
    ok: bool
    clients: int


class RelayStatus(BaseModel):
    clients: int
