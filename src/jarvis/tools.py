"""
Agent-facing triage operations built on :class:`RelayClient`.

Each operation returns a :class:`ToolResult` (short human-readable text plus
an error flag) instead of raising, so an agent always gets a message it can
show or act on.

  status   is the relay reachable, how many displays are connected
  notify   level 1, view only, no reply expected
  decide   level 2 (or 3 with context), one question with 2-3 options
  approve  level 4, a plan with one or more sequential decisions
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from jarvis.core.constants import (
    APPROVE_TIMEOUT_SECONDS,
    DECIDE_TIMEOUT_SECONDS,
    DEFAULT_SOURCE,
    MAX_OPTIONS,
    MIN_OPTIONS,
)
from jarvis.core.exceptions import JarvisError
from jarvis.relay.client import RelayClient
from jarvis.relay.protocol import Decision, DecisionOption, Payload, TriageLevel

logger = logging.getLogger(__name__)

OptionInput = DecisionOption | Mapping[str, Any] | str
DecisionInput = Decision | Mapping[str, Any]


@dataclass(frozen=True)
class ToolResult:
    text: str
    is_error: bool = False


def _new_correlation_id() -> str:
    return str(uuid.uuid4())


def coerce_options(options: Iterable[OptionInput]) -> tuple[DecisionOption, ...]:
    """Normalize labels / dicts / models to DecisionOptions and enforce 2-3 entries."""
    coerced: list[DecisionOption] = []
    for option in options:
        if isinstance(option, DecisionOption):
            coerced.append(option)
        elif isinstance(option, str):
            coerced.append(DecisionOption(label=option))
        else:
            coerced.append(DecisionOption.model_validate(option))
    if not MIN_OPTIONS <= len(coerced) <= MAX_OPTIONS:
        raise ValueError(f"Expected {MIN_OPTIONS}-{MAX_OPTIONS} options, got {len(coerced)}")
    return tuple(coerced)


def coerce_decisions(decisions: Iterable[DecisionInput]) -> tuple[Decision, ...]:
    coerced: list[Decision] = []
    for decision in decisions:
        if isinstance(decision, Decision):
            question, options = decision.question, decision.options
        elif isinstance(decision, Mapping):
            question, options = decision.get("question"), decision.get("options") or ()
        else:
            raise ValueError(f"Decision must be an object, got {decision!r}")
        coerced.append(Decision(question=question, options=coerce_options(options)))
    if not coerced:
        raise ValueError("At least one decision is required")
    return tuple(coerced)


class TriageTools:
    """The four triage operations, bound to one injected RelayClient."""

    def __init__(
        self,
        relay: RelayClient,
        default_source: str = DEFAULT_SOURCE,
        id_factory: Callable[[], str] = _new_correlation_id,
    ) -> None:
        self._relay = relay
        self.default_source = default_source
        self._new_id = id_factory

    async def status(self) -> ToolResult:
        try:
            status = await self._relay.get_status()
        except (JarvisError, ValueError) as exc:
            return ToolResult(f"Relay server unreachable: {exc}", is_error=True)
        return ToolResult(f"Relay server reachable. Connected clients: {status.clients}")

    async def notify(self, title: str, message: str, source: str | None = None) -> ToolResult:
        payload = Payload(
            level=TriageLevel.NOTIFY,
            title=title,
            source=source or self.default_source,
            hud_lines=(message,),
        )
        try:
            result = await self._relay.push_payload(payload)
        except (JarvisError, ValueError) as exc:
            return ToolResult(f"Failed to send notification: {exc}", is_error=True)
        if result.clients == 0:
            return ToolResult("Notification sent but 0 clients connected, no one will see it.")
        return ToolResult(f"Notification sent to {result.clients} client(s).")

    async def decide(
        self,
        title: str,
        question: str,
        options: Sequence[OptionInput],
        context: str | None = None,
        source: str | None = None,
        timeout_seconds: float = DECIDE_TIMEOUT_SECONDS,
    ) -> ToolResult:
        try:
            correlation_id = self._new_id()
            payload = Payload(
                level=TriageLevel.INFO_DECISION if context else TriageLevel.QUICK_DECISION,
                title=title,
                source=source or self.default_source,
                correlation_id=correlation_id,
                decisions=(Decision(question=question, options=coerce_options(options)),),
                summary=context or None,
            )
            response = await self._round_trip(payload, timeout_seconds, approval=False)
        except (JarvisError, ValueError) as exc:
            return ToolResult(f"Decision failed: {exc}", is_error=True)

        return ToolResult(
            f'User selected: "{response.selected_label}" (option {response.selected_index + 1})'
        )

    async def approve(
        self,
        title: str,
        decisions: Sequence[DecisionInput],
        summary: str | None = None,
        risks: Sequence[str] | None = None,
        source: str | None = None,
        timeout_seconds: float = APPROVE_TIMEOUT_SECONDS,
    ) -> ToolResult:
        try:
            correlation_id = self._new_id()
            payload = Payload(
                level=TriageLevel.PLAN_APPROVAL,
                title=title,
                source=source or self.default_source,
                correlation_id=correlation_id,
                decisions=coerce_decisions(decisions),
                summary=summary or None,
                risks=tuple(risks) if risks else None,
            )
            response = await self._round_trip(payload, timeout_seconds, approval=True)
        except (JarvisError, ValueError) as exc:
            return ToolResult(f"Approval failed: {exc}", is_error=True)

        if not response.approved:
            return ToolResult("Plan REJECTED by user.")
        choices = "\n".join(
            f'{i}. {choice.question}: "{choice.selected_label}"'
            for i, choice in enumerate(response.decisions, start=1)
        )
        return ToolResult(f"Plan APPROVED.\nDecisions:\n{choices}")

    async def _round_trip(self, payload: Payload, timeout_seconds: float, approval: bool) -> Any:
        """Connect, register the waiter, then push. The order matters."""
        assert payload.correlation_id is not None
        timeout_ms = int(timeout_seconds * 1000)
        await self._relay.ensure_connected()
        if approval:
            reply = self._relay.wait_for_approval(payload.correlation_id, timeout_ms, payload)
        else:
            reply = self._relay.wait_for_decision(payload.correlation_id, timeout_ms, payload)
        try:
            result = await self._relay.push_payload(payload)
        except BaseException:
            reply.cancel()
            raise
        logger.info("pushed [%s] to %d client(s)", payload.correlation_id, result.clients)
        return await reply
