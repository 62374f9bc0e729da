"""jarvis status / notify / decide / approve — agent-side commands."""

from __future__ import annotations

import asyncio
import json
from collections.abc import Awaitable, Callable
from typing import IO, Any

import click
from rich.console import Console

from jarvis.cli._common import emit
from jarvis.core.config import JarvisConfig
from jarvis.core.constants import ExitCode
from jarvis.relay.client import RelayClient
from jarvis.relay.protocol import DecisionOption
from jarvis.tools import ToolResult, TriageTools

ToolCall = Callable[[TriageTools], Awaitable[ToolResult]]


def make_relay(config: JarvisConfig) -> RelayClient:
    return RelayClient.from_config(config.relay)


def _run_tool(config: JarvisConfig, call: ToolCall) -> ToolResult:
    async def _go() -> ToolResult:
        async with make_relay(config) as relay:
            return await call(TriageTools(relay, default_source=config.relay.source))

    return asyncio.run(_go())


def parse_option(value: str) -> DecisionOption:
    """``"LABEL"`` or ``"LABEL:DESCRIPTION"`` → DecisionOption."""
    label, _, description = value.partition(":")
    label = label.strip()
    if not label:
        raise click.BadParameter(f"option label is empty in {value!r}")
    return DecisionOption(label=label, description=description.strip() or None)


def read_plan(stream: IO[str]) -> dict[str, Any]:
    """Read an approval plan (JSON object with title/decisions/summary/risks)."""
    try:
        plan = json.load(stream)
    except ValueError as exc:
        raise click.BadParameter(f"plan is not valid JSON: {exc}") from exc
    if not isinstance(plan, dict):
        raise click.BadParameter("plan must be a JSON object")
    if not isinstance(plan.get("decisions"), list):
        raise click.BadParameter("plan needs a 'decisions' list")
    return plan


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def cmd_status(config: JarvisConfig, as_json: bool, console: Console) -> None:
    result = _run_tool(config, lambda tools: tools.status())
    emit(result, as_json, console, failure_code=ExitCode.NETWORK_ERROR)


def cmd_notify(
    config: JarvisConfig, title: str, message: str, source: str, console: Console
) -> None:
    result = _run_tool(config, lambda tools: tools.notify(title, message, source=source or None))
    emit(result, False, console, failure_code=ExitCode.NETWORK_ERROR)


def cmd_decide(
    config: JarvisConfig,
    title: str,
    question: str,
    options: list[DecisionOption],
    context: str,
    source: str,
    timeout: float,
    as_json: bool,
    console: Console,
) -> None:
    result = _run_tool(
        config,
        lambda tools: tools.decide(
            title,
            question,
            options,
            context=context or None,
            source=source or None,
            timeout_seconds=timeout,
        ),
    )
    emit(result, as_json, console)


def cmd_approve(
    config: JarvisConfig,
    plan: dict[str, Any],
    source: str,
    timeout: float,
    as_json: bool,
    console: Console,
) -> None:
    result = _run_tool(
        config,
        lambda tools: tools.approve(
            str(plan.get("title") or "Plan approval"),
            plan["decisions"],
            summary=plan.get("summary"),
            risks=plan.get("risks"),
            source=source or plan.get("source") or None,
            timeout_seconds=timeout,
        ),
    )
    emit(result, as_json, console)
