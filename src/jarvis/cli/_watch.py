"""jarvis watch — a terminal stand-in for a display client."""

from __future__ import annotations

import asyncio
import sys

from rich.console import Console
from rich.panel import Panel
from rich.prompt import Confirm, Prompt
from rich.text import Text
from websockets.exceptions import WebSocketException

from jarvis.core.config import JarvisConfig
from jarvis.core.constants import ExitCode
from jarvis.relay.display import DisplayClient
from jarvis.relay.protocol import Decision, Payload, TriageLevel

_LEVEL_STYLE = {
    TriageLevel.SILENT: "dim",
    TriageLevel.NOTIFY: "cyan",
    TriageLevel.QUICK_DECISION: "green",
    TriageLevel.INFO_DECISION: "yellow",
    TriageLevel.PLAN_APPROVAL: "magenta",
}


def render_payload(payload: Payload) -> Panel:
    body = Text()
    if payload.summary:
        body.append(f"{payload.summary}\n")
    for line in payload.hud_lines or ():
        body.append(f"{line}\n")
    for n, decision in enumerate(payload.decisions or (), start=1):
        body.append(f"\n{n}. {decision.question}\n", style="bold")
        for i, option in enumerate(decision.options, start=1):
            body.append(f"   {i}) {option.label}")
            if option.description:
                body.append(f"  {option.description}", style="dim")
            body.append("\n")
    if payload.risks:
        body.append("\nRisks:\n", style="bold red")
        for risk in payload.risks:
            body.append(f"  - {risk}\n")
    body.rstrip()

    style = _LEVEL_STYLE.get(payload.level, "white")
    return Panel(
        body,
        title=Text(f"L{int(payload.level)} {payload.title}", style=f"bold {style}"),
        subtitle=Text(payload.source or "", style="dim"),
        border_style=style,
    )


def cmd_watch(config: JarvisConfig, interactive: bool, console: Console) -> None:
    url = config.relay.resolved_ws_url
    display = DisplayClient(url)
    console.print(f"[bold]Watching[/bold] [cyan]{url}[/cyan]. Press Ctrl+C to stop.\n")

    try:
        asyncio.run(_watch(display, interactive, console))
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted.[/yellow]")
        return
    except (OSError, WebSocketException) as exc:
        console.print(Text.assemble(("Relay unreachable: ", "red"), str(exc)))
        sys.exit(ExitCode.NETWORK_ERROR)

    console.print("[yellow]Connection lost and reconnect attempts exhausted.[/yellow]")
    sys.exit(ExitCode.NETWORK_ERROR)


async def _watch(display: DisplayClient, interactive: bool, console: Console) -> None:
    try:
        async for payload in display.payloads():
            console.print(render_payload(payload))
            if interactive and payload.decisions and payload.correlation_id:
                await _respond(display, payload, console)
    finally:
        await display.close()


async def _respond(display: DisplayClient, payload: Payload, console: Console) -> None:
    assert payload.decisions
    if payload.level is TriageLevel.PLAN_APPROVAL:
        selections = [await _ask_option(decision, console) for decision in payload.decisions]
        approved = await asyncio.to_thread(Confirm.ask, "Approve this plan?", console=console)
        await display.send_approval(payload, approved, selections if approved else ())
    else:
        index = await _ask_option(payload.decisions[0], console)
        await display.send_decision(payload, index)
    console.print("[green]Response sent.[/green]\n")


async def _ask_option(decision: Decision, console: Console) -> int:
    choices = [str(i) for i in range(1, len(decision.options) + 1)]
    answer = await asyncio.to_thread(
        Prompt.ask,
        Text(decision.question),
        choices=choices,
        default="1",
        console=console,
    )
    return int(answer) - 1
