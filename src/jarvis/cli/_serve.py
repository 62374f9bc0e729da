"""jarvis serve — run the relay broker in the foreground."""

from __future__ import annotations

from rich.console import Console

from jarvis.core.config import JarvisConfig


def cmd_serve(config: JarvisConfig, console: Console) -> None:
    from jarvis.relay.broker import serve

    server = config.server
    console.print(f"[bold]Jarvis relay[/bold] on [cyan]{server.host}:{server.port}[/cyan]")
    console.print(f"  HTTP push:   POST http://{server.host}:{server.port}/push")
    console.print(f"  Status:      GET  http://{server.host}:{server.port}/status")
    console.print(f"  WebSocket:   ws://{server.host}:{server.port}")
    if server.heartbeat_seconds > 0:
        console.print(f"  Heartbeat:   every {server.heartbeat_seconds:g}s")
    else:
        console.print("  Heartbeat:   [dim]disabled[/dim]")
    console.print("Press Ctrl+C to stop.\n")

    try:
        serve(config)
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted.[/yellow]")
