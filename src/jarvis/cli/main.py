"""
Jarvis CLI entry point.

Commands:
  jarvis serve                      — run the relay broker (HTTP + WebSocket)
  jarvis status                     — is the relay reachable, how many clients
  jarvis notify TITLE MESSAGE       — push a level 1 notification
  jarvis decide TITLE QUESTION -o…  — ask a 2-3 option question, wait for the answer
  jarvis approve PLAN_FILE          — ask for approval of a plan, wait for the verdict
  jarvis watch [--interactive]      — print payloads as a display would
  jarvis version                    — show version information
"""

from __future__ import annotations

from pathlib import Path
from typing import IO, TYPE_CHECKING

import click
from rich.console import Console

from jarvis import __version__
from jarvis.core.constants import APPROVE_TIMEOUT_SECONDS, DECIDE_TIMEOUT_SECONDS

if TYPE_CHECKING:
    from jarvis.core.config import JarvisConfig

console = Console()
err_console = Console(stderr=True)


def _config(ctx: click.Context) -> JarvisConfig:
    from jarvis.cli._common import load_or_exit

    return load_or_exit(ctx.obj.get("config_path"), console=err_console)


# ---------------------------------------------------------------------------
# Root group
# ---------------------------------------------------------------------------


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.version_option(__version__, "--version", "-V", message="jarvis %(version)s")
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Config file (default: $JARVIS_CONFIG or ~/.jarvis/config.toml)",
)
@click.pass_context
def cli(ctx: click.Context, config_path: Path | None) -> None:
    """Jarvis — correlation-aware relay between agents and heads-up displays."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path


# ---------------------------------------------------------------------------
# serve
# ---------------------------------------------------------------------------


@cli.command()
@click.option("--host", default=None, help="Bind address (default from config)")
@click.option("--port", type=click.IntRange(0, 65535), default=None, help="Listen port")
@click.option(
    "--heartbeat", type=float, default=None, help="Ping interval in seconds (0 disables)"
)
@click.pass_context
def serve(ctx: click.Context, host: str | None, port: int | None, heartbeat: float | None) -> None:
    """Run the relay broker in the foreground."""
    from jarvis.cli._serve import cmd_serve

    config = _config(ctx)
    overrides = {
        key: value
        for key, value in (("host", host), ("port", port), ("heartbeat_seconds", heartbeat))
        if value is not None
    }
    if overrides:
        config = config.model_copy(update={"server": config.server.model_copy(update=overrides)})
    cmd_serve(config, console=console)


# ---------------------------------------------------------------------------
# Agent-side commands
# ---------------------------------------------------------------------------


@cli.command()
@click.option("--json", "as_json", is_flag=True, default=False)
@click.pass_context
def status(ctx: click.Context, as_json: bool) -> None:
    """Check that the relay is reachable and count connected clients."""
    from jarvis.cli._agent import cmd_status

    cmd_status(_config(ctx), as_json=as_json, console=console)


@cli.command()
@click.argument("title")
@click.argument("message")
@click.option("--source", default="", help="Source tag (default from config)")
@click.pass_context
def notify(ctx: click.Context, title: str, message: str, source: str) -> None:
    """Push a view-only notification."""
    from jarvis.cli._agent import cmd_notify

    cmd_notify(_config(ctx), title=title, message=message, source=source, console=console)


def _parse_options(
    ctx: click.Context, param: click.Parameter, values: tuple[str, ...]
) -> list[object]:
    from jarvis.cli._agent import parse_option

    return [parse_option(value) for value in values]


@cli.command()
@click.argument("title")
@click.argument("question")
@click.option(
    "--option",
    "-o",
    "options",
    multiple=True,
    required=True,
    callback=_parse_options,
    help='An answer, "LABEL" or "LABEL:DESCRIPTION". Give 2 or 3.',
)
@click.option("--context", default="", help="Extra context; shows the question at level 3")
@click.option("--source", default="", help="Source tag (default from config)")
@click.option(
    "--timeout", type=float, default=DECIDE_TIMEOUT_SECONDS, show_default=True, help="Seconds"
)
@click.option("--json", "as_json", is_flag=True, default=False)
@click.pass_context
def decide(
    ctx: click.Context,
    title: str,
    question: str,
    options: list,
    context: str,
    source: str,
    timeout: float,
    as_json: bool,
) -> None:
    """Ask a question with 2-3 options and wait for the user's pick."""
    from jarvis.cli._agent import cmd_decide

    cmd_decide(
        _config(ctx),
        title=title,
        question=question,
        options=options,
        context=context,
        source=source,
        timeout=timeout,
        as_json=as_json,
        console=console,
    )


@cli.command()
@click.argument("plan_file", type=click.File("r"))
@click.option("--source", default="", help="Source tag (default: plan, then config)")
@click.option(
    "--timeout", type=float, default=APPROVE_TIMEOUT_SECONDS, show_default=True, help="Seconds"
)
@click.option("--json", "as_json", is_flag=True, default=False)
@click.pass_context
def approve(
    ctx: click.Context, plan_file: IO[str], source: str, timeout: float, as_json: bool
) -> None:
    """Ask for approval of a JSON plan (use - for stdin) and wait for the verdict."""
    from jarvis.cli._agent import cmd_approve, read_plan

    plan = read_plan(plan_file)
    cmd_approve(
        _config(ctx), plan=plan, source=source, timeout=timeout, as_json=as_json, console=console
    )


# ---------------------------------------------------------------------------
# watch
# ---------------------------------------------------------------------------


@cli.command()
@click.option(
    "--interactive", "-i", is_flag=True, default=False, help="Prompt for answers to decisions"
)
@click.pass_context
def watch(ctx: click.Context, interactive: bool) -> None:
    """Print payloads as they arrive, like a display would."""
    from jarvis.cli._watch import cmd_watch

    cmd_watch(_config(ctx), interactive=interactive, console=console)


# ---------------------------------------------------------------------------
# version
# ---------------------------------------------------------------------------


@cli.command()
@click.option("--json", "as_json", is_flag=True, default=False)
def version(as_json: bool) -> None:
    """Show version information."""
    import platform
    import sys as _sys

    if as_json:
        import json

        click.echo(
            json.dumps(
                {
                    "jarvis": __version__,
                    "python": _sys.version.split()[0],
                    "platform": _sys.platform,
                    "arch": platform.machine(),
                },
                indent=2,
            )
        )
    else:
        console.print(f"jarvis {__version__}")
        console.print(f"Python {_sys.version.split()[0]}")
        console.print(f"Platform: {_sys.platform} {platform.machine()}")


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
