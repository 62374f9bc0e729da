"""Shared helpers for CLI commands: config loading and result output."""

from __future__ import annotations

import json
import sys
from pathlib import Path

from rich.console import Console
from rich.text import Text

from jarvis.core.config import JarvisConfig
from jarvis.core.constants import ExitCode
from jarvis.tools import ToolResult


def load_or_exit(config_path: Path | None, console: Console) -> JarvisConfig:
    """Load config and configure logging; exit with CONFIG_ERROR on failure."""
    from jarvis.core.config import load_config
    from jarvis.core.exceptions import ConfigError, ConfigNotFoundError
    from jarvis.core.logging_setup import configure_logging

    try:
        config = load_config(config_path)
    except ConfigNotFoundError as exc:
        console.print(Text.assemble(("Not configured: ", "red"), str(exc)), soft_wrap=True)
        sys.exit(ExitCode.CONFIG_ERROR)
    except ConfigError as exc:
        console.print(Text.assemble(("Config error: ", "red"), str(exc)), soft_wrap=True)
        sys.exit(ExitCode.CONFIG_ERROR)

    configure_logging(config.logging)
    return config


def emit(
    result: ToolResult,
    as_json: bool,
    console: Console,
    failure_code: ExitCode = ExitCode.ERROR,
) -> None:
    """Print a tool result on stdout and exit non-zero if it is an error."""
    if as_json:
        print(json.dumps({"ok": not result.is_error, "text": result.text}))
    elif result.is_error:
        console.print(Text(result.text, style="red"), soft_wrap=True)
    else:
        console.print(result.text, markup=False, highlight=False, soft_wrap=True)
    if result.is_error:
        sys.exit(failure_code)
