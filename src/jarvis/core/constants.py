"""Jarvis constants: filesystem layout, network defaults, timeouts and limits."""

from __future__ import annotations

from enum import IntEnum

# ---------------------------------------------------------------------------
# Exit codes
# ---------------------------------------------------------------------------


class ExitCode(IntEnum):
    SUCCESS = 0
    ERROR = 1
    CONFIG_ERROR = 2
    NETWORK_ERROR = 4


# ---------------------------------------------------------------------------
# Filesystem layout
# ---------------------------------------------------------------------------

JARVIS_DIR_NAME = ".jarvis"
CONFIG_FILENAME = "config.toml"

# ---------------------------------------------------------------------------
# Network
# ---------------------------------------------------------------------------

DEFAULT_RELAY_URL = "http://localhost:8080"
DEFAULT_SOURCE = "claude-code"
DEFAULT_SERVER_HOST = "0.0.0.0"  # displays connect from the LAN
DEFAULT_SERVER_PORT = 8080
HEARTBEAT_INTERVAL_SECONDS = 30.0

# ---------------------------------------------------------------------------
# Correlation client: connect and auto-reconnect
# ---------------------------------------------------------------------------

CONNECT_RETRIES = 5
CONNECT_RETRY_DELAY_MS = 3000
MAX_RECONNECT_ATTEMPTS = 10
BASE_RECONNECT_DELAY_MS = 1000
MAX_RECONNECT_DELAY_MS = 30000

# ---------------------------------------------------------------------------
# Display client
# ---------------------------------------------------------------------------

DISPLAY_MAX_RECONNECT = 5
DISPLAY_RECONNECT_DELAY_MS = 3000

# ---------------------------------------------------------------------------
# Triage tools
# ---------------------------------------------------------------------------

DECIDE_TIMEOUT_SECONDS = 120
APPROVE_TIMEOUT_SECONDS = 300
MIN_OPTIONS = 2
MAX_OPTIONS = 3
