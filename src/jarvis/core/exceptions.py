"""Jarvis exception hierarchy."""

from __future__ import annotations


class JarvisError(Exception):
    """Base exception for all Jarvis errors."""


class ConfigError(JarvisError):
    """Raised when the configuration is invalid or cannot be read."""


class ConfigNotFoundError(ConfigError):
    """Raised when an explicitly requested configuration file does not exist."""


class RelayError(JarvisError):
    """Raised when talking to the relay broker fails."""


class RelayConnectionError(RelayError):
    """Raised when the broker cannot be reached (connect refused, DNS, reset)."""


class RelayHTTPError(RelayError):
    """Raised when the broker answers a push/status call with a non-2xx status."""

    def __init__(self, message: str, status_code: int, body: str = "") -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class WaiterError(RelayError):
    """Base for failures delivered to a pending response waiter."""


class WaiterTimeoutError(WaiterError):
    """No matching response arrived before the waiter's deadline."""


class ClientDisconnectedError(WaiterError):
    """The correlation client was disconnected on purpose."""


class ReconnectExhaustedError(WaiterError):
    """Auto-reconnect gave up before a matching response arrived."""
