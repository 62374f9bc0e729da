"""
jarvis.core — configuration, constants, exceptions and logging.

Modules:
    config         Configuration loading (TOML + env vars)
    constants      Exit codes, ports, timeouts, backoff limits
    exceptions     Jarvis-specific exception hierarchy
    logging_setup  stderr logging configuration (text or JSON lines)
"""
