"""
Jarvis Triage — relays agent prompts to a heads-up display and returns the choice.

An automation agent pushes a structured triage payload (a notification, a
quick decision, or a multi-step plan approval). The relay broker fans it out
to every connected display. The wearer picks an option; the display sends the
response back through the broker, and the agent-side correlation client
matches it to the waiting request.

Package layout (src/jarvis/):
  core/    — configuration, constants, exceptions, logging
  relay/   — wire protocol, broker, correlation client, display client
  tools.py — agent-facing notify / decide / approve / status operations
  cli/     — Click CLI entry point
"""

__version__ = "0.2.0"
__all__ = ["__version__"]
