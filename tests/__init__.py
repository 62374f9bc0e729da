"""
Jarvis test suite.

Tests are organized by layer:
    tests/unit/         Unit tests (fake sockets, httpx.MockTransport, no network)
    tests/integration/  Integration tests (real broker on an ephemeral localhost port)

Run all tests:
    pytest

Run unit tests only:
    pytest tests/unit/
"""
