"""
Tests for the agent-facing triage tools.

The relay client is real; the broker is faked with httpx.MockTransport for
HTTP and an in-memory socket for the duplex channel. The fake broker answers
a push by feeding a response into the socket.
"""

from __future__ import annotations

import asyncio
from typing import Any

import pytest
import pytest_asyncio

from jarvis.relay.protocol import ApprovalMessage, DecisionChoice, DecisionMessage
from jarvis.tools import ToolResult, TriageTools, coerce_options


@pytest_asyncio.fixture
async def relay(make_client):
    client = make_client()
    yield client
    await client.aclose()


@pytest.fixture
def tools(relay):
    return TriageTools(relay, default_source="claude-code", id_factory=lambda: "corr-1")


def _answer_decision(connector, label: str, index: int):
    def on_push(body: dict[str, Any]) -> None:
        connector.latest.feed(
            DecisionMessage(
                correlation_id=body["correlationId"],
                source=body.get("source"),
                question=body["decisions"][0]["question"],
                selected_label=label,
                selected_index=index,
            )
        )

    return on_push


class TestStatus:
    @pytest.mark.asyncio
    async def test_reachable(self, tools, relay_http) -> None:
        relay_http.clients = 2
        assert await tools.status() == ToolResult("Relay server reachable. Connected clients: 2")

    @pytest.mark.asyncio
    async def test_unreachable(self, tools, relay_http) -> None:
        relay_http.down = True
        result = await tools.status()
        assert result.is_error
        assert result.text.startswith("Relay server unreachable: ")


class TestNotify:
    @pytest.mark.asyncio
    async def test_sends_level_one_payload(self, tools, relay_http, connector) -> None:
        relay_http.clients = 3

        result = await tools.notify("Build", "All green")

        assert result == ToolResult("Notification sent to 3 client(s).")
        assert relay_http.pushes == [
            {"level": 1, "title": "Build", "hudLines": ["All green"], "source": "claude-code"}
        ]
        assert connector.attempts == 0

    @pytest.mark.asyncio
    async def test_warns_when_nobody_listens(self, tools, relay_http) -> None:
        relay_http.clients = 0
        result = await tools.notify("Build", "All green", source="ci")
        assert not result.is_error
        assert "0 clients connected" in result.text
        assert relay_http.pushes[0]["source"] == "ci"

    @pytest.mark.asyncio
    async def test_push_failure(self, tools, relay_http) -> None:
        relay_http.push_status = 503
        result = await tools.notify("Build", "All green")
        assert result == ToolResult(
            "Failed to send notification: Relay push failed (503): broker exploded", is_error=True
        )


class TestDecide:
    @pytest.mark.asyncio
    async def test_round_trip(self, tools, relay, relay_http, connector) -> None:
        seen_waiters: list[int] = []

        def on_push(body: dict[str, Any]) -> None:
            seen_waiters.append(relay.pending_waiters)
            _answer_decision(connector, "Blue", 1)(body)

        relay_http.on_push = on_push

        result = await tools.decide("Theme", "Which colour?", ["Red", "Blue:calmer"])

        assert result == ToolResult('User selected: "Blue" (option 2)')
        assert seen_waiters == [1]  # waiter existed before the push
        push = relay_http.pushes[0]
        assert push["level"] == 2
        assert push["correlationId"] == "corr-1"
        assert push["source"] == "claude-code"
        assert push["decisions"][0]["options"] == [{"label": "Red"}, {"label": "Blue:calmer"}]
        assert "summary" not in push
        assert relay.pending_waiters == 0

    @pytest.mark.asyncio
    async def test_context_raises_level(self, tools, relay_http, connector) -> None:
        relay_http.on_push = _answer_decision(connector, "Yes", 0)

        await tools.decide(
            "Deploy",
            "Ship now?",
            [{"label": "Yes"}, {"label": "No", "description": "after lunch"}],
            context="3 failing tests were flaky",
            source="release-bot",
        )

        push = relay_http.pushes[0]
        assert push["level"] == 3
        assert push["summary"] == "3 failing tests were flaky"
        assert push["source"] == "release-bot"
        assert push["decisions"][0]["options"][1] == {"label": "No", "description": "after lunch"}

    @pytest.mark.parametrize("options", [["Only"], ["a", "b", "c", "d"]])
    @pytest.mark.asyncio
    async def test_option_count_checked_before_anything_is_sent(
        self, tools, relay_http, connector, options
    ) -> None:
        result = await tools.decide("T", "Q?", options)
        assert result.is_error
        assert result.text.startswith("Decision failed: Expected 2-3 options")
        assert relay_http.pushes == []
        assert connector.attempts == 0

    @pytest.mark.asyncio
    async def test_timeout(self, tools, relay, relay_http) -> None:
        result = await tools.decide("T", "Q?", ["a", "b"], timeout_seconds=0.05)
        assert result == ToolResult(
            "Decision failed: Timed out waiting for decision [corr-1] (0.05s)", is_error=True
        )
        assert len(relay_http.pushes) == 1
        assert relay.pending_waiters == 0

    @pytest.mark.asyncio
    async def test_unreachable_socket(self, tools, relay_http, connector) -> None:
        connector.refuse = True
        result = await tools.decide("T", "Q?", ["a", "b"])
        assert result.is_error
        assert result.text.startswith("Decision failed: Failed to connect after 1 attempts")
        assert relay_http.pushes == []

    @pytest.mark.asyncio
    async def test_push_failure_drops_waiter(self, tools, relay, relay_http) -> None:
        relay_http.push_status = 500
        result = await tools.decide("T", "Q?", ["a", "b"])
        assert result.is_error
        assert "Relay push failed (500)" in result.text
        await asyncio.sleep(0)
        assert relay.pending_waiters == 0

    @pytest.mark.asyncio
    async def test_concurrent_prompts_resolve_by_correlation_id(
        self, relay, relay_http, connector
    ) -> None:
        ids = iter(["first", "second"])
        tools = TriageTools(relay, id_factory=lambda: next(ids))

        def on_push(body: dict[str, Any]) -> None:
            if body["correlationId"] == "second":
                connector.latest.feed(
                    DecisionMessage(
                        correlation_id="second",
                        question="Q?",
                        selected_label="b",
                        selected_index=1,
                    )
                )
                connector.latest.feed(
                    DecisionMessage(
                        correlation_id="first",
                        question="Q?",
                        selected_label="a",
                        selected_index=0,
                    )
                )

        relay_http.on_push = on_push
        first = asyncio.create_task(tools.decide("T", "Q?", ["a", "b"], timeout_seconds=1))
        await asyncio.sleep(0.02)
        second = await tools.decide("T", "Q?", ["a", "b"], timeout_seconds=1)

        assert second.text == 'User selected: "b" (option 2)'
        assert (await first).text == 'User selected: "a" (option 1)'


class TestApprove:
    DECISIONS = [
        {"question": "Database?", "options": ["Postgres", "SQLite"]},
        {"question": "Deploy?", "options": [{"label": "Now"}, {"label": "Tonight"}]},
    ]

    @pytest.mark.asyncio
    async def test_approved(self, tools, relay_http, connector) -> None:
        def on_push(body: dict[str, Any]) -> None:
            connector.latest.feed(
                ApprovalMessage(
                    correlation_id=body["correlationId"],
                    approved=True,
                    decisions=(
                        DecisionChoice(
                            question="Database?", selected_label="SQLite", selected_index=1
                        ),
                        DecisionChoice(question="Deploy?", selected_label="Now", selected_index=0),
                    ),
                )
            )

        relay_http.on_push = on_push

        result = await tools.approve(
            "Migration plan", self.DECISIONS, summary="Move storage", risks=["downtime"]
        )

        assert result == ToolResult(
            'Plan APPROVED.\nDecisions:\n1. Database?: "SQLite"\n2. Deploy?: "Now"'
        )
        push = relay_http.pushes[0]
        assert push["level"] == 4
        assert push["summary"] == "Move storage"
        assert push["risks"] == ["downtime"]
        assert [d["question"] for d in push["decisions"]] == ["Database?", "Deploy?"]

    @pytest.mark.asyncio
    async def test_rejected(self, tools, relay_http, connector) -> None:
        relay_http.on_push = lambda body: connector.latest.feed(
            ApprovalMessage(correlation_id=body["correlationId"], approved=False)
        )
        result = await tools.approve("Plan", self.DECISIONS)
        assert result == ToolResult("Plan REJECTED by user.")

    @pytest.mark.asyncio
    async def test_decision_reply_does_not_satisfy_approval(
        self, tools, relay_http, connector
    ) -> None:
        relay_http.on_push = _answer_decision(connector, "Postgres", 0)
        result = await tools.approve("Plan", self.DECISIONS, timeout_seconds=0.05)
        assert result.is_error
        assert "Timed out waiting for approval [corr-1]" in result.text

    @pytest.mark.parametrize(
        "decisions",
        [
            [],
            [{"question": "Q", "options": ["one"]}],
            [{"options": ["a", "b"]}],
            ["not an object"],
        ],
    )
    @pytest.mark.asyncio
    async def test_invalid_plans(self, tools, relay_http, decisions) -> None:
        result = await tools.approve("Plan", decisions)
        assert result.is_error
        assert result.text.startswith("Approval failed: ")
        assert relay_http.pushes == []


class TestCoerceOptions:
    def test_accepts_mixed_inputs(self) -> None:
        options = coerce_options(["a", {"label": "b", "description": "bee"}])
        assert [o.label for o in options] == ["a", "b"]
        assert options[1].description == "bee"
