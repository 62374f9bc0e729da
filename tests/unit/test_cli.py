"""
CLI tests via click.testing.CliRunner.

Agent-side commands get a RelayClient wired to the in-memory fakes, so no
network is touched.
"""

from __future__ import annotations

import io
import json
from typing import Any

import pytest
from click.testing import CliRunner
from rich.console import Console

from jarvis.cli.main import cli
from jarvis.core.constants import ExitCode
from jarvis.relay.protocol import (
    ApprovalMessage,
    Decision,
    DecisionMessage,
    DecisionOption,
    Payload,
    TriageLevel,
)

pytestmark = pytest.mark.usefixtures("isolated_env")


@pytest.fixture(autouse=True)
def quiet_logs(isolated_env, monkeypatch):
    monkeypatch.setenv("JARVIS_LOG_LEVEL", "ERROR")


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture
def fake_relay(monkeypatch, make_client):
    monkeypatch.setattr("jarvis.cli._agent.make_relay", lambda config: make_client())


def _last_json(output: str) -> dict[str, Any]:
    return json.loads(output.strip().splitlines()[-1])


# ---------------------------------------------------------------------------
# version / config
# ---------------------------------------------------------------------------


class TestVersion:
    def test_version_flag(self, runner) -> None:
        result = runner.invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert result.output.startswith("jarvis ")

    def test_version_json(self, runner) -> None:
        result = runner.invoke(cli, ["version", "--json"])
        assert result.exit_code == 0
        data = json.loads(result.output)
        assert set(data) == {"jarvis", "python", "platform", "arch"}


class TestConfigErrors:
    def test_missing_explicit_config(self, runner, tmp_path) -> None:
        result = runner.invoke(cli, ["--config", str(tmp_path / "missing.toml"), "status"])
        assert result.exit_code == ExitCode.CONFIG_ERROR
        assert "Not configured" in result.output

    def test_invalid_config(self, runner, tmp_path) -> None:
        path = tmp_path / "bad.toml"
        path.write_text('[relay]\nurl = "nope"\n')
        result = runner.invoke(cli, ["--config", str(path), "status"])
        assert result.exit_code == ExitCode.CONFIG_ERROR
        assert "Config error" in result.output


# ---------------------------------------------------------------------------
# status / notify
# ---------------------------------------------------------------------------


@pytest.mark.usefixtures("fake_relay")
class TestStatusAndNotify:
    def test_status(self, runner, relay_http) -> None:
        relay_http.clients = 2
        result = runner.invoke(cli, ["status"])
        assert result.exit_code == 0
        assert "Relay server reachable. Connected clients: 2" in result.output

    def test_status_json(self, runner) -> None:
        result = runner.invoke(cli, ["status", "--json"])
        assert result.exit_code == 0
        assert _last_json(result.output) == {
            "ok": True,
            "text": "Relay server reachable. Connected clients: 1",
        }

    def test_status_unreachable(self, runner, relay_http) -> None:
        relay_http.down = True
        result = runner.invoke(cli, ["status"])
        assert result.exit_code == ExitCode.NETWORK_ERROR
        assert "Relay server unreachable" in result.output

    def test_notify(self, runner, relay_http) -> None:
        result = runner.invoke(cli, ["notify", "Build", "All green", "--source", "ci"])
        assert result.exit_code == 0
        assert "Notification sent to 1 client(s)." in result.output
        assert relay_http.pushes[0]["hudLines"] == ["All green"]
        assert relay_http.pushes[0]["source"] == "ci"


# ---------------------------------------------------------------------------
# decide / approve
# ---------------------------------------------------------------------------


@pytest.mark.usefixtures("fake_relay")
class TestDecide:
    def test_round_trip(self, runner, relay_http, connector) -> None:
        def on_push(body: dict[str, Any]) -> None:
            connector.latest.feed(
                DecisionMessage(
                    correlation_id=body["correlationId"],
                    question=body["decisions"][0]["question"],
                    selected_label="No",
                    selected_index=1,
                )
            )

        relay_http.on_push = on_push

        result = runner.invoke(
            cli,
            ["decide", "Deploy", "Ship it?", "-o", "Yes", "-o", "No:not today", "--json"],
        )

        assert result.exit_code == 0, result.output
        assert _last_json(result.output) == {
            "ok": True,
            "text": 'User selected: "No" (option 2)',
        }
        options = relay_http.pushes[0]["decisions"][0]["options"]
        assert options == [{"label": "Yes"}, {"label": "No", "description": "not today"}]

    def test_too_few_options(self, runner, relay_http) -> None:
        result = runner.invoke(cli, ["decide", "Deploy", "Ship it?", "-o", "Yes"])
        assert result.exit_code == ExitCode.ERROR
        assert "Decision failed: Expected 2-3 options, got 1" in result.output
        assert relay_http.pushes == []

    def test_empty_option_label(self, runner) -> None:
        result = runner.invoke(cli, ["decide", "T", "Q?", "-o", ":desc", "-o", "b"])
        assert result.exit_code == 2
        assert "label is empty" in result.output

    def test_timeout(self, runner) -> None:
        result = runner.invoke(
            cli, ["decide", "T", "Q?", "-o", "a", "-o", "b", "--timeout", "0.05"]
        )
        assert result.exit_code == ExitCode.ERROR
        assert "Timed out waiting for decision" in result.output


@pytest.mark.usefixtures("fake_relay")
class TestApprove:
    PLAN = {
        "title": "Migration",
        "summary": "Move to Postgres",
        "risks": ["downtime"],
        "decisions": [{"question": "When?", "options": ["Now", "Tonight"]}],
    }

    def test_plan_from_stdin(self, runner, relay_http, connector) -> None:
        relay_http.on_push = lambda body: connector.latest.feed(
            ApprovalMessage(correlation_id=body["correlationId"], approved=False)
        )

        result = runner.invoke(cli, ["approve", "-"], input=json.dumps(self.PLAN))

        assert result.exit_code == 0, result.output
        assert "Plan REJECTED by user." in result.output
        push = relay_http.pushes[0]
        assert push["level"] == 4
        assert push["title"] == "Migration"
        assert push["risks"] == ["downtime"]

    def test_plan_from_file(self, runner, relay_http, connector, tmp_path) -> None:
        plan_file = tmp_path / "plan.json"
        plan_file.write_text(json.dumps(self.PLAN))
        relay_http.on_push = lambda body: connector.latest.feed(
            ApprovalMessage(correlation_id=body["correlationId"], approved=True)
        )

        result = runner.invoke(cli, ["approve", str(plan_file), "--json"])

        assert result.exit_code == 0, result.output
        assert _last_json(result.output)["text"].startswith("Plan APPROVED.")

    def test_invalid_plan_json(self, runner) -> None:
        result = runner.invoke(cli, ["approve", "-"], input="{oops")
        assert result.exit_code == 2
        assert "not valid JSON" in result.output

    def test_plan_without_decisions(self, runner) -> None:
        result = runner.invoke(cli, ["approve", "-"], input=json.dumps({"title": "x"}))
        assert result.exit_code == 2
        assert "decisions" in result.output


# ---------------------------------------------------------------------------
# serve / watch
# ---------------------------------------------------------------------------


class TestServe:
    def test_flags_override_config(self, runner, monkeypatch) -> None:
        seen = []
        monkeypatch.setattr("jarvis.relay.broker.serve", seen.append)

        result = runner.invoke(
            cli, ["serve", "--host", "127.0.0.1", "--port", "9100", "--heartbeat", "0"]
        )

        assert result.exit_code == 0, result.output
        (config,) = seen
        assert config.server.host == "127.0.0.1"
        assert config.server.port == 9100
        assert config.server.heartbeat_seconds == 0
        assert "9100" in result.output
        assert "disabled" in result.output


class TestWatch:
    def test_unreachable_relay(self, runner, monkeypatch) -> None:
        async def refuse(url: str):
            raise ConnectionRefusedError(f"refused: {url}")

        monkeypatch.setattr("jarvis.relay.display.open_websocket", refuse)
        result = runner.invoke(cli, ["watch"])
        assert result.exit_code == ExitCode.NETWORK_ERROR
        assert "Relay unreachable" in result.output

    def test_render_payload(self) -> None:
        from jarvis.cli._watch import render_payload

        payload = Payload(
            level=TriageLevel.INFO_DECISION,
            title="Deploy",
            summary="Two flaky tests",
            source="claude-code",
            decisions=(
                Decision(
                    question="Ship it?",
                    options=(
                        DecisionOption(label="Yes"),
                        DecisionOption(label="No", description="wait for CI"),
                    ),
                ),
            ),
            risks=("rollback is manual",),
        )
        buffer = io.StringIO()
        Console(file=buffer, width=100).print(render_payload(payload))
        text = buffer.getvalue()

        for fragment in ("L3 Deploy", "Two flaky tests", "Ship it?", "1) Yes", "wait for CI"):
            assert fragment in text
        assert "rollback is manual" in text
