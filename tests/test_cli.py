"""CLI commands: run, validate, config."""

import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from canvasflow.cli.main import app
from canvasflow.version import __version__

runner = CliRunner()


def _write(tmp_path, name, doc):
    path = tmp_path / name
    path.write_text(json.dumps(doc))
    return str(path)


_NOTIFY_FLOW = {
    "name": "Hello",
    "nodes": [
        {"id": "t", "category": "trigger", "nodeType": "Manual Trigger"},
        {"id": "n", "category": "action", "nodeType": "Notify", "settings": {"general": {"message": "hi {{ $.who }}"}}},
    ],
    "connectors": [{"id": "c1", "sourceId": "t", "targetId": "n"}],
}

_FORM_FLOW = {
    "name": "Signup",
    "nodes": [
        {
            "id": "form",
            "category": "trigger",
            "nodeType": "Form",
            "settings": {"general": {"formTitle": "Signup", "formFields": [{"label": "Name", "type": "text"}]}},
        },
        {
            "id": "greet",
            "category": "action",
            "nodeType": "Notify",
            "settings": {"general": {"message": "Hello {{ $.Form#form.data.name }}"}},
        },
    ],
    "connectors": [{"id": "c1", "sourceId": "form", "targetId": "greet"}],
}


def test_version():
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert f"canvasflow v{__version__}" in result.output


# ── validate ─────────────────────────────────────────────────────────────────

def test_validate_clean_file(tmp_path):
    result = runner.invoke(app, ["validate", _write(tmp_path, "flow.json", _NOTIFY_FLOW)])
    assert result.exit_code == 0
    assert "no problems found" in result.output


def test_validate_without_trigger_fails(tmp_path):
    doc = {"nodes": [_NOTIFY_FLOW["nodes"][1]], "connectors": []}
    result = runner.invoke(app, ["validate", _write(tmp_path, "flow.json", doc)])
    assert result.exit_code == 1
    assert "error" in result.output


def test_validate_malformed_document(tmp_path):
    doc = {"nodes": [{"id": "x", "category": "action", "nodeType": "Teleport"}]}
    result = runner.invoke(app, ["validate", _write(tmp_path, "flow.json", doc)])
    assert result.exit_code == 1
    assert "Invalid:" in result.output


def test_validate_missing_file(tmp_path):
    result = runner.invoke(app, ["validate", str(tmp_path / "missing.json")])
    assert result.exit_code == 1


# ── run ──────────────────────────────────────────────────────────────────────

def test_run_manual_flow_with_vars(tmp_path):
    result = runner.invoke(app, ["run", _write(tmp_path, "flow.json", _NOTIFY_FLOW), "--var", "who=world"])
    assert result.exit_code == 0
    assert "hi world" in result.output
    assert "COMPLETED" in result.output


def test_run_answers_form_from_options(tmp_path):
    result = runner.invoke(app, ["run", _write(tmp_path, "form.json", _FORM_FLOW), "-f", "Ada"])
    assert result.exit_code == 0
    assert "Hello Ada" in result.output


def test_run_json_output(tmp_path):
    result = runner.invoke(app, ["run", _write(tmp_path, "flow.json", _NOTIFY_FLOW), "--json"])
    assert result.exit_code == 0
    assert '"status": "completed"' in result.output


def test_run_partial_exits_nonzero(tmp_path):
    doc = json.loads(json.dumps(_NOTIFY_FLOW))
    doc["nodes"][1] = {"id": "n", "category": "action", "nodeType": "HTTP Request"}
    result = runner.invoke(app, ["run", _write(tmp_path, "flow.json", doc)])
    assert result.exit_code == 1
    assert "PARTIAL" in result.output


def test_run_missing_file(tmp_path):
    result = runner.invoke(app, ["run", str(tmp_path / "missing.json")])
    assert result.exit_code == 1
    assert "Error:" in result.output


@pytest.mark.parametrize("bad", ["novalue", "=x"])
def test_run_rejects_malformed_var(tmp_path, bad):
    result = runner.invoke(app, ["run", _write(tmp_path, "flow.json", _NOTIFY_FLOW), "--var", bad])
    assert result.exit_code == 2


# ── config ───────────────────────────────────────────────────────────────────

def test_config_lists_settings():
    result = runner.invoke(app, ["config"])
    assert result.exit_code == 0
    assert "max_node_executions" in result.output


def test_run_bundled_signup_example():
    path = Path(__file__).resolve().parents[1] / "examples" / "workflows" / "signup.yaml"
    result = runner.invoke(app, ["run", str(path), "-f", "Ada", "-f", "pro", "-f", "billing, api"])
    assert result.exit_code == 0
    assert "Ada joined the Pro plan." in result.output
    assert "Subscribed to api" in result.output
    assert "All set, Ada!" in result.output


def test_config_json_reflects_environment(monkeypatch):
    monkeypatch.setenv("CANVASFLOW_LOOP_MODE", "first")
    result = runner.invoke(app, ["config", "--json"])
    assert result.exit_code == 0
    assert json.loads(result.output)["loop_mode"] == "first"
