"""Variable descriptors for the expression picker, notifier and logging callback."""

import json
import logging

import pytest

from canvasflow.callbacks import LoggingCallback, LoggingNotifier
from canvasflow.callbacks.notifier import safe_notify
from canvasflow.engine import describe_variables
from canvasflow.engine.context import ExecutionContext
from canvasflow.types import ActionType, NodeExecutionResult, NotificationType, RunOutcome, RunStatus

from conftest import make_node


# ── describe_variables ───────────────────────────────────────────────────────

def test_describe_variables_paths_and_kinds():
    ctx = ExecutionContext()
    ctx.record_result("f1", {"data": {"name": "Ada", "age": "36"}, "values": [1, 2]}, "Signup")
    groups = describe_variables(ctx)

    assert len(groups) == 1
    group = groups[0]
    assert (group.node_id, group.node_name) == ("f1", "Signup")
    by_key = {v.key: v for v in group.variables}
    assert by_key["data.name"].path == "$.Signup#f1.data.name"
    assert by_key["data.age"].type == "number"
    assert by_key["values"].type == "array"
    assert by_key["data"].type == "object"


def test_describe_variables_depth_limit():
    ctx = ExecutionContext()
    ctx.record_result("n", {"a": {"b": {"c": 1}}}, "Deep")
    keys = [v.key for v in describe_variables(ctx, max_depth=2)[0].variables]
    assert keys == ["a", "a.b"]


def test_describe_variables_scalar_payload_and_preview():
    ctx = ExecutionContext()
    ctx.record_result("n", "x" * 200, "Text")
    variable = describe_variables(ctx)[0].variables[0]
    assert variable.key == "value"
    assert variable.path == "$.Text#n"
    assert len(variable.preview) == 80
    assert variable.preview.endswith("...")


def test_describe_variables_failed_node_has_no_fields():
    ctx = ExecutionContext()
    ctx.record_result("n", None, "Broken")
    assert describe_variables(ctx)[0].variables == []


# ── Notifier ─────────────────────────────────────────────────────────────────

def test_logging_notifier_levels(caplog):
    with caplog.at_level(logging.INFO, logger="canvasflow.notifications"):
        LoggingNotifier().notify("Saved", "All good", NotificationType.SUCCESS)
        LoggingNotifier().notify("Oops", "Broke")
    assert json.loads(caplog.records[0].getMessage()) == {"toast": "success", "title": "Saved", "message": "All good"}
    assert caplog.records[1].levelno == logging.ERROR


def test_safe_notify_swallows_notifier_failure(caplog):
    class _Broken:
        def notify(self, title, message, type=NotificationType.ERROR):
            raise RuntimeError("toast service down")

    safe_notify(_Broken(), "T", "M")
    assert "toast service down" in caplog.text


# ── LoggingCallback ──────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_logging_callback_writes_json_lines(caplog):
    cb = LoggingCallback()
    node = make_node("n1", ActionType.NOTIFY)
    with caplog.at_level(logging.INFO, logger="canvasflow.audit"):
        await cb("workflow_started", {"run_id": "r1", "trigger_ids": ["t"]})
        await cb("node_failed", {"node": node, "result": NodeExecutionResult.fail("boom"), "iteration": 2})
        await cb("workflow_completed", {"outcome": RunOutcome(id="r1", status=RunStatus.PARTIAL)})
        await cb("engine_error", {"run_id": "r1", "error": RuntimeError("engine fault")})

    lines = [json.loads(r.getMessage()) for r in caplog.records]
    assert [line["event"] for line in lines] == ["run_start", "node_complete", "run_complete", "error"]
    assert lines[1]["error"] == "boom"
    assert lines[1]["iteration"] == 2
    assert caplog.records[1].levelno == logging.WARNING
    assert lines[2]["status"] == "partial"
    assert lines[3]["error_type"] == "RuntimeError"
