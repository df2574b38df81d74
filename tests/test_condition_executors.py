"""Condition executors: If Condition, Switch Case, Filter, Loop, Stop."""

import pytest

from canvasflow.config import CanvasflowConfig
from canvasflow.engine.context import ExecutionContext
from canvasflow.executors.base import check_exhaustive
from canvasflow.executors.conditions import execute_condition, loop_cursor
from canvasflow.triggers.channel import Topic
from canvasflow.types import ConditionType, NotificationType

from conftest import make_node, row


@pytest.fixture
def ctx():
    c = ExecutionContext(variables={"x": 2})
    c.record_result("src", {"items": [1, 2, 3, 4], "name": "Ada"}, "Source")
    return c


# ── If Condition ─────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_if_numeric_text(services, ctx):
    node = make_node("if", ConditionType.IF_CONDITION, conditions=[row("5", "greater than", "3")])
    result = await execute_condition(node, ctx, services)
    assert result.success
    assert result.data["conditionResult"] is True
    assert result.data["rowResults"] == [True]
    assert "evaluatedAt" in result.data


@pytest.mark.asyncio
async def test_if_with_path_rows(services, ctx):
    node = make_node("if", ConditionType.IF_CONDITION, conditions=[
        row("$.Source#src.name", "is equal to", "Grace"),
        row("$.x", "less than", "10", joiner="OR"),
    ])
    result = await execute_condition(node, ctx, services)
    assert result.data["conditionResult"] is True
    assert result.data["rowResults"] == [False, True]


@pytest.mark.asyncio
async def test_if_legacy_expression(services, ctx):
    node = make_node("if", ConditionType.IF_CONDITION, condition="{{ $.x }} > 5")
    result = await execute_condition(node, ctx, services)
    assert result.success
    assert result.data["conditionResult"] is False


@pytest.mark.asyncio
async def test_if_missing_condition(services, notifier, ctx):
    result = await execute_condition(make_node("if", ConditionType.IF_CONDITION), ctx, services)
    assert not result.success
    assert result.error == "If Condition: Please configure at least one condition row or a valid expression."
    assert notifier.titles() == ["If Condition Missing"]


@pytest.mark.asyncio
async def test_if_invalid_row_reports_row_number(services, notifier, ctx):
    node = make_node("if", ConditionType.IF_CONDITION, conditions=[
        row("$.x", "exists"),
        row("$.x", "greater than", "many"),
    ])
    result = await execute_condition(node, ctx, services)
    assert not result.success
    assert result.error.startswith("Row 2:")
    assert notifier.titles() == ["If Condition: Invalid Number"]


# ── Switch Case ──────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_switch_first_match_wins(services, ctx):
    node = make_node("sw", ConditionType.SWITCH_CASE, rules=[
        row("$.x", "is equal to", "1"),
        row("$.x", "is equal to", "2"),
        row("$.x", "greater than", "0"),
    ])
    result = await execute_condition(node, ctx, services)
    assert result.data["matchedCaseIndex"] == 1
    assert result.data["matchedPortId"] == "right-case-2"
    assert result.data["defaultTaken"] is False
    assert result.data["rowResults"] == [False, True, True]


@pytest.mark.asyncio
async def test_switch_default_port(services, ctx):
    node = make_node(
        "sw", ConditionType.SWITCH_CASE, rules=[row("$.x", "is equal to", "9")], enableDefaultPort=True
    )
    result = await execute_condition(node, ctx, services)
    assert result.data["matchedCaseIndex"] is None
    assert result.data["matchedPortId"] == "right-case-default"
    assert result.data["defaultTaken"] is True


@pytest.mark.asyncio
async def test_switch_no_match_without_default(services, ctx):
    node = make_node("sw", ConditionType.SWITCH_CASE, rules=[row("$.x", "is equal to", "9")])
    result = await execute_condition(node, ctx, services)
    assert result.success
    assert result.data["matchedPortId"] is None
    assert result.data["defaultTaken"] is False


@pytest.mark.asyncio
async def test_switch_without_rules(services, notifier, ctx):
    result = await execute_condition(make_node("sw", ConditionType.SWITCH_CASE), ctx, services)
    assert result.error == "Switch Case: Please add at least one case."
    assert notifier.titles() == ["Switch Case Missing"]


# ── Filter ───────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_filter_rows_per_item(services, ctx):
    node = make_node(
        "f", ConditionType.FILTER, input="$.Source#src.items", conditions=[row("$.item", "greater than", "2")]
    )
    result = await execute_condition(node, ctx, services)
    assert result.data == {"filtered": [3, 4], "filteredCount": 2}


@pytest.mark.asyncio
async def test_filter_legacy_predicate(services, ctx):
    node = make_node("f", ConditionType.FILTER, input="$.Source#src.items", predicate="item % 2 == 0")
    result = await execute_condition(node, ctx, services)
    assert result.data["filtered"] == [2, 4]


@pytest.mark.asyncio
async def test_filter_failing_predicate_drops_item(services):
    ctx = ExecutionContext(variables={"rows": [{"n": 1}, "text", {"n": 5}]})
    node = make_node("f", ConditionType.FILTER, input="$.rows", predicate="item.n > 2")
    result = await execute_condition(node, ctx, services)
    assert result.data["filtered"] == [{"n": 5}]


@pytest.mark.asyncio
async def test_filter_missing_input(services, notifier, ctx):
    node = make_node("f", ConditionType.FILTER, conditions=[row("$.item", "exists")])
    result = await execute_condition(node, ctx, services)
    assert result.error == "Filter: Please provide the Items (list) input."
    assert notifier.titles() == ["Filter Missing Input"]


@pytest.mark.asyncio
async def test_filter_non_array_input(services, notifier, ctx):
    node = make_node("f", ConditionType.FILTER, input="$.Source#src.name", predicate="true")
    result = await execute_condition(node, ctx, services)
    assert result.error == "Filter: Items input must resolve to an array. Got string."
    assert notifier.titles() == ["Filter Invalid Input"]


@pytest.mark.asyncio
async def test_filter_missing_condition(services, notifier, ctx):
    node = make_node("f", ConditionType.FILTER, input="$.Source#src.items")
    result = await execute_condition(node, ctx, services)
    assert result.error == "Filter: Please configure at least one condition row or a predicate."
    assert notifier.titles() == ["Filter Missing Condition"]


@pytest.mark.asyncio
@pytest.mark.parametrize("comparator,expected", [
    ("is between", [2, 3]),
    ("is not between", [1, 4]),
])
async def test_filter_range_on_current_item(services, notifier, comparator, expected):
    node = make_node(
        "f", ConditionType.FILTER, input="{{ [1, 2, 3, 4] }}", conditions=[row("$.item", comparator, "2,3")]
    )
    result = await execute_condition(node, ExecutionContext(), services)
    assert result.success, result.error
    assert result.data == {"filtered": expected, "filteredCount": len(expected)}
    assert notifier.toasts == []


@pytest.mark.asyncio
async def test_filter_item_field_on_right(services):
    ctx = ExecutionContext(variables={"orders": [{"qty": 3, "min": 2}, {"qty": 1, "min": 5}]})
    node = make_node(
        "f", ConditionType.FILTER, input="$.orders", conditions=[row("$.item.qty", "greater than", "$.item.min")]
    )
    result = await execute_condition(node, ctx, services)
    assert result.data["filtered"] == [{"qty": 3, "min": 2}]


@pytest.mark.asyncio
async def test_filter_range_rejects_text_items(services, notifier):
    ctx = ExecutionContext(variables={"names": ["ann", "bob"]})
    node = make_node("f", ConditionType.FILTER, input="$.names", conditions=[row("$.item", "is between", "2,3")])
    result = await execute_condition(node, ctx, services)
    assert result.error.startswith('Row 1: "is between" requires numeric or date values')
    assert notifier.titles() == ["Filter: Invalid Range"]


@pytest.mark.asyncio
async def test_filter_empty_input_keeps_nothing(services, notifier):
    ctx = ExecutionContext(variables={"numbers": []})
    node = make_node("f", ConditionType.FILTER, input="$.numbers", conditions=[row("$.item", "is between", "2,3")])
    result = await execute_condition(node, ctx, services)
    assert result.data == {"filtered": [], "filteredCount": 0}
    assert notifier.toasts == []


@pytest.mark.asyncio
async def test_filter_evaluation_error_is_notified(services, notifier, ctx, monkeypatch):
    def _boom(rows, context):
        raise ValueError("bad row")

    monkeypatch.setattr("canvasflow.executors.conditions.evaluate_rows", _boom)
    node = make_node(
        "f", ConditionType.FILTER, input="$.Source#src.items", conditions=[row("$.item", "greater than", "2")]
    )
    result = await execute_condition(node, ctx, services)
    assert result.error == "Filter execution failed: bad row"
    assert notifier.titles() == ["Filter Failed"]


# ── Loop ─────────────────────────────────────────────────────────────────────

def test_loop_cursor_fields():
    cursor = loop_cursor("loop", ["a", "b", "c"], 2)
    assert cursor["currentloopitem"] == "c"
    assert cursor["currentLoopIndex"] == 2
    assert cursor["currentLoopIteration"] == 3
    assert cursor["currentLoopCount"] == 3
    assert cursor["currentLoopIsFirst"] is False
    assert cursor["currentLoopIsLast"] is True


def test_loop_cursor_empty():
    cursor = loop_cursor("loop", [], 0)
    assert cursor["currentloopitem"] == {}
    assert cursor["currentLoopIndex"] is None
    assert cursor["currentLoopCount"] == 0


@pytest.mark.asyncio
async def test_loop_exposes_first_item(services):
    ctx = ExecutionContext(variables={"letters": ["a", "b", "c"]})
    result = await execute_condition(make_node("loop", ConditionType.LOOP, input="$.letters"), ctx, services)
    assert result.data["items"] == ["a", "b", "c"]
    assert result.data["count"] == 3
    assert result.data["currentloopitem"] == "a"
    assert result.data["currentLoopIsFirst"] is True
    assert result.data["currentLoopNodeId"] == "loop"


@pytest.mark.asyncio
async def test_loop_truncates_to_limit(channel, notifier):
    from canvasflow.executors.base import ExecutionServices

    services = ExecutionServices(
        channel=channel, notifier=notifier, settings=CanvasflowConfig(max_loop_items=2)
    )
    ctx = ExecutionContext(variables={"letters": ["a", "b", "c"]})
    result = await execute_condition(make_node("loop", ConditionType.LOOP, input="$.letters"), ctx, services)
    assert result.data["items"] == ["a", "b"]
    assert notifier.toasts[0][0] == "Loop Truncated"
    assert notifier.toasts[0][2] is NotificationType.WARNING


@pytest.mark.asyncio
async def test_loop_missing_input(services, notifier, ctx):
    result = await execute_condition(make_node("loop", ConditionType.LOOP), ctx, services)
    assert result.error == "Loop: Please provide the Items (list) input."
    assert notifier.titles() == ["Loop Missing Input"]


# ── Stop ─────────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_stop_publishes_chat_response(services, channel, ctx):
    replies = []
    channel.subscribe(Topic.ASSISTANT_RESPONSE, replies.append)
    node = make_node("stop", ConditionType.STOP, chatResponse="Done with {{ $.Source#src.name }}")
    result = await execute_condition(node, ctx, services)
    assert result.data["stopped"] is True
    assert result.data["reason"] == "Stop node executed"
    assert replies == [{"text": "Done with Ada", "triggeredFrom": "Stop Node"}]


# ── Dispatch ─────────────────────────────────────────────────────────────────

def test_check_exhaustive_names_missing_members():
    handlers = {member: object() for member in ConditionType if member is not ConditionType.STOP}
    with pytest.raises(RuntimeError, match="Stop"):
        check_exhaustive(handlers, ConditionType)
