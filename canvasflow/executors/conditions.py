"""Condition node executors: If Condition, Switch Case, Filter, Loop, Stop.

Branch selection (which port an If or Switch takes) is carried in the
payload; the orchestrator reads it to decide what runs next.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from canvasflow.conditions import evaluate_rows, parse_rows, truthy, validate_rows
from canvasflow.exceptions import ExpressionError, NodeConfigurationError
from canvasflow.executors.base import (
    ExecutionServices,
    NodeHandler,
    check_exhaustive,
    configuration_failure,
    publish_chat_response,
    require_text,
    utc_now_iso,
)
from canvasflow.expressions import UNDEFINED, evaluate_expression, resolve_template, resolve_value
from canvasflow.types import ConditionType, NodeConfig, NodeExecutionResult, NotificationType
from canvasflow.workflows.graph import PORT_CASE_DEFAULT, case_port

if TYPE_CHECKING:
    from canvasflow.engine.context import ExecutionContext

logger = logging.getLogger(__name__)


def _type_name(value: Any) -> str:
    if value is None:
        return "null"
    if value is UNDEFINED:
        return "undefined"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    return "object"


def _resolve_items(node: NodeConfig, context: "ExecutionContext", label: str) -> list:
    """Resolve ``general.input`` to a list or raise NodeConfigurationError."""
    raw = require_text(
        node.general.get("input"),
        f"{label}: Please provide the Items (list) input.",
        f"{label} Missing Input",
    )
    resolved = resolve_value(raw, context)
    if isinstance(resolved, tuple):
        resolved = list(resolved)
    if not isinstance(resolved, list):
        raise NodeConfigurationError(
            f"{label}: Items input must resolve to an array. Got {_type_name(resolved)}.",
            title=f"{label} Invalid Input",
        )
    return resolved


# ── Stop ──────────────────────────────────────────────────────────────────────


async def execute_stop(
    node: NodeConfig, context: "ExecutionContext", services: ExecutionServices
) -> NodeExecutionResult:
    await publish_chat_response(node, context, services, "Stop Node")
    return NodeExecutionResult.ok({
        "stopped": True,
        "reason": "Stop node executed",
        "at": utc_now_iso(),
    })


# ── If Condition ──────────────────────────────────────────────────────────────


async def execute_if_condition(
    node: NodeConfig, context: "ExecutionContext", services: ExecutionServices
) -> NodeExecutionResult:
    general = node.general
    raw_rows = general.get("conditions") if isinstance(general.get("conditions"), list) else []
    try:
        if not raw_rows:
            return _evaluate_legacy_condition(node, context, services)
        rows = validate_rows(raw_rows, context, "If Condition")
    except NodeConfigurationError as exc:
        return configuration_failure(exc, services, "If Condition Missing")

    try:
        cumulative, row_results = evaluate_rows(rows, context)
    except Exception as exc:
        message = f"If Condition execution failed: {exc}"
        services.notify("If Condition Failed", message)
        return NodeExecutionResult.fail(message)

    return NodeExecutionResult.ok({
        "conditionResult": bool(cumulative),
        "rowResults": row_results,
        "evaluatedAt": utc_now_iso(),
    })


def _evaluate_legacy_condition(
    node: NodeConfig, context: "ExecutionContext", services: ExecutionServices
) -> NodeExecutionResult:
    """Single free-form boolean expression, used when no rows are configured."""
    prepared = resolve_template(str(node.general.get("condition") or ""), context).strip()
    if not prepared:
        raise NodeConfigurationError(
            "If Condition: Please configure at least one condition row or a valid expression.",
            title="If Condition Missing",
        )
    try:
        result = truthy(evaluate_expression(prepared, context))
    except ExpressionError as exc:
        message = f"If Condition execution failed: {exc}"
        services.notify("If Condition Failed", message)
        return NodeExecutionResult.fail(message)
    return NodeExecutionResult.ok({
        "conditionResult": result,
        "rowResults": [result],
        "evaluatedAt": utc_now_iso(),
    })


# ── Switch Case ───────────────────────────────────────────────────────────────


async def execute_switch_case(
    node: NodeConfig, context: "ExecutionContext", services: ExecutionServices
) -> NodeExecutionResult:
    general = node.general
    rules = general.get("rules") if isinstance(general.get("rules"), list) else []
    enable_default = bool(general.get("enableDefaultPort"))

    try:
        if not rules:
            raise NodeConfigurationError(
                "Switch Case: Please add at least one case.", title="Switch Case Missing"
            )
        # each rule is its own single-row predicate; joiners are irrelevant
        rows = validate_rows(
            [{**r, "joiner": "OR"} if isinstance(r, dict) else r for r in rules],
            context,
            "Switch Case",
        )
    except NodeConfigurationError as exc:
        return configuration_failure(exc, services, "Switch Case Missing")

    try:
        row_results = [evaluate_rows([row], context)[0] for row in rows]
    except Exception as exc:
        message = f"Switch Case execution failed: {exc}"
        services.notify("Switch Case Failed", message)
        return NodeExecutionResult.fail(message)

    matched = next((i for i, ok in enumerate(row_results) if ok), None)
    if matched is not None:
        port = case_port(matched)
    else:
        port = PORT_CASE_DEFAULT if enable_default else None

    return NodeExecutionResult.ok({
        "matchedCaseIndex": matched,
        "matchedPortId": port,
        "defaultTaken": matched is None and enable_default,
        "rowResults": row_results,
    })


# ── Filter ────────────────────────────────────────────────────────────────────


async def execute_filter(
    node: NodeConfig, context: "ExecutionContext", services: ExecutionServices
) -> NodeExecutionResult:
    general = node.general
    try:
        items = _resolve_items(node, context, "Filter")
        raw_rows = general.get("conditions") if isinstance(general.get("conditions"), list) else []
        if not raw_rows:
            predicate = general.get("predicate") or general.get("filterCondition")
            if not predicate:
                raise NodeConfigurationError(
                    "Filter: Please configure at least one condition row or a predicate.",
                    title="Filter Missing Condition",
                )
            return _filter_with_predicate(items, str(predicate), context)
        if not items:
            parse_rows(raw_rows, "Filter")
            return NodeExecutionResult.ok({"filtered": [], "filteredCount": 0})
        # rows address the current element as $.item; check them against the first one
        rows = validate_rows(raw_rows, context.derive(item=items[0]), "Filter")
    except NodeConfigurationError as exc:
        return configuration_failure(exc, services, "Filter Missing Input")

    try:
        filtered = [item for item in items if evaluate_rows(rows, context.derive(item=item))[0]]
    except Exception as exc:
        message = f"Filter execution failed: {exc}"
        services.notify("Filter Failed", message)
        return NodeExecutionResult.fail(message)
    return NodeExecutionResult.ok({"filtered": filtered, "filteredCount": len(filtered)})


def _filter_with_predicate(items: list, predicate: str, context: "ExecutionContext") -> NodeExecutionResult:
    """Keep items for which the expression is truthy; a failing expression drops the item."""
    prepared = resolve_template(predicate, context).strip()
    filtered = []
    for item in items:
        try:
            keep = truthy(evaluate_expression(prepared, context.derive(item=item)))
        except ExpressionError as exc:
            logger.debug(f"[Filter] predicate failed for item {item!r}: {exc}")
            keep = False
        if keep:
            filtered.append(item)
    return NodeExecutionResult.ok({"filtered": filtered, "filteredCount": len(filtered)})


# ── Loop ──────────────────────────────────────────────────────────────────────


def loop_cursor(node_id: str, items: list, index: int) -> dict[str, Any]:
    """Cursor fields exposed to the loop body for items[index]."""
    total = len(items)
    if total == 0:
        return {
            "currentloopitem": {},
            "currentLoopIndex": None,
            "currentLoopIteration": None,
            "currentLoopCount": 0,
            "currentLoopNodeId": node_id,
            "currentLoopIsFirst": None,
            "currentLoopIsLast": None,
        }
    return {
        "currentloopitem": items[index],
        "currentLoopIndex": index,
        "currentLoopIteration": index + 1,
        "currentLoopCount": total,
        "currentLoopNodeId": node_id,
        "currentLoopIsFirst": index == 0,
        "currentLoopIsLast": index == total - 1,
    }


async def execute_loop(
    node: NodeConfig, context: "ExecutionContext", services: ExecutionServices
) -> NodeExecutionResult:
    try:
        items = _resolve_items(node, context, "Loop")
    except NodeConfigurationError as exc:
        return configuration_failure(exc, services, "Loop Missing Input")

    limit = services.settings.max_loop_items
    if len(items) > limit:
        services.notify(
            "Loop Truncated",
            f"Loop: {len(items)} items exceed the limit of {limit}; only the first {limit} are used.",
            NotificationType.WARNING,
        )
        items = items[:limit]

    return NodeExecutionResult.ok({"items": items, "count": len(items), **loop_cursor(node.id, items, 0)})


# ── Dispatch ──────────────────────────────────────────────────────────────────


_HANDLERS: dict[ConditionType, NodeHandler] = {
    ConditionType.IF_CONDITION: execute_if_condition,
    ConditionType.SWITCH_CASE: execute_switch_case,
    ConditionType.FILTER: execute_filter,
    ConditionType.LOOP: execute_loop,
    ConditionType.STOP: execute_stop,
}
check_exhaustive(_HANDLERS, ConditionType)


async def execute_condition(
    node: NodeConfig, context: "ExecutionContext", services: ExecutionServices
) -> NodeExecutionResult:
    """Run a condition node."""
    return await _HANDLERS[ConditionType(node.node_type)](node, context, services)
