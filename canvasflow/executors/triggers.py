"""Trigger node executors: Manual Trigger, Form, Chat.

Manual Trigger resolves immediately.  Form and Chat suspend on the message
channel until the UI delivers input or the run is cancelled.  Suspension
has no timeout of its own; only cancellation ends it early.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime
from typing import TYPE_CHECKING, Any, Optional

from canvasflow.conditions import parse_datetime
from canvasflow.exceptions import ExecutionCancelled, NodeConfigurationError
from canvasflow.executors.base import (
    ExecutionServices,
    NodeHandler,
    check_exhaustive,
    configuration_failure,
    utc_now_iso,
)
from canvasflow.triggers.channel import Topic
from canvasflow.types import NodeConfig, NodeExecutionResult, TriggerType

if TYPE_CHECKING:
    from canvasflow.engine.context import ExecutionContext

logger = logging.getLogger(__name__)

FORM_MISCONFIGURED = (
    "Form trigger misconfigured. Ensure title and valid fields "
    "(labels, options for dropdowns) are set."
)
FORM_CANCELLED = "Form trigger cancelled"
CHAT_CANCELLED = "Chat trigger cancelled"

_WEEKDAY_NAMES = ["Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday"]


# ── Manual Trigger ────────────────────────────────────────────────────────────


async def execute_manual_trigger(
    node: NodeConfig, context: "ExecutionContext", services: ExecutionServices
) -> NodeExecutionResult:
    return NodeExecutionResult.ok({
        "triggered": True,
        "triggeredAt": utc_now_iso(),
        "inputContext": dict(context.variables),
    })


# ── Form ──────────────────────────────────────────────────────────────────────


def slugify(label: Any) -> str:
    """Lowercase, non-alphanumeric runs collapsed to ``_``, edges trimmed."""
    return re.sub(r"[^a-z0-9]+", "_", str(label or "").strip().lower()).strip("_")


def date_details(value: datetime) -> dict[str, Any]:
    """Calendar breakdown of a submitted date; weekday 0 is Sunday."""
    weekday = (value.weekday() + 1) % 7
    return {
        "year": value.year,
        "month": value.month,
        "day": value.day,
        "weekday": weekday,
        "weekdayName": _WEEKDAY_NAMES[weekday],
    }


def validate_form_config(title: str, fields: list) -> None:
    """Raise NodeConfigurationError unless the form has a title and well-formed fields."""
    invalid = not title or not fields
    for f in fields:
        if invalid:
            break
        if not isinstance(f, dict) or not f.get("type"):
            invalid = True
        elif not str(f.get("label") or "").strip():
            invalid = True
        elif f.get("type") == "dropdown":
            options = f.get("options") if isinstance(f.get("options"), list) else []
            invalid = not [o for o in options if str(o).strip()]
    if invalid:
        raise NodeConfigurationError(FORM_MISCONFIGURED, title="Form Trigger Configuration")


def _parse_form_date(raw: Any) -> Optional[datetime]:
    if not raw:
        return None
    return parse_datetime(raw)


def map_form_values(fields: list, values: list) -> list[dict[str, Any]]:
    """Pair each configured field with the submitted value at the same position."""
    rows = []
    for i, f in enumerate(fields):
        f = f if isinstance(f, dict) else {}
        label = f.get("label") or f"field_{i + 1}"
        field_type = f.get("type") or "text"
        raw = values[i] if i < len(values) and values[i] is not None else ""
        row: dict[str, Any] = {"label": label, "type": field_type, "value": raw}
        if field_type == "date":
            parsed = _parse_form_date(raw)
            if parsed is not None:
                row["details"] = date_details(parsed)
        rows.append(row)
    return rows


def build_form_data(rows: list[dict[str, Any]]) -> dict[str, Any]:
    """Dictionary of submitted values keyed by slugified label."""
    data: dict[str, Any] = {}
    for row in rows:
        key = slugify(row["label"])
        if row["type"] == "date" and "details" in row:
            data[key] = {"value": row["value"], **row["details"]}
        else:
            data[key] = row["value"]
    return data


async def execute_form_trigger(
    node: NodeConfig, context: "ExecutionContext", services: ExecutionServices
) -> NodeExecutionResult:
    general = node.general
    title = str(general.get("formTitle") or "").strip()
    description = general.get("formDescription") or ""
    fields = general.get("formFields") if isinstance(general.get("formFields"), list) else []

    try:
        validate_form_config(title, fields)
    except NodeConfigurationError as exc:
        return configuration_failure(exc, services, "Form Trigger Configuration")

    waiter = services.channel.expect(
        Topic.FORM_SUBMITTED,
        cancel_topics=[Topic.FORM_CANCEL],
        cancel_event=services.cancel_event,
    )
    try:
        await services.channel.publish(
            Topic.FORM_OPEN, {"title": title, "description": description, "fields": fields}
        )
        await services.channel.publish(Topic.TRIGGER_WAITING, {"type": TriggerType.FORM.value})
        logger.info(f"[Trigger] Form '{title}' ({node.id}) waiting for submission")
        submitted = await waiter.result()
    except ExecutionCancelled:
        logger.info(f"[Trigger] Form '{title}' ({node.id}) cancelled")
        return NodeExecutionResult.cancel(FORM_CANCELLED)
    finally:
        waiter.close()

    await services.channel.publish(Topic.TRIGGER_RESUMED, {"type": TriggerType.FORM.value})

    submitted = submitted if isinstance(submitted, dict) else {}
    values = submitted.get("values") if isinstance(submitted.get("values"), list) else []
    rows = map_form_values(fields, values)
    return NodeExecutionResult.ok({
        "triggered": True,
        "submittedAt": submitted.get("at") or utc_now_iso(),
        "title": title,
        "description": description,
        "values": rows,
        "fields": fields,
        "data": build_form_data(rows),
    })


# ── Chat ──────────────────────────────────────────────────────────────────────


def _has_text(data: Any) -> bool:
    return isinstance(data, dict) and bool(str(data.get("text") or "").strip())


async def execute_chat_trigger(
    node: NodeConfig, context: "ExecutionContext", services: ExecutionServices
) -> NodeExecutionResult:
    waiter = services.channel.expect(
        Topic.CHAT_MESSAGE,
        cancel_topics=[Topic.CHAT_CANCEL],
        cancel_event=services.cancel_event,
        accept=_has_text,
    )
    try:
        await services.channel.publish(Topic.CHAT_OPEN, {"reason": "chat-trigger"})
        await services.channel.publish(Topic.CHAT_READY, {"nodeId": node.id})
        logger.info(f"[Trigger] Chat ({node.id}) waiting for a message")
        message = await waiter.result()
    except ExecutionCancelled:
        logger.info(f"[Trigger] Chat ({node.id}) cancelled")
        return NodeExecutionResult.cancel(CHAT_CANCELLED)
    finally:
        waiter.close()

    return NodeExecutionResult.ok({
        "triggered": True,
        "message": {
            "text": str(message["text"]).strip(),
            "at": message.get("at") or utc_now_iso(),
        },
        "triggeredAt": utc_now_iso(),
    })


# ── Dispatch ──────────────────────────────────────────────────────────────────


_HANDLERS: dict[TriggerType, NodeHandler] = {
    TriggerType.MANUAL: execute_manual_trigger,
    TriggerType.FORM: execute_form_trigger,
    TriggerType.CHAT: execute_chat_trigger,
}
check_exhaustive(_HANDLERS, TriggerType)


async def execute_trigger(
    node: NodeConfig, context: "ExecutionContext", services: ExecutionServices
) -> NodeExecutionResult:
    """Run a trigger node."""
    return await _HANDLERS[TriggerType(node.node_type)](node, context, services)
