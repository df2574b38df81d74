"""Action node executors: HTTP Request, Notify, EmailJS."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

import httpx

from canvasflow.exceptions import NodeConfigurationError
from canvasflow.executors.base import (
    ExecutionServices,
    NodeHandler,
    check_exhaustive,
    configuration_failure,
    publish_chat_response,
)
from canvasflow.executors.http_request import execute_http_request, status_error
from canvasflow.expressions import resolve_template
from canvasflow.types import ActionType, NodeConfig, NodeExecutionResult, NotificationType

if TYPE_CHECKING:
    from canvasflow.engine.context import ExecutionContext

logger = logging.getLogger(__name__)


# ── Notify ────────────────────────────────────────────────────────────────────


def _notification_type(raw: Any) -> NotificationType:
    try:
        return NotificationType(str(raw or "info").strip().lower())
    except ValueError:
        return NotificationType.INFO


async def execute_notify(
    node: NodeConfig, context: "ExecutionContext", services: ExecutionServices
) -> NodeExecutionResult:
    general = node.general
    raw_title = general.get("title")
    title = resolve_template(str("Notification" if raw_title is None else raw_title), context)
    content = resolve_template(str(general.get("message") or "").strip(), context)
    kind = _notification_type(general.get("type"))

    services.notify(title, content, kind)
    await publish_chat_response(node, context, services, "Notify Node")
    return NodeExecutionResult.ok({
        "shown": True,
        "title": title,
        "content": content,
        "type": kind.value,
        "variant": "notification",
    })


# ── EmailJS ───────────────────────────────────────────────────────────────────


def collect_template_params(rows: list, context: "ExecutionContext") -> tuple[dict[str, str], int]:
    """Resolve key/value rows into template params; returns (params, dropped_row_count)."""
    params: dict[str, str] = {}
    dropped = 0
    for row in rows:
        row = row if isinstance(row, dict) else {}
        key = str(row.get("key") or "").strip()
        if not key:
            dropped += 1
            continue
        value = row.get("value")
        params[key] = resolve_template("" if value is None else str(value), context)
    return params, dropped


def payload_size(params: dict) -> int:
    return len(json.dumps(params, separators=(",", ":"), ensure_ascii=False).encode("utf-8"))


async def execute_emailjs(
    node: NodeConfig, context: "ExecutionContext", services: ExecutionServices
) -> NodeExecutionResult:
    auth = node.settings.authentication
    public_key = str(auth.get("publicKey") or "").strip()
    service_id = str(auth.get("serviceId") or "").strip()
    template_id = str(auth.get("templateId") or "").strip()

    missing = [
        label
        for label, value in (("Public Key", public_key), ("Service ID", service_id), ("Template ID", template_id))
        if not value
    ]
    try:
        if missing:
            raise NodeConfigurationError(
                f"Please provide: {', '.join(missing)}.", title="EmailJS: Missing required fields"
            )

        rows = node.general.get("emailjsVars") if isinstance(node.general.get("emailjsVars"), list) else []
        params, dropped = collect_template_params(rows, context)
        if dropped:
            services.notify(
                "EmailJS: Ignoring empty variable names",
                f"Ignored {dropped} variable row(s) with empty key.",
                NotificationType.WARNING,
            )

        limit = services.settings.emailjs_max_payload_bytes
        size = payload_size(params)
        if size > limit:
            raise NodeConfigurationError(
                f"Template variables exceed {limit // 1000} KB (current ~{size} bytes). Reduce payload size.",
                title="EmailJS: Payload too large",
            )
    except NodeConfigurationError as exc:
        return configuration_failure(exc, services, "EmailJS Send Failed")

    body = {
        "service_id": service_id,
        "template_id": template_id,
        "user_id": public_key,
        "template_params": params,
    }
    try:
        async with httpx.AsyncClient(timeout=services.settings.http_timeout_seconds) as client:
            response = await client.post(services.settings.emailjs_api_url, json=body)
    except httpx.HTTPError as exc:
        message = str(exc) or exc.__class__.__name__
        services.notify("EmailJS Send Failed", message)
        return NodeExecutionResult.fail(message)

    error = status_error(response)
    if error is not None:
        services.notify("EmailJS Send Failed", error)
        return NodeExecutionResult.fail(error)

    logger.info(f"[EmailJS] Sent template {template_id} via {service_id}")
    return NodeExecutionResult.ok({
        "status": response.status_code,
        "text": response.text,
        "templateParams": params,
    })


# ── Dispatch ──────────────────────────────────────────────────────────────────


_HANDLERS: dict[ActionType, NodeHandler] = {
    ActionType.HTTP_REQUEST: execute_http_request,
    ActionType.NOTIFY: execute_notify,
    ActionType.EMAILJS: execute_emailjs,
}
check_exhaustive(_HANDLERS, ActionType)


async def execute_action(
    node: NodeConfig, context: "ExecutionContext", services: ExecutionServices
) -> NodeExecutionResult:
    """Run an action node."""
    return await _HANDLERS[ActionType(node.node_type)](node, context, services)
