"""Shared plumbing for the category executors."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Mapping

from canvasflow.callbacks.notifier import LoggingNotifier, Notifier, safe_notify
from canvasflow.config import CanvasflowConfig, config as default_config
from canvasflow.exceptions import NodeConfigurationError
from canvasflow.expressions import resolve_template
from canvasflow.triggers.channel import MessageChannel, Topic
from canvasflow.types import NodeConfig, NodeExecutionResult, NotificationType

if TYPE_CHECKING:
    from canvasflow.engine.context import ExecutionContext

logger = logging.getLogger(__name__)

NodeHandler = Callable[
    [NodeConfig, "ExecutionContext", "ExecutionServices"], Awaitable[NodeExecutionResult]
]


@dataclass
class ExecutionServices:
    """Collaborators every executor may call into, injected by the orchestrator."""
    channel: MessageChannel = field(default_factory=MessageChannel)
    notifier: Notifier = field(default_factory=LoggingNotifier)
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event)
    settings: CanvasflowConfig = field(default_factory=lambda: default_config)

    def notify(
        self, title: str, message: str, type: NotificationType = NotificationType.ERROR
    ) -> None:
        safe_notify(self.notifier, title, message, type)


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def check_exhaustive(handlers: Mapping[Enum, Any], enum_type: type[Enum]) -> None:
    """Fail at import time if a member of enum_type has no handler."""
    missing = [member.value for member in enum_type if member not in handlers]
    if missing:
        raise RuntimeError(f"{enum_type.__name__} members without an executor: {missing}")


def configuration_failure(
    exc: NodeConfigurationError, services: ExecutionServices, default_title: str
) -> NodeExecutionResult:
    """Report a configuration problem and turn it into a failed result."""
    message = str(exc)
    services.notify(exc.title or default_title, message)
    return NodeExecutionResult.fail(message)


def require_text(value: Any, message: str, title: str) -> str:
    """Return value stripped, raising NodeConfigurationError when blank."""
    text = "" if value is None else str(value).strip()
    if not text:
        raise NodeConfigurationError(message, title=title)
    return text


async def publish_chat_response(
    node: NodeConfig,
    context: "ExecutionContext",
    services: ExecutionServices,
    triggered_from: str,
) -> None:
    """Resolve ``general.chatResponse`` and publish it as an assistant message, if set."""
    raw = str(node.general.get("chatResponse") or "").strip()
    if not raw:
        return
    try:
        text = resolve_template(raw, context).strip()
    except Exception as exc:
        logger.warning(f"[Executor] chatResponse of {node.id} could not be resolved: {exc}")
        return
    if text:
        await services.channel.publish(
            Topic.ASSISTANT_RESPONSE, {"text": text, "triggeredFrom": triggered_from}
        )
