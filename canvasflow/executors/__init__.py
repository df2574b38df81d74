"""canvasflow.executors — per-category node executors.

execute_node() is the single entry point the orchestrator calls.  It never
raises for node-level problems: configuration and execution errors come
back as failed NodeExecutionResults, already reported through the notifier.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from canvasflow.executors.actions import execute_action
from canvasflow.executors.base import ExecutionServices, NodeHandler
from canvasflow.executors.conditions import execute_condition
from canvasflow.executors.triggers import execute_trigger
from canvasflow.types import NodeCategory, NodeConfig, NodeExecutionResult

if TYPE_CHECKING:
    from canvasflow.engine.context import ExecutionContext

logger = logging.getLogger(__name__)

_CATEGORY_HANDLERS: dict[NodeCategory, NodeHandler] = {
    NodeCategory.TRIGGER: execute_trigger,
    NodeCategory.CONDITION: execute_condition,
    NodeCategory.ACTION: execute_action,
}


async def execute_node(
    node: NodeConfig, context: "ExecutionContext", services: ExecutionServices
) -> NodeExecutionResult:
    """Run one node and return its result. Does not write to the context."""
    delay_ms = services.settings.simulated_node_delay_ms
    if delay_ms > 0:
        await asyncio.sleep(delay_ms / 1000)

    handler = _CATEGORY_HANDLERS[node.category]
    try:
        return await handler(node, context, services)
    except asyncio.CancelledError:
        raise
    except Exception as exc:
        message = f"{node.display_name} execution failed: {exc}"
        logger.error(f"[Executor] {node.id} ({node.node_type.value}) raised: {exc}", exc_info=True)
        services.notify(f"{node.node_type.value} Failed", message)
        return NodeExecutionResult.fail(message)


__all__ = ["ExecutionServices", "execute_node"]
