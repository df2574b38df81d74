"""Structured JSON logging callback for workflow lifecycle events."""

import json
import logging
from datetime import datetime, timezone
from typing import Any

from canvasflow.callbacks.base import BaseCallback
from canvasflow.types import NodeConfig, NodeExecutionResult, RunOutcome

logger = logging.getLogger("canvasflow.audit")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def _short(value: Any) -> Any:
    if isinstance(value, (int, float, bool)) or value is None:
        return value
    return str(value)[:200]


class LoggingCallback(BaseCallback):
    """Emits structured JSON log lines for every lifecycle event.

    Each log line is a self-contained JSON object with:
      - event: event type name
      - ts: ISO-8601 UTC timestamp
      - relevant fields depending on event

    Log level: INFO for normal events, WARNING for node failures, ERROR for
    engine errors.  Logger name: canvasflow.audit

    The orchestrator calls callbacks as plain async callables
    ``async def cb(event: str, data: dict)``; ``__call__`` maps those onto
    the named hooks so an instance can be passed straight in:

        service = WorkflowExecutionService(graph, callbacks=[LoggingCallback()])
    """

    async def __call__(self, event: str, data: dict) -> None:
        """Dispatch orchestrator lifecycle events to the appropriate named method."""
        if event == "workflow_started":
            await self.on_run_start(data.get("run_id", ""), data.get("trigger_ids", []))
        elif event in ("node_completed", "node_failed", "node_cancelled"):
            node = data.get("node")
            result = data.get("result")
            if isinstance(node, NodeConfig) and isinstance(result, NodeExecutionResult):
                await self.on_node_complete(node, result, iteration=data.get("iteration"))
        elif event == "node_started":
            node = data.get("node")
            if isinstance(node, NodeConfig):
                await self.on_node_start(node, iteration=data.get("iteration"))
        elif event in ("workflow_completed", "workflow_failed", "workflow_cancelled"):
            outcome = data.get("outcome")
            if isinstance(outcome, RunOutcome):
                await self.on_run_complete(outcome)
        elif event == "engine_error":
            error = data.get("error")
            if isinstance(error, Exception):
                await self.on_error(error, {"run_id": data.get("run_id", "")})
        else:
            logger.info(json.dumps({"event": event, "ts": _now(), **{
                k: _short(v) for k, v in data.items()
            }}))

    async def on_run_start(self, run_id: str, trigger_ids: list[str], **kwargs: Any) -> None:
        logger.info(json.dumps({
            "event": "run_start",
            "ts": _now(),
            "run_id": run_id,
            "trigger_ids": list(trigger_ids),
        }))

    async def on_node_start(self, node: NodeConfig, **kwargs: Any) -> None:
        logger.info(json.dumps({
            "event": "node_start",
            "ts": _now(),
            "node_id": node.id,
            "node_type": node.node_type.value,
            "display_name": node.display_name,
            "iteration": kwargs.get("iteration"),
        }))

    async def on_node_complete(
        self, node: NodeConfig, result: NodeExecutionResult, **kwargs: Any
    ) -> None:
        line = {
            "event": "node_complete",
            "ts": _now(),
            "node_id": node.id,
            "node_type": node.node_type.value,
            "success": result.success,
            "cancelled": result.cancelled,
            "error": result.error,
            "data_type": type(result.data).__name__,
            "iteration": kwargs.get("iteration"),
        }
        if result.success or result.cancelled:
            logger.info(json.dumps(line))
        else:
            logger.warning(json.dumps(line))

    async def on_run_complete(self, outcome: RunOutcome, **kwargs: Any) -> None:
        logger.info(json.dumps({
            "event": "run_complete",
            "ts": _now(),
            "run_id": outcome.id,
            "status": outcome.status.value,
            "node_count": len(outcome.trail),
            "error": outcome.error,
        }))

    async def on_error(self, error: Exception, context: dict[str, Any], **kwargs: Any) -> None:
        logger.error(json.dumps({
            "event": "error",
            "ts": _now(),
            "error_type": type(error).__name__,
            "error": str(error),
            "context": {k: str(v)[:200] for k, v in context.items()},
        }))
