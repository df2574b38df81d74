"""Base callback protocol for canvasflow lifecycle hooks.

Callbacks are called at key points in a workflow run.  Implement this
protocol to observe or instrument runs without modifying the engine.

Usage:
    class MyCallback(BaseCallback):
        async def on_node_complete(self, node, result, **kw):
            print(f"{node.display_name}: {result.success}")

    service = WorkflowExecutionService(graph, callbacks=[MyCallback()])
"""

from typing import Any, Protocol, runtime_checkable

from canvasflow.types import NodeConfig, NodeExecutionResult, RunOutcome


@runtime_checkable
class WorkflowCallback(Protocol):
    """Protocol defining hooks for workflow lifecycle events.

    All methods are optional; implement only the hooks you need.
    All methods are async; the orchestrator awaits each registered callback in order.
    """

    async def on_run_start(self, run_id: str, trigger_ids: list[str], **kwargs: Any) -> None:
        """Called once trigger nodes have been located, before any node runs."""
        ...

    async def on_node_start(self, node: NodeConfig, **kwargs: Any) -> None:
        """Called right before a node's executor is invoked."""
        ...

    async def on_node_complete(
        self, node: NodeConfig, result: NodeExecutionResult, **kwargs: Any
    ) -> None:
        """Called after a node's result has been recorded (success, failure or cancel)."""
        ...

    async def on_run_complete(self, outcome: RunOutcome, **kwargs: Any) -> None:
        """Called when a run finishes, whatever its status."""
        ...

    async def on_error(self, error: Exception, context: dict[str, Any], **kwargs: Any) -> None:
        """Called when an unexpected engine error ends a run."""
        ...


class BaseCallback:
    """Concrete base with no-op implementations of all hooks.

    Subclass this instead of implementing the Protocol directly
    to avoid implementing every method.
    """

    async def on_run_start(self, run_id: str, trigger_ids: list[str], **kwargs: Any) -> None:
        pass

    async def on_node_start(self, node: NodeConfig, **kwargs: Any) -> None:
        pass

    async def on_node_complete(
        self, node: NodeConfig, result: NodeExecutionResult, **kwargs: Any
    ) -> None:
        pass

    async def on_run_complete(self, outcome: RunOutcome, **kwargs: Any) -> None:
        pass

    async def on_error(self, error: Exception, context: dict[str, Any], **kwargs: Any) -> None:
        pass
