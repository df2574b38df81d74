"""Run-time engine: execution context, orchestrator and variable descriptors."""

from canvasflow.engine.context import ExecutionContext
from canvasflow.engine.orchestrator import WorkflowExecutionService
from canvasflow.engine.variables import describe_variables

__all__ = ["ExecutionContext", "WorkflowExecutionService", "describe_variables"]
