"""canvasflow — execution engine for canvas-built workflow graphs.

Usage:
    from canvasflow import WorkflowExecutionService, load_workflow

    service = WorkflowExecutionService(load_workflow("flow.yaml"))
    outcome = await service.execute_workflow()
"""

from canvasflow.types import (
    NodeConfig, Connector, ConditionRow, NodeExecutionResult, NodeRunRecord,
    RunOutcome, ContextSnapshot, Variable, VariableGroup,
    NodeCategory, TriggerType, ConditionType, ActionType, Comparator, Joiner,
    NotificationType, NodeStatus, RunStatus,
)
from canvasflow.exceptions import (
    CanvasflowError, WorkflowError, WorkflowValidationError, NodeNotFound,
    ExecutionLimitExceeded, ExecutionCancelled, NodeConfigurationError,
    ExpressionError, HttpRequestError,
)
from canvasflow.engine import ExecutionContext, WorkflowExecutionService, describe_variables
from canvasflow.triggers import MessageChannel, Topic
from canvasflow.workflows import WorkflowGraph, WorkflowValidator, load_workflow, parse_workflow
from canvasflow.version import __version__

__all__ = [
    "NodeConfig", "Connector", "ConditionRow", "NodeExecutionResult", "NodeRunRecord",
    "RunOutcome", "ContextSnapshot", "Variable", "VariableGroup",
    "NodeCategory", "TriggerType", "ConditionType", "ActionType", "Comparator", "Joiner",
    "NotificationType", "NodeStatus", "RunStatus",
    "CanvasflowError", "WorkflowError", "WorkflowValidationError", "NodeNotFound",
    "ExecutionLimitExceeded", "ExecutionCancelled", "NodeConfigurationError",
    "ExpressionError", "HttpRequestError",
    "ExecutionContext", "WorkflowExecutionService", "describe_variables",
    "MessageChannel", "Topic",
    "WorkflowGraph", "WorkflowValidator", "load_workflow", "parse_workflow",
    "__version__",
]
