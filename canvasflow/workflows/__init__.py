"""canvasflow.workflows — workflow graph model, loading, and validation."""

from .graph import GraphSource, WorkflowGraph
from .loader import load_workflow, parse_workflow
from .validator import WorkflowValidator

__all__ = ["GraphSource", "WorkflowGraph", "WorkflowValidator", "load_workflow", "parse_workflow"]
