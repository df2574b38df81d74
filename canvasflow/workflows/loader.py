"""Load and validate workflow files (JSON or YAML) into WorkflowGraph objects.

Both the canvas export shape ``{"nodes": [...], "connectors": [...]}`` and a
wrapped shape ``{"workflow": {...}}`` are accepted.
"""

import json
from pathlib import Path
from typing import Any, Union

import yaml
from pydantic import ValidationError

from canvasflow.exceptions import WorkflowValidationError
from canvasflow.workflows.graph import WorkflowGraph

_YAML_SUFFIXES = {".yaml", ".yml"}


def parse_workflow(raw: Any) -> WorkflowGraph:
    """Validate an already-decoded workflow document.

    Raises:
        WorkflowValidationError: with one violation per pydantic error.
    """
    if isinstance(raw, dict) and "workflow" in raw and isinstance(raw["workflow"], dict):
        raw = raw["workflow"]
    if not isinstance(raw, dict):
        raise WorkflowValidationError(
            "Workflow document must be a mapping with 'nodes' and 'connectors'.",
            violations=[f"top-level type is {type(raw).__name__}"],
        )
    try:
        return WorkflowGraph.model_validate(raw)
    except ValidationError as exc:
        violations = [
            f"{'.'.join(str(p) for p in err['loc']) or '<root>'}: {err['msg']}"
            for err in exc.errors()
        ]
        raise WorkflowValidationError(
            f"Workflow document failed validation ({len(violations)} problem(s)).",
            violations=violations,
        ) from exc


def load_workflow(path: Union[str, Path]) -> WorkflowGraph:
    """Read a .json, .yaml or .yml workflow file.

    Args:
        path: File to read.

    Returns:
        A validated WorkflowGraph.

    Raises:
        FileNotFoundError: if path does not exist.
        WorkflowValidationError: if the file cannot be parsed or validated.
    """
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Workflow file not found: {p}")
    text = p.read_text(encoding="utf-8")
    try:
        if p.suffix.lower() in _YAML_SUFFIXES:
            raw = yaml.safe_load(text)
        else:
            raw = json.loads(text)
    except (yaml.YAMLError, json.JSONDecodeError) as exc:
        raise WorkflowValidationError(
            f"Could not parse workflow file {p.name}: {exc}", violations=[str(exc)]
        ) from exc
    return parse_workflow(raw or {})
