"""Variable descriptors for template authoring (the expression picker)."""

from __future__ import annotations

from typing import Any

from canvasflow.conditions import infer_value_kind
from canvasflow.engine.context import ExecutionContext
from canvasflow.expressions import stringify
from canvasflow.types import Variable, VariableGroup

_PREVIEW_LIMIT = 80


def _preview(value: Any) -> str:
    text = stringify(value)
    return text if len(text) <= _PREVIEW_LIMIT else text[: _PREVIEW_LIMIT - 3] + "..."


def _walk(payload: dict, prefix: str, key_prefix: str, depth: int, out: list[Variable]) -> None:
    for key, value in payload.items():
        key = str(key)
        dotted = f"{key_prefix}{key}"
        path = f"{prefix}.{key}"
        out.append(Variable(
            key=dotted,
            path=path,
            type=infer_value_kind(value).value,
            preview=_preview(value),
        ))
        if isinstance(value, dict) and depth > 1:
            _walk(value, path, f"{dotted}.", depth - 1, out)


def describe_variables(context: ExecutionContext, max_depth: int = 3) -> list[VariableGroup]:
    """One group per recorded node, listing every addressable field of its payload.

    Paths use the ``$.Name#id.key`` form, so they survive display-name changes.
    Non-dict payloads are exposed as a single ``value`` entry addressing the
    whole result.
    """
    names = context.display_names()
    groups: list[VariableGroup] = []
    for node_id, payload in context.results.items():
        name = names.get(node_id, node_id)
        root = f"$.{name}#{node_id}"
        variables: list[Variable] = []
        if isinstance(payload, dict):
            _walk(payload, root, "", max_depth, variables)
        elif payload is not None:
            variables.append(Variable(
                key="value", path=root, type=infer_value_kind(payload).value, preview=_preview(payload)
            ))
        groups.append(VariableGroup(node_id=node_id, node_name=name, variables=variables))
    return groups
