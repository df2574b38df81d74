"""
Workflow graph model and traversal helpers.

The orchestrator only needs read queries over the canvas graph, expressed
by the GraphSource protocol.  WorkflowGraph is the in-memory implementation
used for workflow files and tests; a live canvas adapter only has to provide
the same four methods.

The traversal helpers are pure (no side effects, no I/O) so they can be
called from the validator and the orchestrator alike.
"""

from __future__ import annotations

from collections import deque
from typing import Iterable, Optional, Protocol, runtime_checkable

from pydantic import Field, PrivateAttr, model_validator

from canvasflow.types import CanvasModel, Connector, NodeCategory, NodeConfig


# ── Port identifiers ──────────────────────────────────────────────────────────

PORT_TRUE = "right-top-port"
PORT_FALSE = "right-bottom-port"
PORT_LOOP_BODY = "right-top-port"
PORT_LOOP_DONE = "right-bottom-port"
PORT_CASE_DEFAULT = "right-case-default"

TRUE_PORTS = frozenset({PORT_TRUE, "true"})
FALSE_PORTS = frozenset({PORT_FALSE, "false"})
LOOP_DONE_PORTS = frozenset({PORT_LOOP_DONE, "done"})


def case_port(index: int) -> str:
    """Port id of the Switch case at zero-based index."""
    return f"right-case-{index + 1}"


# ── Graph query surface ───────────────────────────────────────────────────────


@runtime_checkable
class GraphSource(Protocol):
    """Read-only queries the engine runs against a workflow graph."""

    def get_node(self, node_id: str) -> Optional[NodeConfig]:
        ...

    def list_nodes(self) -> list[NodeConfig]:
        ...

    def outgoing(self, node_id: str) -> list[Connector]:
        ...

    def incoming(self, node_id: str) -> list[Connector]:
        ...


class WorkflowGraph(CanvasModel):
    """Nodes and connectors of one workflow."""
    id: str = "workflow"
    name: str = "Untitled workflow"
    nodes: list[NodeConfig] = Field(default_factory=list)
    connectors: list[Connector] = Field(default_factory=list)

    _by_id: dict[str, NodeConfig] = PrivateAttr(default_factory=dict)
    _out: dict[str, list[Connector]] = PrivateAttr(default_factory=dict)
    _in: dict[str, list[Connector]] = PrivateAttr(default_factory=dict)

    @model_validator(mode="after")
    def check_unique_ids(self):
        seen: set[str] = set()
        duplicates: set[str] = set()
        for node in self.nodes:
            if node.id in seen:
                duplicates.add(node.id)
            seen.add(node.id)
        if duplicates:
            raise ValueError(f"Duplicate node ids: {sorted(duplicates)}")
        return self

    def model_post_init(self, __context) -> None:
        self._by_id = {n.id: n for n in self.nodes}
        self._out = {}
        self._in = {}
        for c in self.connectors:
            self._out.setdefault(c.source_id, []).append(c)
            self._in.setdefault(c.target_id, []).append(c)

    def get_node(self, node_id: str) -> Optional[NodeConfig]:
        return self._by_id.get(node_id)

    def list_nodes(self) -> list[NodeConfig]:
        return list(self.nodes)

    def outgoing(self, node_id: str) -> list[Connector]:
        return list(self._out.get(node_id, []))

    def incoming(self, node_id: str) -> list[Connector]:
        return list(self._in.get(node_id, []))


# ── Traversal helpers ─────────────────────────────────────────────────────────


def get_trigger_nodes(graph: GraphSource) -> list[NodeConfig]:
    """Return every trigger node, in graph order."""
    return [n for n in graph.list_nodes() if n.category == NodeCategory.TRIGGER]


def get_children(graph: GraphSource, node_id: str) -> list[tuple[str, Connector]]:
    """Return (target_id, connector) pairs for all outgoing connectors of node_id."""
    return [(c.target_id, c) for c in graph.outgoing(node_id)]


def reachable_from(
    graph: GraphSource,
    start_ids: Iterable[str],
    blocked: Iterable[str] = (),
) -> set[str]:
    """Node ids reachable from start_ids (inclusive), never walking through blocked ids."""
    blocked_set = set(blocked)
    seen: set[str] = set()
    queue: deque[str] = deque(s for s in start_ids if s not in blocked_set)
    while queue:
        node_id = queue.popleft()
        if node_id in seen:
            continue
        seen.add(node_id)
        for child, _ in get_children(graph, node_id):
            if child not in seen and child not in blocked_set:
                queue.append(child)
    return seen


def find_back_edges(graph: GraphSource, root_ids: Iterable[str]) -> set[str]:
    """Return ids of connectors that close a cycle when walking depth-first from root_ids.

    Iterative DFS with an explicit on-stack set; a connector whose target is
    on the current stack is a back edge.
    """
    back: set[str] = set()
    visited: set[str] = set()
    for root in root_ids:
        if root in visited or graph.get_node(root) is None:
            continue
        on_stack: set[str] = {root}
        visited.add(root)
        stack: list[tuple[str, list[Connector]]] = [(root, graph.outgoing(root))]
        while stack:
            node_id, pending = stack[-1]
            if not pending:
                stack.pop()
                on_stack.discard(node_id)
                continue
            connector = pending.pop(0)
            target = connector.target_id
            if graph.get_node(target) is None:
                continue
            if target in on_stack:
                back.add(connector.id)
            elif target not in visited:
                visited.add(target)
                on_stack.add(target)
                stack.append((target, graph.outgoing(target)))
    return back
