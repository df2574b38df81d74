"""
WorkflowValidator — structural correctness checker for workflow graphs.

All checks are non-destructive reads of the graph.  Warnings (soft issues)
are returned with a "WARNING:" prefix so callers can choose to treat them
differently from hard errors.
"""

from __future__ import annotations

from canvasflow.exceptions import WorkflowValidationError
from canvasflow.types import ConditionType, NodeCategory

from .graph import (
    FALSE_PORTS,
    LOOP_DONE_PORTS,
    PORT_CASE_DEFAULT,
    PORT_LOOP_BODY,
    TRUE_PORTS,
    GraphSource,
    find_back_edges,
    get_trigger_nodes,
    reachable_from,
)


class WorkflowValidator:
    """
    Validates the structural integrity of a workflow graph.

    Usage::

        validator = WorkflowValidator()
        errors = validator.validate(graph)
        hard_errors = [e for e in errors if not e.startswith("WARNING:")]

    All checks are run even if earlier ones fail, so callers get the full
    error list in one shot.
    """

    def validate(self, graph: GraphSource) -> list[str]:
        """Run all structural checks; an empty list means the graph is valid."""
        errors: list[str] = []
        nodes = graph.list_nodes()
        node_ids = {n.id for n in nodes}

        # ── Connector validity ───────────────────────────────────────────────
        for node in nodes:
            for connector in graph.outgoing(node.id):
                if connector.target_id not in node_ids:
                    errors.append(
                        f"Connector '{connector.id}': target '{connector.target_id}' "
                        "references a node that does not exist."
                    )

        # ── Triggers ─────────────────────────────────────────────────────────
        triggers = get_trigger_nodes(graph)
        if not triggers:
            errors.append("Workflow has no trigger node. Add a Manual Trigger, Form or Chat node.")
        for trigger in triggers:
            if graph.incoming(trigger.id):
                errors.append(
                    f"WARNING: Trigger '{trigger.display_name}' ({trigger.id}) has incoming "
                    "connectors; they are ignored at run time."
                )

        # ── Cycles: only Loop nodes may be re-entered ────────────────────────
        roots = [t.id for t in triggers] + [n.id for n in nodes]
        back_edges = find_back_edges(graph, roots)
        for node in nodes:
            for connector in graph.outgoing(node.id):
                if connector.id not in back_edges:
                    continue
                target = graph.get_node(connector.target_id)
                if target is None or target.node_type != ConditionType.LOOP:
                    errors.append(
                        f"Connector '{connector.id}' ({connector.source_id} -> "
                        f"{connector.target_id}) closes a cycle; only Loop nodes may be re-entered."
                    )

        # ── Reachability ─────────────────────────────────────────────────────
        if triggers:
            reachable = reachable_from(graph, [t.id for t in triggers])
            for node in nodes:
                if node.id not in reachable:
                    errors.append(
                        f"WARNING: Node '{node.display_name}' ({node.id}) is not reachable "
                        "from any trigger and will never run."
                    )

        # ── Branch ports ─────────────────────────────────────────────────────
        for node in nodes:
            if node.category != NodeCategory.CONDITION:
                continue
            for connector in graph.outgoing(node.id):
                port = connector.source_port_id
                if node.node_type == ConditionType.IF_CONDITION and port not in TRUE_PORTS | FALSE_PORTS:
                    errors.append(
                        f"WARNING: If Condition '{node.display_name}' connector '{connector.id}' "
                        f"leaves from port {port!r}, which is neither the true nor the false port."
                    )
                elif node.node_type == ConditionType.SWITCH_CASE and not _is_case_port(port):
                    errors.append(
                        f"WARNING: Switch Case '{node.display_name}' connector '{connector.id}' "
                        f"leaves from port {port!r}, which is not a case port."
                    )
                elif node.node_type == ConditionType.LOOP and port not in LOOP_DONE_PORTS | {PORT_LOOP_BODY}:
                    errors.append(
                        f"WARNING: Loop '{node.display_name}' connector '{connector.id}' leaves "
                        f"from port {port!r}; it is treated as part of the loop body."
                    )
                elif node.node_type == ConditionType.STOP:
                    errors.append(
                        f"WARNING: Stop node '{node.display_name}' has outgoing connectors; "
                        "nothing after a Stop node runs."
                    )

        return errors

    def validate_or_raise(self, graph: GraphSource) -> list[str]:
        """Validate and raise on hard errors; returns the remaining warnings."""
        errors = self.validate(graph)
        hard = [e for e in errors if not e.startswith("WARNING:")]
        if hard:
            raise WorkflowValidationError(
                f"Workflow is invalid: {hard[0]}" + (f" (+{len(hard) - 1} more)" if len(hard) > 1 else ""),
                violations=hard,
            )
        return errors


def _is_case_port(port: object) -> bool:
    if port == PORT_CASE_DEFAULT:
        return True
    if not isinstance(port, str) or not port.startswith("right-case-"):
        return False
    return port[len("right-case-"):].isdigit()
