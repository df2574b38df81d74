"""Workflow graph model, traversal helpers, validator and file loader."""

import json

import pytest
import yaml

from canvasflow.exceptions import WorkflowValidationError
from canvasflow.types import ActionType, ConditionType, NodeCategory, TriggerType
from canvasflow.workflows import WorkflowValidator, load_workflow, parse_workflow
from canvasflow.workflows.graph import (
    case_port,
    find_back_edges,
    get_children,
    get_trigger_nodes,
    reachable_from,
)

from conftest import connect, make_graph, make_node


def _chain():
    return make_graph(
        [make_node("t", TriggerType.MANUAL), make_node("a", ActionType.NOTIFY), make_node("b", ActionType.NOTIFY)],
        [connect("t", "a"), connect("a", "b")],
    )


# ── Graph model ──────────────────────────────────────────────────────────────

def test_display_name_defaults_to_type():
    node = make_node("x", ConditionType.STOP)
    assert node.display_name == "Stop"
    assert node.category == NodeCategory.CONDITION


def test_category_mismatch_rejected():
    from canvasflow.types import NodeConfig

    with pytest.raises(ValueError, match="does not belong to category"):
        NodeConfig(id="x", category="trigger", nodeType="Notify")


def test_duplicate_node_ids_rejected():
    with pytest.raises(ValueError, match="Duplicate node ids"):
        make_graph([make_node("a", ActionType.NOTIFY), make_node("a", ActionType.NOTIFY)])


def test_queries():
    graph = _chain()
    assert [n.id for n in get_trigger_nodes(graph)] == ["t"]
    assert [target for target, _ in get_children(graph, "t")] == ["a"]
    assert [c.source_id for c in graph.incoming("b")] == ["a"]
    assert graph.get_node("missing") is None


def test_reachable_from_respects_blocked():
    graph = _chain()
    assert reachable_from(graph, ["t"]) == {"t", "a", "b"}
    assert reachable_from(graph, ["t"], blocked=["a"]) == {"t"}


def test_find_back_edges():
    graph = make_graph(
        [make_node("t", TriggerType.MANUAL), make_node("loop", ConditionType.LOOP), make_node("a", ActionType.NOTIFY)],
        [connect("t", "loop"), connect("loop", "a", "right-top-port"), connect("a", "loop", connector_id="back")],
    )
    assert find_back_edges(graph, ["t"]) == {"back"}


def test_case_port():
    assert case_port(0) == "right-case-1"


# ── Validator ────────────────────────────────────────────────────────────────

def test_valid_graph_has_no_problems():
    assert WorkflowValidator().validate(_chain()) == []


def test_dangling_connector_is_error():
    graph = make_graph([make_node("t", TriggerType.MANUAL)], [connect("t", "ghost")])
    errors = WorkflowValidator().validate(graph)
    assert any("does not exist" in e for e in errors)


def test_unreachable_node_is_warning():
    graph = make_graph([make_node("t", TriggerType.MANUAL), make_node("lonely", ActionType.NOTIFY)])
    problems = WorkflowValidator().validate(graph)
    assert len(problems) == 1
    assert problems[0].startswith("WARNING:")
    assert WorkflowValidator().validate_or_raise(graph) == problems


def test_bad_if_port_is_warning():
    graph = make_graph(
        [make_node("t", TriggerType.MANUAL), make_node("if", ConditionType.IF_CONDITION), make_node("a", ActionType.NOTIFY)],
        [connect("t", "if"), connect("if", "a", "sideways")],
    )
    problems = WorkflowValidator().validate(graph)
    assert any("neither the true nor the false port" in p for p in problems)


def test_validate_or_raise_collects_violations():
    graph = make_graph([make_node("a", ActionType.NOTIFY)], [connect("a", "ghost")])
    with pytest.raises(WorkflowValidationError) as exc_info:
        WorkflowValidator().validate_or_raise(graph)
    assert len(exc_info.value.violations) == 2
    assert "(+1 more)" in str(exc_info.value)


# ── Loader ───────────────────────────────────────────────────────────────────

_DOC = {
    "name": "Signup",
    "nodes": [
        {"id": "t", "category": "trigger", "nodeType": "Manual Trigger"},
        {
            "id": "n",
            "category": "action",
            "nodeType": "Notify",
            "displayName": "Say hi",
            "settings": {"general": {"message": "hi"}, "authentication": None},
        },
    ],
    "connectors": [{"id": "c1", "sourceId": "t", "targetId": "n"}],
}


def test_parse_camel_case_document():
    graph = parse_workflow(_DOC)
    assert graph.name == "Signup"
    node = graph.get_node("n")
    assert node.display_name == "Say hi"
    assert node.general == {"message": "hi"}
    assert node.settings.authentication == {}
    assert graph.outgoing("t")[0].target_id == "n"


def test_parse_wrapped_document():
    assert parse_workflow({"workflow": _DOC}).name == "Signup"


def test_parse_reports_violations():
    with pytest.raises(WorkflowValidationError) as exc_info:
        parse_workflow({"nodes": [{"id": "x", "category": "action", "nodeType": "Teleport"}]})
    assert exc_info.value.violations


def test_parse_rejects_non_mapping():
    with pytest.raises(WorkflowValidationError, match="must be a mapping"):
        parse_workflow(["not", "a", "workflow"])


def test_load_json_and_yaml(tmp_path):
    json_path = tmp_path / "flow.json"
    json_path.write_text(json.dumps(_DOC))
    yaml_path = tmp_path / "flow.yaml"
    yaml_path.write_text(yaml.safe_dump(_DOC))
    assert len(load_workflow(json_path).nodes) == 2
    assert len(load_workflow(str(yaml_path)).connectors) == 1


def test_load_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_workflow(tmp_path / "nope.json")


def test_load_unparseable_file(tmp_path):
    path = tmp_path / "broken.json"
    path.write_text("{not json")
    with pytest.raises(WorkflowValidationError, match="Could not parse"):
        load_workflow(path)
