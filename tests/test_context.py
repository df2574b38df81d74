"""ExecutionContext: write-then-notify ordering, derive, subscriptions."""

from canvasflow.engine.context import ExecutionContext


def test_record_result_is_visible_to_listener():
    ctx = ExecutionContext()
    seen = []
    ctx.subscribe(lambda snap: seen.append(snap.results.get("n1")))
    ctx.record_result("n1", {"count": 3}, display_name="Loop")
    assert seen == [{"count": 3}]


def test_display_name_maps_to_latest_node():
    ctx = ExecutionContext()
    ctx.record_result("a", 1, display_name="Step")
    ctx.record_result("b", 2, display_name="Step")
    assert ctx.node_id_for("Step") == "b"
    assert ctx.display_names() == {"b": "Step"}


def test_snapshot_is_detached():
    ctx = ExecutionContext()
    ctx.record_result("n1", {"items": [1]})
    snap = ctx.snapshot()
    snap.results["n1"]["items"].append(2)
    assert ctx.results["n1"] == {"items": [1]}


def test_derive_layers_variables_without_leaking():
    ctx = ExecutionContext(variables={"a": 1})
    ctx.record_result("n1", "x")
    child = ctx.derive(item=5)
    assert child.variables == {"a": 1, "item": 5}
    assert child.results["n1"] == "x"
    child.record_result("n2", "y")
    assert "n2" not in ctx.results
    assert "item" not in ctx.variables


def test_unsubscribe_stops_notifications():
    ctx = ExecutionContext()
    seen = []
    unsubscribe = ctx.subscribe(seen.append)
    ctx.set_variable("k", 1)
    unsubscribe()
    unsubscribe()
    ctx.set_variable("k", 2)
    assert len(seen) == 1
    assert seen[0].variables == {"k": 1}


def test_failing_listener_does_not_block_others():
    ctx = ExecutionContext()
    seen = []

    def _boom(snap):
        raise RuntimeError("listener broke")

    ctx.subscribe(_boom)
    ctx.subscribe(seen.append)
    ctx.record_result("n1", 1)
    assert len(seen) == 1
