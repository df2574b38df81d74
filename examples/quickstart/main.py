"""canvasflow Quickstart — build a workflow in code and run it end-to-end.

Everything runs in-process:
- Form input is answered by a subscriber on the message channel
- Toasts go to the default LoggingNotifier
- No network access (no HTTP Request or EmailJS nodes)

Run:
    python examples/quickstart/main.py
"""

import asyncio
import logging


def _build_graph():
    from canvasflow.types import Connector, NodeConfig
    from canvasflow.workflows import WorkflowGraph

    nodes = [
        NodeConfig.model_validate({
            "id": "form",
            "category": "trigger",
            "nodeType": "Form",
            "displayName": "Order",
            "settings": {"general": {
                "formTitle": "New order",
                "formFields": [
                    {"label": "Customer", "type": "text"},
                    {"label": "Items", "type": "text"},
                ],
            }},
        }),
        NodeConfig.model_validate({
            "id": "loop",
            "category": "condition",
            "nodeType": "Loop",
            "displayName": "EachItem",
            "settings": {"general": {"input": "{{ split($.Order#form.data.items) }}"}},
        }),
        NodeConfig.model_validate({
            "id": "pick",
            "category": "action",
            "nodeType": "Notify",
            "displayName": "Pick",
            "settings": {"general": {
                "title": "Picking",
                "message": "{{ $.EachItem#loop.currentLoopIteration }}/{{ $.EachItem#loop.currentLoopCount }}: "
                           "{{ $.EachItem#loop.currentloopitem }}",
            }},
        }),
        NodeConfig.model_validate({
            "id": "big",
            "category": "condition",
            "nodeType": "If Condition",
            "displayName": "BigOrder",
            "settings": {"general": {"conditions": [
                {"left": "$.EachItem#loop.count", "comparator": "greater than", "right": "2"},
            ]}},
        }),
        NodeConfig.model_validate({
            "id": "thanks",
            "category": "action",
            "nodeType": "Notify",
            "settings": {"general": {
                "title": "Big order",
                "message": "Thanks {{ $.Order#form.data.customer }}!",
                "type": "success",
                "chatResponse": "Order for {{ $.Order#form.data.customer }} is being packed.",
            }},
        }),
    ]
    connectors = [
        Connector(id="c1", source_id="form", target_id="loop"),
        Connector(id="c2", source_id="loop", target_id="pick", source_port_id="right-top-port"),
        Connector(id="c3", source_id="pick", target_id="loop"),
        Connector(id="c4", source_id="loop", target_id="big", source_port_id="right-bottom-port"),
        Connector(id="c5", source_id="big", target_id="thanks", source_port_id="right-top-port"),
    ]
    return WorkflowGraph(name="Quickstart order", nodes=nodes, connectors=connectors)


async def main() -> None:
    from canvasflow.callbacks import LoggingCallback
    from canvasflow.engine import WorkflowExecutionService, describe_variables
    from canvasflow.engine.context import ExecutionContext
    from canvasflow.triggers import MessageChannel, Topic

    channel = MessageChannel()

    # ── Simulated UI: answer the form, print assistant replies ────────────────
    async def _fill_form(data):
        print(f"  Form opened: {data['title']!r}")
        await channel.publish(Topic.FORM_SUBMITTED, {"values": ["Ada", "keyboard, mouse, monitor"]})

    channel.subscribe(Topic.FORM_OPEN, _fill_form)
    channel.subscribe(Topic.ASSISTANT_RESPONSE, lambda data: print(f"  Assistant: {data['text']}"))

    graph = _build_graph()
    service = WorkflowExecutionService(graph, channel=channel, callbacks=[LoggingCallback()])
    unsubscribe = service.on_execution_context_update(
        lambda snap: print(f"  Context now holds: {sorted(snap.results)}")
    )

    outcome = await service.execute_workflow()
    unsubscribe()

    print()
    print(f"  Run   : {outcome.id}")
    print(f"  Status: {outcome.status.value.upper()}  ({len(outcome.trail)} node execution(s))")
    for record in outcome.trail:
        iteration = "" if record.iteration is None else f" [item {record.iteration + 1}]"
        print(f"    {record.status.value:9s} {record.display_name}{iteration}")
    print()

    # Variables available to templates after the run, as the expression picker lists them
    ctx = ExecutionContext()
    for node_id, payload in outcome.context.results.items():
        ctx.record_result(node_id, payload, graph.get_node(node_id).display_name)
    for group in describe_variables(ctx, max_depth=1):
        print(f"  {group.node_name}: {', '.join(v.path for v in group.variables[:4])}")

    service.cleanup()


if __name__ == "__main__":
    logging.basicConfig(level=logging.WARNING, format="%(asctime)s %(levelname)s [%(name)s] %(message)s")
    asyncio.run(main())
