"""
WorkflowExecutionService — drives one workflow run over a canvas graph.

Scheduling model
----------------
Every node whose upstream connectors are settled runs as its own asyncio
task, so a Form or Chat trigger suspended on the message channel never
blocks a sibling branch.  The driver waits on whichever task finishes
first, records the result, then settles that node's outgoing connectors:

  SELECTED  the connector carries control to its target
  DEAD      the connector belongs to a branch that was not taken
  HALTED    the source failed, was cancelled, or sits downstream of a failure

A waiting node becomes ready once none of its incoming connectors is
pending and at least one is SELECTED.  Any HALTED input skips it and
halts its own outputs; all-DEAD inputs skip it quietly.  Connectors that
close a cycle (loop back edges) never count towards readiness.

Loop nodes in ``each`` mode re-run their body region once per item in a
nested pass, then release the done port.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Iterable, Optional

from canvasflow.callbacks.notifier import LoggingNotifier, Notifier
from canvasflow.config import CanvasflowConfig, config as default_config
from canvasflow.engine.context import ExecutionContext
from canvasflow.exceptions import ExecutionLimitExceeded, NodeNotFound, WorkflowError
from canvasflow.executors import execute_node
from canvasflow.executors.base import ExecutionServices
from canvasflow.executors.conditions import loop_cursor
from canvasflow.triggers.channel import MessageChannel, Topic
from canvasflow.types import (
    ConditionType,
    Connector,
    ContextSnapshot,
    NodeConfig,
    NodeExecutionResult,
    NodeRunRecord,
    NodeStatus,
    NotificationType,
    RunOutcome,
    RunStatus,
)
from canvasflow.workflows.graph import (
    FALSE_PORTS,
    LOOP_DONE_PORTS,
    TRUE_PORTS,
    GraphSource,
    find_back_edges,
    get_trigger_nodes,
    reachable_from,
)
from canvasflow.workflows.validator import WorkflowValidator

logger = logging.getLogger(__name__)

COMPLETED_MESSAGE = "Workflow execution completed."
CANCELLED_MESSAGE = "Workflow execution has been cancelled."


class _Link(str, Enum):
    PENDING = "pending"
    SELECTED = "selected"
    DEAD = "dead"
    HALTED = "halted"


class _State(str, Enum):
    WAITING = "waiting"
    QUEUED = "queued"
    RUNNING = "running"
    DONE = "done"
    FAILED = "failed"
    SKIPPED = "skipped"
    LOOPED = "looped"       # handled by a loop's nested pass
    CANCELLED = "cancelled"


def _recorded(result: NodeExecutionResult) -> Any:
    """Payload stored in the context; failures without data keep their error."""
    if result.success or result.data is not None:
        return result.data
    return {"error": result.error}


@dataclass
class _Pass:
    """Scheduling state for one traversal over a set of nodes."""
    nodes: set[str]
    links: dict[str, _Link]
    states: dict[str, _State] = field(default_factory=dict)
    iteration: Optional[int] = None


class WorkflowExecutionService:
    """
    Runs a workflow graph and exposes its live execution context.

    Usage::

        service = WorkflowExecutionService(graph, channel=channel)
        outcome = await service.execute_workflow()
        print(outcome.status, service.get_execution_context().results)
    """

    def __init__(
        self,
        graph: GraphSource,
        channel: Optional[MessageChannel] = None,
        notifier: Optional[Notifier] = None,
        callbacks: Optional[list] = None,
        settings: Optional[CanvasflowConfig] = None,
        variables: Optional[dict[str, Any]] = None,
    ) -> None:
        self._graph = graph
        self._channel = channel or MessageChannel()
        self._settings = settings or default_config
        self._notifier = notifier or LoggingNotifier()
        self.callbacks = list(callbacks or [])
        self._variables = dict(variables or {})
        self._validator = WorkflowValidator()

        self._services = ExecutionServices(
            channel=self._channel,
            notifier=self._notifier,
            cancel_event=asyncio.Event(),
            settings=self._settings,
        )
        self._context: Optional[ExecutionContext] = None
        self._context_listeners: list[Callable[[ContextSnapshot], None]] = []
        self._subscriptions: list[Callable[[], None]] = []

        self._running = False
        self._run_id = ""
        self._trail: list[NodeRunRecord] = []
        self._back_edges: set[str] = set()
        self._executions = 0
        self._assistant_replied = False

    # ── Public surface ────────────────────────────────────────────────────

    @property
    def is_running(self) -> bool:
        return self._running

    async def execute_workflow(self) -> RunOutcome:
        """Run every trigger and everything reachable from it; never raises for run faults."""
        if self._running:
            raise WorkflowError("A workflow run is already in progress.")

        self._running = True
        outcome = RunOutcome()
        self._run_id = outcome.id
        self._trail = outcome.trail
        self._executions = 0
        self._assistant_replied = False
        self._services.cancel_event = asyncio.Event()
        self._reset_context()
        unsubscribe = self._channel.subscribe(Topic.ASSISTANT_RESPONSE, self._on_assistant_response)
        self._subscriptions.append(unsubscribe)

        try:
            warnings = self._validator.validate_or_raise(self._graph)
            for warning in warnings:
                logger.warning(f"[Orchestrator] {warning}")
            triggers = get_trigger_nodes(self._graph)
            trigger_ids = [t.id for t in triggers]
            self._back_edges = find_back_edges(self._graph, trigger_ids)

            logger.info(f"[Orchestrator] Run {outcome.id} starting from triggers {trigger_ids}")
            await self._fire_callbacks("workflow_started", {"run_id": outcome.id, "trigger_ids": trigger_ids})

            node_ids = {n.id for n in self._graph.list_nodes()}
            run = _Pass(
                nodes=node_ids,
                links=self._links_within(node_ids),
                states={nid: _State.WAITING for nid in node_ids},
            )
            for trigger_id in trigger_ids:
                run.states[trigger_id] = _State.QUEUED
            await self._drive(run, trigger_ids)

            outcome.status = self._final_status()
            if outcome.status == RunStatus.FAILED:
                outcome.error = next((r.result.error for r in reversed(self._trail) if r.result), None)
        except Exception as exc:
            logger.error(f"[Orchestrator] Run {outcome.id} failed: {exc}", exc_info=True)
            outcome.status = RunStatus.FAILED
            outcome.error = str(exc)
            await self._fire_callbacks("engine_error", {"run_id": outcome.id, "error": exc})
        finally:
            self._running = False
            self._release(unsubscribe)

        outcome.completed_at = datetime.now(timezone.utc)
        outcome.context = self.get_execution_context()
        logger.info(
            f"[Orchestrator] Run {outcome.id} finished: status={outcome.status.value} "
            f"nodes={len(outcome.trail)}"
        )

        if outcome.status == RunStatus.FAILED:
            self._services.notify("Execution Failed", outcome.error or "Unknown error occurred")
            if not self._assistant_replied:
                await self._channel.publish(
                    Topic.ASSISTANT_RESPONSE, {"text": f"Workflow execution failed: {outcome.error}"}
                )
            await self._fire_callbacks("workflow_failed", {"run_id": outcome.id, "outcome": outcome})
        elif outcome.status == RunStatus.CANCELLED:
            await self._fire_callbacks("workflow_cancelled", {"run_id": outcome.id, "outcome": outcome})
        else:
            if not self._assistant_replied:
                await self._channel.publish(Topic.ASSISTANT_RESPONSE, {"text": COMPLETED_MESSAGE})
            await self._fire_callbacks("workflow_completed", {"run_id": outcome.id, "outcome": outcome})
        return outcome

    async def execute_single_node(self, node_id: str) -> NodeExecutionResult:
        """Run one node against the current context without touching its neighbours.

        Raises:
            NodeNotFound: if node_id is not in the graph.
        """
        node = self._graph.get_node(node_id)
        if node is None:
            raise NodeNotFound(f"Node '{node_id}' does not exist in the workflow.", node_id=node_id)
        if self._context is None:
            self._reset_context()
        if self._services.cancel_event.is_set() and not self._running:
            self._services.cancel_event = asyncio.Event()

        logger.info(f"[Orchestrator] Single-node run of {node.display_name!r} ({node.id})")
        result = await execute_node(node, self._context, self._services)
        self._context.record_result(node.id, _recorded(result), node.display_name)
        if result.success:
            self._services.notify(
                "Node executed", f"{node.display_name} executed successfully.", NotificationType.INFO
            )
        return result

    async def stop_execution(self, silent: bool = False) -> None:
        """Request cooperative cancellation; suspended triggers are released."""
        logger.info(f"[Orchestrator] Stop requested (silent={silent})")
        self._services.cancel_event.set()
        await self._channel.publish(Topic.FORM_CANCEL)
        await self._channel.publish(Topic.CHAT_CANCEL)
        if not silent:
            self._services.notify("Execution Cancelled", "Workflow execution was cancelled.", NotificationType.INFO)
            await self._channel.publish(Topic.ASSISTANT_RESPONSE, {"text": CANCELLED_MESSAGE})

    def get_execution_context(self) -> ContextSnapshot:
        if self._context is None:
            return ContextSnapshot(variables=dict(self._variables))
        return self._context.snapshot()

    def on_execution_context_update(self, callback: Callable[[ContextSnapshot], None]) -> Callable[[], None]:
        """Subscribe to context updates across runs; returns an unsubscribe callable."""
        self._context_listeners.append(callback)

        def _unsubscribe() -> None:
            try:
                self._context_listeners.remove(callback)
            except ValueError:
                pass

        return _unsubscribe

    def cleanup(self) -> None:
        """Release channel subscriptions and wake any suspended trigger. Idempotent."""
        self._services.cancel_event.set()
        for unsubscribe in self._subscriptions:
            unsubscribe()
        self._subscriptions = []
        self._context_listeners = []

    # ── Driver ────────────────────────────────────────────────────────────

    async def _drive(self, run: _Pass, ready: Iterable[str]) -> None:
        queue: deque[str] = deque(ready)
        running: dict[asyncio.Task, str] = {}
        try:
            while queue or running:
                while queue:
                    node_id = queue.popleft()
                    if self._services.cancel_event.is_set():
                        run.states[node_id] = _State.CANCELLED
                        logger.info(f"[Orchestrator] Not scheduling {node_id}: run cancelled")
                        continue
                    run.states[node_id] = _State.RUNNING
                    running[asyncio.ensure_future(self._run_node(node_id, run))] = node_id
                if not running:
                    break
                done, _ = await asyncio.wait(set(running), return_when=asyncio.FIRST_COMPLETED)
                for task in done:
                    running.pop(task)
                    node, result = task.result()
                    queue.extend(self._complete(run, node, result))
        finally:
            for task in running:
                task.cancel()
            if running:
                await asyncio.gather(*running, return_exceptions=True)

    async def _run_node(self, node_id: str, run: _Pass) -> tuple[NodeConfig, NodeExecutionResult]:
        node = self._graph.get_node(node_id)
        if node is None:
            raise NodeNotFound(f"Node '{node_id}' does not exist in the workflow.", node_id=node_id)

        self._executions += 1
        limit = self._settings.max_node_executions
        if self._executions > limit:
            raise ExecutionLimitExceeded(
                f"Run exceeded the limit of {limit} node executions.", limit=limit
            )

        record = NodeRunRecord(
            node_id=node.id,
            display_name=node.display_name,
            node_type=node.node_type.value,
            iteration=run.iteration,
        )
        self._trail.append(record)
        logger.info(f"[Orchestrator] Executing {node.display_name!r} ({node.id})")
        await self._fire_callbacks("node_started", {
            "run_id": self._run_id, "node": node, "iteration": run.iteration,
        })

        result = await execute_node(node, self._context, self._services)
        self._context.record_result(node.id, _recorded(result), node.display_name)

        if result.success and self._iterates(node):
            result = await self._iterate_loop(node, result, run)

        record.result = result
        record.completed_at = datetime.now(timezone.utc)
        if result.success:
            record.status, event = NodeStatus.SUCCESS, "node_completed"
        elif result.cancelled:
            record.status, event = NodeStatus.CANCELLED, "node_cancelled"
        else:
            record.status, event = NodeStatus.ERROR, "node_failed"
            logger.warning(f"[Orchestrator] {node.display_name!r} ({node.id}) failed: {result.error}")
        await self._fire_callbacks(event, {
            "run_id": self._run_id, "node": node, "result": result, "iteration": run.iteration,
        })
        return node, result

    # ── Connector settlement ──────────────────────────────────────────────

    def _complete(self, run: _Pass, node: NodeConfig, result: NodeExecutionResult) -> list[str]:
        """Settle node's outgoing connectors and return the nodes that became ready."""
        if not result.success:
            run.states[node.id] = _State.CANCELLED if result.cancelled else _State.FAILED
            return self._settle(run, node.id, set(), halted=True)

        run.states[node.id] = _State.DONE
        if not self._iterates(node):
            return self._settle(run, node.id, self._selected(node, result, run), halted=False)

        region, _, done = self._loop_region(node.id, run)
        for region_id in region:
            if run.states.get(region_id) == _State.WAITING:
                run.states[region_id] = _State.LOOPED
        ready: list[str] = []
        for region_id in region:
            ready += self._settle(run, region_id, set(), halted=False)
        ready += self._settle(run, node.id, {c.id for c in done}, halted=False)
        return ready

    def _selected(self, node: NodeConfig, result: NodeExecutionResult, run: _Pass) -> set[str]:
        """Ids of the outgoing connectors a successful node hands control to."""
        outgoing = [c for c in self._graph.outgoing(node.id) if c.id in run.links]
        data = result.data if isinstance(result.data, dict) else {}
        node_type = node.node_type

        if node_type == ConditionType.IF_CONDITION:
            ports = TRUE_PORTS if data.get("conditionResult") else FALSE_PORTS
            return {c.id for c in outgoing if c.source_port_id in ports}
        if node_type == ConditionType.SWITCH_CASE:
            matched = data.get("matchedPortId")
            return {c.id for c in outgoing if matched and c.source_port_id == matched}
        if node_type == ConditionType.FILTER and not data.get("filtered"):
            logger.info(f"[Orchestrator] Filter {node.id} matched nothing; branch ends")
            return set()
        if node_type == ConditionType.STOP:
            return set()
        return {c.id for c in outgoing}

    def _settle(self, run: _Pass, source_id: str, selected: set[str], halted: bool) -> list[str]:
        ready: list[str] = []
        work: list[tuple[str, set[str], bool]] = [(source_id, selected, halted)]
        while work:
            source, chosen, is_halted = work.pop()
            for connector in self._graph.outgoing(source):
                if connector.id not in run.links:
                    continue
                if is_halted:
                    run.links[connector.id] = _Link.HALTED
                elif connector.id in chosen:
                    run.links[connector.id] = _Link.SELECTED
                else:
                    run.links[connector.id] = _Link.DEAD

                target = connector.target_id
                if run.states.get(target) != _State.WAITING:
                    continue
                verdict = self._readiness(run, target)
                if verdict is None:
                    continue
                if verdict == _Link.SELECTED:
                    run.states[target] = _State.QUEUED
                    ready.append(target)
                else:
                    run.states[target] = _State.SKIPPED
                    logger.debug(f"[Orchestrator] Skipping {target} ({verdict.value} inputs)")
                    work.append((target, set(), verdict == _Link.HALTED))
        return ready

    def _readiness(self, run: _Pass, node_id: str) -> Optional[_Link]:
        """SELECTED when runnable, HALTED or DEAD when it must be skipped, None while pending."""
        links = [
            run.links[c.id]
            for c in self._graph.incoming(node_id)
            if c.id in run.links and c.id not in self._back_edges
        ]
        if _Link.PENDING in links:
            return None
        if _Link.HALTED in links:
            return _Link.HALTED
        if _Link.SELECTED in links:
            return _Link.SELECTED
        return _Link.DEAD

    def _links_within(self, node_ids: set[str]) -> dict[str, _Link]:
        links: dict[str, _Link] = {}
        for node_id in node_ids:
            for connector in self._graph.outgoing(node_id):
                if connector.target_id in node_ids:
                    links[connector.id] = _Link.PENDING
        return links

    # ── Loops ─────────────────────────────────────────────────────────────

    def _iterates(self, node: NodeConfig) -> bool:
        return node.node_type == ConditionType.LOOP and self._settings.loop_mode == "each"

    def _loop_region(self, loop_id: str, run: _Pass) -> tuple[set[str], list[Connector], list[Connector]]:
        """Body region of a loop plus its body-entry and done connectors.

        Nodes also reachable from the done port belong to what follows the
        loop and run once, after the last iteration.
        """
        outgoing = [c for c in self._graph.outgoing(loop_id) if c.id in run.links]
        done = [c for c in outgoing if c.source_port_id in LOOP_DONE_PORTS]
        body = [
            c for c in outgoing
            if c.source_port_id not in LOOP_DONE_PORTS and c.id not in self._back_edges
        ]
        after = reachable_from(self._graph, [c.target_id for c in done], blocked=[loop_id])
        region = reachable_from(self._graph, [c.target_id for c in body], blocked=[loop_id])
        region = (region - after) & run.nodes
        return region, [c for c in body if c.target_id in region], done

    async def _iterate_loop(self, node: NodeConfig, result: NodeExecutionResult, run: _Pass) -> NodeExecutionResult:
        base = dict(result.data)
        items = list(base.get("items") or [])
        region, entry, _ = self._loop_region(node.id, run)
        iterations: list[dict[str, Any]] = []

        for index, item in enumerate(items):
            if self._services.cancel_event.is_set():
                logger.info(f"[Orchestrator] Loop {node.id} stopped before item {index}: run cancelled")
                break
            self._context.record_result(
                node.id, {**base, **loop_cursor(node.id, items, index)}, node.display_name
            )
            body = _Pass(
                nodes=region,
                links=self._links_within(region),
                states={nid: _State.WAITING for nid in region},
                iteration=index,
            )
            for connector in entry:
                body.links[connector.id] = _Link.SELECTED
            ready = []
            for target in dict.fromkeys(c.target_id for c in entry):
                if self._readiness(body, target) == _Link.SELECTED:
                    body.states[target] = _State.QUEUED
                    ready.append(target)

            logger.debug(f"[Orchestrator] Loop {node.id} iteration {index + 1}/{len(items)}")
            await self._drive(body, ready)
            iterations.append({
                "index": index,
                "item": item,
                "results": {
                    nid: self._context.results.get(nid)
                    for nid, state in body.states.items()
                    if state in (_State.DONE, _State.FAILED)
                },
            })

        last = len(iterations) - 1 if iterations else 0
        final = {**base, **loop_cursor(node.id, items, last), "iterations": iterations}
        self._context.record_result(node.id, final, node.display_name)
        return NodeExecutionResult.ok(final)

    # ── Helpers ───────────────────────────────────────────────────────────

    def _final_status(self) -> RunStatus:
        if self._services.cancel_event.is_set():
            return RunStatus.CANCELLED
        statuses = {record.status for record in self._trail}
        if NodeStatus.CANCELLED in statuses:
            return RunStatus.CANCELLED
        if statuses == {NodeStatus.ERROR}:
            return RunStatus.FAILED
        if NodeStatus.ERROR in statuses:
            return RunStatus.PARTIAL
        return RunStatus.COMPLETED

    def _reset_context(self) -> None:
        self._context = ExecutionContext(variables=self._variables)
        self._context.subscribe(self._broadcast_context)

    def _broadcast_context(self, snapshot: ContextSnapshot) -> None:
        for listener in list(self._context_listeners):
            try:
                listener(snapshot)
            except Exception as exc:
                logger.warning(f"[Orchestrator] Context listener error: {exc}")

    def _on_assistant_response(self, data: Any) -> None:
        self._assistant_replied = True

    def _release(self, unsubscribe: Callable[[], None]) -> None:
        unsubscribe()
        if unsubscribe in self._subscriptions:
            self._subscriptions.remove(unsubscribe)

    async def _fire_callbacks(self, event: str, data: dict) -> None:
        """Invoke all registered callbacks for a lifecycle event."""
        for cb in self.callbacks:
            try:
                outcome = cb(event, data)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception as cb_exc:
                logger.warning(f"[Orchestrator] Callback error on '{event}': {cb_exc}")
