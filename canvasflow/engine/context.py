"""
Run-scoped execution context: per-node results plus a free-form variable bag.

The context is the only shared mutable state of a run.  Every write goes
through record_result() or set_variable(), both of which apply the write
before notifying subscribers, so an observer can never see a "node
completed" notification ahead of the data it refers to.
"""

from __future__ import annotations

import copy
import logging
from types import MappingProxyType
from typing import Any, Callable, Mapping, Optional

from canvasflow.types import ContextSnapshot

logger = logging.getLogger(__name__)

ContextListener = Callable[[ContextSnapshot], None]


class ExecutionContext:
    """Results keyed by node id, variables keyed by name.

    Usage::

        ctx = ExecutionContext(variables={"runId": "r-1"})
        unsubscribe = ctx.subscribe(lambda snap: print(snap.results))
        ctx.record_result("n1", {"count": 3}, display_name="Loop")
    """

    def __init__(self, variables: Optional[dict[str, Any]] = None) -> None:
        self._results: dict[str, Any] = {}
        self._variables: dict[str, Any] = dict(variables or {})
        self._names: dict[str, str] = {}
        self._listeners: list[ContextListener] = []

    # ── Read surface ──────────────────────────────────────────────────────

    @property
    def results(self) -> Mapping[str, Any]:
        return MappingProxyType(self._results)

    @property
    def variables(self) -> Mapping[str, Any]:
        return MappingProxyType(self._variables)

    def node_id_for(self, display_name: str) -> Optional[str]:
        """Return the id of the node most recently recorded under display_name."""
        return self._names.get(display_name)

    def display_names(self) -> dict[str, str]:
        """Map of node id -> display name for every recorded node."""
        return {node_id: name for name, node_id in self._names.items()}

    def snapshot(self) -> ContextSnapshot:
        return ContextSnapshot(
            results=copy.deepcopy(self._results),
            variables=copy.deepcopy(self._variables),
        )

    # ── Mutation surface ──────────────────────────────────────────────────

    def record_result(self, node_id: str, payload: Any, display_name: str = "") -> None:
        """Store payload as node_id's latest output, then notify subscribers."""
        self._results[node_id] = payload
        if display_name:
            self._names[display_name] = node_id
        self._notify()

    def set_variable(self, key: str, value: Any) -> None:
        self._variables[key] = value
        self._notify()

    def derive(self, **variables: Any) -> "ExecutionContext":
        """Return a detached copy with extra variables layered on top.

        Used for per-item evaluation (Filter's ``item``); writes to the
        derived context never reach this one and it has no subscribers.
        """
        child = ExecutionContext({**self._variables, **variables})
        child._results = dict(self._results)
        child._names = dict(self._names)
        return child

    # ── Observers ─────────────────────────────────────────────────────────

    def subscribe(self, listener: ContextListener) -> Callable[[], None]:
        """Register listener; returns a callable that removes it."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            try:
                self._listeners.remove(listener)
            except ValueError:
                pass

        return _unsubscribe

    def _notify(self) -> None:
        if not self._listeners:
            return
        snap = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snap)
            except Exception:
                logger.exception("[Context] listener raised during update notification")
