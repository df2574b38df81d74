"""Test fixtures: recording notifier, message channel, services, graph builders.

All tests should use these fixtures for consistency.
"""

import pytest

from canvasflow.config import CanvasflowConfig
from canvasflow.engine.context import ExecutionContext
from canvasflow.executors.base import ExecutionServices
from canvasflow.triggers.channel import MessageChannel
from canvasflow.types import (
    ActionType,
    ConditionType,
    Connector,
    NodeCategory,
    NodeConfig,
    NodeSettings,
    NotificationType,
    TriggerType,
)
from canvasflow.workflows.graph import WorkflowGraph


class RecordingNotifier:
    """Collects toasts as (title, message, type) tuples."""

    def __init__(self):
        self.toasts = []

    def notify(self, title, message, type=NotificationType.ERROR):
        self.toasts.append((title, message, NotificationType(type)))

    def titles(self):
        return [t[0] for t in self.toasts]


# ── Builders ─────────────────────────────────────────────────────────────────

_CATEGORY_OF = {
    **{t: NodeCategory.TRIGGER for t in TriggerType},
    **{t: NodeCategory.CONDITION for t in ConditionType},
    **{t: NodeCategory.ACTION for t in ActionType},
}


def make_node(node_id, node_type, display_name="", authentication=None, **general):
    """Build a NodeConfig; the category follows from node_type."""
    return NodeConfig(
        id=node_id,
        category=_CATEGORY_OF[node_type],
        node_type=node_type,
        display_name=display_name,
        settings=NodeSettings(general=general, authentication=authentication or {}),
    )


def connect(source_id, target_id, port=None, connector_id=None):
    return Connector(
        id=connector_id or f"{source_id}->{target_id}:{port or ''}",
        source_id=source_id,
        target_id=target_id,
        source_port_id=port,
    )


def make_graph(nodes, connectors=()):
    return WorkflowGraph(nodes=list(nodes), connectors=list(connectors))


def row(left, comparator, right=None, joiner=None):
    data = {"left": left, "comparator": comparator}
    if right is not None:
        data["right"] = right
    if joiner is not None:
        data["joiner"] = joiner
    return data


# ── Fixtures ─────────────────────────────────────────────────────────────────

@pytest.fixture
def settings():
    """Configuration with safe defaults and no simulated delay."""
    return CanvasflowConfig(simulated_node_delay_ms=0, max_node_executions=500)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def channel():
    return MessageChannel()


@pytest.fixture
def services(channel, notifier, settings):
    return ExecutionServices(channel=channel, notifier=notifier, settings=settings)


@pytest.fixture
def context():
    return ExecutionContext()
