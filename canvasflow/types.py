"""All shared types, enums, and type aliases. Everything imports from here."""

from enum import Enum
from typing import Any, Optional, Union
from datetime import datetime, timezone
from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel
import uuid


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── Enums ──────────────────────────────────────────────────────────────

class NodeCategory(str, Enum):
    TRIGGER = "trigger"
    CONDITION = "condition"
    ACTION = "action"

class TriggerType(str, Enum):
    MANUAL = "Manual Trigger"
    FORM = "Form"
    CHAT = "Chat"

class ConditionType(str, Enum):
    IF_CONDITION = "If Condition"
    SWITCH_CASE = "Switch Case"
    FILTER = "Filter"
    LOOP = "Loop"
    STOP = "Stop"       # shown as "Do Nothing" in the palette

class ActionType(str, Enum):
    HTTP_REQUEST = "HTTP Request"
    NOTIFY = "Notify"
    EMAILJS = "EmailJS"

NodeType = Union[TriggerType, ConditionType, ActionType]

CATEGORY_TYPES: dict[NodeCategory, type[Enum]] = {
    NodeCategory.TRIGGER: TriggerType,
    NodeCategory.CONDITION: ConditionType,
    NodeCategory.ACTION: ActionType,
}

class Comparator(str, Enum):
    # unary
    EXISTS = "exists"
    NOT_EXISTS = "does not exist"
    IS_EMPTY = "is empty"
    IS_NOT_EMPTY = "is not empty"
    IS_TRUE = "is true"
    IS_FALSE = "is false"
    # equality
    EQUALS = "is equal to"
    NOT_EQUALS = "is not equal to"
    # string
    CONTAINS = "contains"
    NOT_CONTAINS = "does not contain"
    STARTS_WITH = "starts with"
    ENDS_WITH = "ends with"
    MATCHES_REGEX = "matches regex"
    # numeric ordering
    GREATER_THAN = "greater than"
    GREATER_OR_EQUAL = "greater than or equal to"
    LESS_THAN = "less than"
    LESS_OR_EQUAL = "less than or equal to"
    # range
    BETWEEN = "is between"
    NOT_BETWEEN = "is not between"
    # date / time ordering
    BEFORE = "before"
    AFTER = "after"
    ON_OR_BEFORE = "on or before"
    ON_OR_AFTER = "on or after"
    # array / object
    CONTAINS_VALUE = "contains value"
    LENGTH_GREATER_THAN = "length greater than"
    LENGTH_LESS_THAN = "length less than"
    HAS_KEY = "has key"
    HAS_PROPERTY = "has property"

class Joiner(str, Enum):
    AND = "AND"
    OR = "OR"

class ValueKind(str, Enum):
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    DATE = "date"
    TIME = "time"
    ARRAY = "array"
    OBJECT = "object"

class NotificationType(str, Enum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"

class NodeStatus(str, Enum):
    RUNNING = "running"
    SUCCESS = "success"
    ERROR = "error"
    CANCELLED = "cancelled"

class RunStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    PARTIAL = "partial"      # run finished, at least one node failed
    FAILED = "failed"        # engine-level fault
    CANCELLED = "cancelled"


# ── Comparator families ────────────────────────────────────────────────

UNARY_COMPARATORS = frozenset({
    Comparator.EXISTS, Comparator.NOT_EXISTS, Comparator.IS_EMPTY,
    Comparator.IS_NOT_EMPTY, Comparator.IS_TRUE, Comparator.IS_FALSE,
})
NUMERIC_RIGHT_COMPARATORS = frozenset({
    Comparator.GREATER_THAN, Comparator.GREATER_OR_EQUAL, Comparator.LESS_THAN,
    Comparator.LESS_OR_EQUAL, Comparator.LENGTH_GREATER_THAN, Comparator.LENGTH_LESS_THAN,
})
PAIR_COMPARATORS = frozenset({Comparator.BETWEEN, Comparator.NOT_BETWEEN})
REGEX_COMPARATORS = frozenset({Comparator.MATCHES_REGEX})
KEY_PROP_COMPARATORS = frozenset({Comparator.HAS_KEY, Comparator.HAS_PROPERTY})
DATE_TIME_COMPARATORS = frozenset({
    Comparator.BEFORE, Comparator.AFTER, Comparator.ON_OR_BEFORE,
    Comparator.ON_OR_AFTER, Comparator.BETWEEN, Comparator.NOT_BETWEEN,
})


# ── Graph shapes ───────────────────────────────────────────────────────

class CanvasModel(BaseModel):
    """Base for models exchanged with the canvas: camelCase on the wire, snake_case in Python."""
    model_config = {"alias_generator": to_camel, "populate_by_name": True}


class NodeSettings(CanvasModel):
    """Per-node configuration partitioned the way the property panel shows it."""
    general: dict[str, Any] = Field(default_factory=dict)
    authentication: dict[str, Any] = Field(default_factory=dict)
    advanced: dict[str, Any] = Field(default_factory=dict)

    @field_validator("general", "authentication", "advanced", mode="before")
    @classmethod
    def none_to_empty(cls, v):
        return v or {}


class NodeConfig(CanvasModel):
    """A typed unit of work on the canvas."""
    id: str
    category: NodeCategory
    node_type: NodeType
    display_name: str = ""
    settings: NodeSettings = Field(default_factory=NodeSettings)

    @model_validator(mode="after")
    def check_category(self):
        expected = CATEGORY_TYPES[self.category]
        if not isinstance(self.node_type, expected):
            raise ValueError(
                f"Node '{self.id}': node type '{self.node_type.value}' "
                f"does not belong to category '{self.category.value}'"
            )
        if not self.display_name:
            self.display_name = self.node_type.value
        return self

    @property
    def general(self) -> dict[str, Any]:
        return self.settings.general


class Connector(CanvasModel):
    """Directed edge between two node ports."""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    source_id: str
    target_id: str
    source_port_id: Optional[str] = None
    target_port_id: Optional[str] = None


class ConditionRow(CanvasModel):
    """One row of an If / Switch / Filter predicate. left/right are unresolved templates."""
    left: str = ""
    comparator: Comparator
    right: Optional[str] = None
    joiner: Optional[Joiner] = None     # ignored on the first row
    name: Optional[str] = None

    @field_validator("left", "right", mode="before")
    @classmethod
    def coerce_text(cls, v):
        if v is None or isinstance(v, str):
            return v
        return str(v)

    @field_validator("joiner", mode="before")
    @classmethod
    def coerce_joiner(cls, v):
        if isinstance(v, str):
            return Joiner(v.upper()) if v.strip() else None
        return v


# ── Execution shapes ───────────────────────────────────────────────────

class NodeExecutionResult(BaseModel):
    """Uniform executor result. success=True carries data; success=False carries error."""
    success: bool
    data: Any = None
    error: Optional[str] = None
    cancelled: bool = False

    @model_validator(mode="after")
    def check_invariant(self):
        if self.success and (self.error is not None or self.cancelled):
            raise ValueError("successful result cannot carry an error or be cancelled")
        if not self.success and not self.error:
            raise ValueError("failed result requires an error message")
        return self

    @classmethod
    def ok(cls, data: Any = None) -> "NodeExecutionResult":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: str, data: Any = None) -> "NodeExecutionResult":
        return cls(success=False, error=error, data=data)

    @classmethod
    def cancel(cls, error: str) -> "NodeExecutionResult":
        return cls(success=False, error=error, cancelled=True)


class NodeRunRecord(BaseModel):
    """One entry of a run's per-node result trail."""
    node_id: str
    display_name: str
    node_type: str
    status: NodeStatus = NodeStatus.RUNNING
    result: Optional[NodeExecutionResult] = None
    iteration: Optional[int] = None     # loop iteration index, when run inside a loop body
    started_at: datetime = Field(default_factory=_utcnow)
    completed_at: Optional[datetime] = None


class ContextSnapshot(BaseModel):
    """Read-only copy of an execution context handed to observers."""
    results: dict[str, Any] = Field(default_factory=dict)
    variables: dict[str, Any] = Field(default_factory=dict)


class RunOutcome(BaseModel):
    """Final outcome of one workflow run."""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    status: RunStatus = RunStatus.RUNNING
    trail: list[NodeRunRecord] = Field(default_factory=list)
    context: ContextSnapshot = Field(default_factory=ContextSnapshot)
    error: Optional[str] = None
    started_at: datetime = Field(default_factory=_utcnow)
    completed_at: Optional[datetime] = None

    def results_for(self, node_id: str) -> list[NodeExecutionResult]:
        """All results recorded for node_id, in execution order."""
        return [r.result for r in self.trail if r.node_id == node_id and r.result is not None]


# ── Expression picker descriptors ──────────────────────────────────────

class Variable(BaseModel):
    """A value exposed by an upstream node for template authoring."""
    key: str
    path: str                           # full "$.Name#id.key" path
    type: Optional[str] = None          # ValueKind hint
    preview: Optional[str] = None

class VariableGroup(BaseModel):
    """All variables exposed by one node."""
    node_id: str
    node_name: str
    variables: list[Variable] = Field(default_factory=list)
