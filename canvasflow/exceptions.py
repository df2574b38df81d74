"""Typed exception hierarchy. Every error canvasflow can raise."""


class CanvasflowError(Exception):
    """Base exception for all canvasflow errors."""
    def __init__(self, message: str, details: dict = None):
        super().__init__(message)
        self.details = details or {}


# ── Workflow / graph ─────────────────────────────────────────────────────────


class WorkflowError(CanvasflowError):
    """Base exception for all workflow-related errors."""
    pass


class WorkflowValidationError(WorkflowError):
    """Workflow graph failed structural validation."""
    def __init__(self, message: str, violations: list = None, **kwargs):
        super().__init__(message, **kwargs)
        self.violations = violations or []


class NodeNotFound(WorkflowError):
    """Requested node does not exist in the graph."""
    def __init__(self, message: str, node_id: str = "", **kwargs):
        super().__init__(message, **kwargs)
        self.node_id = node_id


class ExecutionLimitExceeded(WorkflowError):
    """A run executed more nodes than the configured ceiling allows."""
    def __init__(self, message: str, limit: int = 0, **kwargs):
        super().__init__(message, **kwargs)
        self.limit = limit


class ExecutionCancelled(WorkflowError):
    """A suspended wait was released by a cancellation signal."""
    pass


# ── Node execution ───────────────────────────────────────────────────────────


class NodeConfigurationError(CanvasflowError):
    """Node settings are missing or malformed. Raised before any side effect."""
    def __init__(self, message: str, title: str = "", node_id: str = "", **kwargs):
        super().__init__(message, **kwargs)
        self.title = title
        self.node_id = node_id


class ExpressionError(CanvasflowError):
    """An expression could not be parsed or uses a disallowed construct."""
    def __init__(self, message: str, expression: str = "", **kwargs):
        super().__init__(message, **kwargs)
        self.expression = expression


class HttpRequestError(CanvasflowError):
    """Outbound HTTP call failed before a response was received."""
    def __init__(self, message: str, url: str = "", **kwargs):
        super().__init__(message, **kwargs)
        self.url = url
