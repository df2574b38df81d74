"""Callback/hook system for workflow lifecycle events and user notifications."""

from canvasflow.callbacks.base import BaseCallback, WorkflowCallback
from canvasflow.callbacks.logging import LoggingCallback
from canvasflow.callbacks.notifier import LoggingNotifier, Notifier

__all__ = ["BaseCallback", "WorkflowCallback", "LoggingCallback", "LoggingNotifier", "Notifier"]
