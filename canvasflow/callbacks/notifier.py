"""User-facing notification surface (toasts).

The engine reports validation errors, execution failures and informational
messages through a Notifier.  Delivery is fire-and-forget: notify() returns
nothing and a failing notifier never affects a run.
"""

import json
import logging
from typing import Protocol, runtime_checkable

from canvasflow.types import NotificationType

logger = logging.getLogger("canvasflow.notifications")

_LEVELS = {
    NotificationType.INFO: logging.INFO,
    NotificationType.SUCCESS: logging.INFO,
    NotificationType.WARNING: logging.WARNING,
    NotificationType.ERROR: logging.ERROR,
}


@runtime_checkable
class Notifier(Protocol):
    """Anything that can show a toast."""

    def notify(
        self, title: str, message: str, type: NotificationType = NotificationType.ERROR
    ) -> None:
        ...


class LoggingNotifier:
    """Default notifier: one JSON log line per toast on ``canvasflow.notifications``."""

    def notify(
        self, title: str, message: str, type: NotificationType = NotificationType.ERROR
    ) -> None:
        type = NotificationType(type)
        logger.log(_LEVELS[type], json.dumps({
            "toast": type.value,
            "title": title,
            "message": message,
        }))


def safe_notify(
    notifier: Notifier, title: str, message: str, type: NotificationType = NotificationType.ERROR
) -> None:
    """Call notifier.notify, logging instead of raising if it fails."""
    try:
        notifier.notify(title, message, type)
    except Exception as exc:
        logger.warning(f"[Notifier] {notifier.__class__.__name__} failed on '{title}': {exc}")
