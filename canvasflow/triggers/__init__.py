"""canvasflow trigger plumbing: the message channel suspended triggers wait on."""

from canvasflow.triggers.channel import MessageChannel, Topic

__all__ = ["MessageChannel", "Topic"]
