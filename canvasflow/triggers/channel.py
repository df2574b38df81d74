"""In-process message channel between the engine and UI-layer collaborators.

Subscribers are plain callables (sync or async).  The channel snapshots the
subscriber list before iterating so that callbacks added or removed during
publish don't cause mutation issues.

The channel is injected into the orchestrator rather than shared globally,
so tests can publish form submissions or chat messages deterministically.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from enum import Enum
from typing import Any, Callable, Iterable, Optional, Union

from canvasflow.exceptions import ExecutionCancelled

logger = logging.getLogger(__name__)


class Topic(str, Enum):
    """Well-known topics. Values are the wire names the canvas listens on."""
    FORM_OPEN = "wf:form:open"
    FORM_SUBMITTED = "wf:form:submitted"
    FORM_CANCEL = "wf:form:cancel"
    CHAT_OPEN = "wf:chat:open"
    CHAT_READY = "wf:chat:ready"
    CHAT_MESSAGE = "wf:chat:message"
    CHAT_CANCEL = "wf:chat:cancel"
    ASSISTANT_RESPONSE = "wf:chat:assistant-response"
    TRIGGER_WAITING = "wf:trigger:waiting"
    TRIGGER_RESUMED = "wf:trigger:resumed"


TopicName = Union[Topic, str]


def _key(topic: TopicName) -> str:
    return topic.value if isinstance(topic, Topic) else str(topic)


class MessageChannel:
    """Lightweight, in-process pub/sub channel with typed topics.

    Usage::

        channel = MessageChannel()
        channel.subscribe(Topic.FORM_OPEN, show_form)
        await channel.publish(Topic.FORM_SUBMITTED, {"values": ["Ada"]})
    """

    def __init__(self) -> None:
        self._subscribers: dict[str, list[Callable]] = {}

    def subscribe(self, topic: TopicName, callback: Callable) -> Callable[[], None]:
        """Register *callback* for *topic*; returns a callable that unsubscribes it."""
        self._subscribers.setdefault(_key(topic), []).append(callback)
        return lambda: self.unsubscribe(topic, callback)

    def unsubscribe(self, topic: TopicName, callback: Callable) -> None:
        """Remove the first occurrence of *callback* from *topic*.  Silently ignores missing."""
        callbacks = self._subscribers.get(_key(topic), [])
        try:
            callbacks.remove(callback)
        except ValueError:
            pass
        if not callbacks:
            self._subscribers.pop(_key(topic), None)

    def subscriber_count(self, topic: Optional[TopicName] = None) -> int:
        """Number of live subscriptions on *topic*, or across every topic."""
        if topic is not None:
            return len(self._subscribers.get(_key(topic), []))
        return sum(len(cbs) for cbs in self._subscribers.values())

    async def publish(self, topic: TopicName, data: Any = None) -> None:
        """Deliver *data* to every subscriber of *topic*.

        Exceptions raised by individual subscribers are logged and swallowed so
        that one failing handler cannot block the rest.
        """
        key = _key(topic)
        callbacks = list(self._subscribers.get(key, []))
        for cb in callbacks:
            try:
                result = cb(data)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("MessageChannel subscriber raised for topic=%r", key)

    def expect(
        self,
        topic: TopicName,
        cancel_topics: Iterable[TopicName] = (),
        cancel_event: Optional[asyncio.Event] = None,
        accept: Optional[Callable[[Any], bool]] = None,
    ) -> "Waiter":
        """Subscribe now, await later.

        Lets a trigger register for the reply *before* it announces that it
        is waiting, so a collaborator that answers synchronously is never missed.
        """
        return Waiter(self, topic, cancel_topics, cancel_event, accept)

    async def wait_for(
        self,
        topic: TopicName,
        cancel_topics: Iterable[TopicName] = (),
        cancel_event: Optional[asyncio.Event] = None,
        accept: Optional[Callable[[Any], bool]] = None,
    ) -> Any:
        """Suspend until *topic* delivers a payload that *accept* approves."""
        return await self.expect(topic, cancel_topics, cancel_event, accept).result()

    def clear(self) -> None:
        """Drop every subscription."""
        self._subscribers.clear()


class Waiter:
    """One pending wait on a MessageChannel topic.

    Resolves once; later deliveries are ignored.  A message on any of
    *cancel_topics*, or *cancel_event* being set, raises ExecutionCancelled
    instead.  Every subscription is removed when the wait ends or close()
    is called, whichever comes first.
    """

    def __init__(
        self,
        channel: MessageChannel,
        topic: TopicName,
        cancel_topics: Iterable[TopicName],
        cancel_event: Optional[asyncio.Event],
        accept: Optional[Callable[[Any], bool]],
    ) -> None:
        self._topic = _key(topic)
        self._accept = accept
        self._future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._unsubscribers = [channel.subscribe(topic, self._on_message)]
        self._unsubscribers += [channel.subscribe(t, self._on_cancel) for t in cancel_topics]
        self._cancel_task: Optional[asyncio.Task] = None
        if cancel_event is not None:
            if cancel_event.is_set():
                self._on_cancel(None)
            else:
                self._cancel_task = asyncio.ensure_future(self._watch(cancel_event))

    @property
    def done(self) -> bool:
        return self._future.done()

    def _on_message(self, data: Any) -> None:
        if self._future.done():
            return
        if self._accept is not None and not self._accept(data):
            return
        self._future.set_result(data)

    def _on_cancel(self, data: Any) -> None:
        if not self._future.done():
            self._future.set_exception(ExecutionCancelled(f"Wait on {self._topic} cancelled"))

    async def _watch(self, cancel_event: asyncio.Event) -> None:
        await cancel_event.wait()
        self._on_cancel(None)

    async def result(self) -> Any:
        try:
            return await self._future
        finally:
            self.close()

    def close(self) -> None:
        """Release subscriptions; an unresolved wait is cancelled. Idempotent."""
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []
        if self._cancel_task is not None:
            self._cancel_task.cancel()
            self._cancel_task = None
        if not self._future.done():
            self._future.cancel()
