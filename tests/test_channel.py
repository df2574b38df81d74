"""MessageChannel pub/sub and Waiter suspension semantics."""

import asyncio

import pytest

from canvasflow.exceptions import ExecutionCancelled
from canvasflow.triggers.channel import MessageChannel, Topic


@pytest.mark.asyncio
async def test_publish_reaches_sync_and_async_subscribers():
    channel = MessageChannel()
    seen = []

    async def _async_cb(data):
        seen.append(("async", data))

    channel.subscribe(Topic.CHAT_MESSAGE, lambda d: seen.append(("sync", d)))
    channel.subscribe("wf:chat:message", _async_cb)
    await channel.publish(Topic.CHAT_MESSAGE, {"text": "hi"})
    assert seen == [("sync", {"text": "hi"}), ("async", {"text": "hi"})]


@pytest.mark.asyncio
async def test_failing_subscriber_is_isolated():
    channel = MessageChannel()
    seen = []

    def _boom(data):
        raise ValueError("nope")

    channel.subscribe(Topic.FORM_OPEN, _boom)
    channel.subscribe(Topic.FORM_OPEN, seen.append)
    await channel.publish(Topic.FORM_OPEN, 1)
    assert seen == [1]


def test_unsubscribe_and_count():
    channel = MessageChannel()
    unsubscribe = channel.subscribe(Topic.FORM_OPEN, print)
    channel.subscribe(Topic.CHAT_OPEN, print)
    assert channel.subscriber_count() == 2
    unsubscribe()
    unsubscribe()
    assert channel.subscriber_count(Topic.FORM_OPEN) == 0
    channel.clear()
    assert channel.subscriber_count() == 0


@pytest.mark.asyncio
async def test_wait_for_resolves_once():
    channel = MessageChannel()
    waiter = channel.expect(Topic.FORM_SUBMITTED)
    await channel.publish(Topic.FORM_SUBMITTED, {"values": ["first"]})
    await channel.publish(Topic.FORM_SUBMITTED, {"values": ["second"]})
    assert await waiter.result() == {"values": ["first"]}
    assert channel.subscriber_count() == 0


@pytest.mark.asyncio
async def test_accept_filters_payloads():
    channel = MessageChannel()
    waiter = channel.expect(Topic.CHAT_MESSAGE, accept=lambda d: bool(d and d.get("text")))
    await channel.publish(Topic.CHAT_MESSAGE, {"text": ""})
    assert not waiter.done
    await channel.publish(Topic.CHAT_MESSAGE, {"text": "hello"})
    assert await waiter.result() == {"text": "hello"}


@pytest.mark.asyncio
async def test_cancel_topic_raises():
    channel = MessageChannel()
    waiter = channel.expect(Topic.FORM_SUBMITTED, cancel_topics=[Topic.FORM_CANCEL])
    await channel.publish(Topic.FORM_CANCEL)
    with pytest.raises(ExecutionCancelled):
        await waiter.result()
    assert channel.subscriber_count() == 0


@pytest.mark.asyncio
async def test_cancel_event_releases_wait():
    channel = MessageChannel()
    cancel = asyncio.Event()
    task = asyncio.ensure_future(channel.wait_for(Topic.CHAT_MESSAGE, cancel_event=cancel))
    await asyncio.sleep(0)
    cancel.set()
    with pytest.raises(ExecutionCancelled):
        await asyncio.wait_for(task, timeout=1)


@pytest.mark.asyncio
async def test_already_set_event_cancels_immediately():
    channel = MessageChannel()
    cancel = asyncio.Event()
    cancel.set()
    with pytest.raises(ExecutionCancelled):
        await channel.wait_for(Topic.CHAT_MESSAGE, cancel_event=cancel)


@pytest.mark.asyncio
async def test_close_releases_subscriptions():
    channel = MessageChannel()
    waiter = channel.expect(Topic.FORM_SUBMITTED, cancel_topics=[Topic.FORM_CANCEL])
    assert channel.subscriber_count() == 2
    waiter.close()
    waiter.close()
    assert channel.subscriber_count() == 0
