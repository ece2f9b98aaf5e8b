# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
End-to-end scenarios: queue created, allocated, deleted.

Runs once step by step and once through the manager with both tasks live.
"""

import asyncio

import pytest

from quotasync.core.models import Notification
from quotasync.feed.queue import QueueChangeFeed
from quotasync.runtime.drift import DriftCorrector
from quotasync.runtime.handlers import EventHandlers, HandlerOutcome
from quotasync.runtime.manager import QuotaManager
from quotasync.substrate.memory import InMemorySubstrate

ZEROS = {
    "limits.cpu": "0",
    "requests.cpu": "0",
    "limits.memory": "0",
    "requests.memory": "0",
}


async def eventually(predicate, timeout=2.0, interval=0.01):
    deadline = asyncio.get_running_loop().time() + timeout
    while asyncio.get_running_loop().time() < deadline:
        if predicate():
            return
        await asyncio.sleep(interval)
    assert predicate(), "condition not reached before timeout"


@pytest.mark.asyncio
async def test_lifecycle_step_by_step():
    substrate = InMemorySubstrate()
    handlers = EventHandlers(substrate)
    drift = DriftCorrector(substrate)

    quota = substrate.add_quota_limit("ns1", "q1")
    assert (
        await handlers.on_quota_limit_added(Notification.added(quota))
        == HandlerOutcome.CREATED
    )
    [hard_limit] = substrate.hard_limits_in("ns1")
    assert hard_limit.name == "quota-q1"
    assert hard_limit.hard == ZEROS

    substrate.set_allocation("ns1", "q1", {"cpu": 2})
    await drift.run_once()
    [hard_limit] = substrate.hard_limits_in("ns1")
    assert hard_limit.hard == {**ZEROS, "limits.cpu": "2", "requests.cpu": "2"}

    removed = substrate.remove_quota_limit("ns1", "q1")
    assert (
        await handlers.on_quota_limit_removed(Notification.removed(removed))
        == HandlerOutcome.DELETED
    )
    assert substrate.hard_limits_in("ns1") == []


@pytest.mark.asyncio
async def test_lifecycle_through_manager():
    feed = QueueChangeFeed(poll_interval=0.01)
    substrate = InMemorySubstrate(feed=feed)
    manager = QuotaManager(substrate, feed, resync_period_seconds=0.01)

    await manager.start()
    try:
        substrate.add_quota_limit("ns1", "q1")
        await eventually(lambda: len(substrate.hard_limits_in("ns1")) == 1)
        assert substrate.hard_limits_in("ns1")[0].hard == ZEROS

        substrate.set_allocation("ns1", "q1", {"cpu": "2"})
        await eventually(
            lambda: substrate.hard_limits_in("ns1")[0].hard["limits.cpu"] == "2"
        )
        hard = substrate.hard_limits_in("ns1")[0].hard
        assert hard["requests.cpu"] == "2"
        assert hard["limits.memory"] == "0"
        assert hard["requests.memory"] == "0"

        substrate.remove_quota_limit("ns1", "q1")
        await eventually(lambda: substrate.hard_limits_in("ns1") == [])
    finally:
        await manager.stop()

    assert not manager.running
    status = manager.get_status()
    assert status["notifications"]["created"] == 1
    assert status["notifications"]["deleted"] == 1
    assert status["drift_passes"] >= 1


@pytest.mark.asyncio
async def test_duplicate_notifications_converge():
    feed = QueueChangeFeed(poll_interval=0.01)
    substrate = InMemorySubstrate(feed=feed)
    manager = QuotaManager(substrate, feed, resync_period_seconds=0.01)

    quota = substrate.add_quota_limit("ns1", "q1", {"memory": "4Gi"})
    await feed.publish(Notification.added(quota))
    await feed.publish(Notification.added(quota))

    await manager.start()
    try:
        await eventually(lambda: sum(manager.outcomes.values()) == 3)
        await eventually(
            lambda: substrate.hard_limits_in("ns1")
            and substrate.hard_limits_in("ns1")[0].hard["limits.memory"] == "4Gi"
        )
    finally:
        await manager.stop()

    assert len(substrate.hard_limits_in("ns1")) == 1
    assert manager.outcomes[HandlerOutcome.CREATED] == 1
    assert manager.outcomes[HandlerOutcome.NOOP] == 2


@pytest.mark.asyncio
async def test_stop_is_idempotent():
    feed = QueueChangeFeed(poll_interval=0.01)
    manager = QuotaManager(InMemorySubstrate(feed=feed), feed)

    await manager.start()
    await manager.stop()
    await manager.stop()

    assert not manager.running


class BrokenOnceFeed(QueueChangeFeed):
    """First stream raises or ends early, later streams behave normally."""

    def __init__(self, first="raise"):
        super().__init__(poll_interval=0.01)
        self.first = first
        self.streams = 0

    async def stream(self, stop_event):
        self.streams += 1
        if self.streams == 1:
            if self.first == "raise":
                raise RuntimeError("watch connection torn down")
            return
        async for notification in super().stream(stop_event):
            yield notification


@pytest.mark.asyncio
@pytest.mark.parametrize("first", ["raise", "end"])
async def test_manager_restarts_a_dead_feed(first):
    feed = BrokenOnceFeed(first)
    substrate = InMemorySubstrate(feed=feed)
    manager = QuotaManager(
        substrate, feed, resync_period_seconds=0.01, feed_restart_seconds=0.01
    )
    substrate.add_quota_limit("ns1", "q1")

    await manager.start()
    try:
        await eventually(lambda: manager.outcomes[HandlerOutcome.CREATED] == 1)
    finally:
        await manager.stop()

    assert feed.streams == 2
    assert manager.feed_restarts == 1
    assert manager.get_status()["feed_restarts"] == 1
    assert [h.name for h in substrate.hard_limits_in("ns1")] == ["quota-q1"]
