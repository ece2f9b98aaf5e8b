# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""Tests for change feed filtering and the watch-based feed"""

import asyncio
import json

import httpx
import pytest

from quotasync.core.models import (
    Notification,
    NotificationType,
    QuotaLimit,
    TombstoneSnapshot,
)
from quotasync.feed.base import resolve_watch_event
from quotasync.feed.kube import KubeChangeFeed
from quotasync.feed.queue import QueueChangeFeed
from quotasync.substrate.credentials import Credentials
from quotasync.substrate.kube import KubeSubstrateClient


def queue(name, namespace="ns1", version="1", allocated=None):
    return {
        "kind": "Queue",
        "metadata": {
            "name": name,
            "namespace": namespace,
            "resourceVersion": version,
        },
        "status": {"allocated": {"resources": allocated or {}}},
    }


def watch_lines(*events):
    return ("\n".join(json.dumps(e) for e in events) + "\n").encode()


async def take(feed, count, timeout=2.0):
    stop = asyncio.Event()
    stream = feed.stream(stop)
    got = []

    async def _collect():
        async for notification in stream:
            got.append(notification)
            if len(got) == count:
                return

    try:
        await asyncio.wait_for(_collect(), timeout=timeout)
    finally:
        stop.set()
        await stream.aclose()
    return got


async def drain(feed, seconds):
    """Run the feed for a fixed time and return everything it produced."""
    stop = asyncio.Event()
    got = []

    async def _collect():
        async for notification in feed.stream(stop):
            got.append(notification)

    task = asyncio.create_task(_collect())
    await asyncio.sleep(seconds)
    stop.set()
    await asyncio.wait_for(task, timeout=2.0)
    return got


class TestResolveWatchEvent:
    def test_added(self):
        notification = resolve_watch_event(
            {"type": "ADDED", "object": queue("q1", allocated={"cpu": "1"})}, "Queue"
        )

        assert notification.type == NotificationType.ADDED
        assert notification.namespace == "ns1"
        assert notification.name == "q1"
        assert isinstance(notification.snapshot, QuotaLimit)
        assert notification.snapshot.allocated == {"cpu": "1"}

    def test_deleted(self):
        notification = resolve_watch_event(
            {"type": "DELETED", "object": queue("q1")}, "Queue"
        )

        assert notification.type == NotificationType.REMOVED

    def test_other_kind_dropped(self):
        pod = {"kind": "Pod", "metadata": {"name": "p", "namespace": "ns1"}}

        assert resolve_watch_event({"type": "ADDED", "object": pod}, "Queue") is None

    def test_malformed_dropped(self):
        assert resolve_watch_event({"type": "ADDED", "object": "junk"}, "Queue") is None
        assert (
            resolve_watch_event(
                {"type": "ADDED", "object": {"kind": "Queue", "metadata": {}}}, "Queue"
            )
            is None
        )

    def test_modified_ignored(self):
        assert (
            resolve_watch_event({"type": "MODIFIED", "object": queue("q1")}, "Queue")
            is None
        )


class FakeApiServer:
    """
    Serves queue lists and watch streams from scripted responses.

    A watch reply is a body, a ready ``httpx.Response``, or an exception to
    raise. Once the script runs out every watch returns an empty stream.
    """

    def __init__(self, lists, watches):
        self.lists = list(lists)
        self.watches = list(watches)
        self.list_count = 0
        self.watch_versions = []

    def handler(self, request):
        if request.url.params.get("watch") == "true":
            self.watch_versions.append(request.url.params.get("resourceVersion"))
            reply = self.watches.pop(0) if self.watches else b""
            if isinstance(reply, Exception):
                raise reply
            if isinstance(reply, httpx.Response):
                return reply
            return httpx.Response(200, content=reply)
        self.list_count += 1
        items, version = self.lists.pop(0)
        return httpx.Response(
            200, json={"items": items, "metadata": {"resourceVersion": version}}
        )

    def client(self):
        return KubeSubstrateClient(
            Credentials(server="https://k8s.test"),
            transport=httpx.MockTransport(self.handler),
        )


@pytest.mark.asyncio
async def test_kube_feed_lists_then_watches():
    server = FakeApiServer(
        lists=[([queue("q1", version="10")], "10")],
        watches=[
            watch_lines(
                {"type": "ADDED", "object": queue("q2", "ns2", version="11")},
                {
                    "type": "ADDED",
                    "object": {
                        "kind": "Pod",
                        "metadata": {"name": "p", "namespace": "ns1"},
                    },
                },
                {"type": "MODIFIED", "object": queue("q1", version="12")},
                {"type": "DELETED", "object": queue("q1", version="13")},
            )
        ],
    )
    client = server.client()
    feed = KubeChangeFeed(client, backoff_seconds=0)

    got = await take(feed, 3)
    await client.aclose()

    assert [(n.type, n.namespace, n.name) for n in got] == [
        (NotificationType.ADDED, "ns1", "q1"),
        (NotificationType.ADDED, "ns2", "q2"),
        (NotificationType.REMOVED, "ns1", "q1"),
    ]
    assert server.watch_versions[0] == "10"


@pytest.mark.asyncio
async def test_kube_feed_relists_after_gone_with_tombstones():
    server = FakeApiServer(
        lists=[
            ([queue("q1", version="5"), queue("q2", "ns2", version="5")], "5"),
            ([queue("q2", "ns2", version="20")], "20"),
        ],
        watches=[
            watch_lines(
                {
                    "type": "ERROR",
                    "object": {"kind": "Status", "code": 410, "message": "too old"},
                }
            )
        ],
    )
    client = server.client()
    feed = KubeChangeFeed(client, backoff_seconds=0)

    got = await take(feed, 4)
    await client.aclose()

    assert [n.name for n in got[:2]] == ["q1", "q2"]
    removed = got[2]
    assert removed.type == NotificationType.REMOVED
    assert removed.name == "q1"
    assert isinstance(removed.snapshot, TombstoneSnapshot)
    assert removed.snapshot.last_known.name == "q1"
    assert got[3].type == NotificationType.ADDED
    assert got[3].name == "q2"


@pytest.mark.asyncio
async def test_queue_feed_delivers_in_order():
    feed = QueueChangeFeed(poll_interval=0.01)
    first = Notification.added(QuotaLimit(namespace="ns1", name="q1"))
    second = Notification.removed(QuotaLimit(namespace="ns1", name="q1"))
    feed.publish_nowait(first)
    await feed.publish(second)

    got = await take(feed, 2)

    assert got == [first, second]


def _gone():
    return httpx.Response(
        410,
        json={"kind": "Status", "code": 410, "reason": "Expired", "message": "too old"},
    )


@pytest.mark.asyncio
async def test_kube_feed_relists_when_watch_request_is_gone():
    server = FakeApiServer(
        lists=[
            ([queue("q1", version="5"), queue("q2", "ns2", version="5")], "5"),
            ([queue("q2", "ns2", version="20")], "20"),
        ],
        watches=[_gone()],
    )
    client = server.client()
    feed = KubeChangeFeed(client, backoff_seconds=0)

    got = await take(feed, 4)
    await client.aclose()

    assert server.list_count == 2
    assert server.watch_versions[0] == "5"
    assert got[2].type == NotificationType.REMOVED
    assert isinstance(got[2].snapshot, TombstoneSnapshot)
    assert got[2].name == "q1"
    assert (got[3].type, got[3].name) == (NotificationType.ADDED, "q2")


@pytest.mark.asyncio
async def test_kube_feed_reconnects_after_transport_error():
    server = FakeApiServer(
        lists=[([queue("q1", version="10")], "10")],
        watches=[
            httpx.ConnectError("connection refused"),
            watch_lines({"type": "ADDED", "object": queue("q2", "ns2", version="11")}),
        ],
    )
    client = server.client()
    feed = KubeChangeFeed(client, backoff_seconds=0.01)

    got = await take(feed, 2)
    await client.aclose()

    assert [n.name for n in got] == ["q1", "q2"]
    assert server.list_count == 1
    assert server.watch_versions[:2] == ["10", "10"]


@pytest.mark.asyncio
async def test_kube_feed_backs_off_between_ended_streams():
    server = FakeApiServer(lists=[([], "3")], watches=[])
    client = server.client()
    feed = KubeChangeFeed(client, backoff_seconds=0.1)

    got = await drain(feed, 0.35)
    await client.aclose()

    assert got == []
    assert server.list_count == 1
    assert 2 <= len(server.watch_versions) <= 5
    assert set(server.watch_versions) == {"3"}


@pytest.mark.asyncio
async def test_kube_feed_resumes_from_bookmark():
    server = FakeApiServer(
        lists=[([queue("q1", version="10")], "10")],
        watches=[
            watch_lines(
                {
                    "type": "BOOKMARK",
                    "object": {"kind": "Queue", "metadata": {"resourceVersion": "15"}},
                }
            ),
            watch_lines({"type": "ADDED", "object": queue("q2", "ns2", version="16")}),
        ],
    )
    client = server.client()
    feed = KubeChangeFeed(client, backoff_seconds=0)

    got = await take(feed, 2)
    await client.aclose()

    assert [n.name for n in got] == ["q1", "q2"]
    assert server.watch_versions[:2] == ["10", "15"]


@pytest.mark.asyncio
async def test_kube_feed_skips_malformed_list_items():
    bad_allocation = queue("broken")
    bad_allocation["status"]["allocated"]["resources"] = ["cpu"]
    nameless = {"kind": "Queue", "metadata": {"namespace": "ns1"}}
    server = FakeApiServer(
        lists=[([bad_allocation, nameless, "junk", queue("q1")], "7")],
        watches=[],
    )
    client = server.client()
    feed = KubeChangeFeed(client, backoff_seconds=0.05)

    got = await drain(feed, 0.1)
    await client.aclose()

    assert [(n.type, n.name) for n in got] == [(NotificationType.ADDED, "q1")]
    assert server.watch_versions[0] == "7"


@pytest.mark.asyncio
async def test_kube_feed_skips_non_object_watch_lines():
    server = FakeApiServer(
        lists=[([queue("q1", version="10")], "10")],
        watches=[
            b'[1, 2]\n"text"\n42\n'
            + watch_lines(
                {"type": "ADDED", "object": "not-an-object"},
                {"type": "ADDED", "object": queue("q2", "ns2", version="11")},
            )
        ],
    )
    client = server.client()
    feed = KubeChangeFeed(client, backoff_seconds=0)

    got = await take(feed, 2)
    await client.aclose()

    assert [n.name for n in got] == ["q1", "q2"]
