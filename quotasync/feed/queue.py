# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""In-process change feed backed by an asyncio.Queue."""

import asyncio
from typing import AsyncIterator

from ..core.models import Notification
from .base import ChangeFeed


class QueueChangeFeed(ChangeFeed):
    """
    Delivers notifications published by the in-memory substrate.

    Duplicates are passed through as published; handlers are idempotent.
    """

    def __init__(self, poll_interval: float = 0.1):
        self._queue: asyncio.Queue = asyncio.Queue()
        self.poll_interval = poll_interval

    def publish_nowait(self, notification: Notification):
        self._queue.put_nowait(notification)

    async def publish(self, notification: Notification):
        await self._queue.put(notification)

    async def stream(self, stop_event: asyncio.Event) -> AsyncIterator[Notification]:
        while not stop_event.is_set():
            try:
                notification = await asyncio.wait_for(
                    self._queue.get(), timeout=self.poll_interval
                )
            except asyncio.TimeoutError:
                continue
            yield notification
