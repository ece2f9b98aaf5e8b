# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
Watch-based change feed for Quota Limits.

List, then watch from the list's resourceVersion. On an expired version
(410 Gone, in the stream or on the watch request itself) relist: every
current object is re-announced as Added, and every previously seen object
that is now absent is announced as Removed with a tombstone snapshot.
Streams that fail or simply end are re-opened after a backoff.
"""

import asyncio
import logging
from contextlib import aclosing
from typing import Any, AsyncIterator, Dict, Optional, Tuple

from ..core.exceptions import SubstrateError
from ..core.models import Notification, QuotaLimit, TombstoneSnapshot
from ..core.waiting import sleep_or_stop
from ..substrate.kube import KubeSubstrateClient
from .base import (
    WATCH_BOOKMARK,
    WATCH_DELETED,
    WATCH_ERROR,
    ChangeFeed,
    resolve_watch_event,
)

logger = logging.getLogger("quotasync.feed.kube")


class KubeChangeFeed(ChangeFeed):
    def __init__(
        self,
        client: KubeSubstrateClient,
        kind: Optional[str] = None,
        timeout_seconds: int = 300,
        backoff_seconds: float = 1.0,
    ):
        self.client = client
        self.kind = kind or client.config.quota_kind
        self.timeout_seconds = timeout_seconds
        self.backoff_seconds = backoff_seconds

        self._resource_version: Optional[str] = None
        # key -> last seen snapshot, only used to build tombstones on relist
        self._known: Dict[str, QuotaLimit] = {}

    async def _relist(self):
        items, version = await self.client.list_quota_limits_with_version()
        current = {q.key: q for q in items}

        removed = []
        for key, last in self._known.items():
            if key not in current:
                removed.append(
                    Notification.removed(
                        TombstoneSnapshot(
                            namespace=last.namespace, name=last.name, last_known=last
                        )
                    )
                )

        self._known = current
        self._resource_version = version
        logger.debug(
            f"Relisted {len(items)} quota limits at resourceVersion {version}"
        )
        return removed + [Notification.added(q) for q in items]

    def _apply(self, event: Dict[str, Any]) -> Tuple[bool, Optional[Notification]]:
        """
        Track one watch event.

        Returns:
            ``(relist, notification)``; relist is True on a watch ERROR
        """
        event_type = event.get("type")
        obj = event.get("object")
        if not isinstance(obj, dict):
            obj = {}

        if event_type == WATCH_ERROR:
            logger.info(
                f"Watch error {obj.get('code')}: {obj.get('message', '')}; relisting"
            )
            # 410 Gone and anything else unknown both restart from a list
            self._resource_version = None
            return True, None

        metadata = obj.get("metadata")
        if isinstance(metadata, dict) and metadata.get("resourceVersion"):
            self._resource_version = metadata["resourceVersion"]
        if event_type == WATCH_BOOKMARK:
            return False, None

        notification = resolve_watch_event(event, self.kind)
        if notification is None:
            return False, None

        key = f"{notification.namespace}/{notification.name}"
        if event_type == WATCH_DELETED:
            self._known.pop(key, None)
        else:
            self._known[key] = notification.snapshot
        return False, notification

    async def stream(self, stop_event: asyncio.Event) -> AsyncIterator[Notification]:
        while not stop_event.is_set():
            try:
                if self._resource_version is None:
                    for notification in await self._relist():
                        yield notification

                events = self.client.watch_quota_limits(
                    self._resource_version, self.timeout_seconds
                )
                async with aclosing(events):
                    async for event in events:
                        if stop_event.is_set():
                            return
                        relist, notification = self._apply(event)
                        if relist:
                            break
                        if notification is not None:
                            yield notification

                logger.debug("Quota limit watch ended; reconnecting")

            except SubstrateError as e:
                logger.warning(f"Quota limit watch failed: {e}")
                # A rejected watch request (410 Gone, other 4xx) cannot succeed
                # with the same resourceVersion
                if e.status_code is not None and 400 <= e.status_code < 500:
                    self._resource_version = None

            if await sleep_or_stop(stop_event, self.backoff_seconds):
                return
