# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
Change feed interface and the filter applied at its boundary.

Raw watch payloads are loosely typed. ``resolve_watch_event`` turns them into
``Notification`` objects once, so handlers only ever see typed snapshots;
anything of the wrong kind or shape is dropped here.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Dict, Optional

from pydantic import ValidationError

from ..core.exceptions import NotificationError
from ..core.models import Notification, QuotaLimit

logger = logging.getLogger("quotasync.feed")

WATCH_ADDED = "ADDED"
WATCH_MODIFIED = "MODIFIED"
WATCH_DELETED = "DELETED"
WATCH_BOOKMARK = "BOOKMARK"
WATCH_ERROR = "ERROR"


class ChangeFeed(ABC):
    """Source of Added/Removed notifications for Quota Limits."""

    @abstractmethod
    def stream(self, stop_event: asyncio.Event) -> AsyncIterator[Notification]:
        """Yield notifications until ``stop_event`` is set"""


def parse_quota_limit(obj: Any, kind: str) -> QuotaLimit:
    """
    Convert a raw object to a QuotaLimit.

    Raises:
        NotificationError: Wrong kind or malformed object
    """
    if not isinstance(obj, dict):
        raise NotificationError("Payload is not an object", payload=obj)
    if obj.get("kind") != kind:
        raise NotificationError(
            f"Payload kind {obj.get('kind')!r} is not {kind!r}", payload=obj
        )
    try:
        return QuotaLimit.from_object(obj)
    except (KeyError, TypeError, AttributeError, ValidationError) as e:
        raise NotificationError("Malformed Quota Limit payload", payload=obj, cause=e)


def resolve_watch_event(event: Dict[str, Any], kind: str) -> Optional[Notification]:
    """
    Resolve one watch event to a notification.

    ADDED and DELETED events for objects of ``kind`` become Added/Removed
    notifications. Everything else (MODIFIED, other kinds, malformed
    payloads) returns None.
    """
    event_type = event.get("type")
    if event_type not in (WATCH_ADDED, WATCH_DELETED):
        return None

    try:
        quota_limit = parse_quota_limit(event.get("object"), kind)
    except NotificationError as e:
        logger.debug(f"Dropping {event_type} event: {e.message}")
        return None

    logger.debug(
        f"Filter quota limit name({quota_limit.name}) namespace({quota_limit.namespace})"
    )
    if event_type == WATCH_ADDED:
        return Notification.added(quota_limit)
    return Notification.removed(quota_limit)
