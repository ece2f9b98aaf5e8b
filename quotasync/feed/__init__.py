# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""Change feeds delivering Quota Limit notifications."""

from .base import ChangeFeed, parse_quota_limit, resolve_watch_event
from .kube import KubeChangeFeed
from .queue import QueueChangeFeed

__all__ = [
    "ChangeFeed",
    "KubeChangeFeed",
    "QueueChangeFeed",
    "parse_quota_limit",
    "resolve_watch_event",
]
