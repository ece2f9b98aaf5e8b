# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
In-memory substrate.

Holds Quota Limits and Hard Limits in dictionaries and enforces the same
rules as the API server that matter to reconciliation:

- every write bumps a global resource version
- updates are rejected with SubstrateConflictError on a stale version
- creates are rejected with SubstrateAlreadyExistsError on a name clash

Quota Limit lifecycle methods (``add_quota_limit`` etc.) publish Added/Removed
notifications to an attached ``QueueChangeFeed``, the way a watch would.
Failures can be injected per operation for exercising error paths.
"""

import itertools
import logging
from typing import Dict, List, Optional, Tuple

from ..core.exceptions import (
    SubstrateAlreadyExistsError,
    SubstrateConflictError,
    SubstrateError,
    SubstrateNotFoundError,
)
from ..core.models import HardLimit, Notification, QuotaLimit
from .base import SubstrateClient

logger = logging.getLogger("quotasync.substrate.memory")

Key = Tuple[str, str]


class InMemorySubstrate(SubstrateClient):
    """Substrate client over process-local storage."""

    def __init__(self, feed=None):
        self.quota_limits: Dict[Key, QuotaLimit] = {}
        self.hard_limits: Dict[Key, HardLimit] = {}
        self.feed = feed
        self.calls: List[Tuple[str, Optional[str]]] = []

        self._versions = itertools.count(1)
        # (operation, namespace or None for any) -> errors to raise, in order
        self._failures: Dict[Tuple[str, Optional[str]], List[Exception]] = {}

    # =========================================================================
    # Failure injection
    # =========================================================================

    def fail_next(
        self,
        operation: str,
        error: Optional[Exception] = None,
        namespace: Optional[str] = None,
        times: int = 1,
    ):
        """
        Make the next ``times`` calls of ``operation`` raise ``error``.

        Args:
            operation: Method name, e.g. "update_hard_limit"
            error: Exception to raise (SubstrateError by default)
            namespace: Only fail calls for this namespace
            times: Number of calls to fail
        """
        error = error or SubstrateError(f"injected {operation} failure")
        self._failures.setdefault((operation, namespace), []).extend([error] * times)

    def _record(self, operation: str, namespace: Optional[str] = None):
        self.calls.append((operation, namespace))
        for key in ((operation, namespace), (operation, None)):
            pending = self._failures.get(key)
            if pending:
                raise pending.pop(0)

    def _next_version(self) -> str:
        return str(next(self._versions))

    # =========================================================================
    # Quota Limit lifecycle (driven by tests / the workload manager)
    # =========================================================================

    def add_quota_limit(
        self, namespace: str, name: str, allocated: Optional[Dict[str, str]] = None
    ) -> QuotaLimit:
        quota = QuotaLimit(
            namespace=namespace,
            name=name,
            allocated=allocated or {},
            resource_version=self._next_version(),
        )
        self.quota_limits[(namespace, name)] = quota
        self._publish(Notification.added(quota))
        return quota.model_copy(deep=True)

    def set_allocation(
        self, namespace: str, name: str, allocated: Dict[str, str]
    ) -> QuotaLimit:
        quota = self.quota_limits[(namespace, name)]
        quota = quota.model_copy(
            update={
                "allocated": {str(k): str(v) for k, v in allocated.items()},
                "resource_version": self._next_version(),
            }
        )
        self.quota_limits[(namespace, name)] = quota
        return quota.model_copy(deep=True)

    def remove_quota_limit(self, namespace: str, name: str) -> QuotaLimit:
        quota = self.quota_limits.pop((namespace, name))
        self._publish(Notification.removed(quota))
        return quota

    def _publish(self, notification: Notification):
        if self.feed is not None:
            self.feed.publish_nowait(notification)

    # =========================================================================
    # SubstrateClient
    # =========================================================================

    async def list_quota_limits(self) -> List[QuotaLimit]:
        self._record("list_quota_limits")
        return [q.model_copy(deep=True) for q in self.quota_limits.values()]

    async def list_hard_limits(self, namespace: str) -> List[HardLimit]:
        self._record("list_hard_limits", namespace)
        return [
            h.model_copy(deep=True)
            for (ns, _), h in sorted(self.hard_limits.items())
            if ns == namespace
        ]

    async def get_hard_limit(self, namespace: str, name: str) -> HardLimit:
        self._record("get_hard_limit", namespace)
        stored = self.hard_limits.get((namespace, name))
        if stored is None:
            raise SubstrateNotFoundError(
                f"resourcequota {namespace}/{name} not found",
                namespace=namespace,
                name=name,
                status_code=404,
            )
        return stored.model_copy(deep=True)

    async def create_hard_limit(
        self, namespace: str, hard_limit: HardLimit
    ) -> HardLimit:
        self._record("create_hard_limit", namespace)
        key = (namespace, hard_limit.name)
        if key in self.hard_limits:
            raise SubstrateAlreadyExistsError(
                f"resourcequota {namespace}/{hard_limit.name} already exists",
                namespace=namespace,
                name=hard_limit.name,
                status_code=409,
            )
        stored = hard_limit.model_copy(
            deep=True,
            update={"namespace": namespace, "resource_version": self._next_version()},
        )
        self.hard_limits[key] = stored
        return stored.model_copy(deep=True)

    async def update_hard_limit(
        self, namespace: str, hard_limit: HardLimit
    ) -> HardLimit:
        self._record("update_hard_limit", namespace)
        key = (namespace, hard_limit.name)
        stored = self.hard_limits.get(key)
        if stored is None:
            raise SubstrateNotFoundError(
                f"resourcequota {namespace}/{hard_limit.name} not found",
                namespace=namespace,
                name=hard_limit.name,
                status_code=404,
            )
        if hard_limit.resource_version != stored.resource_version:
            raise SubstrateConflictError(
                f"resourcequota {namespace}/{hard_limit.name} was modified: "
                f"have version {hard_limit.resource_version}, "
                f"stored {stored.resource_version}",
                namespace=namespace,
                name=hard_limit.name,
                status_code=409,
            )
        updated = hard_limit.model_copy(
            deep=True,
            update={"namespace": namespace, "resource_version": self._next_version()},
        )
        self.hard_limits[key] = updated
        return updated.model_copy(deep=True)

    async def delete_hard_limit(self, namespace: str, name: str) -> None:
        self._record("delete_hard_limit", namespace)
        if self.hard_limits.pop((namespace, name), None) is None:
            raise SubstrateNotFoundError(
                f"resourcequota {namespace}/{name} not found",
                namespace=namespace,
                name=name,
                status_code=404,
            )

    # =========================================================================
    # Direct storage access (operator actions outside the manager)
    # =========================================================================

    def put_hard_limit(self, hard_limit: HardLimit) -> HardLimit:
        """Store a Hard Limit as if an operator had created it"""
        stored = hard_limit.model_copy(
            deep=True, update={"resource_version": self._next_version()}
        )
        self.hard_limits[(stored.namespace, stored.name)] = stored
        return stored.model_copy(deep=True)

    def hard_limits_in(self, namespace: str) -> List[HardLimit]:
        return [
            h.model_copy(deep=True)
            for (ns, _), h in sorted(self.hard_limits.items())
            if ns == namespace
        ]
