# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""Substrate client interface."""

from abc import ABC, abstractmethod
from typing import List

from ..core.models import HardLimit, QuotaLimit


class SubstrateClient(ABC):
    """
    Read/write access to Quota Limits and Hard Limits.

    Every call goes to the source of truth; implementations keep no cache.
    Failures are raised as ``SubstrateError`` subclasses. ``update_hard_limit``
    must be conditional on ``HardLimit.resource_version`` and raise
    ``SubstrateConflictError`` when the stored object has moved on.
    """

    @abstractmethod
    async def list_quota_limits(self) -> List[QuotaLimit]:
        """All Quota Limits across all namespaces"""

    @abstractmethod
    async def list_hard_limits(self, namespace: str) -> List[HardLimit]:
        """All Hard Limits in ``namespace``"""

    @abstractmethod
    async def get_hard_limit(self, namespace: str, name: str) -> HardLimit:
        """One Hard Limit by name"""

    @abstractmethod
    async def create_hard_limit(
        self, namespace: str, hard_limit: HardLimit
    ) -> HardLimit:
        """Create ``hard_limit`` and return the stored object"""

    @abstractmethod
    async def update_hard_limit(
        self, namespace: str, hard_limit: HardLimit
    ) -> HardLimit:
        """Conditionally replace ``hard_limit`` and return the stored object"""

    @abstractmethod
    async def delete_hard_limit(self, namespace: str, name: str) -> None:
        """Delete a Hard Limit by name"""

    async def aclose(self) -> None:
        """Release the underlying connection"""

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()
