# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
Event handlers for Quota Limit notifications.

Each handler touches exactly one namespace, re-reads its Hard Limits from the
substrate, and either writes once or does nothing. Substrate failures are
logged and reported through the returned outcome; nothing is retried here.
Running a handler again on the same (or stale) notification converges to the
same state.
"""

import logging
from enum import Enum

from ..core.exceptions import SubstrateError, SubstrateNotFoundError
from ..core.models import Notification, NotificationType
from ..core.reconciler import Action, reconcile_one
from ..substrate.base import SubstrateClient

logger = logging.getLogger("quotasync.handlers")


class HandlerOutcome(str, Enum):
    CREATED = "created"
    DELETED = "deleted"
    NOOP = "noop"
    AMBIGUOUS = "ambiguous"
    FAILED = "failed"


class EventHandlers:
    """Add/remove reactions for one substrate client."""

    def __init__(self, client: SubstrateClient):
        self.client = client

    async def dispatch(self, notification: Notification) -> HandlerOutcome:
        if notification.type == NotificationType.ADDED:
            return await self.on_quota_limit_added(notification)
        return await self.on_quota_limit_removed(notification)

    async def on_quota_limit_added(self, notification: Notification) -> HandlerOutcome:
        """Create the default Hard Limit if the namespace has none."""
        namespace, name = notification.namespace, notification.name

        try:
            existing = await self.client.list_hard_limits(namespace)
        except SubstrateError as e:
            logger.error(
                f"Failed to list resource quotas in {namespace} for queue {name}: {e}"
            )
            return HandlerOutcome.FAILED

        decision = reconcile_one(notification.snapshot, existing, allow_create=True)
        if decision.ambiguous:
            logger.warning(
                f"There are {len(existing)} quotas under namespace {namespace}, "
                f"queue {name}; leaving them alone"
            )
            return HandlerOutcome.AMBIGUOUS
        if decision.action != Action.CREATE:
            logger.debug(
                f"There are {len(existing)} quotas under namespace {namespace}, "
                f"queue {name}; nothing to create"
            )
            return HandlerOutcome.NOOP

        target = decision.target
        try:
            await self.client.create_hard_limit(namespace, target)
        except SubstrateError as e:
            logger.error(f"Failed to create resource quota {target.key}: {e}")
            return HandlerOutcome.FAILED

        logger.info(f"Created resource quota {target.key} for queue {name}")
        return HandlerOutcome.CREATED

    async def on_quota_limit_removed(
        self, notification: Notification
    ) -> HandlerOutcome:
        """Delete the namespace's Hard Limit if it is the only one."""
        namespace, name = notification.namespace, notification.name

        try:
            existing = await self.client.list_hard_limits(namespace)
        except SubstrateError as e:
            logger.error(
                f"Failed to list resource quotas in {namespace} for queue {name}: {e}"
            )
            return HandlerOutcome.FAILED

        if len(existing) == 0:
            logger.debug(f"No quota under namespace {namespace}, queue {name}")
            return HandlerOutcome.NOOP
        if len(existing) > 1:
            logger.warning(
                f"There are {len(existing)} quotas under namespace {namespace}, "
                f"queue {name}; not deleting any"
            )
            return HandlerOutcome.AMBIGUOUS

        target = existing[0]
        try:
            await self.client.delete_hard_limit(namespace, target.name)
        except SubstrateNotFoundError:
            logger.debug(f"Resource quota {target.key} already gone")
            return HandlerOutcome.NOOP
        except SubstrateError as e:
            logger.error(f"Failed to delete resource quota {target.key}: {e}")
            return HandlerOutcome.FAILED

        logger.info(f"Deleted resource quota {target.key} for queue {name}")
        return HandlerOutcome.DELETED
