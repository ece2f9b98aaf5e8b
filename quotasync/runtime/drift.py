# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
Drift-correction loop.

Every period: list all Quota Limits, then for each one re-read the Hard
Limits of its namespace and re-apply the reconciler's update. A failed
Quota Limit listing abandons the tick; a failure in one namespace is logged
and the rest of the batch carries on. The next tick starts from scratch, so
transient failures and version conflicts heal within one period.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from ..core.exceptions import SubstrateConflictError, SubstrateError
from ..core.models import QuotaLimit
from ..core.reconciler import Action, Reason, reconcile_one
from ..core.waiting import sleep_or_stop
from ..substrate.base import SubstrateClient

logger = logging.getLogger("quotasync.drift")


@dataclass
class DriftReport:
    """Result of one drift-correction pass"""

    aborted: bool = False
    updated: int = 0
    unchanged: int = 0
    created: int = 0
    skipped: int = 0
    failed: int = 0
    failed_namespaces: List[str] = field(default_factory=list)
    duration_s: float = 0.0

    def to_dict(self) -> Dict:
        return {
            "aborted": self.aborted,
            "updated": self.updated,
            "unchanged": self.unchanged,
            "created": self.created,
            "skipped": self.skipped,
            "failed": self.failed,
            "failed_namespaces": list(self.failed_namespaces),
            "duration_s": round(self.duration_s, 3),
        }


class DriftCorrector:
    """Periodic full re-scan keeping every Hard Limit in line."""

    def __init__(
        self,
        client: SubstrateClient,
        period_seconds: float = 0.5,
        create_missing: bool = False,
    ):
        self.client = client
        self.period_seconds = period_seconds
        self.create_missing = create_missing

        self.passes = 0
        self.last_report: Optional[DriftReport] = None

    async def run_once(self) -> DriftReport:
        """Run one pass over all Quota Limits."""
        report = DriftReport()
        started = time.monotonic()

        try:
            quota_limits = await self.client.list_quota_limits()
        except SubstrateError as e:
            logger.error(f"Fail to fetch all queue info: {e}")
            report.aborted = True
        else:
            for quota_limit in quota_limits:
                await self._reconcile(quota_limit, report)

        report.duration_s = time.monotonic() - started
        self.passes += 1
        self.last_report = report
        return report

    async def _reconcile(self, quota_limit: QuotaLimit, report: DriftReport):
        namespace = quota_limit.namespace

        try:
            existing = await self.client.list_hard_limits(namespace)
        except SubstrateError as e:
            logger.error(
                f"Failed to list resource quotas in {namespace} "
                f"for queue {quota_limit.name}: {e}"
            )
            report.failed += 1
            report.failed_namespaces.append(namespace)
            return

        decision = reconcile_one(
            quota_limit, existing, allow_create=self.create_missing
        )

        if decision.action == Action.SKIP:
            if decision.ambiguous:
                logger.warning(
                    f"There are {len(existing)} quotas under namespace {namespace}, "
                    f"queue {quota_limit.name}; skipping"
                )
            else:
                logger.debug(
                    f"No quota under namespace {namespace}, "
                    f"queue {quota_limit.name}; skipping"
                )
            report.skipped += 1
            return

        if decision.reason == Reason.UNCHANGED:
            report.unchanged += 1
            return

        target = decision.target
        try:
            if decision.action == Action.CREATE:
                await self.client.create_hard_limit(namespace, target)
            else:
                await self.client.update_hard_limit(namespace, target)
        except SubstrateConflictError as e:
            logger.warning(f"Resource quota {target.key} changed underneath us: {e}")
            report.failed += 1
            report.failed_namespaces.append(namespace)
            return
        except SubstrateError as e:
            logger.error(
                f"Failed to {decision.action.value} resource quota {target.key}: {e}"
            )
            report.failed += 1
            report.failed_namespaces.append(namespace)
            return

        if decision.action == Action.CREATE:
            logger.info(f"Created missing resource quota {target.key}")
            report.created += 1
        else:
            logger.debug(f"Updated resource quota {target.key}: {target.hard}")
            report.updated += 1

    async def run(self, stop_event: asyncio.Event):
        """Run a pass now and then every period until ``stop_event`` is set."""
        logger.info(f"Drift correction running every {self.period_seconds}s")
        while not stop_event.is_set():
            try:
                await self.run_once()
            except Exception as e:
                logger.error(f"Drift correction pass crashed: {e}", exc_info=True)
            if await sleep_or_stop(stop_event, self.period_seconds):
                break
        logger.info("Drift correction stopped")
