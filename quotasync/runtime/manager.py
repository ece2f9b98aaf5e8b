# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
Quota Manager

Owns the substrate connection for the whole process lifetime and runs two
independent asyncio tasks:

    ┌──────────────────────────┐     ┌──────────────────────────┐
    │  feed consumer           │     │  drift-correction loop   │
    │  (one notification at a  │     │  (full pass every        │
    │   time -> EventHandlers) │     │   resync period)         │
    └────────────┬─────────────┘     └────────────┬─────────────┘
                 │                                │
                 └────────────┬───────────────────┘
                              ▼
                      SubstrateClient

The tasks are not coordinated; conditional updates on resourceVersion stop a
stale write from landing. One ``asyncio.Event`` stops both.
"""

import asyncio
import logging
import signal
import sys
import time
from typing import Dict, List, Optional

from ..core.config import QuotaSyncConfig
from ..core.models import Notification
from ..core.waiting import sleep_or_stop
from ..feed.base import ChangeFeed
from ..feed.kube import KubeChangeFeed
from ..substrate.base import SubstrateClient
from ..substrate.credentials import resolve_credentials
from ..substrate.kube import KubeSubstrateClient
from .drift import DriftCorrector
from .handlers import EventHandlers, HandlerOutcome

logger = logging.getLogger("quotasync.manager")


class QuotaManager:
    """Keeps Hard Limits in line with Quota Limits until stopped."""

    def __init__(
        self,
        client: SubstrateClient,
        feed: ChangeFeed,
        resync_period_seconds: float = 0.5,
        create_missing: bool = False,
        feed_restart_seconds: float = 1.0,
    ):
        self.client = client
        self.feed = feed
        self.feed_restart_seconds = feed_restart_seconds
        self.feed_restarts = 0
        self.handlers = EventHandlers(client)
        self.drift = DriftCorrector(
            client,
            period_seconds=resync_period_seconds,
            create_missing=create_missing,
        )

        self.stop_event = asyncio.Event()
        self.outcomes: Dict[HandlerOutcome, int] = {o: 0 for o in HandlerOutcome}

        self._running = False
        self._started_at: Optional[float] = None
        self._tasks: List[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return self._running

    async def handle(self, notification: Notification) -> HandlerOutcome:
        outcome = await self.handlers.dispatch(notification)
        self.outcomes[outcome] += 1
        return outcome

    async def _consume_feed(self):
        logger.info("Watching quota limits")
        while not self.stop_event.is_set():
            try:
                async for notification in self.feed.stream(self.stop_event):
                    try:
                        await self.handle(notification)
                    except Exception as e:
                        logger.error(
                            f"Handler error for {notification.type.value} "
                            f"{notification.namespace}/{notification.name}: {e}",
                            exc_info=True,
                        )
            except Exception as e:
                self.feed_restarts += 1
                logger.error(f"Quota limit feed crashed: {e}", exc_info=True)
            else:
                if not self.stop_event.is_set():
                    self.feed_restarts += 1
                    logger.error("Quota limit feed ended unexpectedly")

            if await sleep_or_stop(self.stop_event, self.feed_restart_seconds):
                break
            logger.warning("Restarting quota limit feed")
        logger.info("Stopped watching quota limits")

    async def start(self):
        """Start the feed consumer and the drift loop"""
        if self._running:
            return

        logger.info("Quota manager starting...")
        self._running = True
        self._started_at = time.time()
        self.stop_event.clear()

        if not self.drift.create_missing:
            logger.info(
                "create_missing is off: a Hard Limit whose creation failed is "
                "not recreated by drift correction"
            )

        self._tasks = [
            asyncio.create_task(self._consume_feed(), name="quotasync-feed"),
            asyncio.create_task(
                self.drift.run(self.stop_event), name="quotasync-drift"
            ),
        ]
        logger.info("Quota manager started")

    async def stop(self):
        """Signal both tasks to stop, wait for them, close the client"""
        if not self._running:
            return

        logger.info("Quota manager stopping...")
        self._running = False
        self.stop_event.set()

        # The feed may be blocked on a network read; the drift loop exits on
        # the event between passes.
        for task in self._tasks:
            if task.get_name() == "quotasync-feed":
                task.cancel()

        results = await asyncio.gather(*self._tasks, return_exceptions=True)
        for task, result in zip(self._tasks, results):
            if isinstance(result, Exception) and not isinstance(
                result, asyncio.CancelledError
            ):
                logger.error(f"Task {task.get_name()} ended with error: {result}")
        self._tasks = []

        await self.client.aclose()
        logger.info("Quota manager stopped")

    async def run_forever(self):
        """Start, then block until the stop event is set"""
        await self.start()
        try:
            await self.stop_event.wait()
        finally:
            await self.stop()

    def request_stop(self):
        self.stop_event.set()

    def install_signal_handlers(self):
        """Set the stop event on SIGINT/SIGTERM"""
        if sys.platform == "win32":
            return
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, self.request_stop)

    def get_status(self) -> Dict:
        return {
            "running": self._running,
            "uptime_s": (time.time() - self._started_at) if self._started_at else 0,
            "drift_passes": self.drift.passes,
            "feed_restarts": self.feed_restarts,
            "last_drift": self.drift.last_report.to_dict()
            if self.drift.last_report
            else None,
            "notifications": {o.value: n for o, n in self.outcomes.items()},
        }


def build_client(config: QuotaSyncConfig) -> KubeSubstrateClient:
    """
    Connect to the configured API server.

    Raises:
        CredentialsError: No usable server/credentials
    """
    credentials = resolve_credentials(config.substrate)
    logger.info(f"Using API server {credentials.server}")
    return KubeSubstrateClient(credentials, config.substrate)


def build_manager(
    config: QuotaSyncConfig, client: Optional[KubeSubstrateClient] = None
) -> QuotaManager:
    """Wire a manager against a Kubernetes API server."""
    client = client or build_client(config)
    feed = KubeChangeFeed(
        client,
        kind=config.substrate.quota_kind,
        timeout_seconds=config.manager.watch_timeout_seconds,
        backoff_seconds=config.manager.watch_backoff_seconds,
    )
    return QuotaManager(
        client,
        feed,
        resync_period_seconds=config.manager.resync_period_seconds,
        create_missing=config.manager.create_missing,
        feed_restart_seconds=config.manager.watch_backoff_seconds,
    )
