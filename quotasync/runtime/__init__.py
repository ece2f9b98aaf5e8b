# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""Event handlers, drift correction, and the manager running both."""

from .drift import DriftCorrector, DriftReport
from .handlers import EventHandlers, HandlerOutcome
from .manager import QuotaManager, build_client, build_manager

__all__ = [
    "DriftCorrector",
    "DriftReport",
    "EventHandlers",
    "HandlerOutcome",
    "QuotaManager",
    "build_client",
    "build_manager",
]
