# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
Reconciler

Decides the single correct action for one Quota Limit given the Hard Limits
currently present in its namespace:

    existing == 1  ->  UPDATE  (tracked kinds copied into limits.* / requests.*)
    existing == 0  ->  CREATE  (add path only; drift correction skips)
    existing  > 1  ->  SKIP    (ambiguous ownership, never guessed)

Nothing here talks to the substrate; callers apply the decision.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Sequence

from .models import ZERO_QUANTITY, HardLimit, QuotaLimit

HARD_LIMIT_PREFIX = "quota-"
TRACKED_RESOURCES = ("cpu", "memory")
QUALIFIERS = ("limits", "requests")


class Action(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    SKIP = "skip"


class Reason(str, Enum):
    UNCHANGED = "unchanged"
    ALLOCATION = "allocation"
    MISSING = "missing"
    AMBIGUOUS = "ambiguous"


@dataclass
class Decision:
    """Outcome of reconciling one Quota Limit"""

    action: Action
    reason: Reason
    target: Optional[HardLimit] = None

    @property
    def ambiguous(self) -> bool:
        return self.reason == Reason.AMBIGUOUS


def hard_limit_name(quota_name: str) -> str:
    """Name of the Hard Limit owned by ``quota_name``."""
    return HARD_LIMIT_PREFIX + quota_name


def qualified_entries(kind: str):
    return tuple(f"{qualifier}.{kind}" for qualifier in QUALIFIERS)


def default_hard_limit(quota_limit: QuotaLimit) -> HardLimit:
    """New Hard Limit for ``quota_limit`` with every tracked entry at zero."""
    hard: Dict[str, str] = {}
    for kind in TRACKED_RESOURCES:
        for entry in qualified_entries(kind):
            hard[entry] = ZERO_QUANTITY

    return HardLimit(
        namespace=quota_limit.namespace,
        name=hard_limit_name(quota_limit.name),
        hard=hard,
    )


def apply_allocation(hard_limit: HardLimit, allocated: Dict[str, str]) -> HardLimit:
    """
    Copy of ``hard_limit`` with the allocated tracked kinds written in.

    Kinds missing from ``allocated`` and kinds outside the tracked set leave
    the existing entries alone.
    """
    updated = hard_limit.model_copy(deep=True)
    for kind in TRACKED_RESOURCES:
        if kind not in allocated:
            continue
        for entry in qualified_entries(kind):
            updated.hard[entry] = allocated[kind]
    return updated


def reconcile_one(
    quota_limit: QuotaLimit,
    existing: Sequence[HardLimit],
    allow_create: bool = False,
) -> Decision:
    """
    Decide what to do for ``quota_limit``.

    Args:
        quota_limit: The accounting object being reconciled
        existing: All Hard Limits currently in its namespace
        allow_create: Whether a missing Hard Limit may be created

    Returns:
        Decision with the object to write, if any
    """
    count = len(existing)

    if count == 1:
        target = apply_allocation(existing[0], quota_limit.allocated)
        if target.hard == existing[0].hard:
            return Decision(Action.UPDATE, Reason.UNCHANGED, target)
        return Decision(Action.UPDATE, Reason.ALLOCATION, target)

    if count == 0:
        if allow_create:
            return Decision(
                Action.CREATE, Reason.MISSING, default_hard_limit(quota_limit)
            )
        return Decision(Action.SKIP, Reason.MISSING)

    return Decision(Action.SKIP, Reason.AMBIGUOUS)
