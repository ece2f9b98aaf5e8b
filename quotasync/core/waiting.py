# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

import asyncio


async def sleep_or_stop(stop_event: asyncio.Event, seconds: float) -> bool:
    """
    Sleep for ``seconds`` or until ``stop_event`` is set.

    Returns:
        True if the stop event was set
    """
    if seconds <= 0:
        await asyncio.sleep(0)
        return stop_event.is_set()
    try:
        await asyncio.wait_for(stop_event.wait(), timeout=seconds)
    except asyncio.TimeoutError:
        pass
    return stop_event.is_set()
