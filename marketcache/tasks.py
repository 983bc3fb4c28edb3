"""
tasks.py - Fire-and-forget background work with an error boundary.
"""

import asyncio
import logging
from typing import Awaitable, Optional, Set

logger = logging.getLogger("tasks")

# Strong references so pending tasks are not garbage collected mid-flight
_background: Set[asyncio.Task] = set()


async def _supervise(coro: Awaitable, log: logging.Logger, description: str):
    try:
        await coro
    except asyncio.CancelledError:
        log.debug("Background task cancelled: %s", description)
        raise
    except Exception:
        log.exception("Background task failed: %s", description)


def spawn_background(coro: Awaitable, log: Optional[logging.Logger] = None,
                     description: str = "") -> asyncio.Task:
    """Run coro without awaiting it. Failures are logged, never propagated."""
    task = asyncio.create_task(_supervise(coro, log or logger, description or repr(coro)))
    _background.add(task)
    task.add_done_callback(_background.discard)
    return task


async def periodic(interval: float, fn, log: Optional[logging.Logger] = None, name: str = ""):
    """Call fn() every interval seconds until cancelled, logging failures."""
    log = log or logger
    while True:
        await asyncio.sleep(interval)
        try:
            await fn()
        except Exception:
            log.exception("Error in periodic task %s", name)
