"""
precache.py - Historical backfill driver.

Drains a contract's historical batches through the same processor used for
live events. Batches are handled strictly in the order the source yields
them, and the events inside a batch in on-chain order. Contracts of one
domain are precached back-to-back, never interleaved.
"""

import logging
from typing import Awaitable, Callable, Iterable, Optional, Protocol, Tuple

from marketcache.processor import Processor

logger = logging.getLogger("precache")

Progress = Callable[[dict, str], None]


class BatchSource(Protocol):
    def fetch(self):
        ...


def log_progress(batch: dict, name: str) -> None:
    events = batch.get("events", [])
    if "to_block" in batch:
        logger.info(
            "%s: processed %d event(s) in blocks %s-%s",
            name, len(events), batch.get("from_block"), batch["to_block"],
        )
    else:
        logger.info("%s: processed %d event(s)", name, len(events))


async def precache_contract(name: str, source: BatchSource, process: Processor,
                            progress: Optional[Progress] = None) -> int:
    """Run every historical event of one contract through process. Returns the event count."""
    progress = progress or log_progress
    total = 0
    async for batch in source.fetch():
        for event in batch.get("events", []):
            await process(event)
        total += len(batch.get("events", []))
        progress(batch, name)
    logger.info("Precache of %s finished: %d event(s)", name, total)
    return total


async def precache_domain(
    contracts: Iterable[Tuple[str, BatchSource, Processor]],
    progress: Optional[Progress] = None,
    remove_events_emitter: Optional[Callable[[str], Awaitable[None]]] = None,
) -> int:
    """Precache each (name, source, processor) in turn, then release the sources."""
    contracts = list(contracts)
    total = 0
    try:
        for name, source, process in contracts:
            total += await precache_contract(name, source, process, progress)
    finally:
        if remove_events_emitter is not None:
            for name, _, _ in contracts:
                await remove_events_emitter(name)
    return total
