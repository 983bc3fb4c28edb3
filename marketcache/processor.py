"""
processor.py - Event processor / dispatcher.

Routes each event to every handler that declares its name, running the
matched handlers concurrently. Unmatched events are ignored. Each handler's
writes are durable on their own: a failing handler does not undo the work
of handlers that already completed for the same event.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, FrozenSet, Iterable, Optional

from marketcache.errors import EventError
from marketcache.events import Event

logger = logging.getLogger("processor")

Processor = Callable[[Event], Awaitable[None]]


class Handler:
    """Base class for domain handlers. Subclasses set events and implement process()."""

    events: FrozenSet[str] = frozenset()

    async def process(self, event: Event, services: Any, deps: Any) -> None:
        raise NotImplementedError


def event_processor(
    handlers: Iterable[Handler],
    services: Any,
    deps: Any = None,
    transformer: Optional[Callable[[Event], Event]] = None,
) -> Processor:
    handlers = list(handlers)

    async def process(event: Event) -> None:
        if transformer is not None:
            event = transformer(event)

        matched = [h for h in handlers if event.event in h.events]
        if not matched:
            logger.debug("No handler for event %s", event.event)
            return

        results = await asyncio.gather(
            *(h.process(event, services, deps) for h in matched),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, EventError):
                raise result
            if isinstance(result, Exception):
                raise EventError(str(result), event.event) from result
            if isinstance(result, BaseException):
                raise result

    return process


def error_handler(process: Processor, log: logging.Logger) -> Processor:
    """Wrap a processor so failures are logged and the event stream keeps going."""

    async def guarded(event: Event) -> None:
        try:
            await process(event)
        except Exception:
            log.exception(
                "Failed to process %s (block=%s tx=%s)",
                event.event, event.block_number, event.transaction_hash,
            )

    return guarded
