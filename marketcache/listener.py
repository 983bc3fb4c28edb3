"""
listener.py - Live event source wiring.

Only newEvent is interpreted here; confirmation and reorg signals are
forwarded untouched to the reporting emitters.
"""

import logging
from typing import Any

from marketcache.emitter import Emitter, ReorgReporter
from marketcache.processor import Processor, error_handler

logger = logging.getLogger("listener")


def wire_events(
    source: Any,
    process: Processor,
    confirmations: Emitter,
    reorgs: ReorgReporter,
    name: str,
    log: logging.Logger = logger,
) -> None:
    """Attach a contract's live signals to its processor and reporters."""
    source.on("newEvent", error_handler(process, log))

    def on_error(e: BaseException) -> None:
        log.error("Event source %s failed: %s", name, e, exc_info=e)

    def on_new_confirmation(data: Any) -> None:
        confirmations.emit("newConfirmation", data)

    def on_invalid_confirmation(data: Any) -> None:
        confirmations.emit("invalidConfirmation", data)

    def on_reorg_out_of_range(block_number: int) -> None:
        reorgs.emit_reorg(block_number, name)

    source.on("error", on_error)
    source.on("newConfirmation", on_new_confirmation)
    source.on("invalidConfirmation", on_invalid_confirmation)
    source.on("reorgOutOfRange", on_reorg_out_of_range)
    log.info("Listening on %s", name)
