"""
emitter.py - Domain event fan-out.

Services publish changes through an Emitter. NullEmitter is used where no
live transport exists (precache, purge); ChannelEmitter pushes to the
WebSocket manager under a per-service channel name.
"""

import logging
from typing import TYPE_CHECKING, Any, Dict, Protocol

from marketcache.tasks import spawn_background

if TYPE_CHECKING:
    from marketcache.ws import WSManager

logger = logging.getLogger("emitter")


class Emitter(Protocol):
    def emit(self, event: str, payload: Dict[str, Any]) -> None:
        ...


class NullEmitter:
    """Accepts and drops every event."""

    def emit(self, event: str, payload: Dict[str, Any]) -> None:
        return None


class ChannelEmitter:
    """Broadcasts '<channel>:<event>' messages to connected WebSocket clients."""

    def __init__(self, ws: "WSManager", channel: str):
        self._ws = ws
        self.channel = channel

    def emit(self, event: str, payload: Dict[str, Any]) -> None:
        message_type = f"{self.channel}:{event}"
        spawn_background(self._ws.broadcast(message_type, payload), logger, message_type)


class ReorgReporter:
    """Reports out-of-range reorgs for a contract to subscribers."""

    def __init__(self, emitter: Emitter):
        self._emitter = emitter

    def emit_reorg(self, block_number: int, contract: str) -> None:
        logger.warning("Reorg out of confirmation range at block %d (%s)", block_number, contract)
        self._emitter.emit("reorg", {"block_number": block_number, "contracts": [contract]})
