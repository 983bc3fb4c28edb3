"""
ws.py - WebSocket fan-out of domain events to live subscribers.
"""

import asyncio
import json
import logging
import time
from typing import Any, List

from fastapi import WebSocket, WebSocketDisconnect

logger = logging.getLogger("ws")

MAX_WS_CLIENTS = 200
SEND_TIMEOUT = 2.0


class WSManager:
    def __init__(self, max_clients: int = MAX_WS_CLIENTS):
        self._clients: List[WebSocket] = []
        self._lock = asyncio.Lock()
        self._max_clients = max_clients

    @property
    def client_count(self) -> int:
        return len(self._clients)

    async def connect(self, ws: WebSocket) -> bool:
        await ws.accept()
        async with self._lock:
            if len(self._clients) >= self._max_clients:
                logger.warning("WebSocket capacity reached (%d)", self._max_clients)
                await ws.close(code=1013, reason="Server overloaded")
                return False
            self._clients.append(ws)
            total = len(self._clients)
        logger.info("WebSocket subscriber connected (%d total)", total)
        return True

    async def disconnect(self, ws: WebSocket):
        async with self._lock:
            if ws in self._clients:
                self._clients.remove(ws)
            total = len(self._clients)
        logger.info("WebSocket subscriber disconnected (%d total)", total)

    async def broadcast(self, event_type: str, data: Any):
        """Send {type, data, ts} to every subscriber, dropping the ones that fail."""
        if not self._clients:
            return
        msg = json.dumps({"type": event_type, "data": data, "ts": time.time()}, default=str)
        async with self._lock:
            clients = list(self._clients)
        stale: List[WebSocket] = []
        await asyncio.gather(*(self._safe_send(ws, msg, stale) for ws in clients))
        if stale:
            async with self._lock:
                for ws in stale:
                    if ws in self._clients:
                        self._clients.remove(ws)
            logger.debug("Dropped %d stale subscriber(s)", len(stale))

    async def _safe_send(self, ws: WebSocket, msg: str, stale: List[WebSocket]):
        try:
            await asyncio.wait_for(ws.send_text(msg), timeout=SEND_TIMEOUT)
        except Exception:
            stale.append(ws)

    async def handle_connection(self, ws: WebSocket):
        if not await self.connect(ws):
            return
        try:
            while True:
                await ws.receive_text()
        except WebSocketDisconnect:
            pass
        finally:
            await self.disconnect(ws)
