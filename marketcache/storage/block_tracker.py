import asyncio
import logging
import time
from typing import Optional

import aiosqlite

logger = logging.getLogger("storage")


class BlockTrackerRepo:
    """Per-contract block cursor used by the event source and precache check."""

    def __init__(self, db: aiosqlite.Connection, write_lock: Optional[asyncio.Lock] = None):
        self._db = db
        self._lock = write_lock or asyncio.Lock()

    async def get(self, service: str) -> Optional[dict]:
        async with self._db.execute(
            "SELECT service, last_fetched_block, last_processed_block, updated_at "
            "FROM block_tracker WHERE service = ?",
            (service,),
        ) as cursor:
            row = await cursor.fetchone()
        if row is None:
            return None
        return {
            "service": row[0],
            "last_fetched_block": row[1],
            "last_processed_block": row[2],
            "updated_at": row[3],
        }

    async def is_initialized(self, service: str) -> bool:
        tracker = await self.get(service)
        return tracker is not None and tracker["last_processed_block"] is not None

    async def set_last_fetched(self, service: str, block: int):
        async with self._lock:
            await self._db.execute(
                "INSERT INTO block_tracker (service, last_fetched_block, updated_at) "
                "VALUES (?, ?, ?) ON CONFLICT (service) DO UPDATE SET "
                "last_fetched_block = excluded.last_fetched_block, updated_at = excluded.updated_at",
                (service, block, time.time()),
            )
            await self._db.commit()

    async def set_last_processed(self, service: str, block: int):
        async with self._lock:
            await self._db.execute(
                "INSERT INTO block_tracker (service, last_processed_block, updated_at) "
                "VALUES (?, ?, ?) ON CONFLICT (service) DO UPDATE SET "
                "last_processed_block = excluded.last_processed_block, "
                "updated_at = excluded.updated_at",
                (service, block, time.time()),
            )
            await self._db.commit()

    async def purge(self, service: str):
        async with self._lock:
            await self._db.execute("DELETE FROM block_tracker WHERE service = ?", (service,))
            await self._db.commit()
        logger.info("Block tracker data purged for %s", service)
