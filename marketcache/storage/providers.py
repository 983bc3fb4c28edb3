import asyncio
import logging
import time
from typing import List, Optional

import aiosqlite

logger = logging.getLogger("storage")

_COLUMNS = "domain, address, url, created_at, updated_at"


def _row_to_dict(row) -> dict:
    return {
        "domain": row[0],
        "provider": row[1],
        "url": row[2],
        "created_at": row[3],
        "updated_at": row[4],
    }


class ProviderRepo:
    """CRUD operations for the providers table, bound to one domain."""

    def __init__(self, db: aiosqlite.Connection, domain: str,
                 write_lock: Optional[asyncio.Lock] = None):
        self._db = db
        self._domain = domain
        self._lock = write_lock or asyncio.Lock()

    async def get(self, address: str) -> Optional[dict]:
        async with self._db.execute(
            f"SELECT {_COLUMNS} FROM providers WHERE domain = ? AND address = ?",
            (self._domain, address.lower()),
        ) as cursor:
            row = await cursor.fetchone()
        return _row_to_dict(row) if row else None

    async def list_all(self, url: Optional[str] = None) -> List[dict]:
        sql = f"SELECT {_COLUMNS} FROM providers WHERE domain = ?"
        params: list = [self._domain]
        if url is not None:
            sql += " AND url = ?"
            params.append(url)
        sql += " ORDER BY created_at, address"
        async with self._db.execute(sql, params) as cursor:
            rows = await cursor.fetchall()
        return [_row_to_dict(r) for r in rows]

    async def create(self, address: str, url: str) -> dict:
        now = time.time()
        async with self._lock:
            await self._db.execute(
                "INSERT INTO providers (domain, address, url, created_at, updated_at) "
                "VALUES (?, ?, ?, ?, ?)",
                (self._domain, address.lower(), url, now, now),
            )
            await self._db.commit()
        return await self.get(address)

    async def update(self, address: str, url: str) -> dict:
        async with self._lock:
            cursor = await self._db.execute(
                "UPDATE providers SET url = ?, updated_at = ? WHERE domain = ? AND address = ?",
                (url, time.time(), self._domain, address.lower()),
            )
            await self._db.commit()
        if cursor.rowcount == 0:
            raise KeyError(f"Provider {address} not found")
        return await self.get(address)

    async def delete_all(self) -> int:
        """Remove every provider of the domain; plans and subscriptions cascade."""
        async with self._lock:
            cursor = await self._db.execute(
                "DELETE FROM providers WHERE domain = ?", (self._domain,),
            )
            await self._db.commit()
        return cursor.rowcount
