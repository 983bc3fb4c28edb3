import asyncio
import logging
import time
from typing import List, Optional, Tuple

import aiosqlite

logger = logging.getLogger("storage")


class OfferRepo:
    """Storage offers keyed by provider address, with per-period prices."""

    def __init__(self, db: aiosqlite.Connection, write_lock: Optional[asyncio.Lock] = None):
        self._db = db
        self._lock = write_lock or asyncio.Lock()

    async def get(self, provider: str) -> Optional[dict]:
        async with self._db.execute(
            "SELECT provider, capacity, maximum_duration, created_at, updated_at "
            "FROM offers WHERE provider = ?",
            (provider.lower(),),
        ) as cursor:
            row = await cursor.fetchone()
        if row is None:
            return None
        async with self._db.execute(
            "SELECT period, amount FROM offer_prices WHERE provider = ? "
            "ORDER BY CAST(period AS INTEGER)",
            (row[0],),
        ) as cursor:
            prices = [{"period": p[0], "amount": p[1]} for p in await cursor.fetchall()]
        return {
            "provider": row[0],
            "capacity": row[1],
            "maximum_duration": row[2],
            "prices": prices,
            "created_at": row[3],
            "updated_at": row[4],
        }

    async def list_all(self) -> List[dict]:
        async with self._db.execute("SELECT provider FROM offers ORDER BY provider") as cursor:
            rows = await cursor.fetchall()
        return [await self.get(r[0]) for r in rows]

    async def find_or_create(self, provider: str) -> Tuple[dict, bool]:
        now = time.time()
        async with self._lock:
            cursor = await self._db.execute(
                "INSERT OR IGNORE INTO offers (provider, created_at, updated_at) VALUES (?, ?, ?)",
                (provider.lower(), now, now),
            )
            await self._db.commit()
        return await self.get(provider), cursor.rowcount == 1

    async def set_field(self, provider: str, field: str, value: str) -> dict:
        if field not in ("capacity", "maximum_duration"):
            raise ValueError(f"Unknown offer field {field}")
        async with self._lock:
            cursor = await self._db.execute(
                f"UPDATE offers SET {field} = ?, updated_at = ? WHERE provider = ?",
                (value, time.time(), provider.lower()),
            )
            await self._db.commit()
        if cursor.rowcount == 0:
            raise KeyError(f"Offer {provider} not found")
        return await self.get(provider)

    async def set_price(self, provider: str, period: str, amount: str) -> dict:
        async with self._lock:
            await self._db.execute(
                "INSERT INTO offer_prices (provider, period, amount) VALUES (?, ?, ?) "
                "ON CONFLICT (provider, period) DO UPDATE SET amount = excluded.amount",
                (provider.lower(), period, amount),
            )
            await self._db.execute(
                "UPDATE offers SET updated_at = ? WHERE provider = ?",
                (time.time(), provider.lower()),
            )
            await self._db.commit()
        return await self.get(provider)

    async def delete_all(self) -> int:
        async with self._lock:
            cursor = await self._db.execute("DELETE FROM offers")
            await self._db.commit()
        return cursor.rowcount
