import asyncio
import logging
import time
from typing import Dict, Iterable, List, Optional

import aiosqlite

logger = logging.getLogger("storage")

ACTIVE = "ACTIVE"
INACTIVE = "INACTIVE"

_COLUMNS = "id, domain, provider, plan_id, name, status, days_left, quantity, created_at, updated_at"


def _row_to_dict(row) -> dict:
    return {
        "id": row[0],
        "domain": row[1],
        "provider": row[2],
        "plan_id": row[3],
        "name": row[4],
        "status": row[5],
        "days_left": row[6],
        "quantity": row[7],
        "created_at": row[8],
        "updated_at": row[9],
    }


class PlanRepo:
    """Plans with their per-plan channels and prices, bound to one domain.

    upsert_plan, replace_channels and upsert_price do not commit: they are
    meant to run inside StorageManager.transaction(), which owns the commit.
    """

    def __init__(self, db: aiosqlite.Connection, domain: str,
                 write_lock: Optional[asyncio.Lock] = None):
        self._db = db
        self._domain = domain
        self._lock = write_lock or asyncio.Lock()

    async def _hydrate(self, plan: dict) -> dict:
        async with self._db.execute(
            "SELECT name, origin FROM plan_channels WHERE plan_ref = ? ORDER BY name",
            (plan["id"],),
        ) as cursor:
            plan["channels"] = [{"name": r[0], "origin": r[1]} for r in await cursor.fetchall()]
        async with self._db.execute(
            "SELECT rate_id, price FROM plan_prices WHERE plan_ref = ? ORDER BY rate_id",
            (plan["id"],),
        ) as cursor:
            plan["prices"] = [{"rate_id": r[0], "price": r[1]} for r in await cursor.fetchall()]
        return plan

    async def get(self, plan_ref: int) -> Optional[dict]:
        async with self._db.execute(
            f"SELECT {_COLUMNS} FROM plans WHERE id = ? AND domain = ?",
            (plan_ref, self._domain),
        ) as cursor:
            row = await cursor.fetchone()
        if row is None:
            return None
        return await self._hydrate(_row_to_dict(row))

    async def find(self, provider: str, plan_id: str,
                   status: Optional[str] = None) -> Optional[dict]:
        sql = f"SELECT {_COLUMNS} FROM plans WHERE domain = ? AND provider = ? AND plan_id = ?"
        params: list = [self._domain, provider.lower(), str(plan_id)]
        if status is not None:
            sql += " AND status = ?"
            params.append(status)
        async with self._db.execute(sql, params) as cursor:
            row = await cursor.fetchone()
        if row is None:
            return None
        return await self._hydrate(_row_to_dict(row))

    async def list_all(self, provider: Optional[str] = None,
                       status: Optional[str] = None) -> List[dict]:
        sql = f"SELECT {_COLUMNS} FROM plans WHERE domain = ?"
        params: list = [self._domain]
        if provider is not None:
            sql += " AND provider = ?"
            params.append(provider.lower())
        if status is not None:
            sql += " AND status = ?"
            params.append(status)
        sql += " ORDER BY provider, id"
        async with self._db.execute(sql, params) as cursor:
            rows = await cursor.fetchall()
        return [await self._hydrate(_row_to_dict(r)) for r in rows]

    # ── Transactional writes (caller commits) ──

    async def upsert_plan(self, provider: str, plan_id: str, name: str, status: str,
                          days_left: int, quantity: int) -> int:
        now = time.time()
        await self._db.execute(
            "INSERT INTO plans "
            "(domain, provider, plan_id, name, status, days_left, quantity, created_at, updated_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?) "
            "ON CONFLICT (domain, provider, plan_id) DO UPDATE SET "
            "name = excluded.name, status = excluded.status, days_left = excluded.days_left, "
            "quantity = excluded.quantity, updated_at = excluded.updated_at",
            (self._domain, provider.lower(), str(plan_id), name, status,
             days_left, quantity, now, now),
        )
        async with self._db.execute(
            "SELECT id FROM plans WHERE domain = ? AND provider = ? AND plan_id = ?",
            (self._domain, provider.lower(), str(plan_id)),
        ) as cursor:
            row = await cursor.fetchone()
        return row[0]

    async def replace_channels(self, plan_ref: int, channels: Iterable[Dict[str, Optional[str]]]):
        await self._db.execute("DELETE FROM plan_channels WHERE plan_ref = ?", (plan_ref,))
        await self._db.executemany(
            "INSERT OR REPLACE INTO plan_channels (plan_ref, name, origin) VALUES (?, ?, ?)",
            [(plan_ref, c["name"], c.get("origin")) for c in channels],
        )

    async def upsert_price(self, plan_ref: int, rate_id: str, price: str):
        await self._db.execute(
            "INSERT INTO plan_prices (plan_ref, rate_id, price) VALUES (?, ?, ?) "
            "ON CONFLICT (plan_ref, rate_id) DO UPDATE SET price = excluded.price",
            (plan_ref, rate_id, price),
        )

    # ── Committing writes ──

    async def set_status(self, plan_refs: List[int], status: str) -> int:
        if not plan_refs:
            return 0
        placeholders = ", ".join("?" for _ in plan_refs)
        async with self._lock:
            cursor = await self._db.execute(
                f"UPDATE plans SET status = ?, updated_at = ? "
                f"WHERE domain = ? AND id IN ({placeholders})",
                (status, time.time(), self._domain, *plan_refs),
            )
            await self._db.commit()
        return cursor.rowcount
