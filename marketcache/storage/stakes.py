import asyncio
import logging
import time
from typing import List, Optional

import aiosqlite

logger = logging.getLogger("storage")

_COLUMNS = "domain, account, token, symbol, total, updated_at"


def _row_to_dict(row) -> dict:
    return {
        "domain": row[0],
        "account": row[1],
        "token": row[2],
        "symbol": row[3],
        "total": row[4],
        "updated_at": row[5],
    }


class StakeRepo:
    """Stake totals per (account, token), bound to one domain.

    Totals are wei-scale integers kept as decimal strings.
    """

    def __init__(self, db: aiosqlite.Connection, domain: str,
                 write_lock: Optional[asyncio.Lock] = None):
        self._db = db
        self._domain = domain
        self._lock = write_lock or asyncio.Lock()

    async def get(self, account: str, token: str) -> Optional[dict]:
        async with self._db.execute(
            f"SELECT {_COLUMNS} FROM stakes WHERE domain = ? AND account = ? AND token = ?",
            (self._domain, account.lower(), token.lower()),
        ) as cursor:
            row = await cursor.fetchone()
        return _row_to_dict(row) if row else None

    async def list_by_account(self, account: str) -> List[dict]:
        async with self._db.execute(
            f"SELECT {_COLUMNS} FROM stakes WHERE domain = ? AND account = ? ORDER BY token",
            (self._domain, account.lower()),
        ) as cursor:
            rows = await cursor.fetchall()
        return [_row_to_dict(r) for r in rows]

    async def create(self, account: str, token: str, symbol: str) -> dict:
        async with self._lock:
            await self._db.execute(
                "INSERT OR IGNORE INTO stakes (domain, account, token, symbol, total, updated_at) "
                "VALUES (?, ?, ?, ?, '0', ?)",
                (self._domain, account.lower(), token.lower(), symbol, time.time()),
            )
            await self._db.commit()
        return await self.get(account, token)

    async def adjust(self, account: str, token: str, delta: int) -> dict:
        """Add delta (negative to subtract) to an existing stake total."""
        async with self._lock:
            async with self._db.execute(
                "SELECT total FROM stakes WHERE domain = ? AND account = ? AND token = ?",
                (self._domain, account.lower(), token.lower()),
            ) as cursor:
                row = await cursor.fetchone()
            if row is None:
                raise KeyError(f"Stake {account}/{token} not found")
            total = int(row[0]) + delta
            await self._db.execute(
                "UPDATE stakes SET total = ?, updated_at = ? "
                "WHERE domain = ? AND account = ? AND token = ?",
                (str(total), time.time(), self._domain, account.lower(), token.lower()),
            )
            await self._db.commit()
        return await self.get(account, token)

    async def delete_all(self) -> int:
        async with self._lock:
            cursor = await self._db.execute("DELETE FROM stakes WHERE domain = ?", (self._domain,))
            await self._db.commit()
        return cursor.rowcount
