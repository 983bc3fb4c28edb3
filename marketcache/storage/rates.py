import asyncio
import logging
import time
from decimal import Decimal
from typing import Dict, Optional

import aiosqlite

logger = logging.getLogger("storage")

CURRENCIES = ("usd", "eur", "btc", "ars", "cny", "krw", "jpy")


class RateRepo:
    """Fiat conversion rates per token symbol. Written by the rates feed only."""

    def __init__(self, db: aiosqlite.Connection, write_lock: Optional[asyncio.Lock] = None):
        self._db = db
        self._lock = write_lock or asyncio.Lock()

    async def get(self, token: str) -> Optional[Dict[str, Optional[Decimal]]]:
        async with self._db.execute(
            f"SELECT token, {', '.join(CURRENCIES)} FROM rates WHERE token = ?",
            (token.lower(),),
        ) as cursor:
            row = await cursor.fetchone()
        if row is None:
            return None
        result: Dict[str, Optional[Decimal]] = {"token": row[0]}
        for currency, value in zip(CURRENCIES, row[1:]):
            result[currency] = Decimal(value) if value is not None else None
        return result

    async def upsert(self, token: str, **rates):
        unknown = set(rates) - set(CURRENCIES)
        if unknown:
            raise ValueError(f"Unknown currencies: {', '.join(sorted(unknown))}")
        values = [str(rates[c]) if rates.get(c) is not None else None for c in CURRENCIES]
        async with self._lock:
            await self._db.execute(
                f"INSERT OR REPLACE INTO rates (token, {', '.join(CURRENCIES)}, updated_at) "
                f"VALUES (?, {', '.join('?' for _ in CURRENCIES)}, ?)",
                (token.lower(), *values, time.time()),
            )
            await self._db.commit()
