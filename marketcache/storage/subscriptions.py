import asyncio
import json
import logging
import time
from typing import List, Optional

import aiosqlite

logger = logging.getLogger("storage")

_COLUMNS = (
    "s.domain, s.hash, s.provider, s.consumer, s.plan_ref, s.upstream_id, s.status, s.paid, "
    "s.notification_balance, s.expiration_date, s.price, s.rate_id, s.topics_json, "
    "s.signature, s.previous_subscription, s.created_at, s.updated_at, p.url"
)

_FROM = (
    "FROM subscriptions s LEFT JOIN providers p "
    "ON p.domain = s.domain AND p.address = s.provider"
)


def _row_to_dict(row) -> dict:
    return {
        "domain": row[0],
        "hash": row[1],
        "provider": row[2],
        "consumer": row[3],
        "plan_ref": row[4],
        "upstream_id": row[5],
        "status": row[6],
        "paid": bool(row[7]),
        "notification_balance": row[8],
        "expiration_date": row[9],
        "price": row[10],
        "rate_id": row[11],
        "topics": json.loads(row[12]),
        "signature": row[13],
        "previous_subscription": row[14],
        "created_at": row[15],
        "updated_at": row[16],
        "provider_url": row[17],
    }


class SubscriptionRepo:
    """CRUD operations for the subscriptions table, bound to one domain."""

    def __init__(self, db: aiosqlite.Connection, domain: str,
                 write_lock: Optional[asyncio.Lock] = None):
        self._db = db
        self._domain = domain
        self._lock = write_lock or asyncio.Lock()

    async def get(self, subscription_hash: str) -> Optional[dict]:
        async with self._db.execute(
            f"SELECT {_COLUMNS} {_FROM} WHERE s.domain = ? AND s.hash = ?",
            (self._domain, subscription_hash.lower()),
        ) as cursor:
            row = await cursor.fetchone()
        return _row_to_dict(row) if row else None

    async def list_by_consumer(self, consumer: str) -> List[dict]:
        async with self._db.execute(
            f"SELECT {_COLUMNS} {_FROM} WHERE s.domain = ? AND s.consumer = ? "
            "ORDER BY s.created_at",
            (self._domain, consumer.lower()),
        ) as cursor:
            rows = await cursor.fetchall()
        return [_row_to_dict(r) for r in rows]

    async def _committed_plan(self, plan_ref: Optional[int]) -> Optional[int]:
        # Only called under the write lock, so no transaction is open on the connection.
        if plan_ref is None:
            return None
        async with self._db.execute("SELECT id FROM plans WHERE id = ?", (plan_ref,)) as cursor:
            row = await cursor.fetchone()
        if row is None:
            logger.warning("Plan %s vanished before subscription write, storing without plan", plan_ref)
            return None
        return plan_ref

    async def create(self, subscription: dict) -> dict:
        """Insert a subscription, or overwrite the stored row with the same hash."""
        now = time.time()
        async with self._lock:
            plan_ref = await self._committed_plan(subscription.get("plan_ref"))
            await self._db.execute(
                "INSERT INTO subscriptions "
                "(domain, hash, provider, consumer, plan_ref, upstream_id, status, paid, "
                "notification_balance, expiration_date, price, rate_id, topics_json, "
                "signature, previous_subscription, created_at, updated_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?) "
                "ON CONFLICT (domain, hash) DO UPDATE SET "
                "provider = excluded.provider, consumer = excluded.consumer, "
                "plan_ref = excluded.plan_ref, upstream_id = excluded.upstream_id, "
                "status = excluded.status, paid = excluded.paid, "
                "notification_balance = excluded.notification_balance, "
                "expiration_date = excluded.expiration_date, price = excluded.price, "
                "rate_id = excluded.rate_id, topics_json = excluded.topics_json, "
                "signature = excluded.signature, "
                "previous_subscription = excluded.previous_subscription, "
                "updated_at = excluded.updated_at",
                (
                    self._domain,
                    subscription["hash"].lower(),
                    subscription["provider"].lower(),
                    subscription["consumer"].lower(),
                    plan_ref,
                    str(subscription.get("upstream_id", "")),
                    subscription["status"],
                    int(bool(subscription.get("paid", False))),
                    subscription.get("notification_balance", 0),
                    subscription.get("expiration_date", ""),
                    subscription.get("price", "0"),
                    subscription.get("rate_id", ""),
                    json.dumps(subscription.get("topics", [])),
                    subscription.get("signature", ""),
                    subscription.get("previous_subscription"),
                    now,
                    now,
                ),
            )
            await self._db.commit()
        return await self.get(subscription["hash"])

    async def update_status(self, subscription_hash: str, status: str, paid: bool,
                            notification_balance: int, expiration_date: str):
        async with self._lock:
            await self._db.execute(
                "UPDATE subscriptions SET status = ?, paid = ?, notification_balance = ?, "
                "expiration_date = ?, updated_at = ? WHERE domain = ? AND hash = ?",
                (status, int(paid), notification_balance, expiration_date, time.time(),
                 self._domain, subscription_hash.lower()),
            )
            await self._db.commit()
