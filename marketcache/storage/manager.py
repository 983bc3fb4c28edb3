import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Dict, Optional

try:
    import aiosqlite
except ImportError:
    raise ImportError(
        "aiosqlite is required for the storage layer. "
        "Install with: pip install aiosqlite"
    )

from ._migrate import run_migrations
from .block_tracker import BlockTrackerRepo
from .offers import OfferRepo
from .plans import PlanRepo
from .providers import ProviderRepo
from .rates import RateRepo
from .stakes import StakeRepo
from .subscriptions import SubscriptionRepo

logger = logging.getLogger("storage")


@dataclass
class DomainRepos:
    """Repositories bound to one marketplace domain."""
    providers: ProviderRepo
    plans: PlanRepo
    subscriptions: SubscriptionRepo
    stakes: StakeRepo


class StorageManager:
    """Top-level manager: opens the database, runs migrations, exposes repos."""

    def __init__(self, db_path: str = "data/marketcache.db"):
        self.db_path = db_path
        self._db: Optional[aiosqlite.Connection] = None
        self._write_lock = asyncio.Lock()
        self._domains: Dict[str, DomainRepos] = {}
        self.rates: Optional[RateRepo] = None
        self.offers: Optional[OfferRepo] = None
        self.block_tracker: Optional[BlockTrackerRepo] = None

    async def initialize(self):
        self._db = await aiosqlite.connect(self.db_path)
        await self._db.execute("PRAGMA journal_mode=WAL")
        await self._db.execute("PRAGMA foreign_keys=ON")
        await run_migrations(self._db, logger)

        self.rates = RateRepo(self._db, self._write_lock)
        self.offers = OfferRepo(self._db, self._write_lock)
        self.block_tracker = BlockTrackerRepo(self._db, self._write_lock)

        logger.info("Storage initialized: %s", self.db_path)

    def domain(self, name: str) -> DomainRepos:
        if self._db is None:
            raise RuntimeError("Storage is not initialized")
        repos = self._domains.get(name)
        if repos is None:
            repos = DomainRepos(
                providers=ProviderRepo(self._db, name, self._write_lock),
                plans=PlanRepo(self._db, name, self._write_lock),
                subscriptions=SubscriptionRepo(self._db, name, self._write_lock),
                stakes=StakeRepo(self._db, name, self._write_lock),
            )
            self._domains[name] = repos
        return repos

    @asynccontextmanager
    async def transaction(self):
        """Run a multi-statement write as one IMMEDIATE transaction.

        Holds the write lock so no other repo commit lands inside it.
        Any exception rolls the transaction back and is re-raised. Reads on
        the shared connection see its uncommitted rows; repos that persist a
        reference read earlier re-check it once they hold the lock.
        """
        async with self._write_lock:
            await self._db.execute("BEGIN IMMEDIATE")
            try:
                yield self._db
            except BaseException:
                await self._db.execute("ROLLBACK")
                logger.warning("Transaction rolled back")
                raise
            await self._db.commit()

    async def close(self):
        if self._db:
            await self._db.close()
            self._db = None
            self._domains.clear()
            logger.info("Storage closed")
