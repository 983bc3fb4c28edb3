"""
services.py - Per-domain service handles.

Thin read/write facades over the repositories plus an emitter. Handlers
only call create/update/emit on these; the read API and the WebSocket
fan-out use the same objects.
"""

import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, localcontext
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional

from marketcache.emitter import Emitter, NullEmitter
from marketcache.errors import ProviderApiError
from marketcache.provider_api import ProviderApi
from marketcache.storage import CURRENCIES

if TYPE_CHECKING:
    from marketcache.storage import (
        OfferRepo, PlanRepo, ProviderRepo, RateRepo, StakeRepo, SubscriptionRepo,
    )

logger = logging.getLogger("services")

WEI = Decimal(10) ** 18
FIAT_PLACES = Decimal("0.01")

ApiFactory = Callable[[str], ProviderApi]


class _EmittingService:
    def __init__(self, emitter: Optional[Emitter] = None):
        self.emitter: Emitter = emitter or NullEmitter()

    def emit(self, event: str, payload: Dict[str, Any]) -> None:
        self.emitter.emit(event, payload)


class ProviderService(_EmittingService):
    def __init__(self, repo: "ProviderRepo", emitter: Optional[Emitter] = None):
        super().__init__(emitter)
        self._repo = repo

    async def get(self, address: str) -> Optional[dict]:
        return await self._repo.get(address)

    async def list(self, url: Optional[str] = None) -> List[dict]:
        return await self._repo.list_all(url=url)

    async def create(self, address: str, url: str) -> dict:
        return await self._repo.create(address, url)

    async def update(self, address: str, url: str) -> dict:
        return await self._repo.update(address, url)


class PlanService(_EmittingService):
    def __init__(self, repo: "PlanRepo", emitter: Optional[Emitter] = None):
        super().__init__(emitter)
        self._repo = repo

    async def list(self, provider: Optional[str] = None, status: Optional[str] = None) -> List[dict]:
        return await self._repo.list_all(provider=provider, status=status)

    async def find(self, provider: str, plan_id: str, status: Optional[str] = None) -> Optional[dict]:
        return await self._repo.find(provider, plan_id, status=status)


class SubscriptionService(_EmittingService):
    """Subscriptions, refreshed from their provider on every consumer read."""

    def __init__(self, repo: "SubscriptionRepo", api_factory: ApiFactory = ProviderApi.from_url,
                 emitter: Optional[Emitter] = None):
        super().__init__(emitter)
        self._repo = repo
        self._api_factory = api_factory

    async def get(self, subscription_hash: str) -> Optional[dict]:
        return await self._repo.get(subscription_hash)

    async def create(self, subscription: dict) -> dict:
        return await self._repo.create(subscription)

    async def list(self, consumer: str) -> List[dict]:
        subscriptions = await self._repo.list_by_consumer(consumer)

        by_provider: Dict[str, List[dict]] = defaultdict(list)
        for sub in subscriptions:
            if sub["provider_url"]:
                by_provider[sub["provider_url"]].append(sub)

        await asyncio.gather(*(
            self._refresh(url, consumer, subs) for url, subs in by_provider.items()
        ))
        return await self._repo.list_by_consumer(consumer)

    async def _refresh(self, url: str, consumer: str, subscriptions: List[dict]):
        hashes = [s["hash"] for s in subscriptions]
        try:
            async with self._api_factory(url) as api:
                incoming = await api.get_subscriptions(consumer, hashes)
        except ProviderApiError as e:
            logger.warning("Could not refresh subscriptions of %s from %s: %s", consumer, url, e)
            return

        known = {h.lower(): h for h in hashes}
        for dto in incoming:
            stored_hash = known.get(dto.hash.lower())
            if stored_hash is None:
                continue
            await self._repo.update_status(
                stored_hash, dto.status, dto.paid, dto.notification_balance, dto.expiration_date,
            )


class StakeService(_EmittingService):
    def __init__(self, stakes: "StakeRepo", rates: "RateRepo", emitter: Optional[Emitter] = None):
        super().__init__(emitter)
        self._stakes = stakes
        self._rates = rates

    async def find(self, account: str, token: str) -> Optional[dict]:
        return await self._stakes.get(account, token)

    async def create(self, account: str, token: str, symbol: str) -> dict:
        return await self._stakes.create(account, token, symbol)

    async def update(self, account: str, token: str, delta: int) -> dict:
        return await self._stakes.adjust(account, token, delta)

    async def get(self, account: str, currency: str = "usd") -> dict:
        """Stake summary: every stake row of the account plus its total fiat value.

        Each row contributes total / 10^18 * rate; a missing rate counts as zero.
        The sum is rounded to two decimals and returned as a string.
        """
        currency = currency.lower()
        if currency not in CURRENCIES:
            raise ValueError(f"Unsupported currency {currency}")

        stakes = await self._stakes.list_by_account(account)
        with localcontext() as ctx:
            ctx.prec = 80
            total = Decimal(0)
            for stake in stakes:
                rates = await self._rates.get(stake["symbol"])
                rate = rates.get(currency) if rates else None
                total += Decimal(stake["total"]) / WEI * (rate or Decimal(0))
            fiat = total.quantize(FIAT_PLACES, rounding=ROUND_HALF_UP)
        return {"total_staked_fiat": str(fiat), "stakes": stakes}


class OfferService(_EmittingService):
    def __init__(self, repo: "OfferRepo", emitter: Optional[Emitter] = None):
        super().__init__(emitter)
        self._repo = repo

    async def get(self, provider: str) -> Optional[dict]:
        return await self._repo.get(provider)

    async def list(self) -> List[dict]:
        return await self._repo.list_all()

    async def find_or_create(self, provider: str):
        return await self._repo.find_or_create(provider)

    async def update(self, provider: str, field: str, value: str) -> dict:
        return await self._repo.set_field(provider, field, value)

    async def set_price(self, provider: str, period: str, amount: str) -> dict:
        return await self._repo.set_price(provider, period, amount)


@dataclass
class PlanServices:
    """Service handles of a plan marketplace (notifier, triggers)."""
    provider_service: ProviderService
    plan_service: PlanService
    subscription_service: SubscriptionService
    stake_service: StakeService


@dataclass
class OfferServices:
    """Service handles of the storage marketplace."""
    offer_service: OfferService
    stake_service: StakeService
