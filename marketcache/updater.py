"""
updater.py - Plan catalog reconciliation.

Pulls each provider's subscription-plan catalog over HTTP and merges it
into the plans/channels/prices tables. Every incoming plan is written in
its own transaction; stored plans that no longer match anything upstream
are marked INACTIVE, never deleted. One pass runs at a time per domain.
"""

import asyncio
import logging
from decimal import Decimal
from typing import TYPE_CHECKING, Dict, FrozenSet, List, Optional, Tuple

from marketcache.config import get_token_symbol
from marketcache.errors import ProviderApiError, UnknownRateError
from marketcache.provider_api import ProviderApi
from marketcache.storage import INACTIVE

if TYPE_CHECKING:
    from marketcache.provider_api import SubscriptionPlanDTO
    from marketcache.services import ApiFactory
    from marketcache.storage import StorageManager

logger = logging.getLogger("updater")

PlanKey = Tuple[str, str, str, int, int, FrozenSet[str]]


def incoming_key(plan: "SubscriptionPlanDTO") -> PlanKey:
    return (
        str(plan.id), plan.name, plan.plan_status, plan.notification_quantity,
        plan.validity, frozenset(plan.notification_preferences),
    )


def stored_key(plan: dict) -> PlanKey:
    return (
        plan["plan_id"], plan["name"], plan["status"], plan["quantity"],
        plan["days_left"], frozenset(c["name"] for c in plan["channels"]),
    )


class PlanUpdater:
    """Reconciles one domain's plans against its providers' catalogs."""

    def __init__(
        self,
        domain: str,
        storage: "StorageManager",
        tokens: Dict[str, str],
        api_factory: "ApiFactory" = ProviderApi.from_url,
        fetch_channels: bool = True,
    ):
        self.domain = domain
        self._storage = storage
        self._repos = storage.domain(domain)
        self._tokens = tokens
        self._api_factory = api_factory
        self._fetch_channels = fetch_channels
        self._lock = asyncio.Semaphore(1)

    async def update(self, url: Optional[str] = None):
        """Reconcile all providers, or only those registered with url."""
        logger.debug("Acquiring lock for %s update", self.domain)
        async with self._lock:
            providers = await self._repos.providers.list_all(url=url)
            logger.info("Updating plans of %d %s provider(s)", len(providers), self.domain)
            for provider in providers:
                try:
                    await self.update_provider(provider)
                except Exception:
                    logger.exception(
                        "Plan update failed for provider %s (%s)", provider["provider"], provider["url"],
                    )

    async def update_provider(self, provider: dict):
        address = provider["provider"]
        logger.info("Updating %s's subscription plans", address)

        try:
            async with self._api_factory(provider["url"]) as api:
                incoming = await api.get_subscription_plans()
                origins = await self._channel_origins(api)
        except ProviderApiError as e:
            logger.error("Could not fetch plans of %s from %s: %s", address, provider["url"], e)
            return

        for plan in incoming:
            await self._upsert_plan(address, plan, origins)

        deactivated = await self._deactivate_missing(address, incoming)
        if deactivated:
            logger.info("Deactivated %d plan(s) of %s", deactivated, address)

    async def _channel_origins(self, api: ProviderApi) -> Dict[str, Optional[str]]:
        if not self._fetch_channels:
            return {}
        return {c["type"]: c["origin"] for c in await api.get_available_channels()}

    async def _upsert_plan(self, provider: str, plan: "SubscriptionPlanDTO",
                           origins: Dict[str, Optional[str]]):
        plans = self._repos.plans
        async with self._storage.transaction():
            plan_ref = await plans.upsert_plan(
                provider, str(plan.id), plan.name, plan.plan_status,
                plan.validity, plan.notification_quantity,
            )
            await plans.replace_channels(plan_ref, [
                {"name": name, "origin": origins.get(name)} for name in plan.notification_preferences
            ])
            for entry in plan.subscription_price_list:
                rate_id = get_token_symbol(self._tokens, entry.currency.address.value).lower()
                if await self._storage.rates.get(rate_id) is None:
                    raise UnknownRateError(rate_id)
                await plans.upsert_price(plan_ref, rate_id, str(Decimal(entry.price)))
        logger.debug("Stored plan %s (%s) of %s", plan.id, plan.name, provider)

    async def _deactivate_missing(self, provider: str,
                                  incoming: List["SubscriptionPlanDTO"]) -> int:
        wanted = {incoming_key(p) for p in incoming}
        stale = [
            p["id"] for p in await self._repos.plans.list_all(provider=provider)
            if p["status"] != INACTIVE and stored_key(p) not in wanted
        ]
        return await self._repos.plans.set_status(stale, INACTIVE)
