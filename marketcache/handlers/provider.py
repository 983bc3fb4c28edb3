"""
provider.py - Provider and subscription handlers for the plan marketplaces.

ProviderRegistered creates or updates the provider and refreshes its plan
catalog, best effort: awaited during precache, in the background when live.
SubscriptionCreated pulls the authoritative subscription record from the
provider's API and upserts it by hash, so replayed events are harmless.
"""

import logging
from decimal import Decimal
from typing import TYPE_CHECKING, Dict, Optional

from marketcache.config import get_token_symbol
from marketcache.errors import EventError, ProviderNotFoundError, SubscriptionNotFoundError
from marketcache.events import Event, wrap_event
from marketcache.processor import Handler
from marketcache.storage import ACTIVE
from marketcache.tasks import spawn_background

if TYPE_CHECKING:
    from marketcache.handlers.deps import HandlerDeps
    from marketcache.provider_api import SubscriptionDTO
    from marketcache.services import PlanServices

logger = logging.getLogger("handler.provider")


def build_subscription(dto: "SubscriptionDTO", provider: str, consumer: str,
                       plan: Optional[dict], tokens: Dict[str, str]) -> dict:
    """Map a provider subscription record onto a subscriptions row."""
    rate_id = get_token_symbol(tokens, dto.currency.address.value).lower()
    return {
        "hash": dto.hash,
        "provider": provider,
        "consumer": consumer or dto.user_address,
        "plan_ref": plan["id"] if plan else None,
        "upstream_id": str(dto.id),
        "status": dto.status,
        "paid": dto.paid,
        "notification_balance": dto.notification_balance,
        "expiration_date": dto.expiration_date,
        "price": str(Decimal(dto.price)),
        "rate_id": rate_id,
        "topics": [t.model_dump(by_alias=True) for t in dto.topics],
        "signature": dto.signature,
        "previous_subscription": dto.previous_subscription.hash if dto.previous_subscription else None,
    }


class ProviderHandler(Handler):
    events = frozenset({"ProviderRegistered", "SubscriptionCreated", "FundsWithdrawn"})

    async def process(self, event: Event, services: "PlanServices", deps: "HandlerDeps") -> None:
        if event.event == "ProviderRegistered":
            await self.provider_registered(event, services, deps)
        elif event.event == "SubscriptionCreated":
            await self.subscription_created(event, services, deps)
        elif event.event == "FundsWithdrawn":
            self.funds_withdrawn(event, services)
        else:
            raise EventError(f"Unknown event {event.event}", event.event)

    async def provider_registered(self, event: Event, services: "PlanServices",
                                  deps: Optional["HandlerDeps"]):
        provider = event.values["provider"].lower()
        url = event.values["url"]
        service = services.provider_service
        payload = wrap_event(event.event, {"provider": provider, "url": url})

        if await service.get(provider) is None:
            await service.create(provider, url)
            service.emit("created", payload)
            logger.info("Created new provider %s with url %s", provider, url)
        else:
            await service.update(provider, url)
            service.emit("updated", payload)
            logger.info("Updated provider %s with url %s", provider, url)

        if deps is None or deps.updater is None:
            return
        if deps.await_refresh:
            # later SubscriptionCreated events in the same backfill need these plans
            try:
                await deps.updater.update(url=url)
            except Exception:
                logger.exception("plan refresh for %s failed", provider)
        else:
            spawn_background(deps.updater.update(url=url), logger, f"plan refresh for {provider}")

    async def subscription_created(self, event: Event, services: "PlanServices",
                                   deps: "HandlerDeps"):
        provider_address = event.values["provider"].lower()
        subscription_hash = event.values["hash"]
        consumer = event.values["consumer"].lower()

        provider = await services.provider_service.get(provider_address)
        if provider is None:
            raise ProviderNotFoundError(provider_address)

        async with deps.api_factory(provider["url"]) as api:
            incoming = await api.get_subscriptions(consumer, [subscription_hash])

        dto = next((s for s in incoming if s.hash.lower() == subscription_hash.lower()), None)
        if dto is None:
            raise SubscriptionNotFoundError(subscription_hash, provider["url"])

        plan = await services.plan_service.find(
            provider_address, str(dto.subscription_plan_id), status=ACTIVE,
        )
        if plan is None:
            logger.warning(
                "Subscription %s references plan %s with no active local copy",
                subscription_hash, dto.subscription_plan_id,
            )

        subscription = build_subscription(dto, provider_address, consumer, plan, deps.tokens)
        created = await services.subscription_service.create(subscription)

        services.subscription_service.emit("created", wrap_event(event.event, created))
        logger.info(
            "Created new subscription %s by consumer %s for provider %s",
            subscription_hash, consumer, provider_address,
        )

    def funds_withdrawn(self, event: Event, services: "PlanServices"):
        values = event.values
        payload = {
            "provider": values["provider"],
            "hash": values["hash"],
            "amount": str(values["amount"]),
            "token": values["token"],
        }
        services.subscription_service.emit("fundsWithdrawn", wrap_event(event.event, payload))
        logger.info("Funds withdrawn for subscription %s by provider %s", values["hash"], values["provider"])


class TriggersProviderHandler(ProviderHandler):
    """The triggers marketplace only tracks provider registration."""

    events = frozenset({"ProviderRegistered"})
