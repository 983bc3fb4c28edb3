"""
domains.py - Per-domain assembly.

A Marketplace ties one domain's config, repositories, services, handler set
and event sources together and drives its three lifecycles: precache, live
initialization and purge. Notifier and triggers are plan marketplaces; the
storage domain is an offer marketplace.
"""

import asyncio
import logging
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Type

from marketcache.config import DomainConfig, get_abi
from marketcache.emitter import ChannelEmitter, Emitter, NullEmitter, ReorgReporter
from marketcache.handlers import (
    HandlerDeps, OfferHandler, ProviderHandler, StakeHandler, TriggersProviderHandler,
)
from marketcache.listener import wire_events
from marketcache.precache import Progress, precache_domain
from marketcache.processor import Handler, Processor, event_processor
from marketcache.provider_api import ProviderApi
from marketcache.services import (
    ApiFactory, OfferService, OfferServices, PlanService, PlanServices, ProviderService,
    StakeService, SubscriptionService,
)
from marketcache.tasks import periodic
from marketcache.transformer import event_transformer
from marketcache.updater import PlanUpdater

if TYPE_CHECKING:
    from marketcache.chain import EventSources
    from marketcache.storage import StorageManager
    from marketcache.ws import WSManager

logger = logging.getLogger("domains")


class Marketplace:
    handlers: List[Handler] = []

    def __init__(
        self,
        config: DomainConfig,
        storage: "StorageManager",
        ws: Optional["WSManager"] = None,
        api_factory: ApiFactory = ProviderApi.from_url,
    ):
        self.config = config
        self.name = config.name
        self._storage = storage
        self._ws = ws
        self._api_factory = api_factory
        self._refresh_task: Optional[asyncio.Task] = None
        self.services: Any = self.build_services(live=ws is not None)

    def _emitter(self, channel: str, live: bool) -> Emitter:
        if live and self._ws is not None:
            return ChannelEmitter(self._ws, f"{self.name}.{channel}")
        return NullEmitter()

    def build_services(self, live: bool) -> Any:
        raise NotImplementedError

    def handler_deps(self, live: bool) -> HandlerDeps:
        return HandlerDeps(tokens=self.config.tokens, api_factory=self._api_factory)

    def source_name(self, contract_name: str) -> str:
        return f"{self.name}.{contract_name}"

    def processor(self, abi_name: str, services: Any, deps: HandlerDeps) -> Processor:
        return event_processor(
            self.handlers, services, deps, transformer=event_transformer(get_abi(abi_name)),
        )

    # ── Lifecycles ────────────────────────────────────────────────

    async def precache(self, sources: "EventSources", progress: Optional[Progress] = None) -> int:
        """Backfill every contract of this domain; emits nothing."""
        services = self.build_services(live=False)
        deps = self.handler_deps(live=False)
        contracts = [
            (
                self.source_name(contract.name),
                sources.get_events_emitter(self.source_name(contract.name), contract),
                self.processor(contract.abi, services, deps),
            )
            for contract in self.config.contracts
        ]
        logger.info("Precaching %s: %s", self.name, ", ".join(c.name for c in self.config.contracts))
        return await precache_domain(contracts, progress, sources.remove_events_emitter)

    async def is_precached(self) -> bool:
        for contract in self.config.contracts:
            if not await self._storage.block_tracker.is_initialized(self.source_name(contract.name)):
                return False
        return True

    async def initialize(self, sources: "EventSources") -> bool:
        """Start live tailing. Returns False when the domain is disabled or not precached."""
        if not self.config.enabled:
            logger.info("%s marketplace is disabled", self.name)
            return False
        if not await self.is_precached():
            logger.critical(
                "%s has not been precached. Run precache command: marketcache precache --domain %s",
                self.name, self.name,
            )
            return False

        deps = self.handler_deps(live=True)
        confirmations = self._emitter("confirmations", live=True)
        reorgs = ReorgReporter(self._emitter("reorg", live=True))
        for contract in self.config.contracts:
            name = self.source_name(contract.name)
            source = sources.get_events_emitter(name, contract)
            wire_events(
                source,
                self.processor(contract.abi, self.services, deps),
                confirmations,
                reorgs,
                name,
                logging.getLogger(f"listener.{self.name}"),
            )
            source.start()
        logger.info("%s marketplace initialized", self.name)
        return True

    async def purge(self, sources: Optional["EventSources"] = None):
        logger.info("Removing %s cached data", self.name)
        await self.purge_data()
        for contract in self.config.contracts:
            name = self.source_name(contract.name)
            if sources is not None:
                await sources.remove_events_emitter(name)
            await self._storage.block_tracker.purge(name)

    async def purge_data(self):
        await self._storage.domain(self.name).stakes.delete_all()

    async def stop(self):
        if self._refresh_task is not None:
            self._refresh_task.cancel()
            try:
                await self._refresh_task
            except asyncio.CancelledError:
                pass
            self._refresh_task = None


class PlanMarketplace(Marketplace):
    """Providers, plans and stakes; catalogs are reconciled on a timer."""

    fetch_channels = False

    def __init__(self, config: DomainConfig, storage: "StorageManager",
                 ws: Optional["WSManager"] = None,
                 api_factory: ApiFactory = ProviderApi.from_url):
        self.updater = PlanUpdater(
            config.name, storage, config.tokens, api_factory, fetch_channels=self.fetch_channels,
        )
        super().__init__(config, storage, ws, api_factory)

    def build_services(self, live: bool) -> PlanServices:
        repos = self._storage.domain(self.name)
        return PlanServices(
            provider_service=ProviderService(repos.providers, self._emitter("providers", live)),
            plan_service=PlanService(repos.plans, self._emitter("plans", live)),
            subscription_service=SubscriptionService(
                repos.subscriptions, self._api_factory, self._emitter("subscriptions", live),
            ),
            stake_service=StakeService(repos.stakes, self._storage.rates, self._emitter("stakes", live)),
        )

    def handler_deps(self, live: bool) -> HandlerDeps:
        deps = super().handler_deps(live)
        deps.updater = self.updater
        deps.await_refresh = not live
        return deps

    async def initialize(self, sources: "EventSources") -> bool:
        if not await super().initialize(sources):
            return False
        self._refresh_task = asyncio.create_task(
            periodic(self.config.refresh, self.updater.update, logger, f"{self.name} plan refresh")
        )
        return True

    async def purge_data(self):
        # cascades to plans, channels, prices and subscriptions
        await self._storage.domain(self.name).providers.delete_all()
        await super().purge_data()


class NotifierMarketplace(PlanMarketplace):
    handlers = [ProviderHandler(), StakeHandler()]
    fetch_channels = True


class TriggersMarketplace(PlanMarketplace):
    handlers = [TriggersProviderHandler(), StakeHandler()]


class OfferMarketplace(Marketplace):
    """Storage offers keyed by provider, plus stakes."""

    handlers = [OfferHandler(), StakeHandler()]

    def build_services(self, live: bool) -> OfferServices:
        return OfferServices(
            offer_service=OfferService(self._storage.offers, self._emitter("offers", live)),
            stake_service=StakeService(
                self._storage.domain(self.name).stakes, self._storage.rates,
                self._emitter("stakes", live),
            ),
        )

    async def purge_data(self):
        await self._storage.offers.delete_all()
        await super().purge_data()


MARKETPLACES: Dict[str, Type[Marketplace]] = {
    "notifier": NotifierMarketplace,
    "triggers": TriggersMarketplace,
    "storage": OfferMarketplace,
}


def create_marketplace(config: DomainConfig, storage: "StorageManager",
                       ws: Optional["WSManager"] = None,
                       api_factory: ApiFactory = ProviderApi.from_url) -> Marketplace:
    return MARKETPLACES[config.name](config, storage, ws, api_factory)
