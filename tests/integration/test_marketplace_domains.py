"""
test_marketplace_domains.py - Precache, live initialization and purge per domain.

Event sources are in-process fakes that hand out canned batches and record
the listeners attached to them.
"""

import asyncio
import logging

import pytest

from marketcache.config import ConfigLoader
from marketcache.domains import (
    NotifierMarketplace, OfferMarketplace, TriggersMarketplace, create_marketplace,
)
from marketcache.events import Event

pytestmark = pytest.mark.asyncio

PROVIDER = "0x" + "ab" * 20
ACCOUNT = "0x" + "cd" * 20


class FakeSource:
    def __init__(self, name, tracker, batches):
        self.name = name
        self.tracker = tracker
        self.batches = batches
        self.listeners = {}
        self.started = False

    async def fetch(self):
        for number, events in enumerate(self.batches):
            yield {"events": events, "from_block": number, "to_block": number}
            await self.tracker.set_last_processed(self.name, number)

    def on(self, signal, callback):
        self.listeners.setdefault(signal, []).append(callback)

    def start(self):
        self.started = True

    async def fire(self, signal, *args):
        for callback in self.listeners.get(signal, []):
            result = callback(*args)
            if result is not None:
                await result


class FakeSources:
    def __init__(self, tracker, batches=None):
        self.tracker = tracker
        self.batches = batches or {}
        self.sources = {}
        self.removed = []

    def get_events_emitter(self, name, contract):
        if name not in self.sources:
            self.sources[name] = FakeSource(name, self.tracker, self.batches.get(name, []))
        return self.sources[name]

    async def remove_events_emitter(self, name):
        self.removed.append(name)
        self.sources.pop(name, None)


class FakeWS:
    def __init__(self):
        self.messages = []

    async def broadcast(self, event_type, data):
        self.messages.append((event_type, data))


def _config(domain, **section):
    section.setdefault("enabled", True)
    section.setdefault("tokens", {"0x00": "rbtc"})
    return ConfigLoader(data={domain: section}).get_domain_config(domain)


def _staked(amount=10 ** 18):
    return Event("Staked", {"user": ACCOUNT, "amount": amount, "total": amount, "token": "0x00", "data": "0x"})


# ── Precache ──────────────────────────────────────────────────────────────

class TestPrecache:

    async def test_notifier_precache(self, storage, provider_stub):
        sources = FakeSources(storage.block_tracker, {
            "notifier.notifierManager": [[Event("ProviderRegistered", {"provider": PROVIDER, "url": "http://p:1"})]],
            "notifier.staking": [[_staked()], [_staked()]],
        })
        marketplace = NotifierMarketplace(_config("notifier"), storage, api_factory=provider_stub.api_factory)
        total = await marketplace.precache(sources)

        assert total == 3
        repos = storage.domain("notifier")
        assert (await repos.providers.get(PROVIDER))["url"] == "http://p:1"
        assert (await repos.stakes.get(ACCOUNT, "0x00"))["total"] == str(2 * 10 ** 18)
        assert sources.removed == ["notifier.notifierManager", "notifier.staking"]
        assert await marketplace.is_precached()

    async def test_precache_links_subscription_to_plan(self, storage, provider_stub, plan_factory,
                                                       subscription_factory):
        await storage.rates.upsert("rbtc", usd=1)
        provider_stub.plans = [plan_factory(1, prices=(("10", "0x00"),))]
        provider_stub.subscriptions = [subscription_factory("0xabc", plan_id=1, token="0x00")]
        sources = FakeSources(storage.block_tracker, {
            "notifier.notifierManager": [[
                Event("ProviderRegistered", {"provider": PROVIDER, "url": "http://p:1"}),
                Event("SubscriptionCreated", {
                    "hash": "0xabc", "provider": PROVIDER, "token": "0x00", "amount": 2000,
                    "consumer": "0xdef",
                }),
            ]],
        })
        marketplace = NotifierMarketplace(_config("notifier"), storage, api_factory=provider_stub.api_factory)
        await marketplace.precache(sources)

        repos = storage.domain("notifier")
        plan = await repos.plans.find(PROVIDER, "1")
        subscription = await repos.subscriptions.get("0xabc")
        assert plan is not None
        assert subscription["plan_ref"] == plan["id"]

    async def test_precache_replays_subscription_batch(self, storage, provider_stub, plan_factory,
                                                       subscription_factory):
        await storage.rates.upsert("rbtc", usd=1)
        provider_stub.plans = [plan_factory(1, prices=(("10", "0x00"),))]
        provider_stub.subscriptions = [subscription_factory("0xabc", token="0x00")]
        batch = [
            Event("ProviderRegistered", {"provider": PROVIDER, "url": "http://p:1"}),
            Event("SubscriptionCreated", {
                "hash": "0xabc", "provider": PROVIDER, "token": "0x00", "amount": 2000,
                "consumer": "0xdef",
            }),
        ]
        marketplace = NotifierMarketplace(_config("notifier"), storage, api_factory=provider_stub.api_factory)
        await marketplace.precache(FakeSources(storage.block_tracker, {"notifier.notifierManager": [batch]}))
        await marketplace.precache(FakeSources(storage.block_tracker, {"notifier.notifierManager": [batch]}))

        assert len(await storage.domain("notifier").subscriptions.list_by_consumer("0xdef")) == 1

    async def test_storage_precache(self, storage):
        sources = FakeSources(storage.block_tracker, {
            "storage.storageManager": [[Event("CapacitySet", {"provider": PROVIDER, "capacity": 5})]],
        })
        marketplace = OfferMarketplace(_config("storage"), storage)
        await marketplace.precache(sources)
        assert (await storage.offers.get(PROVIDER))["capacity"] == "5"


# ── Live initialization ───────────────────────────────────────────────────

class TestInitialize:

    async def test_disabled_domain_not_started(self, storage):
        marketplace = TriggersMarketplace(_config("triggers", enabled=False), storage)
        sources = FakeSources(storage.block_tracker)
        assert await marketplace.initialize(sources) is False
        assert sources.sources == {}

    async def test_requires_precache(self, storage, caplog):
        marketplace = NotifierMarketplace(_config("notifier"), storage)
        with caplog.at_level(logging.CRITICAL, logger="domains"):
            assert await marketplace.initialize(FakeSources(storage.block_tracker)) is False
        assert "Run precache command" in caplog.text

    async def test_partial_precache_refused(self, storage):
        await storage.block_tracker.set_last_processed("notifier.notifierManager", 5)
        marketplace = NotifierMarketplace(_config("notifier"), storage)
        assert await marketplace.initialize(FakeSources(storage.block_tracker)) is False

    async def test_live_events_processed_and_broadcast(self, storage):
        for contract in ("storageManager", "staking"):
            await storage.block_tracker.set_last_processed(f"storage.{contract}", 1)
        ws = FakeWS()
        marketplace = OfferMarketplace(_config("storage"), storage, ws=ws)
        sources = FakeSources(storage.block_tracker)

        assert await marketplace.initialize(sources) is True
        manager = sources.sources["storage.storageManager"]
        assert manager.started
        await manager.fire("newEvent", Event("CapacitySet", {"provider": PROVIDER, "capacity": 9}))
        await manager.fire("reorgOutOfRange", 77)
        await asyncio.sleep(0.01)

        assert (await storage.offers.get(PROVIDER))["capacity"] == "9"
        types = [t for t, _ in ws.messages]
        assert "storage.offers:created" in types
        assert "storage.offers:updated" in types
        assert ("storage.reorg:reorg", {"block_number": 77, "contracts": ["storage.storageManager"]}) in ws.messages
        await marketplace.stop()

    async def test_plan_domain_starts_refresh_loop(self, storage, provider_stub):
        for contract in ("notifierManager", "staking"):
            await storage.block_tracker.set_last_processed(f"notifier.{contract}", 1)
        marketplace = NotifierMarketplace(_config("notifier", refresh=3600), storage, ws=FakeWS(),
                                          api_factory=provider_stub.api_factory)
        assert await marketplace.initialize(FakeSources(storage.block_tracker))
        assert marketplace._refresh_task is not None and not marketplace._refresh_task.done()
        await marketplace.stop()
        assert marketplace._refresh_task is None

    async def test_live_provider_registration_refreshes_plans(self, storage, provider_stub, plan_factory):
        await storage.rates.upsert("rbtc", usd=1)
        for contract in ("notifierManager", "staking"):
            await storage.block_tracker.set_last_processed(f"notifier.{contract}", 1)
        provider_stub.plans = [plan_factory(1, prices=(("10", "0x00"),))]
        marketplace = NotifierMarketplace(_config("notifier"), storage, ws=FakeWS(),
                                          api_factory=provider_stub.api_factory)
        sources = FakeSources(storage.block_tracker)
        await marketplace.initialize(sources)
        await sources.sources["notifier.notifierManager"].fire(
            "newEvent", Event("ProviderRegistered", {"provider": PROVIDER, "url": "http://p:1"}),
        )
        for _ in range(50):
            if await storage.domain("notifier").plans.list_all():
                break
            await asyncio.sleep(0.01)
        assert len(await storage.domain("notifier").plans.list_all()) == 1
        await marketplace.stop()


# ── Purge ─────────────────────────────────────────────────────────────────

class TestPurge:

    async def test_notifier_purge(self, storage):
        repos = storage.domain("notifier")
        await repos.providers.create(PROVIDER, "http://p:1")
        await repos.stakes.create(ACCOUNT, "0x00", "rbtc")
        await storage.block_tracker.set_last_processed("notifier.staking", 9)
        await storage.domain("triggers").providers.create(PROVIDER, "http://t:1")

        marketplace = NotifierMarketplace(_config("notifier"), storage)
        sources = FakeSources(storage.block_tracker)
        await marketplace.purge(sources)

        assert await repos.providers.list_all() == []
        assert await repos.stakes.get(ACCOUNT, "0x00") is None
        assert await storage.block_tracker.get("notifier.staking") is None
        assert await storage.domain("triggers").providers.get(PROVIDER) is not None
        assert sources.removed == ["notifier.notifierManager", "notifier.staking"]

    async def test_storage_purge(self, storage):
        await storage.offers.find_or_create(PROVIDER)
        await storage.offers.set_price(PROVIDER, "1", "10")
        marketplace = create_marketplace(_config("storage"), storage)
        await marketplace.purge()
        assert await storage.offers.list_all() == []
