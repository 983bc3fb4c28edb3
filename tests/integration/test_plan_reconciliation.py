"""
test_plan_reconciliation.py - Provider catalog reconciliation.

Covers insert, in-place update, deactivation of vanished plans, reactivation,
per-plan rollback and the one-pass-at-a-time guarantee.
"""

import asyncio
import logging

import httpx
import pytest
import pytest_asyncio

from marketcache.provider_api import ProviderApi
from marketcache.storage import ACTIVE, INACTIVE
from marketcache.updater import PlanUpdater

pytestmark = pytest.mark.asyncio

PROVIDER = "0x" + "ab" * 20
URL = "http://notifier.example:9000"
RBTC = "0x0000000000000000000000000000000000000000"


@pytest_asyncio.fixture
async def repos(storage):
    repos = storage.domain("notifier")
    await repos.providers.create(PROVIDER, URL)
    await storage.rates.upsert("rbtc", usd=1000)
    return repos


@pytest.fixture
def updater(storage, tokens, provider_stub):
    return PlanUpdater("notifier", storage, tokens, provider_stub.api_factory)


async def _plans(repos, status=None):
    return {p["plan_id"]: p for p in await repos.plans.list_all(provider=PROVIDER, status=status)}


# ── Insert / update ───────────────────────────────────────────────────────

class TestUpsert:

    async def test_new_plans_created(self, repos, updater, provider_stub, plan_factory):
        provider_stub.plans = [plan_factory(1, "Basic"), plan_factory(2, "Pro", channels=("API", "SMS"))]
        await updater.update()
        plans = await _plans(repos)
        assert set(plans) == {"1", "2"}
        assert plans["2"]["status"] == ACTIVE
        assert [c["name"] for c in plans["2"]["channels"]] == ["API", "SMS"]
        assert plans["1"]["prices"] == [{"rate_id": "rbtc", "price": "1000"}]

    async def test_existing_plan_updated_in_place(self, repos, updater, provider_stub, plan_factory):
        provider_stub.plans = [plan_factory(1, "Basic", quantity=100)]
        await updater.update()
        before = (await _plans(repos))["1"]
        provider_stub.plans = [plan_factory(1, "Basic", quantity=500, prices=(("1500", RBTC),))]
        await updater.update()
        after = (await _plans(repos))["1"]
        assert after["id"] == before["id"]
        assert after["quantity"] == 500
        assert after["prices"] == [{"rate_id": "rbtc", "price": "1500"}]

    async def test_channel_origins_from_provider(self, repos, updater, provider_stub, plan_factory):
        provider_stub.channels = [{"notificationServiceType": "SMS", "origin": "+1555"}]
        provider_stub.plans = [plan_factory(1, channels=("API", "SMS"))]
        await updater.update()
        channels = (await _plans(repos))["1"]["channels"]
        assert channels == [{"name": "API", "origin": None}, {"name": "SMS", "origin": "+1555"}]

    async def test_channels_replaced(self, repos, updater, provider_stub, plan_factory):
        provider_stub.plans = [plan_factory(1, channels=("API", "SMS"))]
        await updater.update()
        provider_stub.plans = [plan_factory(1, channels=("EMAIL",))]
        await updater.update()
        assert [c["name"] for c in (await _plans(repos))["1"]["channels"]] == ["EMAIL"]

    async def test_channels_endpoint_skipped_when_disabled(self, storage, repos, tokens,
                                                           provider_stub, plan_factory):
        provider_stub.plans = [plan_factory(1)]
        updater = PlanUpdater("notifier", storage, tokens, provider_stub.api_factory,
                              fetch_channels=False)
        await updater.update()
        assert "/info/availableNotificationPreferences" not in provider_stub.paths()


# ── Deactivation ──────────────────────────────────────────────────────────

class TestDeactivation:

    async def test_vanished_plan_deactivated_not_deleted(self, repos, updater, provider_stub, plan_factory):
        provider_stub.plans = [plan_factory(1), plan_factory(2)]
        await updater.update()
        provider_stub.plans = [plan_factory(1)]
        await updater.update()
        plans = await _plans(repos)
        assert plans["1"]["status"] == ACTIVE
        assert plans["2"]["status"] == INACTIVE
        assert plans["2"]["prices"] and plans["2"]["channels"]

    async def test_returning_plan_reactivated(self, repos, updater, provider_stub, plan_factory):
        provider_stub.plans = [plan_factory(1), plan_factory(2)]
        await updater.update()
        ref = (await _plans(repos))["2"]["id"]
        provider_stub.plans = [plan_factory(1)]
        await updater.update()
        provider_stub.plans = [plan_factory(1), plan_factory(2)]
        await updater.update()
        plan = (await _plans(repos))["2"]
        assert plan["status"] == ACTIVE
        assert plan["id"] == ref
        assert plan["prices"] == [{"rate_id": "rbtc", "price": "1000"}]

    async def test_upstream_inactive_status_kept(self, repos, updater, provider_stub, plan_factory):
        provider_stub.plans = [plan_factory(1, status="INACTIVE")]
        await updater.update()
        assert (await _plans(repos))["1"]["status"] == INACTIVE

    async def test_empty_catalog_deactivates_all(self, repos, updater, provider_stub, plan_factory):
        provider_stub.plans = [plan_factory(1), plan_factory(2)]
        await updater.update()
        provider_stub.plans = []
        await updater.update()
        assert await _plans(repos, status=ACTIVE) == {}
        assert len(await _plans(repos)) == 2

    async def test_failed_fetch_leaves_plans_untouched(self, repos, updater, provider_stub, plan_factory):
        provider_stub.plans = [plan_factory(1)]
        await updater.update()
        provider_stub.overrides["/getSubscriptionPlans"] = httpx.Response(502, text="Bad Gateway")
        await updater.update()
        assert (await _plans(repos))["1"]["status"] == ACTIVE


# ── Failures ──────────────────────────────────────────────────────────────

class TestRollback:

    async def test_unknown_token_rolls_back_plan(self, repos, updater, provider_stub, plan_factory, caplog):
        provider_stub.plans = [plan_factory(1, prices=(("1000", RBTC), ("5", "0x99")))]
        with caplog.at_level(logging.ERROR, logger="updater"):
            await updater.update()
        assert await _plans(repos) == {}
        assert "Token on address 0x99 is not supported" in caplog.text

    async def test_missing_rate_rolls_back_plan(self, repos, updater, provider_stub, plan_factory, caplog):
        rif = "0x19f64674d8a5b4e652319f5e239efd3bc969a1fe"
        provider_stub.plans = [plan_factory(1, prices=(("5", rif),))]
        with caplog.at_level(logging.ERROR, logger="updater"):
            await updater.update()
        assert await _plans(repos) == {}
        assert "rif" in caplog.text

    async def test_rollback_keeps_previous_state(self, repos, updater, provider_stub, plan_factory):
        provider_stub.plans = [plan_factory(1, name="Basic")]
        await updater.update()
        provider_stub.plans = [plan_factory(1, name="Renamed", prices=(("5", "0x99"),))]
        await updater.update()
        plan = (await _plans(repos))["1"]
        assert plan["name"] == "Basic"
        assert plan["prices"] == [{"rate_id": "rbtc", "price": "1000"}]

    async def test_other_providers_still_updated(self, storage, repos, tokens, provider_stub, plan_factory):
        other = "0x" + "cd" * 20
        await repos.providers.create(other, "http://other.example:9000")

        async def handler(request):
            if request.url.host == "notifier.example":
                return httpx.Response(500, text="down")
            return await provider_stub.handler(request)

        provider_stub.plans = [plan_factory(4)]
        updater = PlanUpdater(
            "notifier", storage, tokens,
            lambda url: ProviderApi.from_url(url, transport=httpx.MockTransport(handler)),
        )
        await updater.update()
        assert [p["plan_id"] for p in await repos.plans.list_all(provider=other)] == ["4"]

    async def test_update_by_url_only_touches_matching_provider(self, storage, repos, updater,
                                                              provider_stub, plan_factory):
        await repos.providers.create("0x" + "cd" * 20, "http://other.example:9000")
        provider_stub.plans = [plan_factory(1)]
        await updater.update(url=URL)
        assert {r.url.host for r in provider_stub.requests} == {"notifier.example"}


# ── Mutual exclusion ──────────────────────────────────────────────────────

class TestMutualExclusion:

    async def test_concurrent_updates_never_overlap(self, repos, updater, provider_stub, plan_factory):
        provider_stub.plans = [plan_factory(1)]
        provider_stub.delay = 0.02
        await asyncio.gather(updater.update(), updater.update(), updater.update())
        assert provider_stub.max_active == 1
        assert len((await _plans(repos))) == 1

    async def test_passes_run_in_arrival_order(self, repos, updater, provider_stub, plan_factory):
        provider_stub.plans = [plan_factory(1)]
        provider_stub.delay = 0.01
        order = []

        async def run(tag):
            await updater.update()
            order.append(tag)

        await asyncio.gather(run("a"), run("b"), run("c"))
        assert order == ["a", "b", "c"]
