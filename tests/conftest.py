"""
Shared fixtures for the marketcache test suite.

Provides:
 - an in-memory StorageManager
 - RecordingEmitter: captures (event, payload) pairs emitted by services
 - ProviderStub: a programmable provider HTTP service behind httpx.MockTransport
 - factories for provider plan payloads
"""

import asyncio
from typing import Any, Dict, List, Optional

import httpx
import pytest
import pytest_asyncio

from marketcache.provider_api import ProviderApi
from marketcache.storage import StorageManager


# ── Constants ─────────────────────────────────────────────────────────────

RBTC = "0x0000000000000000000000000000000000000000"
RIF = "0x19f64674d8a5b4e652319f5e239efd3bc969a1fe"
TOKENS = {RBTC: "rbtc", RIF: "rif"}


# ── Helpers ───────────────────────────────────────────────────────────────

def ok(content: Any) -> dict:
    """Wrap content in the provider's success envelope."""
    return {"status": "OK", "message": "OK", "content": content}


def make_plan(plan_id: int = 1, name: str = "Basic", status: str = "ACTIVE",
              validity: int = 30, quantity: int = 100, channels=("API",),
              prices=(("1000", RBTC),)) -> dict:
    return {
        "id": plan_id,
        "name": name,
        "planStatus": status,
        "validity": validity,
        "notificationQuantity": quantity,
        "notificationPreferences": list(channels),
        "subscriptionPriceList": [
            {"price": price, "currency": {"name": "RBTC", "address": {"value": address, "typeAsString": "address"}}}
            for price, address in prices
        ],
    }


def make_subscription(sub_hash: str = "0xabc", status: str = "PENDING", plan_id: int = 1,
                      price: str = "2000", token: str = RBTC, paid: bool = False,
                      balance: int = 100, expiration: str = "2021-05-01T00:00:00.000Z") -> dict:
    return {
        "hash": sub_hash,
        "id": 7,
        "price": price,
        "currency": {"name": "RBTC", "address": {"value": token, "typeAsString": "address"}},
        "expirationDate": expiration,
        "paid": paid,
        "status": status,
        "notificationBalance": balance,
        "subscriptionPlanId": plan_id,
        "topics": [{"type": "NEW_BLOCK", "notificationPreferences": ["API"], "topicParams": []}],
        "signature": "0xsig",
        "userAddress": "0xdef",
    }


class RecordingEmitter:
    """Emitter that keeps everything it was given."""

    def __init__(self):
        self.events: List[tuple] = []

    def emit(self, event: str, payload: Dict[str, Any]) -> None:
        self.events.append((event, payload))

    @property
    def names(self) -> List[str]:
        return [name for name, _ in self.events]


class ProviderStub:
    """Provider off-chain service. Paths map to canned responses."""

    def __init__(self):
        self.plans: List[dict] = []
        self.subscriptions: List[dict] = []
        self.channels: List[dict] = []
        self.overrides: Dict[str, httpx.Response] = {}
        self.requests: List[httpx.Request] = []
        self.delay = 0.0
        self.active = 0
        self.max_active = 0

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            path = request.url.path
            if path in self.overrides:
                return self.overrides[path]
            if path == "/getSubscriptionPlans":
                return httpx.Response(200, json=ok(self.plans))
            if path.startswith("/getSubscriptions/"):
                return httpx.Response(200, json=ok(self.subscriptions))
            if path == "/info/availableNotificationPreferences":
                return httpx.Response(200, json=ok(self.channels))
            return httpx.Response(404, text="Not Found")
        finally:
            self.active -= 1

    def api_factory(self, url: str, timeout: Optional[float] = None) -> ProviderApi:
        return ProviderApi.from_url(url, transport=httpx.MockTransport(self.handler))

    def paths(self) -> List[str]:
        return [r.url.path for r in self.requests]


# ── Fixtures ──────────────────────────────────────────────────────────────

@pytest_asyncio.fixture
async def storage():
    sm = StorageManager(":memory:")
    await sm.initialize()
    yield sm
    await sm.close()


@pytest.fixture
def emitter():
    return RecordingEmitter()


@pytest.fixture
def provider_stub():
    return ProviderStub()


@pytest.fixture
def tokens():
    return dict(TOKENS)


@pytest.fixture
def plan_factory():
    return make_plan


@pytest.fixture
def subscription_factory():
    return make_subscription


@pytest.fixture
def envelope():
    return ok
