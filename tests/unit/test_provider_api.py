"""
test_provider_api.py - Unit tests for the provider HTTP client.

Each failure mode of the upstream service must map to a distinct
ProviderApiError category.
"""

import httpx
import pytest

from marketcache.errors import ErrorCategory, ProviderApiError
from marketcache.provider_api import ProviderApi, split_url

pytestmark = pytest.mark.asyncio

URL = "http://provider.example:9000"


def _api(handler) -> ProviderApi:
    return ProviderApi.from_url(URL, transport=httpx.MockTransport(handler))


def _respond(*args, **kwargs):
    def handler(request):
        return httpx.Response(*args, **kwargs)
    return handler


class TestSplitUrl:

    async def test_host_and_port(self):
        assert split_url("http://provider.example:9000") == ("http://provider.example", 9000)

    async def test_no_port(self):
        assert split_url("https://provider.example") == ("https://provider.example", None)

    async def test_from_url_keeps_port(self):
        api = ProviderApi.from_url("http://provider.example:9000")
        assert api.base_url == "http://provider.example:9000"
        await api.aclose()


class TestSuccess:

    async def test_subscription_plans_parsed(self, plan_factory, envelope):
        async with _api(_respond(200, json=envelope([plan_factory(plan_id=3, name="Pro")]))) as api:
            plans = await api.get_subscription_plans()
        assert len(plans) == 1
        assert plans[0].id == 3
        assert plans[0].name == "Pro"
        assert plans[0].notification_preferences == ["API"]
        assert plans[0].subscription_price_list[0].price == "1000"

    async def test_numeric_prices_accepted(self, plan_factory, envelope):
        plan = plan_factory()
        plan["subscriptionPriceList"][0]["price"] = 1000
        async with _api(_respond(200, json=envelope([plan]))) as api:
            plans = await api.get_subscription_plans()
        assert plans[0].subscription_price_list[0].price == "1000"

    async def test_get_subscriptions_request_shape(self, subscription_factory, envelope):
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            seen["user"] = request.headers.get("userAddress")
            return httpx.Response(200, json=envelope([subscription_factory()]))

        async with _api(handler) as api:
            subs = await api.get_subscriptions("0xdef", ["0xabc", "0x123"])
        assert seen == {"path": "/getSubscriptions/0xabc,0x123", "user": "0xdef"}
        assert subs[0].hash == "0xabc"
        assert subs[0].expiration_date == "2021-05-01T00:00:00.000Z"

    async def test_available_channels_mapped(self, envelope):
        content = [{"notificationServiceType": "SMS", "origin": "+1555"}, {"notificationServiceType": "API"}]
        async with _api(_respond(200, json=envelope(content))) as api:
            channels = await api.get_available_channels()
        assert channels == [{"type": "SMS", "origin": "+1555"}, {"type": "API", "origin": None}]


class TestFailureCategories:

    async def _error(self, handler) -> ProviderApiError:
        async with _api(handler) as api:
            with pytest.raises(ProviderApiError) as exc_info:
                await api.get_subscription_plans()
        return exc_info.value

    async def test_html_body(self):
        err = await self._error(_respond(200, text="<!DOCTYPE html><html></html>"))
        assert err.category == ErrorCategory.INVALID_RESPONSE
        assert "getSubscriptionPlans" in str(err)

    async def test_throttled(self):
        err = await self._error(_respond(429, text="Throttled (too many requests)"))
        assert err.category == ErrorCategory.THROTTLED

    async def test_non_2xx(self):
        err = await self._error(_respond(503, json={"status": "OK", "message": "OK", "content": []}))
        assert err.category == ErrorCategory.HTTP_STATUS
        assert err.status_code == 503

    async def test_malformed_json(self):
        err = await self._error(_respond(200, text="{not json"))
        assert err.category == ErrorCategory.INVALID_RESPONSE

    async def test_envelope_not_ok(self):
        err = await self._error(_respond(200, json={"status": "ERROR", "message": "db down", "content": None}))
        assert err.category == ErrorCategory.UPSTREAM
        assert "db down" in str(err)

    async def test_message_must_also_be_ok(self):
        err = await self._error(_respond(200, json={"status": "OK", "message": "partial", "content": []}))
        assert err.category == ErrorCategory.UPSTREAM

    async def test_content_not_a_list(self):
        err = await self._error(_respond(200, json={"status": "OK", "message": "OK", "content": {}}))
        assert err.category == ErrorCategory.INVALID_RESPONSE

    async def test_invalid_plan_payload(self, envelope):
        err = await self._error(_respond(200, json=envelope([{"id": "x"}])))
        assert err.category == ErrorCategory.INVALID_RESPONSE

    async def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        err = await self._error(handler)
        assert err.category == ErrorCategory.TIMEOUT

    async def test_network(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        err = await self._error(handler)
        assert err.category == ErrorCategory.NETWORK

    async def test_message_prefix(self):
        err = await self._error(_respond(500, text="oops"))
        assert err.args[0].startswith("Provider failed at endpoint getSubscriptionPlans")
