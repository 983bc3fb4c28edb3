"""
provider_api.py - HTTP client for a provider's off-chain marketplace service.

Every response body is the provider's result object {status, message, content};
the call only succeeds when the HTTP status is 2xx and both status and
message are "OK". Upstream failures (HTML body, throttling, timeout,
non-2xx, malformed payload) all surface as ProviderApiError.
"""

import logging
import re
from typing import Any, List, Optional, Tuple

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from marketcache.errors import ErrorCategory, ProviderApiError

logger = logging.getLogger("provider_api")

DEFAULT_TIMEOUT = 10.0

GET_SUBSCRIPTIONS = "getSubscriptions"
GET_SUBSCRIPTION_PLANS = "getSubscriptionPlans"
AVAILABLE_CHANNELS = "info/availableNotificationPreferences"

_PORT_RE = re.compile(r":(\d*)$")


def split_url(url: str) -> Tuple[str, Optional[int]]:
    """Split 'http://host:port' into ('http://host', port)."""
    match = _PORT_RE.search(url)
    if match is None or not match.group(1):
        return url, None
    return url[:match.start()], int(match.group(1))


# ── DTOs ──

class _Dto(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", coerce_numbers_to_str=True)


class AddressDTO(_Dto):
    value: str
    type_as_string: Optional[str] = Field(default=None, alias="typeAsString")


class CurrencyDTO(_Dto):
    name: Optional[str] = None
    address: AddressDTO


class PlanPriceDTO(_Dto):
    price: str
    currency: CurrencyDTO


class SubscriptionPlanDTO(_Dto):
    id: int
    name: str
    validity: int
    plan_status: str = Field(alias="planStatus")
    notification_preferences: List[str] = Field(default_factory=list, alias="notificationPreferences")
    notification_quantity: int = Field(alias="notificationQuantity")
    subscription_price_list: List[PlanPriceDTO] = Field(default_factory=list, alias="subscriptionPriceList")


class TopicDTO(_Dto):
    type: Optional[str] = None
    notification_preferences: List[Any] = Field(default_factory=list, alias="notificationPreferences")
    topic_params: List[Any] = Field(default_factory=list, alias="topicParams")


class SubscriptionDTO(_Dto):
    hash: str
    id: int
    price: str
    currency: CurrencyDTO
    expiration_date: str = Field(alias="expirationDate")
    paid: bool = False
    status: str
    notification_balance: int = Field(default=0, alias="notificationBalance")
    subscription_plan_id: int = Field(alias="subscriptionPlanId")
    previous_subscription: Optional["SubscriptionDTO"] = Field(default=None, alias="previousSubscription")
    topics: List[TopicDTO] = Field(default_factory=list)
    signature: str = ""
    user_address: str = Field(default="", alias="userAddress")


SubscriptionDTO.model_rebuild()


class ChannelDTO(_Dto):
    type: str = Field(alias="notificationServiceType")
    origin: Optional[str] = None


# ── Client ──

class ProviderApi:
    """Async client for one provider URL."""

    def __init__(self, host: str, port: Optional[int] = None, timeout: float = DEFAULT_TIMEOUT,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        base_url = f"{host}:{port}" if port else host
        self.base_url = base_url
        self._client = httpx.AsyncClient(base_url=base_url, timeout=timeout, transport=transport)

    @classmethod
    def from_url(cls, url: str, **kwargs) -> "ProviderApi":
        host, port = split_url(url)
        return cls(host, port, **kwargs)

    async def __aenter__(self) -> "ProviderApi":
        return self

    async def __aexit__(self, *exc):
        await self.aclose()

    async def aclose(self):
        await self._client.aclose()

    async def _fetch(self, resource: str, path: str, headers: Optional[dict] = None) -> Any:
        try:
            response = await self._client.get(path, headers=headers)
        except httpx.TimeoutException as e:
            raise ProviderApiError(resource, f"request timed out ({e})", ErrorCategory.TIMEOUT) from e
        except httpx.HTTPError as e:
            raise ProviderApiError(resource, str(e), ErrorCategory.NETWORK) from e

        body = response.text
        if body.lstrip().lower().startswith("<!doctype html>"):
            raise ProviderApiError(
                resource, "invalid request: HTML page returned instead of JSON",
                ErrorCategory.INVALID_RESPONSE, response.status_code,
            )
        if body.startswith("Throttled"):
            raise ProviderApiError(
                resource, "request limit reached", ErrorCategory.THROTTLED, response.status_code,
            )
        if not response.is_success:
            raise ProviderApiError(
                resource, f"{response.status_code}:: {response.reason_phrase}",
                ErrorCategory.HTTP_STATUS, response.status_code,
            )
        try:
            data = response.json()
        except ValueError as e:
            raise ProviderApiError(
                resource, "malformed JSON body", ErrorCategory.INVALID_RESPONSE, response.status_code,
            ) from e
        return self._verified_content(resource, data, response.status_code)

    @staticmethod
    def _verified_content(resource: str, data: Any, status_code: int) -> Any:
        if not isinstance(data, dict):
            raise ProviderApiError(
                resource, "unexpected payload", ErrorCategory.INVALID_RESPONSE, status_code,
            )
        status = data.get("status")
        message = data.get("message")
        if status != "OK" or message != "OK":
            raise ProviderApiError(
                resource, f"{status or ''}:: {message or ''}", ErrorCategory.UPSTREAM, status_code,
            )
        return data.get("content")

    async def get_subscription_plans(self) -> List[SubscriptionPlanDTO]:
        content = await self._fetch(GET_SUBSCRIPTION_PLANS, f"/{GET_SUBSCRIPTION_PLANS}")
        return self._parse_list(GET_SUBSCRIPTION_PLANS, SubscriptionPlanDTO, content)

    async def get_subscriptions(self, address: str,
                                hashes: Optional[List[str]] = None) -> List[SubscriptionDTO]:
        path = f"/{GET_SUBSCRIPTIONS}/{','.join(hashes or [])}"
        content = await self._fetch(GET_SUBSCRIPTIONS, path, headers={"userAddress": address})
        return self._parse_list(GET_SUBSCRIPTIONS, SubscriptionDTO, content)

    async def get_available_channels(self) -> List[dict]:
        content = await self._fetch(AVAILABLE_CHANNELS, f"/{AVAILABLE_CHANNELS}")
        channels = self._parse_list(AVAILABLE_CHANNELS, ChannelDTO, content)
        return [{"type": c.type, "origin": c.origin} for c in channels]

    @staticmethod
    def _parse_list(resource: str, model, content: Any) -> list:
        if not isinstance(content, list):
            raise ProviderApiError(resource, "content is not a list", ErrorCategory.INVALID_RESPONSE)
        try:
            return [model.model_validate(item) for item in content]
        except ValidationError as e:
            raise ProviderApiError(
                resource, f"invalid payload: {e.error_count()} validation errors",
                ErrorCategory.INVALID_RESPONSE,
            ) from e
