"""
errors.py - Exception hierarchy for the indexer.

Event-processing failures, provider API failures and domain invariant
violations all derive from MarketCacheError so callers can decide between
log-and-continue and propagate at one boundary.
"""

from enum import Enum
from typing import Optional

PROVIDER_ERROR_PREFIX = "Provider failed at endpoint"


class MarketCacheError(Exception):
    """Base exception for all indexer errors."""


class EventError(MarketCacheError):
    """A blockchain event could not be applied to the cache."""

    def __init__(self, message: str, event: Optional[str] = None):
        if event:
            message = f"During processing event {event}: {message}"
        super().__init__(message)
        self.event = event


class ErrorCategory(str, Enum):
    """Categories of upstream provider API failures."""
    INVALID_RESPONSE = "invalid_response"
    THROTTLED = "throttled"
    TIMEOUT = "timeout"
    HTTP_STATUS = "http_status"
    NETWORK = "network"
    UPSTREAM = "upstream"


class ProviderApiError(MarketCacheError):
    """Raised for every failed call to a provider's off-chain API."""

    def __init__(
        self,
        resource: str,
        message: str = "",
        category: ErrorCategory = ErrorCategory.UPSTREAM,
        status_code: Optional[int] = None,
    ):
        text = f"{PROVIDER_ERROR_PREFIX} {resource}"
        if message:
            text = f"{text}: {message}"
        super().__init__(text)
        self.resource = resource
        self.message = message
        self.category = category
        self.status_code = status_code

    def __str__(self):
        return f"[{self.category.value}] {self.args[0]}"


class UnsupportedTokenError(MarketCacheError):
    def __init__(self, address: str):
        super().__init__(f"Token on address {address} is not supported")
        self.address = address


class UnknownRateError(MarketCacheError):
    def __init__(self, symbol: str):
        super().__init__(f"No rate known for token symbol {symbol}")
        self.symbol = symbol


class StakeNotFoundError(MarketCacheError):
    def __init__(self, account: str, token: str):
        super().__init__(f"Stake for account {account}, token {token} not exist")
        self.account = account
        self.token = token


class ProviderNotFoundError(MarketCacheError):
    def __init__(self, provider: str):
        super().__init__(f"Provider {provider} not found")
        self.provider = provider


class SubscriptionNotFoundError(MarketCacheError):
    def __init__(self, subscription_hash: str, url: str):
        super().__init__(f"Subscription {subscription_hash} not returned by provider {url}")
        self.hash = subscription_hash
        self.url = url
