"""Domain handler set: one handler class per contract event family."""

from .deps import HandlerDeps
from .offer import OfferHandler
from .provider import ProviderHandler, TriggersProviderHandler
from .stake import StakeHandler

__all__ = [
    "HandlerDeps",
    "OfferHandler",
    "ProviderHandler",
    "StakeHandler",
    "TriggersProviderHandler",
]
