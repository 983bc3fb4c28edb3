from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Dict, Optional

from marketcache.provider_api import ProviderApi
from marketcache.services import ApiFactory

if TYPE_CHECKING:
    from marketcache.updater import PlanUpdater


@dataclass
class HandlerDeps:
    """Injected collaborators that are not per-domain services.

    When await_refresh is set the plan refresh triggered by ProviderRegistered
    finishes before the next event is processed (precache); otherwise it runs
    in the background (live).
    """
    tokens: Dict[str, str] = field(default_factory=dict)
    updater: Optional["PlanUpdater"] = None
    api_factory: ApiFactory = ProviderApi.from_url
    await_refresh: bool = False
