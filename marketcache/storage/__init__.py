from ._schema import SCHEMA_VERSION, SCHEMA_SQL
from .providers import ProviderRepo
from .plans import PlanRepo, ACTIVE, INACTIVE
from .subscriptions import SubscriptionRepo
from .stakes import StakeRepo
from .rates import RateRepo, CURRENCIES
from .offers import OfferRepo
from .block_tracker import BlockTrackerRepo
from .manager import DomainRepos, StorageManager

__all__ = [
    "SCHEMA_VERSION",
    "SCHEMA_SQL",
    "ACTIVE",
    "INACTIVE",
    "CURRENCIES",
    "ProviderRepo",
    "PlanRepo",
    "SubscriptionRepo",
    "StakeRepo",
    "RateRepo",
    "OfferRepo",
    "BlockTrackerRepo",
    "DomainRepos",
    "StorageManager",
]
