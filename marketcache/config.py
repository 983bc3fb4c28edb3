"""
config.py - Configuration loader.

Loads a JSON config file merged over built-in defaults, with .env and
environment variable overrides. Domain sections carry the enabled flag,
the reconciliation refresh period and the token address -> symbol table.

Usage:
    from marketcache.config import get_config

    config = get_config()
    notifier = config.get_domain_config("notifier")
"""

import copy
import json
import logging
import os
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv

from marketcache.errors import UnsupportedTokenError

load_dotenv()

logger = logging.getLogger("config")

_ABI_DIR = Path(__file__).parent / "abis"

DOMAINS = ("notifier", "triggers", "storage")

DEFAULT_REFRESH_SEC = 3600

DEFAULTS: Dict[str, Any] = {
    "db_path": "data/marketcache.db",
    "api_port": 3030,
    "blockchain": {
        "provider": "http://localhost:8545",
        "poll_interval": 5.0,
        "batch_size": 2000,
        "confirmations": 12,
    },
    "provider_api": {
        "timeout": 10.0,
    },
    "notifier": {
        "enabled": False,
        "refresh": DEFAULT_REFRESH_SEC,
        "tokens": {},
        "contracts": {
            "notifierManager": {"address": "", "abi": "NotifierManager", "start_block": 0},
            "staking": {"address": "", "abi": "Staking", "start_block": 0},
        },
    },
    "triggers": {
        "enabled": False,
        "refresh": DEFAULT_REFRESH_SEC,
        "tokens": {},
        "contracts": {
            "triggersManager": {"address": "", "abi": "NotifierManager", "start_block": 0},
            "staking": {"address": "", "abi": "Staking", "start_block": 0},
        },
    },
    "storage": {
        "enabled": False,
        "tokens": {},
        "contracts": {
            "storageManager": {"address": "", "abi": "StorageManager", "start_block": 0},
            "staking": {"address": "", "abi": "Staking", "start_block": 0},
        },
    },
}


def _load_json(filepath: Path) -> Dict[str, Any]:
    """Load a JSON config file. Returns empty dict if the file doesn't exist."""
    try:
        with open(filepath, "r") as f:
            return json.load(f)
    except FileNotFoundError:
        logger.warning("Config file not found: %s", filepath)
        return {}


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    result = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = _merge(result[key], value)
        else:
            result[key] = value
    return result


def get_env_var(var_name: str, default_value: Any, var_type: type) -> Any:
    """Get environment variable with type conversion and fallback."""
    value = os.getenv(var_name, None)
    if value is None:
        return default_value
    try:
        if var_type == bool:
            return value.lower() in ("true", "1", "yes")
        return var_type(value)
    except (ValueError, TypeError):
        logger.warning("Ignoring invalid value for %s: %r", var_name, value)
        return default_value


@dataclass
class ContractConfig:
    name: str
    address: str
    abi: str
    start_block: int = 0


@dataclass
class DomainConfig:
    name: str
    enabled: bool = False
    refresh: int = DEFAULT_REFRESH_SEC
    tokens: Dict[str, str] = field(default_factory=dict)
    contracts: List[ContractConfig] = field(default_factory=list)

    def token_symbol(self, address: str) -> str:
        return get_token_symbol(self.tokens, address)


def get_token_symbol(tokens: Dict[str, str], address: str) -> str:
    """Resolve a token contract address to its configured symbol (case-insensitive)."""
    wanted = address.lower()
    for token_address, symbol in tokens.items():
        if token_address.lower() == wanted:
            return symbol
    raise UnsupportedTokenError(address)


class ConfigLoader:
    """Central configuration: JSON file over defaults, environment on top."""

    def __init__(self, path: Optional[str] = None, data: Optional[Dict[str, Any]] = None):
        if data is None:
            path = path or os.getenv("MARKETCACHE_CONFIG", "config/marketcache.json")
            data = _load_json(Path(path))
        self.path = path
        self._data = _merge(DEFAULTS, data)
        self._apply_env()

    def _apply_env(self):
        self._data["db_path"] = get_env_var("MARKETCACHE_DB_PATH", self._data["db_path"], str)
        self._data["api_port"] = get_env_var("MARKETCACHE_API_PORT", self._data["api_port"], int)
        chain = self._data["blockchain"]
        chain["provider"] = get_env_var("MARKETCACHE_RPC_URL", chain["provider"], str)
        for domain in DOMAINS:
            section = self._data[domain]
            prefix = f"MARKETCACHE_{domain.upper()}"
            section["enabled"] = get_env_var(f"{prefix}_ENABLED", section["enabled"], bool)
            if "refresh" in section:
                section["refresh"] = get_env_var(f"{prefix}_REFRESH", section["refresh"], int)

    @property
    def db_path(self) -> str:
        return self._data["db_path"]

    @property
    def api_port(self) -> int:
        return self._data["api_port"]

    @property
    def blockchain(self) -> Dict[str, Any]:
        return self._data["blockchain"]

    @property
    def provider_api_timeout(self) -> float:
        return float(self._data["provider_api"]["timeout"])

    def get_domain_config(self, domain: str) -> DomainConfig:
        if domain not in DOMAINS:
            raise KeyError(f"Unknown domain {domain}")
        section = self._data[domain]
        contracts = [
            ContractConfig(
                name=name,
                address=entry.get("address", ""),
                abi=entry.get("abi", name),
                start_block=int(entry.get("start_block", 0)),
            )
            for name, entry in section.get("contracts", {}).items()
        ]
        return DomainConfig(
            name=domain,
            enabled=bool(section.get("enabled", False)),
            refresh=int(section.get("refresh", DEFAULT_REFRESH_SEC)),
            tokens=dict(section.get("tokens", {})),
            contracts=contracts,
        )


@lru_cache(maxsize=32)
def _read_abi(abi_name: str) -> tuple:
    data = _load_json(_ABI_DIR / f"{abi_name}.json")
    # ABI files are either raw arrays or {"abi": [...]}
    if isinstance(data, dict):
        data = data.get("abi", [])
    return tuple(data)


def get_abi(abi_name: str) -> List[Dict[str, Any]]:
    """Load a contract ABI shipped under marketcache/abis/."""
    return list(_read_abi(abi_name))


_config: Optional[ConfigLoader] = None


def get_config(path: Optional[str] = None) -> ConfigLoader:
    """Process-wide accessor, created on first use."""
    global _config
    if _config is None or (path is not None and path != _config.path):
        _config = ConfigLoader(path)
    return _config
