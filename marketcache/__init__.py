"""
RIF Marketplace Cache - Indexer Package

Mirrors marketplace smart-contract events into SQLite, reconciles provider
plan catalogs over HTTP, and serves the cached state over REST/WebSocket.
"""

__version__ = "0.4.0"

__all__ = [
    "chain",
    "config",
    "domains",
    "emitter",
    "errors",
    "events",
    "handlers",
    "listener",
    "precache",
    "processor",
    "provider_api",
    "routers",
    "server",
    "services",
    "storage",
    "tasks",
    "transformer",
    "updater",
    "ws",
]
