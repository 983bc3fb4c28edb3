"""
server.py - Marketplace cache entry point.

Single-process service combining:
 - SQLite persistent storage via StorageManager
 - One Marketplace per enabled domain (notifier, triggers, storage), each
   tailing its contracts and reconciling provider catalogs
 - Read API and WebSocket event stream (FastAPI on uvicorn)

Usage:
    marketcache start   [--domain notifier ...] [--config config/marketcache.json]
    marketcache precache [--domain notifier ...] [--config ...]
    marketcache purge    [--domain notifier ...] [--config ...]
"""

import argparse
import asyncio
import logging
import os
import sys
from typing import Dict, List, Optional

from fastapi import FastAPI
import uvicorn

from marketcache import __version__
from marketcache.chain import EventSources
from marketcache.config import DOMAINS, ConfigLoader, get_config
from marketcache.domains import Marketplace, create_marketplace
from marketcache.provider_api import ProviderApi
from marketcache.routers import register_all_routers
from marketcache.storage import StorageManager
from marketcache.ws import WSManager

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(name)-10s] %(levelname)-5s %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("server")

# ---------------------------------------------------------------------------
# Indexer server
# ---------------------------------------------------------------------------


class IndexerServer:
    """Owns storage, event sources, the per-domain marketplaces and the API app."""

    def __init__(self, config: ConfigLoader, domains: Optional[List[str]] = None):
        self.config = config
        self.domains = list(domains or DOMAINS)
        self.api_port = config.api_port
        self.db_path = config.db_path

        self.storage: Optional[StorageManager] = None
        self.sources: Optional[EventSources] = None
        self.ws_manager: Optional[WSManager] = None
        self.marketplaces: Dict[str, Marketplace] = {}
        self._uvicorn_server: Optional[uvicorn.Server] = None

        self.app = FastAPI(title="Marketplace Cache", version=__version__)
        self.app.state.server = self
        register_all_routers(self.app)

    def _api_factory(self, url: str) -> ProviderApi:
        return ProviderApi.from_url(url, timeout=self.config.provider_api_timeout)

    async def _init_storage(self):
        db_dir = os.path.dirname(self.db_path)
        if db_dir:
            os.makedirs(db_dir, exist_ok=True)
        self.storage = StorageManager(self.db_path)
        await self.storage.initialize()
        self.sources = EventSources.from_rpc(
            self.config.blockchain["provider"], self.storage.block_tracker, self.config.blockchain,
        )

    def _create_marketplaces(self, live: bool):
        for domain in self.domains:
            self.marketplaces[domain] = create_marketplace(
                self.config.get_domain_config(domain),
                self.storage,
                self.ws_manager if live else None,
                self._api_factory,
            )

    # -------------------------------------------------------------------
    # Commands
    # -------------------------------------------------------------------

    async def precache(self):
        await self._init_storage()
        try:
            self._create_marketplaces(live=False)
            for domain, marketplace in self.marketplaces.items():
                if not marketplace.config.enabled:
                    logger.info("Skipping precache of disabled %s marketplace", domain)
                    continue
                await marketplace.precache(self.sources)
                logger.info("%s precache finished", domain)
        finally:
            await self.close()

    async def purge(self):
        await self._init_storage()
        try:
            self._create_marketplaces(live=False)
            for marketplace in self.marketplaces.values():
                await marketplace.purge(self.sources)
        finally:
            await self.close()

    async def start(self):
        """Start storage, marketplaces and the API server."""
        await self._init_storage()
        self.ws_manager = WSManager()
        self._create_marketplaces(live=True)

        started = []
        for domain, marketplace in self.marketplaces.items():
            if await marketplace.initialize(self.sources):
                started.append(domain)
        if not started:
            logger.warning("No marketplace is running, serving cached data only")

        config = uvicorn.Config(
            self.app,
            host="0.0.0.0",
            port=self.api_port,
            log_level="info",
        )
        self._uvicorn_server = uvicorn.Server(config)
        logger.info("REST API starting on port %d", self.api_port)
        try:
            await self._uvicorn_server.serve()
        finally:
            await self.close()

    async def close(self):
        for marketplace in self.marketplaces.values():
            await marketplace.stop()
        if self.sources is not None:
            await self.sources.close()
            self.sources = None
        if self.storage is not None:
            await self.storage.close()
            self.storage = None

    async def stop(self):
        if self._uvicorn_server is not None:
            self._uvicorn_server.should_exit = True


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="marketcache", description="Marketplace event cache")
    sub = parser.add_subparsers(dest="command", required=True)
    for name, help_text in (
        ("start", "Tail contract events and serve the read API"),
        ("precache", "Backfill historical contract events"),
        ("purge", "Remove cached data and block cursors"),
    ):
        cmd = sub.add_parser(name, help=help_text)
        cmd.add_argument(
            "--domain", action="append", choices=DOMAINS,
            help="Marketplace domain to act on (repeatable, default: all)",
        )
        cmd.add_argument("--config", default=None, help="Path to the JSON config file")
    return parser


def main(argv: Optional[List[str]] = None):
    """CLI entry point."""
    args = build_parser().parse_args(argv)
    config = get_config(args.config)
    server = IndexerServer(config, domains=args.domain)

    logger.info("=" * 60)
    logger.info("  Marketplace Cache %s: %s", __version__, args.command)
    logger.info("  Domains:  %s", ", ".join(server.domains))
    logger.info("  Database: %s", config.db_path)
    logger.info("  RPC:      %s", config.blockchain["provider"])
    if args.command == "start":
        logger.info("  REST API: http://localhost:%d", config.api_port)
    logger.info("=" * 60)

    try:
        if args.command == "precache":
            asyncio.run(server.precache())
        elif args.command == "purge":
            asyncio.run(server.purge())
        else:
            asyncio.run(server.start())
    except KeyboardInterrupt:
        logger.info("Shutting down...")
    except Exception:
        logger.exception("%s failed", args.command)
        sys.exit(1)


if __name__ == "__main__":
    main()
