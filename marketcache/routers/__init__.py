"""Router package: collects the read API routers and registers them on the FastAPI app."""

from fastapi import FastAPI

from marketcache.routers import (
    marketplace,
    offers,
    ws as ws_router,
)


def register_all_routers(app: FastAPI):
    app.include_router(offers.router)
    app.include_router(marketplace.router)
    ws_router.register(app)
