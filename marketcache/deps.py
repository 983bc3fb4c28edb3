"""Dependency helpers for router modules."""

from fastapi import HTTPException
from starlette.requests import Request


def get_server(request: Request):
    return request.app.state.server


def get_marketplace(request: Request, domain: str, kind=None):
    """The running marketplace for domain, or 404 when it is unknown or disabled."""
    marketplace = get_server(request).marketplaces.get(domain)
    if marketplace is None or (kind is not None and not isinstance(marketplace, kind)):
        raise HTTPException(status_code=404, detail=f"Unknown marketplace {domain}")
    return marketplace
