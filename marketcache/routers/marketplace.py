"""Marketplace router: providers, plans, subscriptions and stakes per domain."""

from typing import Optional

from fastapi import APIRouter, HTTPException, Query
from starlette.requests import Request

from marketcache.deps import get_marketplace
from marketcache.domains import NotifierMarketplace, PlanMarketplace

router = APIRouter()


@router.get("/notifier/subscriptions")
async def list_subscriptions(request: Request, consumer: str = Query(..., min_length=1)):
    marketplace = get_marketplace(request, "notifier", NotifierMarketplace)
    return await marketplace.services.subscription_service.list(consumer.lower())


@router.get("/{domain}/providers")
async def list_providers(request: Request, domain: str, url: Optional[str] = None):
    marketplace = get_marketplace(request, domain, PlanMarketplace)
    return await marketplace.services.provider_service.list(url=url)


@router.get("/{domain}/plans")
async def list_plans(
    request: Request,
    domain: str,
    provider: Optional[str] = None,
    status: Optional[str] = None,
):
    marketplace = get_marketplace(request, domain, PlanMarketplace)
    return await marketplace.services.plan_service.list(
        provider=provider.lower() if provider else None, status=status,
    )


@router.get("/{domain}/stakes/{account}")
async def get_stakes(request: Request, domain: str, account: str, currency: str = "usd"):
    marketplace = get_marketplace(request, domain)
    try:
        return await marketplace.services.stake_service.get(account.lower(), currency)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
