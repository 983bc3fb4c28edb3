"""Offers router: /storage/offers read endpoints."""

from fastapi import APIRouter, HTTPException
from starlette.requests import Request

from marketcache.deps import get_marketplace
from marketcache.domains import OfferMarketplace

router = APIRouter()


@router.get("/storage/offers")
async def list_offers(request: Request):
    marketplace = get_marketplace(request, "storage", OfferMarketplace)
    return await marketplace.services.offer_service.list()


@router.get("/storage/offers/{provider}")
async def get_offer(request: Request, provider: str):
    marketplace = get_marketplace(request, "storage", OfferMarketplace)
    offer = await marketplace.services.offer_service.get(provider.lower())
    if offer is None:
        raise HTTPException(status_code=404, detail="Offer not found")
    return offer
