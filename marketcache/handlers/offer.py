import logging
from typing import TYPE_CHECKING, Any

from marketcache.errors import EventError
from marketcache.events import Event, wrap_event
from marketcache.processor import Handler

if TYPE_CHECKING:
    from marketcache.services import OfferServices

logger = logging.getLogger("handler.offer")


class OfferHandler(Handler):
    """Storage offer fields: one field per event, offer created on first sight."""

    events = frozenset({"CapacitySet", "MaximumDurationSet", "PriceSet"})

    async def process(self, event: Event, services: "OfferServices", deps: Any) -> None:
        provider = event.values["provider"].lower()
        service = services.offer_service

        offer, created = await service.find_or_create(provider)
        if created:
            logger.info("Created new storage offer for %s", provider)
            service.emit("created", offer)

        if event.event == "CapacitySet":
            capacity = str(event.values["capacity"])
            offer = await service.update(provider, "capacity", capacity)
            logger.info("Updating capacity %s (ID: %s)", capacity, provider)
        elif event.event == "MaximumDurationSet":
            duration = str(event.values["maximumDuration"])
            offer = await service.update(provider, "maximum_duration", duration)
            logger.info("Updating maximum duration %s (ID: %s)", duration, provider)
        elif event.event == "PriceSet":
            period = str(event.values["period"])
            price = str(event.values["price"])
            offer = await service.set_price(provider, period, price)
            logger.info("Updating period %s to price %s (ID: %s)", period, price, provider)
        else:
            raise EventError(f"Unknown event {event.event}", event.event)

        service.emit("updated", wrap_event(event.event, offer))
