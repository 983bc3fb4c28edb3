import logging
from typing import TYPE_CHECKING, Any

from marketcache.config import get_token_symbol
from marketcache.errors import EventError, StakeNotFoundError
from marketcache.events import Event
from marketcache.processor import Handler

if TYPE_CHECKING:
    from marketcache.handlers.deps import HandlerDeps

logger = logging.getLogger("handler.stake")


class StakeHandler(Handler):
    """Staked/Unstaked for any domain whose services carry a stake_service."""

    events = frozenset({"Staked", "Unstaked"})

    async def process(self, event: Event, services: Any, deps: "HandlerDeps") -> None:
        account = event.values["user"].lower()
        token = event.values["token"].lower()
        amount = int(event.values["amount"])
        service = services.stake_service

        if event.event == "Staked":
            if await service.find(account, token) is None:
                symbol = get_token_symbol(deps.tokens, token).lower()
                await service.create(account, token, symbol)
            stake = await service.update(account, token, amount)
            logger.info("Account %s, token %s staked %d, total %s", account, token, amount, stake["total"])
        elif event.event == "Unstaked":
            if await service.find(account, token) is None:
                raise StakeNotFoundError(account, token)
            stake = await service.update(account, token, -amount)
            logger.info("Account %s, token %s unstaked %d, total %s", account, token, amount, stake["total"])
        else:
            raise EventError(f"Unknown event {event.event}", event.event)

        service.emit("updated", await service.get(account))
