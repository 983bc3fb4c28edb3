"""
chain.py - Polling contract event source over web3.

A ContractEventSource serves two consumers:
 - precache: fetch() yields historical batches from the block cursor up to
   the confirmed head, advancing the cursor after each batch is consumed.
 - live tailing: start() polls for newly confirmed logs and fires signals
   ("newEvent", "error", "reorgOutOfRange", and, from sources that track
   them, "newConfirmation" / "invalidConfirmation") to registered callbacks.

Events are only released once they are `confirmations` blocks deep, so a
reorg observed at the cursor is always out of the confirmation range.
"""

import asyncio
import inspect
import logging
from collections import defaultdict
from typing import TYPE_CHECKING, Any, AsyncIterator, Callable, Dict, List, Optional

from eth_utils import event_abi_to_log_topic
from web3 import AsyncHTTPProvider, AsyncWeb3
from web3._utils.events import get_event_data

from marketcache.config import ContractConfig, get_abi
from marketcache.events import Event

if TYPE_CHECKING:
    from marketcache.storage import BlockTrackerRepo

logger = logging.getLogger("chain")

SIGNALS = ("newEvent", "error", "newConfirmation", "invalidConfirmation", "reorgOutOfRange")


def _plain(value: Any) -> Any:
    """Turn web3 return values into JSON-friendly Python values."""
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    return value


class ContractEventSource:
    def __init__(
        self,
        name: str,
        w3: AsyncWeb3,
        address: str,
        abi: List[Dict[str, Any]],
        tracker: "BlockTrackerRepo",
        start_block: int = 0,
        batch_size: int = 2000,
        poll_interval: float = 5.0,
        confirmations: int = 0,
    ):
        self.name = name
        self._w3 = w3
        self._address = AsyncWeb3.to_checksum_address(address) if address else address
        self._tracker = tracker
        self._start_block = start_block
        self._batch_size = max(int(batch_size), 1)
        self._poll_interval = poll_interval
        self._confirmations = confirmations
        self._listeners: Dict[str, List[Callable]] = defaultdict(list)
        self._task: Optional[asyncio.Task] = None
        self._checkpoint: Optional[tuple] = None

        self._topics: Dict[bytes, Dict[str, Any]] = {}
        for entry in abi:
            if entry.get("type") == "event" and not entry.get("anonymous"):
                self._topics[bytes(event_abi_to_log_topic(entry))] = entry

    # ── Signals ───────────────────────────────────────────────────

    def on(self, signal: str, callback: Callable):
        if signal not in SIGNALS:
            raise ValueError(f"Unknown signal {signal}")
        self._listeners[signal].append(callback)

    def remove_all_listeners(self):
        self._listeners.clear()

    async def _fire(self, signal: str, *args):
        for callback in list(self._listeners.get(signal, ())):
            result = callback(*args)
            if inspect.isawaitable(result):
                await result

    # ── Log access ────────────────────────────────────────────────

    async def _confirmed_head(self) -> int:
        return await self._w3.eth.block_number - self._confirmations

    async def _next_block(self) -> int:
        tracker = await self._tracker.get(self.name)
        if tracker is None or tracker["last_processed_block"] is None:
            return self._start_block
        return tracker["last_processed_block"] + 1

    async def _get_events(self, from_block: int, to_block: int) -> List[Event]:
        logs = await self._w3.eth.get_logs({
            "fromBlock": from_block,
            "toBlock": to_block,
            "address": self._address,
        })
        logs = sorted(logs, key=lambda x: (x.get("blockNumber", 0), x.get("logIndex", 0)))
        events = []
        for log in logs:
            event = self._decode(log)
            if event is not None:
                events.append(event)
        return events

    def _decode(self, log) -> Optional[Event]:
        topics = log.get("topics") or []
        if not topics:
            return None
        abi = self._topics.get(bytes(topics[0]))
        if abi is None:
            logger.debug("Skipping unknown log topic on %s", self.name)
            return None
        data = get_event_data(self._w3.codec, abi, log)
        return Event(
            event=data["event"],
            values={k: _plain(v) for k, v in data["args"].items()},
            address=str(data["address"]).lower(),
            block_number=data["blockNumber"],
            transaction_hash=_plain(data["transactionHash"]),
            log_index=data["logIndex"],
        )

    # ── Historical batches ────────────────────────────────────────

    async def fetch(self) -> AsyncIterator[dict]:
        """Yield {events, from_block, to_block} batches up to the confirmed head."""
        head = await self._confirmed_head()
        current = await self._next_block()
        if current > head:
            if not await self._tracker.is_initialized(self.name):
                await self._tracker.set_last_processed(self.name, max(head, current - 1))
            return

        while current <= head:
            batch_to = min(current + self._batch_size - 1, head)
            events = await self._get_events(current, batch_to)
            await self._tracker.set_last_fetched(self.name, batch_to)
            yield {"events": events, "from_block": current, "to_block": batch_to}
            await self._tracker.set_last_processed(self.name, batch_to)
            current = batch_to + 1

    # ── Live polling ──────────────────────────────────────────────

    async def _check_reorg(self):
        if self._checkpoint is None:
            return
        number, expected = self._checkpoint
        block = await self._w3.eth.get_block(number)
        if bytes(block["hash"]) != expected:
            self._checkpoint = None
            await self._fire("reorgOutOfRange", number)

    async def poll_once(self):
        await self._check_reorg()
        head = await self._confirmed_head()
        current = await self._next_block()
        while current <= head:
            batch_to = min(current + self._batch_size - 1, head)
            for event in await self._get_events(current, batch_to):
                await self._fire("newEvent", event)
            await self._tracker.set_last_processed(self.name, batch_to)
            current = batch_to + 1
        if head >= 0:
            block = await self._w3.eth.get_block(head)
            self._checkpoint = (head, bytes(block["hash"]))

    async def _poll_loop(self):
        while True:
            try:
                await self.poll_once()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                if not self._listeners.get("error"):
                    logger.exception("Polling %s failed", self.name)
                await self._fire("error", e)
            await asyncio.sleep(self._poll_interval)

    def start(self):
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._poll_loop())
            logger.info("Listening for %s events", self.name)

    async def stop(self):
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None


class EventSources:
    """Registry of event sources keyed by '<domain>.<contract>'."""

    def __init__(self, w3: AsyncWeb3, tracker: "BlockTrackerRepo", settings: Dict[str, Any]):
        self._w3 = w3
        self._tracker = tracker
        self._settings = settings
        self._sources: Dict[str, ContractEventSource] = {}

    @classmethod
    def from_rpc(cls, rpc_url: str, tracker: "BlockTrackerRepo",
                 settings: Dict[str, Any]) -> "EventSources":
        return cls(AsyncWeb3(AsyncHTTPProvider(rpc_url)), tracker, settings)

    def get_events_emitter(self, name: str, contract: ContractConfig) -> ContractEventSource:
        source = self._sources.get(name)
        if source is None:
            source = ContractEventSource(
                name,
                self._w3,
                contract.address,
                get_abi(contract.abi),
                self._tracker,
                start_block=contract.start_block,
                batch_size=self._settings.get("batch_size", 2000),
                poll_interval=self._settings.get("poll_interval", 5.0),
                confirmations=self._settings.get("confirmations", 0),
            )
            self._sources[name] = source
        return source

    async def remove_events_emitter(self, name: str):
        source = self._sources.pop(name, None)
        if source is None:
            return
        source.remove_all_listeners()
        await source.stop()
        logger.debug("Removed event source %s", name)

    async def close(self):
        for name in list(self._sources):
            await self.remove_events_emitter(name)
