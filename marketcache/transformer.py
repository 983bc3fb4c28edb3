"""
transformer.py - Event field transformer.

Normalizes decoded event values using the contract ABI: positional
duplicates (web3-style "0", "1", ... keys) are dropped and address-typed
fields are lowercased. Unknown events or fields pass through unchanged.
"""

import logging
from typing import Any, Callable, Dict, List

from marketcache.events import Event

logger = logging.getLogger("transformer")

Abi = List[Dict[str, Any]]


def _coerce(abi_type: str, value: Any) -> Any:
    if abi_type == "address" and isinstance(value, str):
        return value.lower()
    return value


def event_transformer(*abis: Abi) -> Callable[[Event], Event]:
    """Build a pure transform over the event definitions of all given ABIs."""
    definitions: Dict[str, Dict[str, str]] = {}
    for abi in abis:
        for entry in abi:
            if entry.get("type") != "event":
                continue
            inputs = {i["name"]: i["type"] for i in entry.get("inputs", []) if i.get("name")}
            definitions.setdefault(entry["name"], inputs)

    def transform(event: Event) -> Event:
        inputs = definitions.get(event.event)
        if inputs is None:
            logger.warning("Event %s not found in ABI, fields left as-is", event.event)

        values = {}
        for key, value in event.values.items():
            if key.isdigit():
                continue
            if inputs is None:
                values[key] = value
                continue
            abi_type = inputs.get(key)
            if abi_type is None:
                logger.warning("Field %s of event %s not found in ABI", key, event.event)
                values[key] = value
                continue
            values[key] = _coerce(abi_type, value)
        return event.with_values(values)

    return transform
