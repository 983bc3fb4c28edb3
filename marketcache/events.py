"""
events.py - Decoded blockchain event record.
"""

from dataclasses import dataclass, field, replace
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class Event:
    """One decoded contract log: event name plus its return values."""

    event: str
    values: Dict[str, Any] = field(default_factory=dict)
    address: str = ""
    block_number: Optional[int] = None
    transaction_hash: Optional[str] = None
    log_index: Optional[int] = None

    def with_values(self, values: Dict[str, Any]) -> "Event":
        return replace(self, values=values)

    def to_dict(self) -> dict:
        return {
            "event": self.event,
            "values": dict(self.values),
            "address": self.address,
            "block_number": self.block_number,
            "transaction_hash": self.transaction_hash,
            "log_index": self.log_index,
        }


def wrap_event(event: str, payload: Dict[str, Any]) -> Dict[str, Any]:
    """Tag an emitted payload with the name of the event that produced it."""
    return {"event": event, **payload}
