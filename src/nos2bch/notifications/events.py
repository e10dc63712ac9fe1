"""Event types emitted to notification subscribers.

- ``RawEvent``: envelope with a type string and JSON content
- ``PermissionEvent``: a host was allowed or denied an operation
- ``TipEvent``: a tip was broadcast
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any


@dataclass(frozen=True)
class RawEvent:
    """Generic event envelope sent to subscribers."""

    type: str
    content: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class PermissionEvent(RawEvent):
    """A gated operation was decided for a host."""

    type: str = "permission"
    host: str = ""
    operation: str = ""
    allowed: bool = False

    @property
    def title(self) -> str:
        return f"{self.operation} {'allowed' if self.allowed else 'denied'} for {self.host}"


@dataclass(frozen=True)
class TipEvent(RawEvent):
    """A tip transaction was broadcast."""

    type: str = "tip"
    txid: str = ""
    amount: int = 0
    recipient_address: str = ""


def summarize_params(operation: str, params: dict[str, Any]) -> dict[str, Any]:
    """What a notification shows about the request: event fields or the params."""
    event = params.get("event") if operation == "signEvent" else None
    if isinstance(event, dict):
        return {"kind": event.get("kind"), "content": event.get("content"), "tags": event.get("tags")}
    return dict(params)
