"""Policy decisions and the structural conditions attached to them.

A condition narrows when a stored answer applies:

- ``kinds``: the answer only covers ``signEvent`` requests whose event kind
  is in the set.
- ``max_amount``: the answer only covers ``tipBCH`` requests whose amount is
  at most this many satoshis.

An empty condition matches every request. On disk a condition is the JSON
object ``{"kinds": {"1": true}, "max_amount": 5000}`` with absent fields
omitted.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any, Self

from nos2bch.errors import InvalidRequest

SIGN_EVENT = "signEvent"
TIP_BCH = "tipBCH"


def _as_int(value: Any, name: str) -> int:
    if isinstance(value, bool):
        msg = f"{name} must be an integer"
        raise InvalidRequest(msg)
    if isinstance(value, str) and value.isdigit():
        return int(value)
    if isinstance(value, int) and value >= 0:
        return value
    msg = f"{name} must be a non-negative integer, got {value!r}"
    raise InvalidRequest(msg)


class Decision(enum.StrEnum):
    """Outcome of a policy lookup."""

    ALLOW = "allow"
    DENY = "deny"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class Condition:
    """Structural filter stored with a remembered answer."""

    kinds: frozenset[int] | None = None
    max_amount: int | None = None

    @property
    def is_empty(self) -> bool:
        return self.kinds is None and self.max_amount is None

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> Self:
        """Parse the stored (or prompt-supplied) JSON shape.

        ``kinds`` may be either the stored ``{"1": true}`` map or a plain list.

        Raises:
            InvalidRequest: When the shape or a value is malformed.
        """
        if not data:
            return cls()
        if not isinstance(data, dict):
            msg = "condition must be an object"
            raise InvalidRequest(msg)
        raw_kinds = data.get("kinds")
        kinds: frozenset[int] | None = None
        if isinstance(raw_kinds, dict):
            kinds = frozenset(_as_int(k, "kind") for k, v in raw_kinds.items() if v)
        elif isinstance(raw_kinds, (list, tuple, set, frozenset)):
            kinds = frozenset(_as_int(k, "kind") for k in raw_kinds)
        elif raw_kinds is not None:
            msg = "kinds must be a list or an object"
            raise InvalidRequest(msg)
        max_amount = data.get("max_amount")
        return cls(kinds=kinds, max_amount=_as_int(max_amount, "max_amount") if max_amount is not None else None)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        if self.kinds is not None:
            out["kinds"] = {str(k): True for k in sorted(self.kinds)}
        if self.max_amount is not None:
            out["max_amount"] = self.max_amount
        return out

    def merge(self, existing: Condition) -> Condition:
        """Combine with an *existing* same-answer condition.

        Kind sets are unioned and amount ceilings take the lower value; a
        field present on only one side keeps this condition's value.
        """
        kinds = self.kinds
        if kinds is not None and existing.kinds is not None:
            kinds = kinds | existing.kinds
        max_amount = self.max_amount
        if max_amount is not None and existing.max_amount is not None:
            max_amount = min(max_amount, existing.max_amount)
        return Condition(kinds=kinds, max_amount=max_amount)

    def matches(self, operation: str, payload: dict[str, Any]) -> bool:
        """Whether a request for *operation* with *payload* is covered."""
        if self.kinds is not None and operation == SIGN_EVENT:
            event = payload.get("event") or {}
            try:
                kind = int(event.get("kind"))
            except (TypeError, ValueError):
                return False
            if kind not in self.kinds:
                return False
        if self.max_amount is not None and operation == TIP_BCH:
            try:
                amount = int(payload.get("amount"))
            except (TypeError, ValueError):
                return False
            if amount > self.max_amount:
                return False
        return True
