"""Policy store — remembered allow/deny answers per (host, operation).

Stored under the ``policies`` key as::

    {host: {"true" | "false": {operation: {"conditions": {...}, "created_at": int}}}}

Lookups check the allow bucket before the deny bucket. A stored entry only
applies when its condition matches the request; otherwise the lookup falls
through and eventually reports :attr:`Decision.UNKNOWN`.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from nos2bch.policy.conditions import Condition, Decision

if TYPE_CHECKING:
    from collections.abc import Callable

    from nos2bch.storage.client import Storage

logger = logging.getLogger(__name__)

POLICIES_KEY = "policies"


def _bucket(accept: bool) -> str:
    return "true" if accept else "false"


@dataclass(frozen=True)
class PolicyEntry:
    """A flattened policy row for listing."""

    host: str
    accept: bool
    operation: str
    condition: Condition
    created_at: int


class PolicyStore:
    """Read and write remembered decisions in a :class:`Storage` backend."""

    def __init__(self, storage: Storage, *, clock: Callable[[], float] = time.time) -> None:
        self._storage = storage
        self._clock = clock

    async def _load(self) -> dict[str, Any]:
        policies = await self._storage.get(POLICIES_KEY)
        return policies if isinstance(policies, dict) else {}

    async def get_decision(self, host: str, operation: str, payload: dict[str, Any] | None = None) -> Decision:
        """Look up the remembered answer for a request."""
        payload = payload or {}
        policies = await self._load()
        for accept in (True, False):
            entry = policies.get(host, {}).get(_bucket(accept), {}).get(operation)
            if entry is None:
                continue
            condition = Condition.from_dict(entry.get("conditions"))
            if condition.matches(operation, payload):
                return Decision.ALLOW if accept else Decision.DENY
        return Decision.UNKNOWN

    async def set_decision(
        self,
        host: str,
        operation: str,
        accept: bool,
        condition: Condition | None = None,
    ) -> Condition:
        """Remember an answer, merging with any same-answer entry.

        An empty condition replaces whatever was stored. An opposite-answer
        entry whose condition ends up identical is removed.

        Returns:
            The condition actually stored.
        """
        condition = condition or Condition()
        policies = await self._load()
        host_policies = policies.setdefault(host, {})

        if not condition.is_empty:
            existing = host_policies.get(_bucket(accept), {}).get(operation)
            if existing is not None:
                condition = condition.merge(Condition.from_dict(existing.get("conditions")))

        reverse = host_policies.get(_bucket(not accept), {})
        if operation in reverse and Condition.from_dict(reverse[operation].get("conditions")) == condition:
            del reverse[operation]
            logger.debug("Removed contradicting %s policy for %s on %s", _bucket(not accept), operation, host)

        host_policies.setdefault(_bucket(accept), {})[operation] = {
            "conditions": condition.to_dict(),
            "created_at": round(self._clock()),
        }
        await self._storage.set(POLICIES_KEY, policies)
        logger.info("Policy %s for %s on %s saved", "allow" if accept else "deny", operation, host)
        return condition

    async def clear(self, host: str, accept: bool, operation: str) -> None:
        """Forget one remembered answer."""
        policies = await self._load()
        bucket = policies.get(host, {}).get(_bucket(accept), {})
        if bucket.pop(operation, None) is None:
            return
        if not bucket:
            del policies[host][_bucket(accept)]
        if not policies[host]:
            del policies[host]
        await self._storage.set(POLICIES_KEY, policies)

    async def list_policies(self) -> list[PolicyEntry]:
        """All remembered answers, oldest first."""
        policies = await self._load()
        entries = [
            PolicyEntry(
                host=host,
                accept=bucket == "true",
                operation=operation,
                condition=Condition.from_dict(entry.get("conditions")),
                created_at=int(entry.get("created_at", 0)),
            )
            for host, buckets in policies.items()
            for bucket, operations in buckets.items()
            for operation, entry in operations.items()
        ]
        entries.sort(key=lambda e: e.created_at)
        return entries
