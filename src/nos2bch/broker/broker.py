"""Authorization broker.

State per gated request::

    Idle -> Evaluating -> Allowed | Denied | NeedsPrompt
    NeedsPrompt -> Prompting -> Resolved

The broker owns a single slot. :meth:`AuthorizationBroker.acquire` takes it
for the whole lifetime of one gated operation and fails immediately with
:class:`~nos2bch.errors.Busy` while another operation holds it, so at most
one prompt is ever open. The confirmation UI is an external collaborator:
the broker hands it a :class:`PendingPrompt` through :class:`PromptSurface`
and waits for :meth:`resolve_prompt` or :meth:`on_window_closed`.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol

from nos2bch.cache.lru import LRUCache
from nos2bch.errors import Busy
from nos2bch.nostr import nip44
from nos2bch.policy.conditions import Condition, Decision
from nos2bch.utils.crypto import sha256

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from nos2bch.policy.store import PolicyStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PromptResponse:
    """The user's answer: ``condition`` set means "remember this"."""

    accept: bool
    condition: Condition | None = None


@dataclass
class PendingPrompt:
    """The one live confirmation request."""

    host: str
    operation: str
    params: dict[str, Any]
    preview: dict[str, Any] | None = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    future: asyncio.Future[PromptResponse] | None = field(default=None, repr=False)

    def to_dict(self) -> dict[str, Any]:
        """Parameters handed to the confirmation UI."""
        return {
            "id": self.id,
            "host": self.host,
            "type": self.operation,
            "params": self.params,
            "preview": self.preview,
        }


class PromptSurface(Protocol):
    """Confirmation UI. ``open`` shows the prompt and returns without waiting."""

    async def open(self, prompt: PendingPrompt) -> None: ...


class AuthorizationBroker:
    """Single-flight gate in front of every key-using operation.

    Usage::

        broker.acquire()
        try:
            if await broker.authorize(host, "signEvent", params) != Decision.ALLOW:
                raise PermissionDenied()
            ...
        finally:
            broker.release()
    """

    def __init__(
        self,
        policy_store: PolicyStore,
        surface: PromptSurface,
        *,
        cache_size: int = 100,
        prompt_timeout: float | None = None,
    ) -> None:
        self._policy_store = policy_store
        self._surface = surface
        self._prompt_timeout = prompt_timeout
        self._busy = False
        self._pending: PendingPrompt | None = None
        self._secrets: LRUCache[str, bytes] = LRUCache(cache_size)
        self._key_fingerprint: bytes | None = None

    # ------------------------------------------------------------------
    # Slot
    # ------------------------------------------------------------------

    @property
    def is_busy(self) -> bool:
        return self._busy

    def acquire(self) -> None:
        """Take the slot.

        Raises:
            Busy: If another operation holds it.
        """
        if self._busy:
            raise Busy()
        self._busy = True

    def release(self) -> None:
        self._busy = False

    # ------------------------------------------------------------------
    # Decisions
    # ------------------------------------------------------------------

    async def authorize(
        self,
        host: str,
        operation: str,
        params: dict[str, Any],
        *,
        preview: Callable[[], Awaitable[dict[str, Any] | None]] | None = None,
    ) -> Decision:
        """Decide whether *host* may run *operation* with *params*.

        Returns :attr:`Decision.ALLOW` or :attr:`Decision.DENY`; an unknown
        policy is turned into one of the two by prompting. *preview* is only
        awaited when a prompt is actually needed.
        """
        decision = await self._policy_store.get_decision(host, operation, params)
        if decision != Decision.UNKNOWN:
            logger.debug("Policy %s for %s on %s", decision, operation, host)
            return decision

        shown = await preview() if preview is not None else None
        response = await self._prompt(PendingPrompt(host=host, operation=operation, params=params, preview=shown))
        if response.condition is not None:
            await self._policy_store.set_decision(host, operation, response.accept, response.condition)
        return Decision.ALLOW if response.accept else Decision.DENY

    async def _prompt(self, prompt: PendingPrompt) -> PromptResponse:
        prompt.future = asyncio.get_running_loop().create_future()
        self._pending = prompt
        logger.info("Prompting for %s on %s", prompt.operation, prompt.host)
        try:
            await self._surface.open(prompt)
            if self._prompt_timeout is None:
                return await prompt.future
            try:
                return await asyncio.wait_for(prompt.future, timeout=self._prompt_timeout)
            except TimeoutError:
                logger.warning("Prompt %s timed out; treating as denied", prompt.id)
                return PromptResponse(accept=False)
        finally:
            self._pending = None

    def get_prompt(self) -> dict[str, Any] | None:
        """Parameters of the pending prompt, for the UI to render."""
        return self._pending.to_dict() if self._pending else None

    def resolve_prompt(self, response: PromptResponse, *, prompt_id: str | None = None) -> bool:
        """Answer the pending prompt.

        Returns:
            False when there is no pending prompt (or *prompt_id* is stale).
        """
        pending = self._pending
        if pending is None or pending.future is None or pending.future.done():
            return False
        if prompt_id is not None and prompt_id != pending.id:
            logger.warning("Ignoring answer for stale prompt %s", prompt_id)
            return False
        pending.future.set_result(response)
        return True

    def on_window_closed(self, *, prompt_id: str | None = None) -> None:
        """The UI went away without answering: deny."""
        if self.resolve_prompt(PromptResponse(accept=False), prompt_id=prompt_id):
            logger.info("Prompt window closed; denied")

    # ------------------------------------------------------------------
    # Shared-secret cache
    # ------------------------------------------------------------------

    def observe_key(self, secret: bytes) -> None:
        """Record the active secret key, clearing derived secrets on change."""
        fingerprint = sha256(secret)
        if self._key_fingerprint is not None and fingerprint != self._key_fingerprint:
            logger.info("Secret key changed; clearing shared-secret cache")
            self._secrets.clear()
        self._key_fingerprint = fingerprint

    def shared_secret(self, secret: bytes, peer: str) -> bytes:
        """NIP-44 conversation key with *peer*, cached per active key."""
        self.observe_key(secret)
        key = self._secrets.get(peer)
        if key is None:
            key = nip44.get_conversation_key(secret, peer)
            self._secrets.set(peer, key)
        return key
