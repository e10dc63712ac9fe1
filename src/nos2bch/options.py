"""Options — the settings a user manages outside of any host request.

Covers the stored secret key (import as ``nsec``/hex, or generate), the
``nostr:`` protocol handler template, the notifications toggle and
remembered policies.
"""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING, Any

from coincurve import PrivateKey

from nos2bch.bch.cashaddr import MAINNET_PREFIX, pubkey_to_address
from nos2bch.bch.keys import normalize_even_y, private_key_to_public_key, validate_secret_key
from nos2bch.dispatcher.dispatcher import PRIVATE_KEY_KEY, PROTOCOL_HANDLER_KEY
from nos2bch.errors import InvalidRequest, NoPrivateKey, SerializationError
from nos2bch.nostr import nip19
from nos2bch.nostr.event import get_public_key
from nos2bch.notifications.service import NOTIFICATIONS_KEY

if TYPE_CHECKING:
    from nos2bch.policy.store import PolicyEntry, PolicyStore
    from nos2bch.storage.client import Storage

logger = logging.getLogger(__name__)

_HEX_KEY_RE = re.compile(r"^[0-9a-fA-F]{64}$")


def parse_secret_key(value: str) -> bytes:
    """Accept an ``nsec`` entity or 64 hex characters.

    Raises:
        InvalidRequest: If the value is neither, or out of range.
    """
    value = value.strip()
    if _HEX_KEY_RE.match(value):
        secret = bytes.fromhex(value)
    else:
        try:
            decoded = nip19.decode(value)
        except SerializationError as exc:
            msg = f"Invalid private key: {exc.message}"
            raise InvalidRequest(msg) from exc
        if decoded.type != "nsec" or decoded.hex is None:
            msg = f"Expected an nsec key, got {decoded.type}"
            raise InvalidRequest(msg)
        secret = bytes.fromhex(decoded.hex)
    try:
        validate_secret_key(secret)
    except ValueError as exc:
        raise InvalidRequest(str(exc)) from exc
    return secret


class OptionsService:
    """Read and change agent settings in storage."""

    def __init__(self, storage: Storage, policies: PolicyStore, *, address_prefix: str = MAINNET_PREFIX) -> None:
        self._storage = storage
        self._policies = policies
        self._prefix = address_prefix

    # -- Key ---------------------------------------------------------------

    async def set_private_key(self, value: str) -> dict[str, str]:
        """Store a secret key given as ``nsec`` or hex; returns the new identity."""
        secret = parse_secret_key(value)
        await self._storage.set(PRIVATE_KEY_KEY, secret.hex())
        logger.info("Private key updated")
        return self.identity(secret)

    async def generate_private_key(self) -> dict[str, str]:
        """Create and store a fresh random key."""
        secret = PrivateKey().secret
        await self._storage.set(PRIVATE_KEY_KEY, secret.hex())
        logger.info("Generated new private key")
        return self.identity(secret)

    async def get_identity(self) -> dict[str, str]:
        """Identity of the stored key.

        Raises:
            NoPrivateKey: If no key is stored.
        """
        value = await self._storage.get(PRIVATE_KEY_KEY)
        if not value:
            raise NoPrivateKey()
        return self.identity(bytes.fromhex(value))

    def identity(self, secret: bytes) -> dict[str, str]:
        pubkey = get_public_key(secret)
        compressed = private_key_to_public_key(normalize_even_y(secret), compressed=True)
        return {
            "pubkey": pubkey,
            "npub": nip19.npub_encode(pubkey),
            "address": pubkey_to_address(compressed, prefix=self._prefix),
        }

    # -- Protocol handler and notifications --------------------------------

    async def set_protocol_handler(self, template: str | None) -> None:
        """Set the ``nostr:`` link template, or clear it with None/empty."""
        if template:
            await self._storage.set(PROTOCOL_HANDLER_KEY, template)
        else:
            await self._storage.delete(PROTOCOL_HANDLER_KEY)

    async def set_notifications(self, enabled: bool) -> None:
        await self._storage.set(NOTIFICATIONS_KEY, enabled)

    async def settings(self) -> dict[str, Any]:
        values = await self._storage.get_many([PROTOCOL_HANDLER_KEY, NOTIFICATIONS_KEY])
        return {
            "protocol_handler": values.get(PROTOCOL_HANDLER_KEY),
            "notifications": bool(values.get(NOTIFICATIONS_KEY)),
        }

    # -- Policies ----------------------------------------------------------

    async def list_policies(self) -> list[PolicyEntry]:
        return await self._policies.list_policies()

    async def remove_policy(self, host: str, accept: bool, operation: str) -> None:
        await self._policies.clear(host, accept, operation)
