"""NIP-01 events — id computation, BIP-340 signing and verification."""

from __future__ import annotations

import json
import time
from typing import Any

from coincurve import PrivateKey, PublicKeyXOnly

from nos2bch.errors import CryptoError, InvalidRequest
from nos2bch.utils.crypto import sha256


def serialize_event(event: dict[str, Any]) -> bytes:
    """Canonical NIP-01 serialization used for the event id."""
    payload = [
        0,
        event["pubkey"],
        event["created_at"],
        event["kind"],
        event.get("tags", []),
        event.get("content", ""),
    ]
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def event_id(event: dict[str, Any]) -> str:
    return sha256(serialize_event(event)).hex()


def get_public_key(secret: bytes) -> str:
    """x-only public key (hex) for a 32-byte secret."""
    return PrivateKey(secret).public_key_xonly.format().hex()


def finalize_event(template: dict[str, Any], secret: bytes) -> dict[str, Any]:
    """Fill in ``pubkey``, ``id`` and ``sig`` for an event template.

    Raises:
        InvalidRequest: If the template lacks a kind.
    """
    if "kind" not in template:
        msg = "event template is missing 'kind'"
        raise InvalidRequest(msg)
    event = {
        "kind": int(template["kind"]),
        "created_at": int(template.get("created_at") or time.time()),
        "tags": [list(tag) for tag in template.get("tags", [])],
        "content": template.get("content", ""),
        "pubkey": get_public_key(secret),
    }
    event["id"] = event_id(event)
    event["sig"] = PrivateKey(secret).sign_schnorr(bytes.fromhex(event["id"])).hex()
    return event


def verify_event(event: dict[str, Any]) -> bool:
    """Check the id and the Schnorr signature of a signed event."""
    try:
        if event_id(event) != event["id"]:
            return False
        key = PublicKeyXOnly(bytes.fromhex(event["pubkey"]))
        return key.verify(bytes.fromhex(event["sig"]), bytes.fromhex(event["id"]))
    except (KeyError, TypeError, ValueError):
        return False


def sign_and_verify(template: dict[str, Any], secret: bytes) -> dict[str, Any]:
    """Finalize an event and refuse to return it unless it verifies.

    Raises:
        CryptoError: If the signed event does not verify.
    """
    event = finalize_event(template, secret)
    if not verify_event(event):
        msg = "invalid event"
        raise CryptoError(msg)
    return event
