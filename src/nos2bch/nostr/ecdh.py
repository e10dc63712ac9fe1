"""secp256k1 ECDH as used by Nostr: the raw x coordinate of ``d·P``."""

from __future__ import annotations

from coincurve import PublicKey

from nos2bch.errors import InvalidRecipient


def shared_x(secret: bytes, peer_xonly_hex: str) -> bytes:
    """32-byte shared x coordinate between *secret* and an x-only peer key.

    Raises:
        InvalidRecipient: If the peer key is not a valid curve point.
    """
    try:
        peer = PublicKey(b"\x02" + bytes.fromhex(peer_xonly_hex))
    except ValueError as exc:
        msg = f"Invalid peer public key: {peer_xonly_hex[:16]}..."
        raise InvalidRecipient(msg) from exc
    return peer.multiply(secret).format(compressed=True)[1:]
