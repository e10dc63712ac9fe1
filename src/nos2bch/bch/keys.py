"""secp256k1 key handling — public key derivation, parity, ECDSA signing.

Provides the key operations the transaction engine needs:
- Compressed / uncompressed public key encoding
- x-only key reconstruction (the Nostr encoding drops the sign bit)
- Even-y normalisation of a secret scalar
- RFC6979 deterministic ECDSA with low-S, DER encoding and verification
"""

from __future__ import annotations

import hashlib

from ecdsa import SECP256k1, BadSignatureError, SigningKey, VerifyingKey

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_CURVE = SECP256k1
CURVE_ORDER = _CURVE.order
_FIELD_P = _CURVE.curve.p()

# RFC6979 additional data; keeps these nonces apart from any other signer
# that shares the same key (Nostr Schnorr signatures use the same scalar).
NONCE_TAG = b"nos2bch/ECDSA+SHA256"


# ---------------------------------------------------------------------------
# Secret scalars
# ---------------------------------------------------------------------------


def validate_secret_key(secret: bytes) -> None:
    """Raise ValueError unless *secret* is a valid 32-byte scalar."""
    if len(secret) != 32:
        msg = f"Secret key must be 32 bytes, got {len(secret)}"
        raise ValueError(msg)
    n = int.from_bytes(secret, "big")
    if not 0 < n < CURVE_ORDER:
        msg = "Secret key out of range"
        raise ValueError(msg)


def normalize_even_y(secret: bytes) -> bytes:
    """Return the scalar whose public point has the same x and an even y.

    Nostr identities are x-only, so both ``d`` and ``n - d`` map to the same
    identity. Using the even-y variant makes the BCH address derived from
    the compressed key match the one a peer derives from the x-only key.
    """
    pub = private_key_to_public_key(secret, compressed=True)
    if pub[0] == 0x02:
        return secret
    flipped = CURVE_ORDER - int.from_bytes(secret, "big")
    return flipped.to_bytes(32, "big")


# ---------------------------------------------------------------------------
# Public keys
# ---------------------------------------------------------------------------


def private_key_to_public_key(privkey_bytes: bytes, *, compressed: bool = True) -> bytes:
    """Derive the public key from a 32-byte private key.

    Args:
        privkey_bytes: 32-byte big-endian scalar.
        compressed: If True, return the 33-byte SEC compressed encoding.

    Returns:
        The public key bytes (33 compressed or 65 uncompressed).
    """
    sk = SigningKey.from_string(privkey_bytes, curve=_CURVE)
    vk = sk.get_verifying_key()
    if compressed:
        return compress_public_key(vk.to_string())
    return b"\x04" + vk.to_string()


def xonly_public_key(privkey_bytes: bytes) -> bytes:
    """Return the 32-byte x-only public key for a secret scalar."""
    return private_key_to_public_key(privkey_bytes, compressed=True)[1:]


def compress_public_key(raw_pubkey: bytes) -> bytes:
    """Compress a 64-byte (or 65-byte with 0x04 prefix) raw public key to 33 bytes."""
    if len(raw_pubkey) == 65 and raw_pubkey[0] == 0x04:
        raw_pubkey = raw_pubkey[1:]
    if len(raw_pubkey) != 64:
        if len(raw_pubkey) == 33 and raw_pubkey[0] in (0x02, 0x03):
            return raw_pubkey
        msg = f"Invalid raw public key length: {len(raw_pubkey)}"
        raise ValueError(msg)
    x = int.from_bytes(raw_pubkey[:32], "big")
    y = int.from_bytes(raw_pubkey[32:], "big")
    prefix = b"\x02" if y % 2 == 0 else b"\x03"
    return prefix + x.to_bytes(32, "big")


def decompress_public_key(compressed: bytes) -> bytes:
    """Decompress a 33-byte compressed public key to 65-byte uncompressed.

    Raises:
        ValueError: If the prefix is wrong or x is not on the curve.
    """
    if len(compressed) != 33:
        msg = f"Invalid compressed key length: {len(compressed)}"
        raise ValueError(msg)
    prefix = compressed[0]
    if prefix not in (0x02, 0x03):
        msg = f"Invalid compressed key prefix: {prefix:#x}"
        raise ValueError(msg)
    x = int.from_bytes(compressed[1:], "big")
    p = _FIELD_P
    if x >= p:
        msg = "x coordinate out of range"
        raise ValueError(msg)
    # y^2 = x^3 + 7  (mod p)  for secp256k1
    y_sq = (pow(x, 3, p) + 7) % p
    y = pow(y_sq, (p + 1) // 4, p)
    if (y * y) % p != y_sq:
        msg = "Point is not on the secp256k1 curve"
        raise ValueError(msg)
    if (y % 2 == 0) != (prefix == 0x02):
        y = p - y
    return b"\x04" + x.to_bytes(32, "big") + y.to_bytes(32, "big")


def xonly_to_compressed(xonly: bytes) -> bytes:
    """Rebuild a compressed key from a 32-byte x-only key.

    Tries the even-y encoding first and the odd-y encoding second.

    Raises:
        ValueError: If neither reconstruction is a valid curve point.
    """
    if len(xonly) != 32:
        msg = f"x-only key must be 32 bytes, got {len(xonly)}"
        raise ValueError(msg)
    last_error: ValueError | None = None
    for prefix in (b"\x02", b"\x03"):
        candidate = prefix + xonly
        try:
            decompress_public_key(candidate)
        except ValueError as exc:
            last_error = exc
            continue
        return candidate
    assert last_error is not None
    raise last_error


# ---------------------------------------------------------------------------
# ECDSA
# ---------------------------------------------------------------------------


def sign_message(privkey_bytes: bytes, message_hash: bytes, *, nonce_tag: bytes = NONCE_TAG) -> bytes:
    """Sign a 32-byte hash deterministically (RFC6979, low-S, DER-encoded).

    The nonce is derived by HMAC-SHA256 from the private key, the message
    hash and *nonce_tag*, so identical inputs always give identical
    signatures.
    """
    sk = SigningKey.from_string(privkey_bytes, curve=_CURVE)
    return sk.sign_digest_deterministic(
        message_hash,
        hashfunc=hashlib.sha256,
        sigencode=_sigencode_low_s,
        extra_entropy=nonce_tag,
    )


def verify_signature(pubkey_bytes: bytes, message_hash: bytes, signature: bytes) -> bool:
    """Verify a DER-encoded signature against a public key and message hash."""
    if len(pubkey_bytes) == 33:
        uncompressed = decompress_public_key(pubkey_bytes)
        raw_key = uncompressed[1:]
    elif len(pubkey_bytes) == 65:
        raw_key = pubkey_bytes[1:]
    else:
        raw_key = pubkey_bytes
    vk = VerifyingKey.from_string(raw_key, curve=_CURVE)
    try:
        r, s = der_decode(signature)
    except ValueError:
        return False
    try:
        return vk.verify_digest(
            (r, s),
            message_hash,
            sigdecode=lambda sig, _order: sig,
        )
    except BadSignatureError:
        return False


def der_encode(r: int, s: int) -> bytes:
    """Encode r, s as a DER SEQUENCE of two INTEGERs."""
    rb = _int_to_der_bytes(r)
    sb = _int_to_der_bytes(s)
    return b"\x30" + bytes([len(rb) + len(sb)]) + rb + sb


def der_decode(signature: bytes) -> tuple[int, int]:
    """Decode a DER signature to (r, s).

    Raises:
        ValueError: On any structural problem.
    """
    if len(signature) < 8 or signature[0] != 0x30:
        msg = "Invalid DER signature"
        raise ValueError(msg)
    if signature[1] != len(signature) - 2:
        msg = "Invalid DER signature (length)"
        raise ValueError(msg)
    idx = 2
    if signature[idx] != 0x02:
        msg = "Invalid DER signature (r marker)"
        raise ValueError(msg)
    idx += 1
    r_len = signature[idx]
    idx += 1
    r = int.from_bytes(signature[idx : idx + r_len], "big")
    idx += r_len
    if idx >= len(signature) or signature[idx] != 0x02:
        msg = "Invalid DER signature (s marker)"
        raise ValueError(msg)
    idx += 1
    s_len = signature[idx]
    idx += 1
    if idx + s_len != len(signature):
        msg = "Invalid DER signature (s length)"
        raise ValueError(msg)
    s = int.from_bytes(signature[idx : idx + s_len], "big")
    return r, s


def is_low_s(signature: bytes) -> bool:
    """Check that the signature's s value is in the lower half of the order."""
    _, s = der_decode(signature)
    return s <= CURVE_ORDER // 2


def _sigencode_low_s(r: int, s: int, order: int) -> bytes:
    """DER-encode (r, s), replacing s with order - s when s is in the upper half."""
    if s > order // 2:
        s = order - s
    return der_encode(r, s)


def _int_to_der_bytes(n: int) -> bytes:
    """Encode a non-negative integer as a DER INTEGER TLV."""
    b = n.to_bytes(max(1, (n.bit_length() + 7) // 8), "big")
    if b[0] & 0x80:
        b = b"\x00" + b
    return b"\x02" + bytes([len(b)]) + b
