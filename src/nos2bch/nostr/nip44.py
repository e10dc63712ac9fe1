"""NIP-44 v2 encryption — ChaCha20 + HMAC-SHA256 with length-hiding padding.

The conversation key is ``HKDF-extract(salt="nip44-v2", ikm=ecdh_x)`` and is
stable per (self, peer) pair, which is why callers cache it. Per-message
keys come from ``HKDF-expand(conversation_key, info=nonce, 76)``.
"""

from __future__ import annotations

import base64
import binascii
import os
import struct

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms
from cryptography.hazmat.primitives.kdf.hkdf import HKDFExpand

from nos2bch.errors import CryptoError
from nos2bch.nostr.ecdh import shared_x
from nos2bch.utils.crypto import constant_time_equal, hmac_sha256

VERSION = 2
_SALT = b"nip44-v2"
MIN_PLAINTEXT_SIZE = 1
MAX_PLAINTEXT_SIZE = 65535


def get_conversation_key(secret: bytes, peer: str) -> bytes:
    """Derive the 32-byte conversation key for *peer* (x-only hex)."""
    return hmac_sha256(_SALT, shared_x(secret, peer))


def _message_keys(conversation_key: bytes, nonce: bytes) -> tuple[bytes, bytes, bytes]:
    keys = HKDFExpand(algorithm=hashes.SHA256(), length=76, info=nonce).derive(conversation_key)
    return keys[:32], keys[32:44], keys[44:76]


def calc_padded_len(unpadded_len: int) -> int:
    """Padded plaintext length for a message of *unpadded_len* bytes."""
    if unpadded_len <= 32:
        return 32
    next_power = 1 << ((unpadded_len - 1).bit_length())
    chunk = 32 if next_power <= 256 else next_power // 8
    return chunk * ((unpadded_len - 1) // chunk + 1)


def _pad(plaintext: str) -> bytes:
    raw = plaintext.encode("utf-8")
    if not MIN_PLAINTEXT_SIZE <= len(raw) <= MAX_PLAINTEXT_SIZE:
        msg = f"NIP-44 plaintext size out of range: {len(raw)}"
        raise CryptoError(msg)
    return struct.pack(">H", len(raw)) + raw + b"\x00" * (calc_padded_len(len(raw)) - len(raw))


def _unpad(padded: bytes) -> str:
    (length,) = struct.unpack(">H", padded[:2])
    raw = padded[2 : 2 + length]
    if length == 0 or len(raw) != length or len(padded) != 2 + calc_padded_len(length):
        msg = "NIP-44 invalid padding"
        raise CryptoError(msg)
    return raw.decode("utf-8")


def _chacha20(key: bytes, nonce: bytes, data: bytes) -> bytes:
    # cryptography takes a 16-byte nonce: 4-byte LE block counter ‖ 12-byte nonce.
    cipher = Cipher(algorithms.ChaCha20(key, b"\x00\x00\x00\x00" + nonce), mode=None)
    encryptor = cipher.encryptor()
    return encryptor.update(data) + encryptor.finalize()


def encrypt(plaintext: str, conversation_key: bytes, *, nonce: bytes | None = None) -> str:
    """Encrypt *plaintext* under a conversation key; returns the base64 payload."""
    nonce = nonce or os.urandom(32)
    chacha_key, chacha_nonce, hmac_key = _message_keys(conversation_key, nonce)
    ciphertext = _chacha20(chacha_key, chacha_nonce, _pad(plaintext))
    mac = hmac_sha256(hmac_key, nonce + ciphertext)
    return base64.b64encode(bytes([VERSION]) + nonce + ciphertext + mac).decode("ascii")


def decrypt(payload: str, conversation_key: bytes) -> str:
    """Decrypt a NIP-44 v2 payload.

    Raises:
        CryptoError: On unknown versions, bad lengths, MAC or padding failures.
    """
    if not payload or payload[0] == "#":
        msg = "unknown NIP-44 encryption version"
        raise CryptoError(msg)
    if not 132 <= len(payload) <= 87472:
        msg = f"invalid NIP-44 payload length: {len(payload)}"
        raise CryptoError(msg)
    try:
        data = base64.b64decode(payload, validate=True)
    except binascii.Error as exc:
        msg = "NIP-44 payload is not valid base64"
        raise CryptoError(msg) from exc
    if len(data) < 99 or data[0] != VERSION:
        msg = f"unknown NIP-44 version: {data[0] if data else None}"
        raise CryptoError(msg)
    nonce, ciphertext, mac = data[1:33], data[33:-32], data[-32:]
    chacha_key, chacha_nonce, hmac_key = _message_keys(conversation_key, nonce)
    if not constant_time_equal(hmac_sha256(hmac_key, nonce + ciphertext), mac):
        msg = "NIP-44 invalid MAC"
        raise CryptoError(msg)
    try:
        return _unpad(_chacha20(chacha_key, chacha_nonce, ciphertext))
    except UnicodeDecodeError as exc:
        msg = "NIP-44 plaintext is not valid UTF-8"
        raise CryptoError(msg) from exc
