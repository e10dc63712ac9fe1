"""NIP-04 direct-message encryption (AES-256-CBC over the ECDH x coordinate).

Payload format: ``base64(ciphertext) + "?iv=" + base64(iv)``.
"""

from __future__ import annotations

import base64
import binascii
import os

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from nos2bch.errors import CryptoError
from nos2bch.nostr.ecdh import shared_x


def encrypt(secret: bytes, peer: str, plaintext: str, *, iv: bytes | None = None) -> str:
    """Encrypt *plaintext* for *peer* (x-only hex)."""
    key = shared_x(secret, peer)
    iv = iv or os.urandom(16)
    padder = padding.PKCS7(128).padder()
    data = padder.update(plaintext.encode("utf-8")) + padder.finalize()
    encryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).encryptor()
    ciphertext = encryptor.update(data) + encryptor.finalize()
    return base64.b64encode(ciphertext).decode("ascii") + "?iv=" + base64.b64encode(iv).decode("ascii")


def decrypt(secret: bytes, peer: str, payload: str) -> str:
    """Decrypt a NIP-04 payload from *peer*.

    Raises:
        CryptoError: On a malformed payload or bad padding.
    """
    ct_b64, sep, iv_b64 = payload.partition("?iv=")
    if not sep:
        msg = "NIP-04 payload is missing the iv"
        raise CryptoError(msg)
    try:
        ciphertext = base64.b64decode(ct_b64, validate=True)
        iv = base64.b64decode(iv_b64, validate=True)
    except binascii.Error as exc:
        msg = "NIP-04 payload is not valid base64"
        raise CryptoError(msg) from exc
    if len(iv) != 16 or not ciphertext or len(ciphertext) % 16:
        msg = "NIP-04 payload has invalid lengths"
        raise CryptoError(msg)
    key = shared_x(secret, peer)
    decryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).decryptor()
    data = decryptor.update(ciphertext) + decryptor.finalize()
    unpadder = padding.PKCS7(128).unpadder()
    try:
        plain = unpadder.update(data) + unpadder.finalize()
        return plain.decode("utf-8")
    except (ValueError, UnicodeDecodeError) as exc:
        msg = "NIP-04 decryption failed"
        raise CryptoError(msg) from exc
