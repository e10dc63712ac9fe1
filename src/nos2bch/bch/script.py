"""BCH script building — P2PKH lock/unlock, script type detection.

Provides construction and parsing of the standard scripts the tip engine
spends from and pays to:
- P2PKH (Pay-to-Public-Key-Hash) lock and unlock scripts
- Minimal data pushes
- Script type detection and public key hash extraction
"""

from __future__ import annotations

import enum
import struct

from nos2bch.utils.crypto import hash160

# ---------------------------------------------------------------------------
# Opcodes
# ---------------------------------------------------------------------------


class OpCode(int, enum.Enum):
    """Opcodes used by the standard scripts."""

    OP_0 = 0x00
    OP_PUSHDATA1 = 0x4C
    OP_PUSHDATA2 = 0x4D
    OP_PUSHDATA4 = 0x4E
    OP_RETURN = 0x6A
    OP_DUP = 0x76
    OP_EQUAL = 0x87
    OP_EQUALVERIFY = 0x88
    OP_HASH160 = 0xA9
    OP_CHECKSIG = 0xAC


class ScriptType(enum.StrEnum):
    """Known locking script types."""

    P2PKH = "pubkeyhash"
    P2SH = "scripthash"
    NULL_DATA = "nulldata"
    UNKNOWN = "unknown"


# ---------------------------------------------------------------------------
# Data push helpers
# ---------------------------------------------------------------------------


def push_data(data: bytes) -> bytes:
    """Encode a data push operation using minimal encoding rules."""
    length = len(data)
    if length == 0:
        return bytes([OpCode.OP_0])
    if length <= 0x4B:
        return bytes([length]) + data
    if length <= 0xFF:
        return bytes([OpCode.OP_PUSHDATA1, length]) + data
    if length <= 0xFFFF:
        return bytes([OpCode.OP_PUSHDATA2]) + struct.pack("<H", length) + data
    return bytes([OpCode.OP_PUSHDATA4]) + struct.pack("<I", length) + data


# ---------------------------------------------------------------------------
# P2PKH scripts
# ---------------------------------------------------------------------------


def p2pkh_lock_script(pubkey_hash: bytes) -> bytes:
    """Build a P2PKH locking script.

    OP_DUP OP_HASH160 <20 bytes> OP_EQUALVERIFY OP_CHECKSIG
    """
    if len(pubkey_hash) != 20:
        msg = f"pubkey_hash must be 20 bytes, got {len(pubkey_hash)}"
        raise ValueError(msg)
    return (
        bytes([OpCode.OP_DUP, OpCode.OP_HASH160])
        + push_data(pubkey_hash)
        + bytes([OpCode.OP_EQUALVERIFY, OpCode.OP_CHECKSIG])
    )


def p2pkh_lock_script_from_pubkey(pubkey: bytes) -> bytes:
    """Build a P2PKH locking script from a compressed public key."""
    return p2pkh_lock_script(hash160(pubkey))


def p2pkh_unlock_script(signature: bytes, pubkey: bytes) -> bytes:
    """Build a P2PKH unlocking script: ``<sig> <pubkey>``.

    Args:
        signature: DER-encoded signature with the sighash byte appended.
        pubkey: 33-byte compressed public key.
    """
    return push_data(signature) + push_data(pubkey)


# ---------------------------------------------------------------------------
# Script type detection
# ---------------------------------------------------------------------------


def detect_script_type(script: bytes) -> ScriptType:
    """Detect the type of a locking script."""
    if (
        len(script) == 25
        and script[0] == OpCode.OP_DUP
        and script[1] == OpCode.OP_HASH160
        and script[2] == 0x14
        and script[23] == OpCode.OP_EQUALVERIFY
        and script[24] == OpCode.OP_CHECKSIG
    ):
        return ScriptType.P2PKH
    if (
        len(script) == 23
        and script[0] == OpCode.OP_HASH160
        and script[1] == 0x14
        and script[22] == OpCode.OP_EQUAL
    ):
        return ScriptType.P2SH
    if script[:1] == bytes([OpCode.OP_RETURN]) or script[:2] == bytes([OpCode.OP_0, OpCode.OP_RETURN]):
        return ScriptType.NULL_DATA
    return ScriptType.UNKNOWN
