"""Fork-id signature hashing (BIP143-style digest used by Bitcoin Cash).

The transaction-wide hashes are computed once; each input then assembles its
own preimage around them. ``SIGHASH_FORKID`` in the type byte provides replay
protection against the legacy chain.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass

from nos2bch.bch.transaction import Transaction, encode_varint
from nos2bch.utils.crypto import sha256d

SIGHASH_ALL = 0x01
SIGHASH_FORKID = 0x40
SIGHASH_ALL_FORKID = SIGHASH_ALL | SIGHASH_FORKID


@dataclass(frozen=True)
class SighashContext:
    """Transaction-wide digests shared by every input preimage."""

    hash_prevouts: bytes
    hash_sequence: bytes
    hash_outputs: bytes

    @classmethod
    def from_transaction(cls, tx: Transaction) -> SighashContext:
        return cls(
            hash_prevouts=sha256d(b"".join(inp.outpoint() for inp in tx.inputs)),
            hash_sequence=sha256d(b"".join(struct.pack("<I", inp.sequence) for inp in tx.inputs)),
            hash_outputs=sha256d(b"".join(out.serialize() for out in tx.outputs)),
        )


def sighash_preimage(
    tx: Transaction,
    index: int,
    script_code: bytes,
    value: int,
    *,
    context: SighashContext | None = None,
    sighash_type: int = SIGHASH_ALL_FORKID,
) -> bytes:
    """Build the signing serialization for input *index*.

    Args:
        tx: Unsigned transaction (unlock scripts are ignored).
        index: Input being signed.
        script_code: Locking script of the output being spent.
        value: Value of the output being spent, in satoshis.
        context: Precomputed transaction-wide hashes.
        sighash_type: Sighash flags, ``ALL|FORKID`` by default.
    """
    ctx = context or SighashContext.from_transaction(tx)
    inp = tx.inputs[index]
    return b"".join(
        (
            struct.pack("<i", tx.version),
            ctx.hash_prevouts,
            ctx.hash_sequence,
            inp.outpoint(),
            encode_varint(len(script_code)),
            script_code,
            struct.pack("<q", value),
            struct.pack("<I", inp.sequence),
            ctx.hash_outputs,
            struct.pack("<I", tx.locktime),
            struct.pack("<I", sighash_type),
        )
    )


def signature_hash(
    tx: Transaction,
    index: int,
    script_code: bytes,
    value: int,
    *,
    context: SighashContext | None = None,
    sighash_type: int = SIGHASH_ALL_FORKID,
) -> bytes:
    """Double-SHA256 of :func:`sighash_preimage` — the digest that gets signed."""
    return sha256d(
        sighash_preimage(tx, index, script_code, value, context=context, sighash_type=sighash_type)
    )
