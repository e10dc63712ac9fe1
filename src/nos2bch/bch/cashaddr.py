"""CashAddr encoding — checksummed base32 addresses for Bitcoin Cash.

Address operations:
- P2PKH address generation from compressed public keys
- Encoding / decoding of ``prefix:payload`` strings with a 40-bit BCH checksum
- Locking script and Electrum script-hash derivation from an address
"""

from __future__ import annotations

from nos2bch.bch.script import p2pkh_lock_script
from nos2bch.errors import InvalidChecksum, InvalidFormat
from nos2bch.utils.crypto import hash160, sha256

CHARSET = "qpzry9x8gf2tvdw0s3jn54khce6mua7l"
_CHARSET_REV = {c: i for i, c in enumerate(CHARSET)}

MAINNET_PREFIX = "bitcoincash"
TESTNET_PREFIX = "bchtest"

# Version byte type bits (upper nibble); size bits 0 means a 160-bit hash.
TYPE_P2PKH = 0
TYPE_P2SH = 1

_GENERATORS = (0x98F2BC8E61, 0x79B76D99E2, 0xF33E5FB3C4, 0xAE2EABE2A8, 0x1E4F43E470)
_CHECKSUM_LEN = 8
_HASH_LEN = 20


# ---------------------------------------------------------------------------
# Checksum primitives
# ---------------------------------------------------------------------------


def _polymod(values: list[int]) -> int:
    """BCH code remainder over GF(32) used by CashAddr."""
    chk = 1
    for value in values:
        top = chk >> 35
        chk = ((chk & 0x07FFFFFFFF) << 5) ^ value
        for i, gen in enumerate(_GENERATORS):
            if (top >> i) & 1:
                chk ^= gen
    return chk ^ 1


def _prefix_expand(prefix: str) -> list[int]:
    """Lower 5 bits of each prefix character, followed by a zero separator."""
    return [ord(c) & 0x1F for c in prefix] + [0]


def _create_checksum(prefix: str, data: list[int]) -> list[int]:
    mod = _polymod(_prefix_expand(prefix) + data + [0] * _CHECKSUM_LEN)
    return [(mod >> (5 * (7 - i))) & 0x1F for i in range(_CHECKSUM_LEN)]


def convertbits(data: bytes | list[int], frombits: int, tobits: int, *, pad: bool = True) -> list[int]:
    """Regroup a sequence of *frombits*-wide values into *tobits*-wide values.

    Raises:
        InvalidFormat: On out-of-range input or non-zero padding.
    """
    acc = 0
    bits = 0
    ret: list[int] = []
    maxv = (1 << tobits) - 1
    max_acc = (1 << (frombits + tobits - 1)) - 1
    for value in data:
        if value < 0 or value >> frombits:
            msg = f"Invalid value in bit conversion: {value}"
            raise InvalidFormat(msg)
        acc = ((acc << frombits) | value) & max_acc
        bits += frombits
        while bits >= tobits:
            bits -= tobits
            ret.append((acc >> bits) & maxv)
    if pad:
        if bits:
            ret.append((acc << (tobits - bits)) & maxv)
    elif bits >= frombits or ((acc << (tobits - bits)) & maxv):
        msg = "Invalid padding in bit conversion"
        raise InvalidFormat(msg)
    return ret


# ---------------------------------------------------------------------------
# Encode / decode
# ---------------------------------------------------------------------------


def encode_address(
    pubkey_hash: bytes,
    *,
    prefix: str = MAINNET_PREFIX,
    addr_type: int = TYPE_P2PKH,
) -> str:
    """Encode a 20-byte hash as a CashAddr string.

    Args:
        pubkey_hash: 20-byte HASH160 of the key or script.
        prefix: Human-readable network prefix.
        addr_type: ``TYPE_P2PKH`` or ``TYPE_P2SH``.

    Returns:
        ``prefix:payload`` address string (lower case).
    """
    if len(pubkey_hash) != _HASH_LEN:
        msg = f"Hash must be {_HASH_LEN} bytes, got {len(pubkey_hash)}"
        raise InvalidFormat(msg)
    version = addr_type << 3
    data = convertbits(bytes([version]) + pubkey_hash, 8, 5)
    checksum = _create_checksum(prefix, data)
    return prefix + ":" + "".join(CHARSET[d] for d in data + checksum)


def decode_address(address: str, *, default_prefix: str = MAINNET_PREFIX) -> tuple[str, int, bytes]:
    """Decode a CashAddr string.

    Prefixless addresses are checked against *default_prefix*.

    Returns:
        Tuple of (prefix, version_byte, hash_bytes).

    Raises:
        InvalidFormat: Mixed case, bad characters, bad padding or size.
        InvalidChecksum: Checksum does not verify.
    """
    if address.lower() != address and address.upper() != address:
        msg = "Mixed case CashAddr"
        raise InvalidFormat(msg)
    address = address.lower()
    if ":" in address:
        prefix, _, payload = address.partition(":")
    else:
        prefix, payload = default_prefix, address
    if not prefix or len(payload) <= _CHECKSUM_LEN:
        msg = "CashAddr too short"
        raise InvalidFormat(msg)
    try:
        data = [_CHARSET_REV[c] for c in payload]
    except KeyError as exc:
        msg = f"Invalid character in CashAddr: {exc.args[0]!r}"
        raise InvalidFormat(msg) from None
    if _polymod(_prefix_expand(prefix) + data) != 0:
        msg = "Invalid CashAddr checksum"
        raise InvalidChecksum(msg)
    decoded = convertbits(data[:-_CHECKSUM_LEN], 5, 8, pad=False)
    if not decoded:
        msg = "Empty CashAddr payload"
        raise InvalidFormat(msg)
    version, hash_bytes = decoded[0], bytes(decoded[1:])
    if version & 0x07 == 0 and len(hash_bytes) != _HASH_LEN:
        msg = f"Invalid hash length for version {version}: {len(hash_bytes)}"
        raise InvalidFormat(msg)
    return prefix, version, hash_bytes


def validate_address(address: str) -> bool:
    """Check if *address* is a well-formed CashAddr string."""
    try:
        decode_address(address)
    except (InvalidFormat, InvalidChecksum):
        return False
    return True


# ---------------------------------------------------------------------------
# Derived helpers
# ---------------------------------------------------------------------------


def pubkey_to_address(pubkey: bytes, *, prefix: str = MAINNET_PREFIX) -> str:
    """Generate a P2PKH CashAddr from a compressed public key."""
    return encode_address(hash160(pubkey), prefix=prefix)


def address_to_lock_script(address: str) -> bytes:
    """Build the P2PKH locking script for a CashAddr address.

    Raises:
        InvalidFormat: If the address is not P2PKH.
    """
    _, version, pubkey_hash = decode_address(address)
    if version >> 3 != TYPE_P2PKH:
        msg = "Only P2PKH addresses are supported"
        raise InvalidFormat(msg)
    return p2pkh_lock_script(pubkey_hash)


def address_to_scripthash(address: str) -> str:
    """Electrum-style script hash: reversed SHA-256 of the locking script, hex."""
    return sha256(address_to_lock_script(address))[::-1].hex()
