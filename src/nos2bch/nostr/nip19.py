"""NIP-19 bech32 entities — npub, nsec, note, nprofile, nevent.

Bare entities carry a 32-byte payload; ``nprofile`` and ``nevent`` carry a
TLV stream. The 90-character limit of BIP-173 does not apply, so decoding
works on the checksum primitives directly.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from bech32 import CHARSET, bech32_encode, bech32_verify_checksum, convertbits

from nos2bch.errors import InvalidChecksum, InvalidFormat

_BARE_32 = ("npub", "nsec", "note")

_TLV_SPECIAL = 0
_TLV_RELAY = 1
_TLV_AUTHOR = 2
_TLV_KIND = 3

_MAX_LENGTH = 5000


@dataclass(frozen=True)
class ProfilePointer:
    pubkey: str
    relays: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class EventPointer:
    id: str
    relays: list[str] = field(default_factory=list)
    author: str | None = None
    kind: int | None = None


@dataclass(frozen=True)
class Decoded:
    """A decoded NIP-19 entity: ``type`` is the human-readable prefix."""

    type: str
    data: str | ProfilePointer | EventPointer

    @property
    def hex(self) -> str | None:
        """The referenced 32-byte key or event id, as hex."""
        if isinstance(self.data, str):
            return self.data
        if isinstance(self.data, ProfilePointer):
            return self.data.pubkey
        return self.data.id

    @property
    def relays(self) -> list[str]:
        if isinstance(self.data, (ProfilePointer, EventPointer)):
            return list(self.data.relays)
        return []


def _split(entity: str) -> tuple[str, bytes]:
    if len(entity) > _MAX_LENGTH:
        msg = "NIP-19 entity too long"
        raise InvalidFormat(msg)
    if entity.lower() != entity and entity.upper() != entity:
        msg = "Mixed case NIP-19 entity"
        raise InvalidFormat(msg)
    entity = entity.lower()
    pos = entity.rfind("1")
    if pos < 1 or pos + 7 > len(entity):
        msg = f"Malformed NIP-19 entity: {entity[:16]}..."
        raise InvalidFormat(msg)
    hrp = entity[:pos]
    try:
        data = [CHARSET.index(c) for c in entity[pos + 1 :]]
    except ValueError:
        msg = "Invalid character in NIP-19 entity"
        raise InvalidFormat(msg) from None
    if not bech32_verify_checksum(hrp, data):
        msg = "Invalid NIP-19 checksum"
        raise InvalidChecksum(msg)
    payload = convertbits(data[:-6], 5, 8, False)
    if payload is None:
        msg = "Invalid NIP-19 padding"
        raise InvalidFormat(msg)
    return hrp, bytes(payload)


def _parse_tlv(payload: bytes) -> dict[int, list[bytes]]:
    result: dict[int, list[bytes]] = {}
    idx = 0
    while idx < len(payload):
        if idx + 2 > len(payload):
            msg = "Truncated TLV record"
            raise InvalidFormat(msg)
        t, length = payload[idx], payload[idx + 1]
        value = payload[idx + 2 : idx + 2 + length]
        if len(value) != length:
            msg = "Truncated TLV value"
            raise InvalidFormat(msg)
        result.setdefault(t, []).append(value)
        idx += 2 + length
    return result


def decode(entity: str) -> Decoded:
    """Decode a NIP-19 string (with or without a ``nostr:`` prefix).

    Raises:
        InvalidFormat: On unknown prefixes or malformed payloads.
        InvalidChecksum: When the bech32 checksum fails.
    """
    if entity.startswith("nostr:"):
        entity = entity[len("nostr:") :]
    hrp, payload = _split(entity)

    if hrp in _BARE_32:
        if len(payload) != 32:
            msg = f"{hrp} payload must be 32 bytes, got {len(payload)}"
            raise InvalidFormat(msg)
        return Decoded(type=hrp, data=payload.hex())

    if hrp in ("nprofile", "nevent"):
        tlv = _parse_tlv(payload)
        special = tlv.get(_TLV_SPECIAL, [])
        if not special or len(special[0]) != 32:
            msg = f"missing TLV 0 for {hrp}"
            raise InvalidFormat(msg)
        relays = [r.decode("ascii", errors="replace") for r in tlv.get(_TLV_RELAY, [])]
        if hrp == "nprofile":
            return Decoded(type=hrp, data=ProfilePointer(pubkey=special[0].hex(), relays=relays))
        author = tlv.get(_TLV_AUTHOR, [])
        kind = tlv.get(_TLV_KIND, [])
        return Decoded(
            type=hrp,
            data=EventPointer(
                id=special[0].hex(),
                relays=relays,
                author=author[0].hex() if author and len(author[0]) == 32 else None,
                kind=int.from_bytes(kind[0], "big") if kind and len(kind[0]) == 4 else None,
            ),
        )

    msg = f"Unsupported NIP-19 prefix: {hrp}"
    raise InvalidFormat(msg)


def _encode(hrp: str, payload: bytes) -> str:
    return bech32_encode(hrp, convertbits(payload, 8, 5))


def encode_bare(hrp: str, hex_data: str) -> str:
    """Encode a 32-byte hex payload as ``npub``/``nsec``/``note``."""
    if hrp not in _BARE_32:
        msg = f"Unsupported bare NIP-19 prefix: {hrp}"
        raise InvalidFormat(msg)
    raw = bytes.fromhex(hex_data)
    if len(raw) != 32:
        msg = f"{hrp} payload must be 32 bytes"
        raise InvalidFormat(msg)
    return _encode(hrp, raw)


def npub_encode(pubkey_hex: str) -> str:
    return encode_bare("npub", pubkey_hex)


def nsec_encode(secret_hex: str) -> str:
    return encode_bare("nsec", secret_hex)


def _tlv(t: int, value: bytes) -> bytes:
    return bytes([t, len(value)]) + value


def nprofile_encode(pointer: ProfilePointer) -> str:
    payload = _tlv(_TLV_SPECIAL, bytes.fromhex(pointer.pubkey))
    for relay in pointer.relays:
        payload += _tlv(_TLV_RELAY, relay.encode("ascii"))
    return _encode("nprofile", payload)


def nevent_encode(pointer: EventPointer) -> str:
    payload = _tlv(_TLV_SPECIAL, bytes.fromhex(pointer.id))
    for relay in pointer.relays:
        payload += _tlv(_TLV_RELAY, relay.encode("ascii"))
    if pointer.author:
        payload += _tlv(_TLV_AUTHOR, bytes.fromhex(pointer.author))
    if pointer.kind is not None:
        payload += _tlv(_TLV_KIND, pointer.kind.to_bytes(4, "big"))
    return _encode("nevent", payload)
