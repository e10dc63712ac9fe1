"""Tests for NIP-19 bech32 entities."""

from __future__ import annotations

import pytest

from nos2bch.errors import InvalidChecksum, InvalidFormat
from nos2bch.nostr import nip19
from nos2bch.nostr.nip19 import EventPointer, ProfilePointer

_NPUB = "npub180cvv07tjdrrgpa0j7j7tmnyl2yr6yr7l8j4s3evf6u64th6gkwsyjh6w6"
_PUBKEY = "3bf0c63fcb93463407af97a5e5ee64fa883d107ef9e558472c4eb9aaaefa459d"
_NSEC = "nsec1vl029mgpspedva04g90vltkh6fvh240zqtv9k0t9af8935ke9laqsnlfe5"
_SECRET = "67dea2ed018072d675f5415ecfaed7d2597555e202d85b3d65ea4e58d2d92ffa"


class TestBareEntities:
    def test_npub_vector(self) -> None:
        assert nip19.npub_encode(_PUBKEY) == _NPUB
        decoded = nip19.decode(_NPUB)
        assert decoded.type == "npub"
        assert decoded.hex == _PUBKEY
        assert decoded.relays == []

    def test_nsec_vector(self) -> None:
        assert nip19.nsec_encode(_SECRET) == _NSEC
        assert nip19.decode(_NSEC).data == _SECRET

    def test_nostr_uri_prefix(self) -> None:
        assert nip19.decode("nostr:" + _NPUB).hex == _PUBKEY

    def test_upper_case(self) -> None:
        assert nip19.decode(_NPUB.upper()).hex == _PUBKEY

    def test_mixed_case(self) -> None:
        with pytest.raises(InvalidFormat):
            nip19.decode(_NPUB[:10] + _NPUB[10:].upper())

    def test_bad_checksum(self) -> None:
        tampered = _NPUB[:-1] + ("q" if _NPUB[-1] != "q" else "p")
        with pytest.raises(InvalidChecksum):
            nip19.decode(tampered)

    def test_bad_character(self) -> None:
        with pytest.raises(InvalidFormat):
            nip19.decode(_NPUB[:-3] + "b" + _NPUB[-2:])

    def test_unknown_prefix(self) -> None:
        with pytest.raises(InvalidFormat):
            nip19.encode_bare("nfoo", _PUBKEY)

    def test_wrong_payload_length(self) -> None:
        with pytest.raises(InvalidFormat):
            nip19.encode_bare("npub", "abcd")

    def test_too_long(self) -> None:
        with pytest.raises(InvalidFormat):
            nip19.decode("npub1" + "q" * 6000)


class TestTlvEntities:
    def test_nprofile_round_trip(self) -> None:
        pointer = ProfilePointer(pubkey=_PUBKEY, relays=["wss://r.x.com", "wss://djbas.sadkb.com"])
        encoded = nip19.nprofile_encode(pointer)
        assert encoded.startswith("nprofile1")
        decoded = nip19.decode(encoded)
        assert decoded.type == "nprofile"
        assert decoded.data == pointer
        assert decoded.hex == _PUBKEY
        assert decoded.relays == pointer.relays

    def test_nevent_round_trip(self) -> None:
        pointer = EventPointer(id="ab" * 32, relays=["wss://relay.test"], author=_PUBKEY, kind=30023)
        decoded = nip19.decode(nip19.nevent_encode(pointer))
        assert decoded.type == "nevent"
        assert decoded.data == pointer
        assert decoded.hex == "ab" * 32

    def test_nevent_without_optional_fields(self) -> None:
        decoded = nip19.decode(nip19.nevent_encode(EventPointer(id="cd" * 32)))
        assert decoded.data.author is None
        assert decoded.data.kind is None

    def test_nprofile_without_special(self) -> None:
        bad = nip19._encode("nprofile", nip19._tlv(1, b"wss://relay.test"))
        with pytest.raises(InvalidFormat, match="TLV 0"):
            nip19.decode(bad)

    def test_truncated_tlv(self) -> None:
        bad = nip19._encode("nprofile", bytes([0, 32]) + b"\x01" * 10)
        with pytest.raises(InvalidFormat):
            nip19.decode(bad)
