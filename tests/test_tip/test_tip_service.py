"""Tests for the tip service — fake ledger and relay publisher."""

from __future__ import annotations

import pytest

from conftest import FakeLedger, FakePublisher
from nos2bch.bch.cashaddr import pubkey_to_address
from nos2bch.bch.keys import normalize_even_y, private_key_to_public_key
from nos2bch.bch.transaction import Transaction
from nos2bch.chain.models import Utxo
from nos2bch.config.settings import TipConfig
from nos2bch.errors import DustAmount, InsufficientFunds, InvalidRecipient, NetworkFailure
from nos2bch.nostr import nip04, nip19
from nos2bch.nostr.event import get_public_key, verify_event
from nos2bch.tip import TipService

_SENDER = (0xA11CE).to_bytes(32, "big")
_RECIPIENT_SECRET = (0xB0B).to_bytes(32, "big")
_RECIPIENT_HEX = get_public_key(_RECIPIENT_SECRET)
_RECIPIENT_NPUB = nip19.npub_encode(_RECIPIENT_HEX)


def _utxo(value: int, n: int = 1) -> Utxo:
    return Utxo(txid=f"{n:064x}", vout=0, value=value, height=100)


def _service(ledger: FakeLedger, publish: FakePublisher | None = None, **config) -> TipService:
    tip_config = TipConfig(notify_relays=["wss://relay.test"], **config)
    return TipService(ledger, tip_config, publish=publish or FakePublisher())


# ---------------------------------------------------------------------------
# Recipients
# ---------------------------------------------------------------------------


class TestResolveRecipient:
    def test_hex(self) -> None:
        xonly, address = _service(FakeLedger()).resolve_recipient(_RECIPIENT_HEX.upper())
        assert xonly == _RECIPIENT_HEX
        assert address.startswith("bitcoincash:q")

    def test_npub_matches_hex(self) -> None:
        service = _service(FakeLedger())
        assert service.resolve_recipient(_RECIPIENT_NPUB) == service.resolve_recipient(_RECIPIENT_HEX)

    def test_even_y_encoding(self) -> None:
        _, address = _service(FakeLedger()).resolve_recipient(_RECIPIENT_HEX)
        even_pub = private_key_to_public_key(normalize_even_y(_RECIPIENT_SECRET))
        assert address == pubkey_to_address(even_pub)

    def test_testnet_prefix(self) -> None:
        service = TipService(FakeLedger(), TipConfig(), address_prefix="bchtest")
        assert service.resolve_recipient(_RECIPIENT_HEX)[1].startswith("bchtest:")

    @pytest.mark.parametrize(
        "bad",
        ["npub1xyz", "hello", "ff" * 32, nip19.nsec_encode("11" * 32), _RECIPIENT_NPUB[:-1] + "q"],
    )
    def test_invalid(self, bad: str) -> None:
        with pytest.raises(InvalidRecipient):
            _service(FakeLedger()).resolve_recipient(bad)


# ---------------------------------------------------------------------------
# Pre-checks
# ---------------------------------------------------------------------------


class TestPrecheck:
    @pytest.mark.asyncio
    async def test_below_minimum(self) -> None:
        ledger = FakeLedger([_utxo(100_000)])
        with pytest.raises(DustAmount):
            await _service(ledger).tip(_SENDER, _RECIPIENT_NPUB, 999)
        assert ledger.calls == []

    @pytest.mark.asyncio
    async def test_no_balance_skips_utxo_fetch(self) -> None:
        ledger = FakeLedger([])
        with pytest.raises(InsufficientFunds) as exc_info:
            await _service(ledger).tip(_SENDER, _RECIPIENT_NPUB, 5_000)
        assert exc_info.value.code == "no-balance"
        assert "utxos" not in ledger.calls

    @pytest.mark.asyncio
    async def test_dust_balance(self) -> None:
        ledger = FakeLedger([_utxo(500)])
        with pytest.raises(DustAmount) as exc_info:
            await _service(ledger).tip(_SENDER, _RECIPIENT_NPUB, 1_000)
        assert exc_info.value.code == "dust-balance"

    @pytest.mark.asyncio
    async def test_insufficient_before_utxos(self) -> None:
        ledger = FakeLedger([_utxo(5_000)])
        with pytest.raises(InsufficientFunds):
            await _service(ledger).tip(_SENDER, _RECIPIENT_NPUB, 5_000)
        assert "utxos" not in ledger.calls

    @pytest.mark.asyncio
    async def test_no_utxos_despite_balance(self) -> None:
        ledger = FakeLedger([])
        ledger.balance_override = 100_000
        with pytest.raises(InsufficientFunds) as exc_info:
            await _service(ledger).tip(_SENDER, _RECIPIENT_NPUB, 5_000)
        assert exc_info.value.code == "no-utxos"

    @pytest.mark.asyncio
    async def test_token_utxos_are_not_spent(self) -> None:
        token = Utxo(txid="aa" * 32, vout=0, value=100_000, token_data={"category": "bb" * 32})
        ledger = FakeLedger([token])
        with pytest.raises(InsufficientFunds):
            await _service(ledger).tip(_SENDER, _RECIPIENT_NPUB, 5_000)
        assert "broadcast" not in ledger.calls


# ---------------------------------------------------------------------------
# Tipping
# ---------------------------------------------------------------------------


class TestTip:
    @pytest.mark.asyncio
    async def test_success(self) -> None:
        ledger = FakeLedger([_utxo(100_000)])
        service = _service(ledger)
        result = await service.tip(_SENDER, _RECIPIENT_NPUB, 50_000)

        assert result.amount == 50_000
        assert result.fee == 226
        assert result.change == 100_000 - 50_000 - 226
        assert result.sender_address == service.sender_address(_SENDER)
        assert result.recipient_address == service.resolve_recipient(_RECIPIENT_HEX)[1]
        assert ledger.calls == ["balance", "fee", "utxos", "broadcast"]

        tx = Transaction.from_hex(ledger.broadcasts[0])
        assert tx.txid() == result.txid
        assert tx.outputs[0].value == 50_000
        assert result.to_dict()["txid"] == result.txid

    @pytest.mark.asyncio
    async def test_broadcast_failure_propagates(self) -> None:
        ledger = FakeLedger([_utxo(100_000)], broadcast_error=NetworkFailure("all endpoints failed"))
        publisher = FakePublisher()
        with pytest.raises(NetworkFailure):
            await _service(ledger, publisher).tip(_SENDER, _RECIPIENT_NPUB, 5_000, notify=True)
        assert publisher.published == []

    @pytest.mark.asyncio
    async def test_notification(self) -> None:
        publisher = FakePublisher()
        service = _service(FakeLedger([_utxo(100_000)]), publisher, explorer_url="https://explorer.test/tx/")
        result = await service.tip(_SENDER, _RECIPIENT_HEX, 5_000, notify=True)
        await service.wait_notifications()

        assert len(publisher.published) == 1
        relays, event = publisher.published[0]
        assert relays == ["wss://relay.test"]
        assert event["kind"] == 4
        assert event["tags"] == [["p", _RECIPIENT_HEX]]
        assert verify_event(event)
        plain = nip04.decrypt(_RECIPIENT_SECRET, event["pubkey"], event["content"])
        assert plain == f"Tipped you 5000 sats on Bitcoin Cash! Transaction: https://explorer.test/tx/{result.txid}"

    @pytest.mark.asyncio
    async def test_no_notification_by_default(self) -> None:
        publisher = FakePublisher()
        service = _service(FakeLedger([_utxo(100_000)]), publisher)
        await service.tip(_SENDER, _RECIPIENT_HEX, 5_000)
        await service.wait_notifications()
        assert publisher.published == []


class TestPreview:
    @pytest.mark.asyncio
    async def test_preview_does_not_broadcast(self) -> None:
        ledger = FakeLedger([_utxo(100_000)], fee_rate=2)
        preview = await _service(ledger).tip_preview(_SENDER, _RECIPIENT_NPUB, 10_000)
        assert preview.inputs == 1
        assert preview.fee == 2 * 226
        assert preview.balance == 100_000
        assert preview.fee_rate == 2
        assert "broadcast" not in ledger.calls
        assert preview.to_dict()["change"] == 100_000 - 10_000 - 452
