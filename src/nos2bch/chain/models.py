"""Ledger data models — UTXO and balance records.

Provider responses are normalised into these types; all amounts are
integer satoshis.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from nos2bch.errors import InvalidUtxo


@dataclass(frozen=True)
class Balance:
    """Address balance."""

    confirmed: int
    unconfirmed: int

    @property
    def total(self) -> int:
        return self.confirmed + self.unconfirmed


@dataclass(frozen=True)
class Utxo:
    """A spendable output snapshot.

    Attributes:
        txid: Funding transaction id (display hex).
        vout: Output index in the funding transaction.
        value: Amount in satoshis.
        height: Confirmation height, 0 while unconfirmed.
        script_pubkey: Locking script hex, when the provider reports it.
        token_data: CashToken payload; such outputs are never spent.
    """

    txid: str
    vout: int
    value: int
    height: int = 0
    script_pubkey: str | None = None
    token_data: dict[str, Any] | None = field(default=None, compare=False)

    @property
    def prev_tx_id(self) -> bytes:
        """Funding txid in internal (reversed) byte order.

        Raises:
            InvalidUtxo: If the txid is not 64 hex characters.
        """
        try:
            raw = bytes.fromhex(self.txid)
        except ValueError:
            raw = b""
        if len(raw) != 32:
            msg = f"Invalid UTXO txid: {self.txid!r}"
            raise InvalidUtxo(msg)
        return raw[::-1]

    @property
    def script_bytes(self) -> bytes | None:
        """Locking script as bytes, or None when not reported."""
        if not self.script_pubkey:
            return None
        try:
            return bytes.fromhex(self.script_pubkey)
        except ValueError:
            msg = f"Invalid UTXO script for {self.txid}:{self.vout}"
            raise InvalidUtxo(msg) from None

    def validate(self) -> None:
        """Check structural soundness of the record.

        Raises:
            InvalidUtxo: On a malformed txid, index or value.
        """
        _ = self.prev_tx_id
        if not 0 <= self.vout <= 0xFFFFFFFF:
            msg = f"Invalid UTXO output index: {self.vout}"
            raise InvalidUtxo(msg)
        if self.value < 0:
            msg = f"Negative UTXO value: {self.value}"
            raise InvalidUtxo(msg)

    @classmethod
    def from_provider(cls, item: dict[str, Any]) -> Utxo:
        """Normalise an indexer ``listunspent`` entry.

        Raises:
            InvalidUtxo: If required fields are missing or mistyped.
        """
        try:
            return cls(
                txid=str(item["tx_hash"]),
                vout=int(item["tx_pos"]),
                value=int(item["value"]),
                height=int(item.get("height", 0)),
                script_pubkey=item.get("script_pubkey"),
                token_data=item.get("token_data"),
            )
        except (KeyError, TypeError, ValueError) as exc:
            msg = f"Malformed UTXO record: {exc}"
            raise InvalidUtxo(msg) from exc


def validate_utxos(utxos: list[Utxo]) -> list[Utxo]:
    """Keep UTXOs with a non-negative height and no token data."""
    return [u for u in utxos if u.height >= 0 and u.token_data is None]


def balance_from_utxos(utxos: list[Utxo]) -> int:
    """Sum the values of *utxos*."""
    return sum(u.value for u in utxos)
