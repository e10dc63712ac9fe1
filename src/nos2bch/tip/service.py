"""Tip service — validate, pre-check, build, sign, broadcast, notify.

Flow for :meth:`TipService.tip`:

1. Reject amounts below the minimum tip.
2. Resolve the recipient (``npub``/``nprofile`` or 64-hex x-only key) to a
   compressed key and CashAddr, trying the even-y encoding first.
3. Normalise the sender key to even y and derive the sender address.
4. Pre-check the balance with a conservative fee before fetching UTXOs.
5. Fetch UTXOs and the fee rate, build and sign off the event loop.
6. Broadcast; on success optionally send the recipient an encrypted DM in
   the background.

Nothing is broadcast unless signing fully succeeded, and a broadcast
failure leaves no state behind.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import asdict, dataclass
from typing import TYPE_CHECKING, Any

from nos2bch.bch.builder import DUST_LIMIT, build_and_sign, estimate_fee, plan_transaction
from nos2bch.bch.cashaddr import pubkey_to_address
from nos2bch.bch.keys import normalize_even_y, private_key_to_public_key, xonly_to_compressed
from nos2bch.broker.offload import run_isolated
from nos2bch.chain.models import validate_utxos
from nos2bch.errors import AgentError, DustAmount, InsufficientFunds, InvalidRecipient, SerializationError
from nos2bch.errors.definitions import ErrDustBalance, ErrNoBalance, ErrNoUtxos
from nos2bch.nostr import nip04, nip19
from nos2bch.nostr.event import finalize_event
from nos2bch.nostr.relay import publish_event

if TYPE_CHECKING:
    import threading

    from nos2bch.chain.ledger import LedgerClient
    from nos2bch.config.settings import TipConfig

logger = logging.getLogger(__name__)

_HEX_KEY_RE = re.compile(r"^[0-9a-fA-F]{64}$")

# Worst case assumed before UTXOs are known.
_PRECHECK_INPUTS = 2
_PRECHECK_OUTPUTS = 2


@dataclass(frozen=True)
class TipResult:
    """A broadcast tip."""

    txid: str
    amount: int
    fee: int
    change: int
    sender_address: str
    recipient_address: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class TipPreview:
    """Cost of a tip, computed before the user is asked to approve it."""

    amount: int
    fee: int
    change: int
    inputs: int
    balance: int
    fee_rate: int
    sender_address: str
    recipient_address: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class _Parties:
    secret: bytes
    sender_address: str
    recipient_hex: str
    recipient_address: str


class TipService:
    """Sends BCH tips between Nostr identities.

    Usage::

        tips = TipService(ledger, config.tip, address_prefix=config.address_prefix)
        result = await tips.tip(secret, "npub1...", 5000, notify=True)
    """

    def __init__(
        self,
        ledger: LedgerClient,
        config: TipConfig,
        *,
        address_prefix: str = "bitcoincash",
        publish: Any = publish_event,
    ) -> None:
        self._ledger = ledger
        self._config = config
        self._prefix = address_prefix
        self._publish = publish
        self._background: set[asyncio.Task[Any]] = set()

    # ------------------------------------------------------------------
    # Addresses
    # ------------------------------------------------------------------

    def sender_address(self, secret: bytes) -> str:
        """CashAddr controlled by *secret* (after even-y normalisation)."""
        pub = private_key_to_public_key(normalize_even_y(secret), compressed=True)
        return pubkey_to_address(pub, prefix=self._prefix)

    def resolve_recipient(self, recipient: str) -> tuple[str, str]:
        """Resolve a recipient identifier to ``(xonly_hex, address)``.

        Raises:
            InvalidRecipient: If the identifier cannot be decoded or is not
                an x coordinate on the curve.
        """
        recipient = recipient.strip()
        if _HEX_KEY_RE.match(recipient):
            xonly_hex = recipient.lower()
        else:
            try:
                decoded = nip19.decode(recipient)
            except SerializationError as exc:
                msg = f"Invalid recipient: {exc.message}"
                raise InvalidRecipient(msg) from exc
            if decoded.type not in ("npub", "nprofile") or decoded.hex is None:
                msg = f"Recipient must be a public key, got {decoded.type}"
                raise InvalidRecipient(msg)
            xonly_hex = decoded.hex
        try:
            compressed = xonly_to_compressed(bytes.fromhex(xonly_hex))
        except ValueError as exc:
            msg = "Recipient key is not a valid secp256k1 point"
            raise InvalidRecipient(msg) from exc
        return xonly_hex, pubkey_to_address(compressed, prefix=self._prefix)

    # ------------------------------------------------------------------
    # Tip
    # ------------------------------------------------------------------

    def _validate_amount(self, amount: int) -> None:
        if amount < self._config.min_tip:
            msg = f"Minimum tip is {self._config.min_tip} sats"
            raise DustAmount(msg)

    def _parties(self, secret: bytes, recipient: str) -> _Parties:
        recipient_hex, recipient_address = self.resolve_recipient(recipient)
        normalized = normalize_even_y(secret)
        return _Parties(
            secret=normalized,
            sender_address=self.sender_address(normalized),
            recipient_hex=recipient_hex,
            recipient_address=recipient_address,
        )

    async def _precheck(self, parties: _Parties, amount: int) -> tuple[int, int]:
        """Fail fast on clearly insufficient funds; returns (balance, fee_rate)."""
        balance = await self._ledger.get_balance(parties.sender_address, force_refresh=True)
        if balance == 0:
            raise ErrNoBalance
        if balance < DUST_LIMIT:
            raise ErrDustBalance
        fee_rate = await self._ledger.get_fee_rate()
        required = amount + estimate_fee(_PRECHECK_INPUTS, _PRECHECK_OUTPUTS, fee_rate) + DUST_LIMIT
        if balance < required:
            msg = f"Insufficient balance: have {balance} sats, need about {required}"
            raise InsufficientFunds(msg)
        return balance, fee_rate

    async def tip_preview(self, secret: bytes, recipient: str, amount: int) -> TipPreview:
        """Work out inputs, fee and change without signing anything."""
        self._validate_amount(amount)
        parties = self._parties(secret, recipient)
        balance, fee_rate = await self._precheck(parties, amount)
        utxos = validate_utxos(await self._ledger.get_utxos(parties.sender_address))
        if not utxos:
            raise ErrNoUtxos
        plan = plan_transaction(utxos, amount, fee_rate)
        return TipPreview(
            amount=amount,
            fee=plan.fee,
            change=plan.change,
            inputs=len(plan.inputs),
            balance=balance,
            fee_rate=fee_rate,
            sender_address=parties.sender_address,
            recipient_address=parties.recipient_address,
        )

    async def tip(
        self,
        secret: bytes,
        recipient: str,
        amount: int,
        *,
        notify: bool = False,
        cancel: threading.Event | None = None,
    ) -> TipResult:
        """Build, sign and broadcast a tip of *amount* satoshis.

        Raises:
            DustAmount: Amount below the minimum, or only dust available.
            InvalidRecipient: Recipient cannot be decoded.
            InsufficientFunds: Balance or UTXOs cannot cover amount and fee.
            NetworkFailure: Broadcast failed after all retries.
        """
        self._validate_amount(amount)
        parties = self._parties(secret, recipient)
        logger.info("Tipping %d sats from %s to %s", amount, parties.sender_address, parties.recipient_address)

        _, fee_rate = await self._precheck(parties, amount)
        utxos = validate_utxos(await self._ledger.get_utxos(parties.sender_address))
        if not utxos:
            raise ErrNoUtxos

        signed = await run_isolated(
            build_and_sign,
            parties.secret,
            utxos,
            parties.recipient_address,
            amount,
            fee_rate,
            cancel=cancel,
        )
        txid = await self._ledger.broadcast(signed.hex)
        if txid != signed.txid:
            logger.warning("Indexer reported txid %s, computed %s", txid, signed.txid)

        if notify:
            self._schedule_notification(parties, amount, txid)

        return TipResult(
            txid=txid,
            amount=amount,
            fee=signed.fee,
            change=signed.plan.change,
            sender_address=parties.sender_address,
            recipient_address=parties.recipient_address,
        )

    # ------------------------------------------------------------------
    # Notification
    # ------------------------------------------------------------------

    def notification_message(self, amount: int, txid: str) -> str:
        return f"Tipped you {amount} sats on Bitcoin Cash! Transaction: {self._config.explorer_url}{txid}"

    def _schedule_notification(self, parties: _Parties, amount: int, txid: str) -> None:
        # The DM is encrypted and signed now so the key does not outlive the call.
        try:
            content = nip04.encrypt(parties.secret, parties.recipient_hex, self.notification_message(amount, txid))
            event = finalize_event({"kind": 4, "tags": [["p", parties.recipient_hex]], "content": content}, parties.secret)
        except AgentError as exc:
            logger.warning("Could not prepare tip notification: %s", exc.message)
            return
        task = asyncio.create_task(self._send_notification(event))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _send_notification(self, event: dict[str, Any]) -> None:
        try:
            await self._publish(self._config.notify_relays, event, timeout=self._config.relay_timeout)
        except Exception:
            logger.exception("Tip notification failed")

    async def wait_notifications(self) -> None:
        """Wait for outstanding background notifications (shutdown/testing)."""
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
