"""Transaction builder — UTXO selection, fee convergence, signing.

Turns a UTXO snapshot and a payment request into a fully signed P2PKH
transaction:

1. Select inputs greedily (largest first) until amount + fee is covered.
2. Settle the fee/change split, dropping change that would be dust.
3. Sign every input over its fork-id sighash with deterministic ECDSA.

Size estimates use fixed per-input / per-output byte costs so that the fee
is a pure function of the input and output counts.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from nos2bch.bch.cashaddr import address_to_lock_script
from nos2bch.bch.keys import private_key_to_public_key, sign_message
from nos2bch.bch.script import (
    ScriptType,
    detect_script_type,
    p2pkh_lock_script_from_pubkey,
    p2pkh_unlock_script,
)
from nos2bch.bch.sighash import SIGHASH_ALL_FORKID, SighashContext, signature_hash
from nos2bch.bch.transaction import DEFAULT_SEQUENCE, DEFAULT_VERSION, Transaction
from nos2bch.chain.models import Utxo
from nos2bch.errors import ConvergenceFailure, InsufficientFunds, InvalidUtxo

logger = logging.getLogger(__name__)

DUST_LIMIT = 546

# Estimated sizes for fee calculation
INPUT_SIZE = 148  # P2PKH input with a DER signature and compressed key
OUTPUT_SIZE = 34  # P2PKH output
TX_OVERHEAD = 10  # version(4) + locktime(4) + varints(~2)

MAX_FEE_ITERATIONS = 3


def estimate_size(input_count: int, output_count: int) -> int:
    """Estimated serialized size in bytes."""
    return TX_OVERHEAD + INPUT_SIZE * input_count + OUTPUT_SIZE * output_count


def estimate_fee(input_count: int, output_count: int, fee_rate: int) -> int:
    """Fee in satoshis for the given shape at *fee_rate* sat/byte."""
    return estimate_size(input_count, output_count) * fee_rate


# ---------------------------------------------------------------------------
# Planning
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TxPlan:
    """Inputs, fee and change decided for a payment, before signing.

    Attributes:
        inputs: Selected UTXOs in spending order.
        amount: Value paid to the destination.
        fee: Satoshis left to miners (total - amount - change).
        change: Change output value, 0 when no change output is created.
    """

    inputs: tuple[Utxo, ...]
    amount: int
    fee: int
    change: int

    @property
    def total_input(self) -> int:
        return sum(u.value for u in self.inputs)

    @property
    def output_count(self) -> int:
        return 2 if self.change else 1


def select_utxos(utxos: list[Utxo], amount: int, fee_rate: int) -> tuple[list[Utxo], int]:
    """Greedy largest-first selection.

    Returns:
        Tuple of (selected UTXOs, their total value).

    Raises:
        InsufficientFunds: If all non-dust UTXOs together cannot cover
            the amount plus the estimated fee.
    """
    candidates = sorted((u for u in utxos if u.value >= DUST_LIMIT), key=lambda u: u.value, reverse=True)
    selected: list[Utxo] = []
    total = 0
    for utxo in candidates:
        utxo.validate()
        selected.append(utxo)
        total += utxo.value
        outputs = 2 if total - amount > DUST_LIMIT else 1
        if total >= amount + estimate_fee(len(selected), outputs, fee_rate):
            return selected, total
    msg = f"Insufficient funds: have {total} sats in spendable outputs, need more than {amount}"
    raise InsufficientFunds(msg)


def settle_fee(total: int, amount: int, input_count: int, fee_rate: int) -> tuple[int, int]:
    """Decide the fee and change for a fixed input set.

    Starts from a single destination output and adds a change output only
    when the change still clears the dust limit after paying for itself.

    Returns:
        Tuple of (fee, change); change is 0 when no change output is made.

    Raises:
        InsufficientFunds: If even the single-output transaction is unaffordable.
        ConvergenceFailure: If the output set keeps flipping.
    """
    output_count = 1
    for _ in range(MAX_FEE_ITERATIONS):
        fee = estimate_fee(input_count, output_count, fee_rate)
        change = total - amount - fee
        if change < 0:
            if output_count == 2:
                output_count = 1
                continue
            msg = f"Insufficient funds after fee: short by {-change} sats"
            raise InsufficientFunds(msg)
        if output_count == 2:
            if change < DUST_LIMIT:
                output_count = 1
                continue
            return fee, change
        if change - OUTPUT_SIZE * fee_rate >= DUST_LIMIT:
            output_count = 2
            continue
        # Sub-dust leftovers go to the miner.
        return fee + change, 0
    msg = "Fee calculation failed to converge"
    raise ConvergenceFailure(msg)


def plan_transaction(utxos: list[Utxo], amount: int, fee_rate: int) -> TxPlan:
    """Select inputs and settle the fee for paying *amount*."""
    if amount <= 0:
        msg = f"Amount must be positive, got {amount}"
        raise InsufficientFunds(msg)
    fee_rate = max(1, fee_rate)
    selected, total = select_utxos(utxos, amount, fee_rate)
    fee, change = settle_fee(total, amount, len(selected), fee_rate)
    return TxPlan(inputs=tuple(selected), amount=amount, fee=fee, change=change)


# ---------------------------------------------------------------------------
# Signing
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SignedTransaction:
    """A fully signed transaction ready for broadcast."""

    raw: bytes
    txid: str
    plan: TxPlan

    @property
    def hex(self) -> str:
        return self.raw.hex()

    @property
    def fee(self) -> int:
        return self.plan.fee


def _script_code_for(utxo: Utxo, own_lock_script: bytes) -> bytes:
    """Locking script covered by the signature for *utxo*.

    Raises:
        InvalidUtxo: If the reported script is not P2PKH to our key.
    """
    script = utxo.script_bytes
    if script is None:
        return own_lock_script
    if detect_script_type(script) != ScriptType.P2PKH or script != own_lock_script:
        msg = f"UTXO {utxo.txid}:{utxo.vout} is not locked to the signing key"
        raise InvalidUtxo(msg)
    return script


def sign_plan(
    secret_key: bytes,
    plan: TxPlan,
    destination_address: str,
    *,
    change_address: str | None = None,
) -> SignedTransaction:
    """Assemble and sign the transaction described by *plan*.

    Change goes to *change_address* or, by default, back to the signing key.
    """
    pubkey = private_key_to_public_key(secret_key, compressed=True)
    own_lock = p2pkh_lock_script_from_pubkey(pubkey)

    tx = Transaction(version=DEFAULT_VERSION)
    for utxo in plan.inputs:
        tx.add_input(utxo.prev_tx_id, utxo.vout, sequence=DEFAULT_SEQUENCE)
    tx.add_output(plan.amount, address_to_lock_script(destination_address))
    if plan.change:
        change_lock = address_to_lock_script(change_address) if change_address else own_lock
        tx.add_output(plan.change, change_lock)

    context = SighashContext.from_transaction(tx)
    for index, utxo in enumerate(plan.inputs):
        script_code = _script_code_for(utxo, own_lock)
        digest = signature_hash(tx, index, script_code, utxo.value, context=context)
        signature = sign_message(secret_key, digest) + bytes([SIGHASH_ALL_FORKID])
        tx.inputs[index].script_sig = p2pkh_unlock_script(signature, pubkey)

    raw = tx.serialize()
    txid = tx.txid()
    logger.debug(
        "Signed tx %s: %d inputs, %d outputs, fee %d, %d bytes",
        txid,
        len(tx.inputs),
        len(tx.outputs),
        plan.fee,
        len(raw),
    )
    return SignedTransaction(raw=raw, txid=txid, plan=plan)


def build_and_sign(
    secret_key: bytes,
    utxos: list[Utxo],
    destination_address: str,
    amount: int,
    fee_rate: int,
    *,
    change_address: str | None = None,
) -> SignedTransaction:
    """Select, plan and sign a payment of *amount* to *destination_address*."""
    plan = plan_transaction(utxos, amount, fee_rate)
    return sign_plan(secret_key, plan, destination_address, change_address=change_address)
