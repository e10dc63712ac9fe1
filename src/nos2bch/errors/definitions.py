"""Predefined error instances with fixed messages."""

from __future__ import annotations

from nos2bch.errors.agent_errors import (
    DustAmount,
    InsufficientFunds,
    InvalidRequest,
    NetworkFailure,
)

# -- Tip -------------------------------------------------------------------

ErrNoBalance = InsufficientFunds("No balance available", code="no-balance")
ErrDustBalance = DustAmount("Dust balance only - cannot tip", code="dust-balance")
ErrNoUtxos = InsufficientFunds("No UTXOs found", code="no-utxos")

# -- Ledger ----------------------------------------------------------------

ErrNoEndpoints = NetworkFailure("no ledger endpoints configured", code="no-endpoints")

# -- Dispatcher ------------------------------------------------------------

ErrUnknownOperation = InvalidRequest("unknown operation type", code="unknown-operation")
