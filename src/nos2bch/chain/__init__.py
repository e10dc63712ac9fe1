"""Ledger access — indexer client and UTXO models."""

from __future__ import annotations

from nos2bch.chain.ledger import LedgerClient
from nos2bch.chain.models import Utxo

__all__ = ["LedgerClient", "Utxo"]
