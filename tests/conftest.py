"""Shared test fixtures for the nos2bch test suite."""

from __future__ import annotations

from typing import Any

import pytest

from nos2bch.bch.transaction import Transaction
from nos2bch.chain.models import Utxo
from nos2bch.config.settings import LedgerConfig, StorageEngine


@pytest.fixture
def app_config():
    """Provide a test AppConfig with safe defaults (memory storage, no delays)."""
    from nos2bch.config.settings import AppConfig, StorageConfig

    return AppConfig(
        debug=True,
        storage=StorageConfig(engine=StorageEngine.MEMORY, dsn="sqlite+aiosqlite:///:memory:"),
        ledger=LedgerConfig(endpoints=["https://indexer.test"], retry_delay=0.0),
    )


@pytest.fixture
def ledger_config() -> LedgerConfig:
    return LedgerConfig(endpoints=["https://indexer.test"], retry_delay=0.0)


@pytest.fixture
def storage():
    """Provide an empty in-memory storage backend."""
    from nos2bch.storage.client import MemoryStorage

    return MemoryStorage()


class RecordingSurface:
    """Prompt surface that records prompts and optionally answers them."""

    def __init__(self, broker: Any = None, answer: Any = None) -> None:
        self.broker = broker
        self.answer = answer
        self.prompts: list[Any] = []

    async def open(self, prompt: Any) -> None:
        self.prompts.append(prompt)
        if self.broker is not None and self.answer is not None:
            self.broker.resolve_prompt(self.answer)


@pytest.fixture
def surface() -> RecordingSurface:
    return RecordingSurface()


class FakeLedger:
    """In-memory stand-in for LedgerClient; records the calls it receives."""

    def __init__(
        self,
        utxos: list[Utxo] | None = None,
        fee_rate: int = 1,
        broadcast_error: Exception | None = None,
    ) -> None:
        self.utxos = utxos or []
        self.fee_rate = fee_rate
        self.broadcast_error = broadcast_error
        self.balance_override: int | None = None
        self.calls: list[str] = []
        self.broadcasts: list[str] = []

    async def get_balance(self, address: str, *, force_refresh: bool = False) -> int:
        self.calls.append("balance")
        if self.balance_override is not None:
            return self.balance_override
        return sum(u.value for u in self.utxos)

    async def get_fee_rate(self) -> int:
        self.calls.append("fee")
        return self.fee_rate

    async def get_utxos(self, address: str) -> list[Utxo]:
        self.calls.append("utxos")
        return list(self.utxos)

    async def broadcast(self, raw_tx_hex: str) -> str:
        self.calls.append("broadcast")
        if self.broadcast_error is not None:
            raise self.broadcast_error
        self.broadcasts.append(raw_tx_hex)
        return Transaction.from_hex(raw_tx_hex).txid()


class FakePublisher:
    """Relay publisher that records events instead of opening websockets."""

    def __init__(self) -> None:
        self.published: list[tuple[list[str], dict[str, Any]]] = []

    async def __call__(self, relays: list[str], event: dict[str, Any], *, timeout: float = 5.0) -> dict[str, bool]:
        self.published.append((relays, event))
        return dict.fromkeys(relays, True)
