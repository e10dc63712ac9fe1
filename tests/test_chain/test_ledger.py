"""Tests for the indexer ledger client — uses httpx mock transport."""

from __future__ import annotations

import httpx
import pytest

from nos2bch.chain.ledger import FEE_CACHE_KEY, LedgerClient, balance_cache_key
from nos2bch.config.settings import LedgerConfig
from nos2bch.errors import NetworkFailure
from nos2bch.errors.definitions import ErrNoEndpoints
from nos2bch.storage.client import MemoryStorage

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

_ADDRESS = "bitcoincash:qr6m7j9njldwwzlg9v7v53unlr4jkmx6eylep8ekg2"
_TXID = "ab" * 32


class _Clock:
    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def _ledger(
    handler,
    storage: MemoryStorage | None = None,
    clock: _Clock | None = None,
    **overrides,
) -> LedgerClient:
    settings = {"endpoints": ["https://indexer.test"], "retry_delay": 0.0, **overrides}
    config = LedgerConfig(**settings)
    ledger = LedgerClient(config, storage or MemoryStorage(), clock=clock or _Clock())
    ledger._client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return ledger


class _Counter:
    """Handler wrapper that counts requests."""

    def __init__(self, handler) -> None:
        self.handler = handler
        self.calls = 0

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls += 1
        return self.handler(request)


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


class TestLedgerLifecycle:
    @pytest.mark.asyncio
    async def test_connect_and_close(self, ledger_config) -> None:
        ledger = LedgerClient(ledger_config, MemoryStorage())
        assert ledger.is_connected is False
        await ledger.connect()
        assert ledger.is_connected is True
        await ledger.close()
        assert ledger.is_connected is False

    @pytest.mark.asyncio
    async def test_close_idempotent(self, ledger_config) -> None:
        ledger = LedgerClient(ledger_config, MemoryStorage())
        await ledger.close()
        assert ledger.is_connected is False

    @pytest.mark.asyncio
    async def test_not_connected_raises(self, ledger_config) -> None:
        ledger = LedgerClient(ledger_config, MemoryStorage())
        with pytest.raises(RuntimeError, match="not connected"):
            await ledger.get_balance(_ADDRESS)

    @pytest.mark.asyncio
    async def test_no_endpoints(self) -> None:
        ledger = _ledger(lambda r: httpx.Response(200, json={}), endpoints=[])
        with pytest.raises(NetworkFailure) as exc_info:
            await ledger.broadcast("00")
        assert exc_info.value is ErrNoEndpoints


# ---------------------------------------------------------------------------
# Balance
# ---------------------------------------------------------------------------


class TestBalance:
    @pytest.mark.asyncio
    async def test_sums_confirmed_and_unconfirmed(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert f"/electrumx/balance/{_ADDRESS}" in str(request.url)
            return httpx.Response(200, json={"success": True, "balance": {"confirmed": 150_000, "unconfirmed": 5_000}})

        assert await _ledger(handler).get_balance(_ADDRESS) == 155_000

    @pytest.mark.asyncio
    async def test_cached_while_fresh(self) -> None:
        counter = _Counter(lambda r: httpx.Response(200, json={"balance": {"confirmed": 1_000, "unconfirmed": 0}}))
        clock = _Clock()
        ledger = _ledger(counter, clock=clock)
        assert await ledger.get_balance(_ADDRESS) == 1_000
        clock.now += 60
        assert await ledger.get_balance(_ADDRESS) == 1_000
        assert counter.calls == 1

    @pytest.mark.asyncio
    async def test_refetched_when_stale(self) -> None:
        counter = _Counter(lambda r: httpx.Response(200, json={"balance": {"confirmed": 1_000, "unconfirmed": 0}}))
        clock = _Clock()
        ledger = _ledger(counter, clock=clock)
        await ledger.get_balance(_ADDRESS)
        clock.now += 301
        await ledger.get_balance(_ADDRESS)
        assert counter.calls == 2

    @pytest.mark.asyncio
    async def test_force_refresh_bypasses_cache(self) -> None:
        counter = _Counter(lambda r: httpx.Response(200, json={"balance": {"confirmed": 7, "unconfirmed": 0}}))
        ledger = _ledger(counter)
        await ledger.get_balance(_ADDRESS)
        await ledger.get_balance(_ADDRESS, force_refresh=True)
        assert counter.calls == 2

    @pytest.mark.asyncio
    async def test_stores_cache_entry(self) -> None:
        storage = MemoryStorage()
        clock = _Clock(1_000.0)
        ledger = _ledger(
            lambda r: httpx.Response(200, json={"balance": {"confirmed": 42, "unconfirmed": 0}}),
            storage=storage,
            clock=clock,
        )
        await ledger.get_balance(_ADDRESS.upper())
        assert await storage.get(balance_cache_key(_ADDRESS)) == {"balance": 42, "timestamp": 1_000_000}

    @pytest.mark.asyncio
    async def test_stale_cache_on_failure(self) -> None:
        storage = MemoryStorage({balance_cache_key(_ADDRESS): {"balance": 9_999, "timestamp": 0}})
        ledger = _ledger(lambda r: httpx.Response(503), storage=storage)
        assert await ledger.get_balance(_ADDRESS) == 9_999

    @pytest.mark.asyncio
    async def test_zero_on_failure_without_cache(self) -> None:
        ledger = _ledger(lambda r: httpx.Response(500))
        assert await ledger.get_balance(_ADDRESS) == 0

    @pytest.mark.asyncio
    async def test_provider_error_counts_as_failure(self) -> None:
        ledger = _ledger(lambda r: httpx.Response(200, json={"success": False, "error": "boom"}))
        assert await ledger.get_balance(_ADDRESS) == 0


# ---------------------------------------------------------------------------
# Retry
# ---------------------------------------------------------------------------


class TestRetry:
    @pytest.mark.asyncio
    async def test_attempts_exhausted(self) -> None:
        counter = _Counter(lambda r: httpx.Response(502))
        ledger = _ledger(counter, max_attempts=3)
        assert await ledger.get_utxos(_ADDRESS) == []
        assert counter.calls == 3

    @pytest.mark.asyncio
    async def test_recovers_after_failure(self) -> None:
        responses = [httpx.Response(502), httpx.Response(200, json={"utxos": []})]
        counter = _Counter(lambda r: responses.pop(0))
        ledger = _ledger(counter)
        assert await ledger.get_utxos(_ADDRESS) == []
        assert counter.calls == 2

    @pytest.mark.asyncio
    async def test_transport_errors_are_retried(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        counter = _Counter(handler)
        ledger = _ledger(counter, max_attempts=2)
        assert await ledger.get_balance(_ADDRESS) == 0
        assert counter.calls == 2


# ---------------------------------------------------------------------------
# UTXOs
# ---------------------------------------------------------------------------


class TestUtxos:
    @pytest.mark.asyncio
    async def test_parses_records(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert f"/electrumx/utxos/{_ADDRESS}" in str(request.url)
            return httpx.Response(
                200,
                json={
                    "success": True,
                    "utxos": [
                        {"tx_hash": _TXID, "tx_pos": 1, "value": 5_000, "height": 800_000},
                        {"tx_hash": "cd" * 32, "tx_pos": 0, "value": 700, "height": 0},
                    ],
                },
            )

        utxos = await _ledger(handler).get_utxos(_ADDRESS)
        assert [(u.txid, u.vout, u.value, u.height) for u in utxos] == [
            (_TXID, 1, 5_000, 800_000),
            ("cd" * 32, 0, 700, 0),
        ]

    @pytest.mark.asyncio
    async def test_bare_list(self) -> None:
        handler = lambda r: httpx.Response(200, json=[{"tx_hash": _TXID, "tx_pos": 0, "value": 1}])  # noqa: E731
        utxos = await _ledger(handler).get_utxos(_ADDRESS)
        assert len(utxos) == 1

    @pytest.mark.asyncio
    async def test_empty_on_failure(self) -> None:
        assert await _ledger(lambda r: httpx.Response(500)).get_utxos(_ADDRESS) == []


# ---------------------------------------------------------------------------
# Fee rate
# ---------------------------------------------------------------------------


class TestFeeRate:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("reply", "expected"),
        [
            (0.00001, 1),
            (0.00002, 2),
            (0.000014, 1),
            (0.000015, 2),
            (0.0, 1),
            ({"fee": 0.00003}, 3),
        ],
    )
    async def test_conversion(self, reply, expected: int) -> None:
        ledger = _ledger(lambda r: httpx.Response(200, json=reply))
        assert await ledger.get_fee_rate() == expected

    @pytest.mark.asyncio
    async def test_target_blocks_in_path(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path.endswith("/electrumx/estimatefee/6")
            return httpx.Response(200, json=0.00001)

        assert await _ledger(handler, fee_target_blocks=6).get_fee_rate() == 1

    @pytest.mark.asyncio
    async def test_negative_means_fallback(self) -> None:
        storage = MemoryStorage()
        ledger = _ledger(lambda r: httpx.Response(200, json=-1), storage=storage, fallback_fee_rate=4)
        assert await ledger.get_fee_rate() == 4
        assert await storage.get(FEE_CACHE_KEY) is None

    @pytest.mark.asyncio
    async def test_failure_means_fallback(self) -> None:
        ledger = _ledger(lambda r: httpx.Response(500), fallback_fee_rate=2)
        assert await ledger.get_fee_rate() == 2

    @pytest.mark.asyncio
    async def test_cached(self) -> None:
        counter = _Counter(lambda r: httpx.Response(200, json=0.00005))
        ledger = _ledger(counter)
        assert await ledger.get_fee_rate() == 5
        assert await ledger.get_fee_rate() == 5
        assert counter.calls == 1


# ---------------------------------------------------------------------------
# Broadcast
# ---------------------------------------------------------------------------


class TestBroadcast:
    @pytest.mark.asyncio
    async def test_json_reply(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.method == "POST"
            assert request.url.path.endswith("/electrumx/tx/broadcast")
            assert b'"txHex"' in request.content
            return httpx.Response(200, json={"success": True, "txid": _TXID.upper()})

        assert await _ledger(handler).broadcast("0200") == _TXID

    @pytest.mark.asyncio
    async def test_plain_text_reply(self) -> None:
        ledger = _ledger(lambda r: httpx.Response(200, text=_TXID))
        assert await ledger.broadcast("0200") == _TXID

    @pytest.mark.asyncio
    async def test_non_txid_reply(self) -> None:
        counter = _Counter(lambda r: httpx.Response(200, json={"txid": "not-a-txid"}))
        ledger = _ledger(counter, max_attempts=2)
        with pytest.raises(NetworkFailure):
            await ledger.broadcast("0200")
        assert counter.calls == 2

    @pytest.mark.asyncio
    async def test_rejected(self) -> None:
        ledger = _ledger(lambda r: httpx.Response(400, json={"error": "bad-txns"}))
        with pytest.raises(NetworkFailure, match="broadcast failed"):
            await ledger.broadcast("0200")
