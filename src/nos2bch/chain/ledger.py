"""Ledger client — balance, UTXOs, fee rate and broadcast over an indexer.

Async HTTP client for ElectrumX-style REST indexers:
- GET  /electrumx/balance/<addr>
- GET  /electrumx/utxos/<addr>
- GET  /electrumx/estimatefee/<blocks>
- POST /electrumx/tx/broadcast

Every call is retried against a shuffled list of endpoints with a fixed
delay between attempts. Balance and fee rate are cached in storage with a
timestamp; a fresh cache entry skips the network entirely.
"""

from __future__ import annotations

import asyncio
import logging
import random
import re
import time
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import TYPE_CHECKING, Any

import httpx

from nos2bch.chain.models import Balance, Utxo
from nos2bch.errors import InvalidUtxo, NetworkFailure
from nos2bch.errors.definitions import ErrNoEndpoints

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from nos2bch.config.settings import LedgerConfig
    from nos2bch.storage.client import Storage

logger = logging.getLogger(__name__)

FEE_CACHE_KEY = "cached_fee_rate"
BALANCE_CACHE_PREFIX = "cached_balance_"

_TXID_RE = re.compile(r"^[0-9a-fA-F]{64}$")
# BCH/kB -> sat/byte
_SATS_PER_KB_UNIT = Decimal(100_000)


def balance_cache_key(address: str) -> str:
    return BALANCE_CACHE_PREFIX + address.lower()


class LedgerClient:
    """Retrying indexer client with storage-backed caching.

    Usage::

        ledger = LedgerClient(config.ledger, storage)
        await ledger.connect()
        try:
            sats = await ledger.get_balance("bitcoincash:q...")
        finally:
            await ledger.close()
    """

    def __init__(
        self,
        config: LedgerConfig,
        storage: Storage,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._config = config
        self._storage = storage
        self._clock = clock
        self._client: httpx.AsyncClient | None = None

    async def connect(self) -> None:
        """Create the underlying HTTP client."""
        self._client = httpx.AsyncClient(
            headers={"Accept": "application/json"},
            timeout=self._config.timeout,
        )

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    @property
    def is_connected(self) -> bool:
        """Check if the HTTP client is active."""
        return self._client is not None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def get_balance(self, address: str, *, force_refresh: bool = False) -> int:
        """Total (confirmed + unconfirmed) balance in satoshis.

        Falls back to the last cached value, even a stale one, and then to 0
        when every attempt fails.
        """
        key = balance_cache_key(address)
        cached = await self._storage.get(key)
        if not force_refresh and self._is_fresh(cached):
            return int(cached["balance"])

        try:
            data = await self._with_retry("balance", lambda base: self._get(base, f"/electrumx/balance/{address}"))
            balance = _parse_balance(data)
        except NetworkFailure:
            if cached:
                logger.warning("Balance fetch failed; using cached value for %s", address)
                return int(cached["balance"])
            logger.warning("Balance fetch failed for %s; reporting no funds", address)
            return 0

        await self._storage.set(key, {"balance": balance.total, "timestamp": self._now_ms()})
        return balance.total

    async def get_utxos(self, address: str) -> list[Utxo]:
        """Unspent outputs for *address*; empty list when every attempt fails."""
        try:
            data = await self._with_retry("utxos", lambda base: self._get(base, f"/electrumx/utxos/{address}"))
        except NetworkFailure:
            logger.warning("UTXO fetch failed for %s; reporting no funds", address)
            return []
        items = data.get("utxos", []) if isinstance(data, dict) else data
        if not isinstance(items, list):
            msg = "Malformed UTXO list from provider"
            raise InvalidUtxo(msg)
        return [Utxo.from_provider(item) for item in items]

    async def get_fee_rate(self) -> int:
        """Fee rate in sat/byte (at least 1); fallback rate on failure."""
        cached = await self._storage.get(FEE_CACHE_KEY)
        if self._is_fresh(cached):
            return int(cached["fee_rate"])

        blocks = self._config.fee_target_blocks
        try:
            data = await self._with_retry("fee", lambda base: self._get(base, f"/electrumx/estimatefee/{blocks}"))
            fee_rate = _parse_fee_rate(data)
        except NetworkFailure:
            logger.warning("Fee rate fetch failed; using fallback %d sat/byte", self._config.fallback_fee_rate)
            return self._config.fallback_fee_rate
        if fee_rate is None:
            return self._config.fallback_fee_rate

        await self._storage.set(FEE_CACHE_KEY, {"fee_rate": fee_rate, "timestamp": self._now_ms()})
        return fee_rate

    async def broadcast(self, raw_tx_hex: str) -> str:
        """Broadcast a signed transaction.

        Returns:
            The txid reported by the indexer.

        Raises:
            NetworkFailure: When every attempt fails or the reply is not a txid.
        """

        async def _post(base: str) -> str:
            data = await self._post(base, "/electrumx/tx/broadcast", {"txHex": raw_tx_hex})
            txid = _parse_txid(data)
            if txid is None:
                msg = f"Invalid broadcast response: {data!r}"
                raise NetworkFailure(msg)
            return txid

        txid = await self._with_retry("broadcast", _post)
        logger.info("Broadcast successful, txid: %s", txid)
        return txid

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def _is_fresh(self, cached: Any) -> bool:
        if not isinstance(cached, dict) or "timestamp" not in cached:
            return False
        return self._now_ms() - int(cached["timestamp"]) < self._config.cache_ttl * 1000

    async def _with_retry(self, name: str, call: Callable[[str], Awaitable[Any]]) -> Any:
        """Run *call* against shuffled endpoints, up to ``max_attempts`` times.

        Raises:
            NetworkFailure: Wrapping the last error after exhaustion.
        """
        if not self._config.endpoints:
            raise ErrNoEndpoints
        endpoints = list(self._config.endpoints)
        random.shuffle(endpoints)
        last_error: Exception | None = None
        for attempt in range(1, self._config.max_attempts + 1):
            base = endpoints[(attempt - 1) % len(endpoints)]
            try:
                return await call(base)
            except (httpx.HTTPError, NetworkFailure, ValueError) as exc:
                last_error = exc
                logger.warning("%s attempt %d/%d on %s failed: %s", name, attempt, self._config.max_attempts, base, exc)
            if attempt < self._config.max_attempts:
                await asyncio.sleep(self._config.retry_delay)
        msg = f"{name} failed after {self._config.max_attempts} attempts: {last_error}"
        raise NetworkFailure(msg) from last_error

    def _ensure_connected(self) -> httpx.AsyncClient:
        if self._client is None:
            msg = "LedgerClient is not connected — call connect() first"
            raise RuntimeError(msg)
        return self._client

    async def _get(self, base: str, path: str) -> Any:
        client = self._ensure_connected()
        resp = await client.get(base.rstrip("/") + path)
        resp.raise_for_status()
        return resp.json()

    async def _post(self, base: str, path: str, body: dict[str, Any]) -> Any:
        client = self._ensure_connected()
        resp = await client.post(base.rstrip("/") + path, json=body)
        resp.raise_for_status()
        try:
            return resp.json()
        except ValueError:
            return resp.text.strip().strip('"')


# ---------------------------------------------------------------------------
# Response normalisation
# ---------------------------------------------------------------------------


def _unwrap_error(data: Any) -> None:
    if isinstance(data, dict) and data.get("success") is False:
        msg = f"Provider error: {data.get('error') or data.get('message') or data}"
        raise NetworkFailure(msg)


def _parse_balance(data: Any) -> Balance:
    _unwrap_error(data)
    body = data.get("balance", data) if isinstance(data, dict) else None
    if not isinstance(body, dict):
        msg = f"Malformed balance response: {data!r}"
        raise NetworkFailure(msg)
    try:
        return Balance(confirmed=int(body.get("confirmed", 0)), unconfirmed=int(body.get("unconfirmed", 0)))
    except (TypeError, ValueError) as exc:
        msg = f"Malformed balance response: {data!r}"
        raise NetworkFailure(msg) from exc


def _parse_fee_rate(data: Any) -> int | None:
    """Convert a BCH/kB estimate to whole sat/byte; None for "no estimate"."""
    _unwrap_error(data)
    raw = data.get("fee", data.get("feerate")) if isinstance(data, dict) else data
    try:
        fee = Decimal(str(raw))
    except (InvalidOperation, ValueError) as exc:
        msg = f"Malformed fee response: {data!r}"
        raise NetworkFailure(msg) from exc
    if fee < 0:
        return None
    sats = (fee * _SATS_PER_KB_UNIT).quantize(Decimal(1), rounding=ROUND_HALF_UP)
    return max(1, int(sats))


def _parse_txid(data: Any) -> str | None:
    if isinstance(data, dict):
        _unwrap_error(data)
        data = data.get("txid")
    if isinstance(data, str) and _TXID_RE.match(data):
        return data.lower()
    return None
