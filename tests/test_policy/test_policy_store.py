"""Tests for the policy store."""

from __future__ import annotations

import pytest

from nos2bch.policy import Condition, Decision, PolicyStore
from nos2bch.policy.conditions import SIGN_EVENT, TIP_BCH
from nos2bch.policy.store import POLICIES_KEY
from nos2bch.storage.client import MemoryStorage

_HOST = "example.com"


class _Clock:
    def __init__(self) -> None:
        self.now = 1_000.0

    def __call__(self) -> float:
        self.now += 1
        return self.now


@pytest.fixture
def store() -> PolicyStore:
    return PolicyStore(MemoryStorage(), clock=_Clock())


def _tip(amount: int) -> dict:
    return {"recipient": "ab" * 32, "amount": amount}


def _sign(kind: int) -> dict:
    return {"event": {"kind": kind, "content": ""}}


class TestLookup:
    @pytest.mark.asyncio
    async def test_unknown_by_default(self, store: PolicyStore) -> None:
        assert await store.get_decision(_HOST, "getPublicKey") == Decision.UNKNOWN

    @pytest.mark.asyncio
    async def test_unconditional_allow(self, store: PolicyStore) -> None:
        await store.set_decision(_HOST, "getPublicKey", True)
        assert await store.get_decision(_HOST, "getPublicKey") == Decision.ALLOW
        assert await store.get_decision("other.com", "getPublicKey") == Decision.UNKNOWN

    @pytest.mark.asyncio
    async def test_deny_with_kinds(self, store: PolicyStore) -> None:
        await store.set_decision(_HOST, SIGN_EVENT, False, Condition(kinds=frozenset({1})))
        assert await store.get_decision(_HOST, SIGN_EVENT, _sign(1)) == Decision.DENY
        assert await store.get_decision(_HOST, SIGN_EVENT, _sign(2)) == Decision.UNKNOWN

    @pytest.mark.asyncio
    async def test_allow_checked_before_deny(self, store: PolicyStore) -> None:
        await store.set_decision(_HOST, SIGN_EVENT, True, Condition(kinds=frozenset({1})))
        await store.set_decision(_HOST, SIGN_EVENT, False)
        assert await store.get_decision(_HOST, SIGN_EVENT, _sign(1)) == Decision.ALLOW
        assert await store.get_decision(_HOST, SIGN_EVENT, _sign(3)) == Decision.DENY

    @pytest.mark.asyncio
    async def test_storage_shape(self) -> None:
        storage = MemoryStorage()
        store = PolicyStore(storage, clock=lambda: 1234.4)
        await store.set_decision(_HOST, TIP_BCH, True, Condition(max_amount=5000))
        assert await storage.get(POLICIES_KEY) == {
            _HOST: {"true": {TIP_BCH: {"conditions": {"max_amount": 5000}, "created_at": 1234}}},
        }


class TestMerging:
    @pytest.mark.asyncio
    async def test_amount_ceiling_takes_minimum(self, store: PolicyStore) -> None:
        await store.set_decision(_HOST, TIP_BCH, True, Condition(max_amount=5000))
        stored = await store.set_decision(_HOST, TIP_BCH, True, Condition(max_amount=3000))
        assert stored.max_amount == 3000
        assert await store.get_decision(_HOST, TIP_BCH, _tip(3000)) == Decision.ALLOW
        assert await store.get_decision(_HOST, TIP_BCH, _tip(4000)) == Decision.UNKNOWN

    @pytest.mark.asyncio
    async def test_kinds_union(self, store: PolicyStore) -> None:
        await store.set_decision(_HOST, SIGN_EVENT, True, Condition(kinds=frozenset({1})))
        stored = await store.set_decision(_HOST, SIGN_EVENT, True, Condition(kinds=frozenset({7})))
        assert stored.kinds == frozenset({1, 7})

    @pytest.mark.asyncio
    async def test_empty_condition_replaces(self, store: PolicyStore) -> None:
        await store.set_decision(_HOST, TIP_BCH, True, Condition(max_amount=5000))
        stored = await store.set_decision(_HOST, TIP_BCH, True)
        assert stored.is_empty
        assert await store.get_decision(_HOST, TIP_BCH, _tip(10**8)) == Decision.ALLOW

    @pytest.mark.asyncio
    async def test_reverse_entry_removed_when_equal(self, store: PolicyStore) -> None:
        await store.set_decision(_HOST, "getPublicKey", False)
        await store.set_decision(_HOST, "getPublicKey", True)
        entries = await store.list_policies()
        assert [(e.accept, e.operation) for e in entries] == [(True, "getPublicKey")]

    @pytest.mark.asyncio
    async def test_reverse_entry_kept_when_different(self, store: PolicyStore) -> None:
        await store.set_decision(_HOST, SIGN_EVENT, False, Condition(kinds=frozenset({4})))
        await store.set_decision(_HOST, SIGN_EVENT, True, Condition(kinds=frozenset({1})))
        assert len(await store.list_policies()) == 2


class TestClearAndList:
    @pytest.mark.asyncio
    async def test_clear_prunes_empty_hosts(self) -> None:
        storage = MemoryStorage()
        store = PolicyStore(storage)
        await store.set_decision(_HOST, "getPublicKey", True)
        await store.clear(_HOST, True, "getPublicKey")
        assert await storage.get(POLICIES_KEY) == {}
        assert await store.get_decision(_HOST, "getPublicKey") == Decision.UNKNOWN

    @pytest.mark.asyncio
    async def test_clear_missing_is_noop(self, store: PolicyStore) -> None:
        await store.clear(_HOST, False, "signEvent")
        assert await store.list_policies() == []

    @pytest.mark.asyncio
    async def test_list_sorted_by_creation(self, store: PolicyStore) -> None:
        await store.set_decision("b.com", "getPublicKey", True)
        await store.set_decision("a.com", TIP_BCH, False, Condition(max_amount=1))
        entries = await store.list_policies()
        assert [e.host for e in entries] == ["b.com", "a.com"]
        assert entries[1].accept is False
        assert entries[1].condition == Condition(max_amount=1)
