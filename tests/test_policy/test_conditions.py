"""Tests for policy conditions."""

from __future__ import annotations

import pytest

from nos2bch.errors import InvalidRequest
from nos2bch.policy.conditions import SIGN_EVENT, TIP_BCH, Condition


class TestParsing:
    def test_empty(self) -> None:
        assert Condition.from_dict(None).is_empty
        assert Condition.from_dict({}).is_empty

    def test_stored_map(self) -> None:
        cond = Condition.from_dict({"kinds": {"1": True, "7": True, "4": False}, "max_amount": 5000})
        assert cond.kinds == frozenset({1, 7})
        assert cond.max_amount == 5000

    def test_list_form(self) -> None:
        assert Condition.from_dict({"kinds": [1, "3"]}).kinds == frozenset({1, 3})

    @pytest.mark.parametrize(
        "data",
        [
            [1],
            "kinds",
            {"kinds": ["x"]},
            {"kinds": [True]},
            {"kinds": [-1]},
            {"kinds": 1},
            {"kinds": {"one": True}},
            {"max_amount": "lots"},
            {"max_amount": -5},
            {"max_amount": 1.5},
        ],
    )
    def test_malformed(self, data) -> None:
        with pytest.raises(InvalidRequest):
            Condition.from_dict(data)

    def test_to_dict(self) -> None:
        cond = Condition(kinds=frozenset({7, 1}), max_amount=10)
        assert cond.to_dict() == {"kinds": {"1": True, "7": True}, "max_amount": 10}
        assert Condition().to_dict() == {}
        assert Condition.from_dict(cond.to_dict()) == cond


class TestMerge:
    def test_kinds_union(self) -> None:
        merged = Condition(kinds=frozenset({1})).merge(Condition(kinds=frozenset({7})))
        assert merged.kinds == frozenset({1, 7})

    def test_lower_ceiling(self) -> None:
        assert Condition(max_amount=5000).merge(Condition(max_amount=3000)).max_amount == 3000
        assert Condition(max_amount=3000).merge(Condition(max_amount=5000)).max_amount == 3000

    def test_one_sided_field_keeps_new_value(self) -> None:
        merged = Condition(kinds=frozenset({1})).merge(Condition(max_amount=100))
        assert merged == Condition(kinds=frozenset({1}))


class TestMatching:
    def test_empty_matches_everything(self) -> None:
        assert Condition().matches(SIGN_EVENT, {})
        assert Condition().matches(TIP_BCH, {"amount": 10**9})

    def test_kinds(self) -> None:
        cond = Condition(kinds=frozenset({1}))
        assert cond.matches(SIGN_EVENT, {"event": {"kind": 1}})
        assert not cond.matches(SIGN_EVENT, {"event": {"kind": 2}})
        assert not cond.matches(SIGN_EVENT, {"event": {}})

    def test_kinds_ignored_for_other_operations(self) -> None:
        assert Condition(kinds=frozenset({1})).matches("nip04.encrypt", {})

    def test_max_amount(self) -> None:
        cond = Condition(max_amount=3000)
        assert cond.matches(TIP_BCH, {"amount": 3000})
        assert not cond.matches(TIP_BCH, {"amount": 3001})
        assert not cond.matches(TIP_BCH, {})

    def test_max_amount_ignored_for_signing(self) -> None:
        assert Condition(max_amount=1).matches(SIGN_EVENT, {"event": {"kind": 1}})
