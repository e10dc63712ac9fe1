"""Persisted per-host authorization policies."""

from __future__ import annotations

from nos2bch.policy.conditions import Condition, Decision
from nos2bch.policy.store import PolicyEntry, PolicyStore

__all__ = ["Condition", "Decision", "PolicyEntry", "PolicyStore"]
