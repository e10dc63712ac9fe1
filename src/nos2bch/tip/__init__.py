"""Tip orchestration — from a Nostr identity to a broadcast BCH payment."""

from __future__ import annotations

from nos2bch.tip.service import TipPreview, TipResult, TipService

__all__ = ["TipPreview", "TipResult", "TipService"]
