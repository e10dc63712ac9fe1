"""Authorization broker — the single-flight consent gate."""

from __future__ import annotations

from nos2bch.broker.broker import AuthorizationBroker, PendingPrompt, PromptResponse, PromptSurface
from nos2bch.broker.offload import run_isolated

__all__ = ["AuthorizationBroker", "PendingPrompt", "PromptResponse", "PromptSurface", "run_isolated"]
