"""Error hierarchy for nos2bch.

Every failure surfaced to a caller is an :class:`AgentError` carrying a
machine-readable ``code``; the dispatcher converts it into the single
``{"error": {"message", "code"}}`` response shape.
"""

from __future__ import annotations

from nos2bch.errors.agent_errors import (
    AgentError,
    Busy,
    ConvergenceFailure,
    CryptoError,
    DustAmount,
    InsufficientFunds,
    InvalidChecksum,
    InvalidFormat,
    InvalidRecipient,
    InvalidRequest,
    InvalidUtxo,
    NetworkFailure,
    NoPrivateKey,
    PermissionDenied,
    SerializationError,
)

__all__ = [
    "AgentError",
    "Busy",
    "ConvergenceFailure",
    "CryptoError",
    "DustAmount",
    "InsufficientFunds",
    "InvalidChecksum",
    "InvalidFormat",
    "InvalidRecipient",
    "InvalidRequest",
    "InvalidUtxo",
    "NetworkFailure",
    "NoPrivateKey",
    "PermissionDenied",
    "SerializationError",
]
