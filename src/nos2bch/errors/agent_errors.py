"""AgentError — base exception class and the error taxonomy."""

from __future__ import annotations


class AgentError(Exception):
    """Base error for all agent operations.

    Attributes:
        message: Human-readable error description.
        code: Machine-readable error code string.
    """

    default_code = "agent-error"

    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code

    def to_dict(self) -> dict[str, str]:
        """Serialize to the wire error shape."""
        return {"message": self.message, "code": self.code}


# -- Authorization ---------------------------------------------------------


class PermissionDenied(AgentError):
    """Policy or the user said no."""

    default_code = "denied"

    def __init__(self, message: str = "denied", *, code: str | None = None) -> None:
        super().__init__(message, code=code)


class Busy(AgentError):
    """The single-flight prompt slot is already occupied."""

    default_code = "busy"

    def __init__(self, message: str = "prompt in progress", *, code: str | None = None) -> None:
        super().__init__(message, code=code)


class NoPrivateKey(AgentError):
    """No secret key has been configured in storage."""

    default_code = "no-private-key"

    def __init__(self, message: str = "no private key found", *, code: str | None = None) -> None:
        super().__init__(message, code=code)


class InvalidRequest(AgentError):
    """The inbound request is malformed or names an unknown operation."""

    default_code = "invalid-request"


# -- Validation ------------------------------------------------------------


class InsufficientFunds(AgentError):
    """Not enough spendable value to cover amount and fee."""

    default_code = "insufficient-funds"


class DustAmount(AgentError):
    """Amount or balance is below the usable threshold."""

    default_code = "dust-amount"


class InvalidRecipient(AgentError):
    """Recipient key could not be decoded or is not on the curve."""

    default_code = "invalid-recipient"


# -- Transport -------------------------------------------------------------


class NetworkFailure(AgentError):
    """A remote call failed after all retry attempts."""

    default_code = "network-failure"


# -- Internal --------------------------------------------------------------


class ConvergenceFailure(AgentError):
    """The fee/change loop did not stabilise."""

    default_code = "convergence-failure"


class SerializationError(AgentError):
    """Malformed UTXO, script or wire data."""

    default_code = "serialization-error"


class InvalidUtxo(SerializationError):
    """A UTXO record is structurally invalid."""

    default_code = "invalid-utxo"


class InvalidFormat(SerializationError):
    """An encoded string (address, bech32 entity) is malformed."""

    default_code = "invalid-format"


class InvalidChecksum(SerializationError):
    """An encoded string failed checksum verification."""

    default_code = "invalid-checksum"


class CryptoError(AgentError):
    """Encryption, decryption or signature verification failed."""

    default_code = "crypto-error"
