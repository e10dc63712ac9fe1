"""Operation types, their typed parameters, and the result envelope.

Every inbound request is ``{"type", "params", "host"}``. ``type`` must be
one of :class:`OperationType`; ``params`` is validated against the model
registered for that type in :data:`PARAMS_MODELS`.
"""

from __future__ import annotations

import enum
from typing import Any, Self

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from nos2bch.errors import AgentError, InvalidRequest
from nos2bch.errors.definitions import ErrUnknownOperation


class OperationType(enum.StrEnum):
    """Closed set of operations a host may request."""

    GET_PUBLIC_KEY = "getPublicKey"
    SIGN_EVENT = "signEvent"
    NIP04_ENCRYPT = "nip04.encrypt"
    NIP04_DECRYPT = "nip04.decrypt"
    NIP44_ENCRYPT = "nip44.encrypt"
    NIP44_DECRYPT = "nip44.decrypt"
    TIP_BCH = "tipBCH"
    REPLACE_URL = "replaceURL"

    @property
    def requires_permission(self) -> bool:
        return self is not OperationType.REPLACE_URL

    @property
    def description(self) -> str:
        """Human-readable permission name for prompts and option pages."""
        return PERMISSION_NAMES.get(self, self.value)


PERMISSION_NAMES: dict[OperationType, str] = {
    OperationType.GET_PUBLIC_KEY: "read your public key",
    OperationType.SIGN_EVENT: "sign events using your private key",
    OperationType.NIP04_ENCRYPT: "encrypt messages to peers",
    OperationType.NIP04_DECRYPT: "decrypt messages from peers",
    OperationType.NIP44_ENCRYPT: "encrypt messages to peers",
    OperationType.NIP44_DECRYPT: "decrypt messages from peers",
    OperationType.TIP_BCH: "send BCH tips using your private key",
}


def describe_operation(operation: str) -> str:
    """Permission name for *operation*; unknown names are returned as-is."""
    try:
        return OperationType(operation).description
    except ValueError:
        return operation


# ---------------------------------------------------------------------------
# Parameter models
# ---------------------------------------------------------------------------


class _Params(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class GetPublicKeyParams(_Params):
    pass


class SignEventParams(_Params):
    event: dict[str, Any]


class EncryptParams(_Params):
    peer: str = Field(pattern=r"^[0-9a-fA-F]{64}$")
    plaintext: str


class DecryptParams(_Params):
    peer: str = Field(pattern=r"^[0-9a-fA-F]{64}$")
    ciphertext: str


class TipParams(_Params):
    recipient: str = Field(alias="recipientNpub", min_length=1)
    amount: int = Field(alias="amountSat", gt=0)
    notify: bool = False


class ReplaceUrlParams(_Params):
    url: str


PARAMS_MODELS: dict[OperationType, type[_Params]] = {
    OperationType.GET_PUBLIC_KEY: GetPublicKeyParams,
    OperationType.SIGN_EVENT: SignEventParams,
    OperationType.NIP04_ENCRYPT: EncryptParams,
    OperationType.NIP04_DECRYPT: DecryptParams,
    OperationType.NIP44_ENCRYPT: EncryptParams,
    OperationType.NIP44_DECRYPT: DecryptParams,
    OperationType.TIP_BCH: TipParams,
    OperationType.REPLACE_URL: ReplaceUrlParams,
}


# ---------------------------------------------------------------------------
# Request / result
# ---------------------------------------------------------------------------


class Request(BaseModel):
    """A validated inbound request."""

    type: OperationType
    host: str = ""
    params: _Params

    @classmethod
    def parse(cls, raw: dict[str, Any]) -> Self:
        """Validate a raw request dict.

        Raises:
            InvalidRequest: Unknown type or parameters that fail validation.
        """
        if not isinstance(raw, dict):
            msg = "request must be a JSON object"
            raise InvalidRequest(msg)
        try:
            op = OperationType(raw.get("type"))
        except ValueError:
            raise ErrUnknownOperation from None
        try:
            params = PARAMS_MODELS[op].model_validate(raw.get("params") or {})
        except ValidationError as exc:
            msg = f"invalid params for {op}: {exc.errors()[0]['msg']}"
            raise InvalidRequest(msg) from exc
        return cls(type=op, host=str(raw.get("host") or ""), params=params)


class OperationResult(BaseModel):
    """Single response shape: exactly one of ``result`` / ``error`` is meaningful."""

    result: Any = None
    error: dict[str, str] | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, result: Any) -> Self:
        return cls(result=result)

    @classmethod
    def failure(cls, exc: AgentError) -> Self:
        return cls(error=exc.to_dict())

    def to_dict(self) -> dict[str, Any]:
        if self.error is not None:
            return {"error": self.error}
        return {"result": self.result}
