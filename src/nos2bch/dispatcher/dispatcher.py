"""Operation dispatcher — one handler per operation type.

Gated operations run as::

    acquire slot -> authorize -> load key -> handler -> release slot

and the slot is released on every path, errors included. ``replaceURL``
needs no permission and never touches the broker.
"""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING, Any

from nos2bch.dispatcher.operations import (
    DecryptParams,
    EncryptParams,
    OperationResult,
    OperationType,
    ReplaceUrlParams,
    Request,
    SignEventParams,
    TipParams,
)
from nos2bch.errors import AgentError, CryptoError, NoPrivateKey, PermissionDenied, SerializationError
from nos2bch.nostr import nip04, nip19, nip44
from nos2bch.nostr.event import get_public_key, sign_and_verify
from nos2bch.notifications.events import PermissionEvent, TipEvent, summarize_params
from nos2bch.policy.conditions import Decision

if TYPE_CHECKING:
    from nos2bch.broker.broker import AuthorizationBroker
    from nos2bch.notifications.service import NotificationService
    from nos2bch.storage.client import Storage
    from nos2bch.tip.service import TipService

logger = logging.getLogger(__name__)

PRIVATE_KEY_KEY = "private_key"
PROTOCOL_HANDLER_KEY = "protocol_handler"

_P_OR_E = {"npub": "p", "note": "e", "nprofile": "p", "nevent": "e"}
_U_OR_N = {"npub": "u", "note": "n", "nprofile": "u", "nevent": "n"}


def render_protocol_url(template: str, url: str) -> str:
    """Substitute the parts of a ``nostr:`` link into a handler template.

    Placeholders: ``{raw} {hrp} {hex} {p_or_e} {u_or_n} {relay0} {relay1}
    {relay2}``; whitespace inside the braces is allowed and unknown values
    become empty strings.
    """
    raw = url.split("nostr:", 1)[1] if "nostr:" in url else url
    decoded = nip19.decode(raw)
    relays = decoded.relays
    replacements = {
        "raw": raw,
        "hrp": decoded.type,
        "hex": decoded.hex if decoded.type != "nsec" else None,
        "p_or_e": _P_OR_E.get(decoded.type),
        "u_or_n": _U_OR_N.get(decoded.type),
        "relay0": relays[0] if len(relays) > 0 else None,
        "relay1": relays[1] if len(relays) > 1 else None,
        "relay2": relays[2] if len(relays) > 2 else None,
    }
    result = template
    for name, value in replacements.items():
        result = re.sub(r"\{ *" + name + r" *\}", lambda _m, v=value: v or "", result)
    return result


class Dispatcher:
    """Routes validated requests to handlers behind the authorization broker.

    Usage::

        dispatcher = Dispatcher(storage, broker, tips)
        reply = await dispatcher.handle({"type": "getPublicKey", "params": {}, "host": "example.com"})
        reply.to_dict()   # {"result": "ab12..."}
    """

    def __init__(
        self,
        storage: Storage,
        broker: AuthorizationBroker,
        tips: TipService,
        *,
        notifications: NotificationService | None = None,
    ) -> None:
        self._storage = storage
        self._broker = broker
        self._tips = tips
        self._notifications = notifications

    async def handle(self, raw: dict[str, Any]) -> OperationResult:
        """Handle one inbound request; never raises for expected failures."""
        try:
            request = Request.parse(raw)
            if not request.type.requires_permission:
                return OperationResult.success(await self._replace_url(request.params))
            return OperationResult.success(await self._gated(request))
        except AgentError as exc:
            logger.info("Request %s failed: %s (%s)", raw.get("type") if isinstance(raw, dict) else None, exc.message, exc.code)
            return OperationResult.failure(exc)
        except Exception:
            logger.exception("Unexpected error handling request")
            return OperationResult.failure(AgentError("internal error", code="internal-error"))

    # ------------------------------------------------------------------
    # Gated path
    # ------------------------------------------------------------------

    async def _gated(self, request: Request) -> Any:
        self._broker.acquire()
        try:
            payload = request.params.model_dump()
            decision = await self._broker.authorize(
                request.host,
                request.type.value,
                payload,
                preview=self._preview_for(request),
            )
            await self._emit_permission(request, payload, decision == Decision.ALLOW)
            if decision != Decision.ALLOW:
                raise PermissionDenied()
            secret = await self._load_key()
            return await self._perform(request, secret)
        finally:
            self._broker.release()

    def _preview_for(self, request: Request) -> Any:
        params = request.params
        if not isinstance(params, TipParams):
            return None

        async def _preview() -> dict[str, Any] | None:
            secret = await self._load_key()
            try:
                preview = await self._tips.tip_preview(secret, params.recipient, params.amount)
            except AgentError as exc:
                return {"error": exc.to_dict()}
            return preview.to_dict()

        return _preview

    async def _load_key(self) -> bytes:
        value = await self._storage.get(PRIVATE_KEY_KEY)
        if not value:
            raise NoPrivateKey()
        try:
            secret = bytes.fromhex(value)
        except (TypeError, ValueError):
            secret = b""
        if len(secret) != 32:
            msg = "stored private key is malformed"
            raise CryptoError(msg)
        self._broker.observe_key(secret)
        return secret

    async def _perform(self, request: Request, secret: bytes) -> Any:
        params = request.params
        match request.type:
            case OperationType.GET_PUBLIC_KEY:
                return get_public_key(secret)
            case OperationType.SIGN_EVENT:
                assert isinstance(params, SignEventParams)
                return sign_and_verify(params.event, secret)
            case OperationType.NIP04_ENCRYPT:
                assert isinstance(params, EncryptParams)
                return nip04.encrypt(secret, params.peer.lower(), params.plaintext)
            case OperationType.NIP04_DECRYPT:
                assert isinstance(params, DecryptParams)
                return nip04.decrypt(secret, params.peer.lower(), params.ciphertext)
            case OperationType.NIP44_ENCRYPT:
                assert isinstance(params, EncryptParams)
                return nip44.encrypt(params.plaintext, self._broker.shared_secret(secret, params.peer.lower()))
            case OperationType.NIP44_DECRYPT:
                assert isinstance(params, DecryptParams)
                return nip44.decrypt(params.ciphertext, self._broker.shared_secret(secret, params.peer.lower()))
            case OperationType.TIP_BCH:
                assert isinstance(params, TipParams)
                result = await self._tips.tip(secret, params.recipient, params.amount, notify=params.notify)
                if self._notifications is not None:
                    await self._notifications.notify(
                        TipEvent(txid=result.txid, amount=result.amount, recipient_address=result.recipient_address)
                    )
                return result.to_dict()
            case _:
                msg = f"no handler for {request.type}"
                raise AgentError(msg, code="unknown-operation")

    async def _emit_permission(self, request: Request, payload: dict[str, Any], allowed: bool) -> None:
        if self._notifications is None:
            return
        await self._notifications.notify(
            PermissionEvent(
                host=request.host,
                operation=request.type.value,
                allowed=allowed,
                content=summarize_params(request.type, payload),
            )
        )

    # ------------------------------------------------------------------
    # Permission-exempt
    # ------------------------------------------------------------------

    async def _replace_url(self, params: Any) -> str | bool:
        assert isinstance(params, ReplaceUrlParams)
        template = await self._storage.get(PROTOCOL_HANDLER_KEY)
        if not template:
            return False
        try:
            return render_protocol_url(template, params.url)
        except SerializationError as exc:
            logger.debug("replaceURL could not decode %s: %s", params.url, exc.message)
            return False
