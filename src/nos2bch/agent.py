"""KeyAgent — central client owning storage, ledger, broker and dispatcher."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from nos2bch.broker.broker import AuthorizationBroker, PromptSurface
    from nos2bch.chain.ledger import LedgerClient
    from nos2bch.config.settings import AppConfig
    from nos2bch.dispatcher.dispatcher import Dispatcher
    from nos2bch.dispatcher.operations import OperationResult
    from nos2bch.notifications.service import NotificationService
    from nos2bch.policy.store import PolicyStore
    from nos2bch.storage.client import Storage
    from nos2bch.tip.service import TipService

_ERR_NOT_INITIALIZED = "Agent not initialized. Call initialize() first."


class KeyAgent:
    """Wires every component together and manages their lifecycle.

    Usage::

        agent = KeyAgent(AppConfig(), surface)
        await agent.initialize()
        try:
            reply = await agent.handle({"type": "getPublicKey", "params": {}, "host": "a.com"})
        finally:
            await agent.close()
    """

    def __init__(self, config: AppConfig, surface: PromptSurface, *, storage: Storage | None = None) -> None:
        """Initialize with configuration and the confirmation UI.

        Args:
            config: Application configuration.
            surface: Prompt surface the broker opens confirmations on.
            storage: Pre-built storage backend; built from config when omitted.
        """
        self._config = config
        self._surface = surface
        self._storage = storage
        self._initialized = False

        self._ledger: LedgerClient | None = None
        self._policies: PolicyStore | None = None
        self._broker: AuthorizationBroker | None = None
        self._tips: TipService | None = None
        self._notifications: NotificationService | None = None
        self._dispatcher: Dispatcher | None = None

    async def initialize(self) -> None:
        """Open storage, connect the ledger client and build the services.

        Raises:
            RuntimeError: If already initialized.
        """
        if self._initialized:
            msg = "Agent already initialized"
            raise RuntimeError(msg)

        from nos2bch.broker.broker import AuthorizationBroker
        from nos2bch.chain.ledger import LedgerClient
        from nos2bch.dispatcher.dispatcher import Dispatcher
        from nos2bch.notifications.service import NotificationService
        from nos2bch.policy.store import PolicyStore
        from nos2bch.storage.client import create_storage
        from nos2bch.tip.service import TipService

        if self._storage is None:
            self._storage = create_storage(self._config.storage)
        await self._storage.open()

        self._ledger = LedgerClient(self._config.ledger, self._storage)
        await self._ledger.connect()

        self._policies = PolicyStore(self._storage)
        self._broker = AuthorizationBroker(
            self._policies,
            self._surface,
            cache_size=self._config.broker.shared_secret_cache_size,
            prompt_timeout=self._config.broker.prompt_timeout,
        )
        self._tips = TipService(self._ledger, self._config.tip, address_prefix=self._config.address_prefix)
        self._notifications = NotificationService(self._storage)
        self._dispatcher = Dispatcher(self._storage, self._broker, self._tips, notifications=self._notifications)

        self._initialized = True

    async def close(self) -> None:
        """Shut everything down. Can be called multiple times."""
        if not self._initialized:
            return
        if self._tips is not None:
            await self._tips.wait_notifications()
            self._tips = None
        self._dispatcher = None
        self._notifications = None
        self._broker = None
        self._policies = None
        if self._ledger is not None:
            await self._ledger.close()
            self._ledger = None
        if self._storage is not None:
            await self._storage.close()
        self._initialized = False

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    def _require(self, component: Any) -> Any:
        if not self._initialized or component is None:
            raise RuntimeError(_ERR_NOT_INITIALIZED)
        return component

    @property
    def storage(self) -> Storage:
        return self._require(self._storage)

    @property
    def ledger(self) -> LedgerClient:
        return self._require(self._ledger)

    @property
    def policies(self) -> PolicyStore:
        return self._require(self._policies)

    @property
    def broker(self) -> AuthorizationBroker:
        return self._require(self._broker)

    @property
    def tips(self) -> TipService:
        return self._require(self._tips)

    @property
    def notifications(self) -> NotificationService:
        return self._require(self._notifications)

    async def handle(self, request: dict[str, Any]) -> OperationResult:
        """Dispatch one inbound request."""
        dispatcher: Dispatcher = self._require(self._dispatcher)
        return await dispatcher.handle(request)
