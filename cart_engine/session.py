"""The cart as seen by the UI layer.

CartSession routes item mutations to the local snapshot while anonymous and
to the Cart Backend while authenticated, and exposes the CartState, the
checkout orchestrator and the authentication signal entry point.
"""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Mapping, Optional

import structlog

from .actions import (
    AddItem,
    Clear,
    ClearError,
    HydrateFromServer,
    RemoveItem,
    SetError,
    SetLoading,
    SyncLine,
    UpdateQuantity,
)
from .backend import CartBackend
from .checkout import CheckoutOrchestrator
from .errors import BackendError, BackendRejectedError, errmsg
from .http_backend import ApiClient
from .models import CartItem, CartState, LineKey, ServerCart, line_key
from .reconciliation import AuthChange, ReconciliationEngine, ReconciliationReport
from .settings import EngineSettings, configure_logging
from .snapshot import JsonFileKeyValueStore, LocalSnapshotStore, MemoryKeyValueStore
from .state_machine import CartStore, Listener

logger = structlog.get_logger(__name__)

Operation = Callable[[], Awaitable[bool]]


def _failure_message(error: BackendError, default: str) -> str:
    # Rejections carry a message meant for the user; transport failures do not.
    if isinstance(error, BackendRejectedError) and error.message:
        return error.message
    return default


def _server_line(cart: ServerCart, key: LineKey, local: Optional[CartItem] = None) -> Optional[CartItem]:
    for line in cart.items:
        if line.key != key:
            continue
        if local is None:
            return line
        return CartItem(
            product_id=line.product_id,
            variants=line.variants,
            quantity=line.quantity,
            unit_price=line.unit_price,
            display_name=line.display_name or local.display_name,
            image_ref=line.image_ref or local.image_ref,
        )
    return None


class CartSession:
    """Outbound interface of the cart engine."""

    def __init__(
        self,
        store: CartStore,
        backend: CartBackend,
        reconciliation: ReconciliationEngine,
        checkout: CheckoutOrchestrator,
    ) -> None:
        self._store = store
        self._backend = backend
        self._reconciliation = reconciliation
        self._checkout = checkout
        self._authenticated = False
        self._identity: Optional[str] = None
        self._pending: Optional[Operation] = None
        self._api: Optional[ApiClient] = None

    @classmethod
    def create(
        cls,
        settings: EngineSettings,
        snapshots: Optional[LocalSnapshotStore] = None,
        token: Optional[str] = None,
    ) -> CartSession:
        """Wire the HTTP backends, the snapshot store and the orchestrator.

        Also configures logging at settings.log_level.
        """
        configure_logging(settings.log_level)
        api = ApiClient.connect(settings.api_url, token, settings.api_timeout)
        if snapshots is None:
            if settings.snapshot_path:
                kv = JsonFileKeyValueStore(settings.snapshot_path)
            else:
                kv = MemoryKeyValueStore()
            snapshots = LocalSnapshotStore(kv, ttl=settings.snapshot_ttl)
        store = CartStore(snapshots)
        session = cls(
            store=store,
            backend=api.cart,
            reconciliation=ReconciliationEngine(store, api.cart, snapshots, settings.merge_policy),
            checkout=CheckoutOrchestrator(store, api.cart, api.coupons, settings.pricing),
        )
        session._api = api
        return session

    @property
    def state(self) -> CartState:
        return self._store.state

    @property
    def store(self) -> CartStore:
        return self._store

    @property
    def checkout(self) -> CheckoutOrchestrator:
        return self._checkout

    @property
    def authenticated(self) -> bool:
        return self._authenticated

    @property
    def identity(self) -> Optional[str]:
        return self._identity

    @property
    def has_pending_retry(self) -> bool:
        return self._pending is not None

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        return self._store.subscribe(listener)

    def clear_error(self) -> None:
        self._store.dispatch(ClearError())

    # --- Lifecycle ---

    async def on_auth_changed(self, change: AuthChange) -> Optional[ReconciliationReport]:
        report = await self._reconciliation.on_auth_changed(change)
        if report is None:
            return None
        self._authenticated = change.authenticated
        self._identity = change.identity
        self._pending = None
        if not change.authenticated:
            self._checkout.reset()
        return report

    async def reload(self) -> bool:
        """Hydrate from the source of truth for the current auth state."""
        if not self._authenticated:
            self._store.bootstrap_from_local()
            return True

        async def op() -> bool:
            cart = await self._backend.get_cart()
            self._store.dispatch(HydrateFromServer(cart))
            return True

        return await self._run("reload", op, errmsg.LOAD_CART_FAILED)

    async def retry(self) -> bool:
        """Re-issue the last failed backend operation."""
        pending = self._pending
        if pending is None:
            return False
        logger.info("retrying_cart_operation")
        return await pending()

    async def aclose(self) -> None:
        if self._api is not None:
            await self._api.aclose()

    # --- Item mutations ---

    async def add_item(
        self,
        product_id: str,
        quantity: int = 1,
        variants: Optional[Mapping[str, Any]] = None,
        unit_price: Any = 0,
        display_name: str = "",
        image_ref: str = "",
    ) -> bool:
        item = CartItem(
            product_id=product_id,
            variants=dict(variants or {}),
            quantity=quantity,
            unit_price=unit_price,
            display_name=display_name,
            image_ref=image_ref,
        )
        logger.info("adding_item", product_id=product_id, quantity=quantity, authenticated=self._authenticated)
        if not self._authenticated:
            self._store.dispatch(AddItem(item))
            return True

        async def op() -> bool:
            cart = await self._backend.add_item(item.product_id, item.quantity, item.variants)
            line = _server_line(cart, item.key, item)
            self._store.dispatch(AddItem(item) if line is None else SyncLine(line))
            return True

        return await self._run("add_item", op, errmsg.ADD_FAILED)

    async def update_quantity(
        self, product_id: str, quantity: int, variants: Optional[Mapping[str, Any]] = None
    ) -> bool:
        variants = dict(variants or {})
        action = UpdateQuantity(product_id, variants, quantity)
        if not self._authenticated:
            self._store.dispatch(action)
            return True

        async def op() -> bool:
            if quantity <= 0:
                await self._backend.remove_item(product_id, variants)
                self._store.dispatch(action)
                return True
            cart = await self._backend.update_item(product_id, quantity, variants)
            line = _server_line(cart, line_key(product_id, variants), self._store.state.find(product_id, variants))
            self._store.dispatch(action if line is None else SyncLine(line))
            return True

        return await self._run("update_quantity", op, errmsg.UPDATE_FAILED)

    async def remove_item(self, product_id: str, variants: Optional[Mapping[str, Any]] = None) -> bool:
        variants = dict(variants or {})
        action = RemoveItem(product_id, variants)
        if not self._authenticated:
            self._store.dispatch(action)
            return True

        async def op() -> bool:
            await self._backend.remove_item(product_id, variants)
            self._store.dispatch(action)
            return True

        return await self._run("remove_item", op, errmsg.REMOVE_FAILED)

    async def clear(self) -> bool:
        if not self._authenticated:
            self._store.dispatch(Clear())
            return True

        async def op() -> bool:
            await self._backend.clear_cart()
            self._store.dispatch(Clear())
            return True

        return await self._run("clear", op, errmsg.CLEAR_FAILED)

    async def _run(self, name: str, op: Operation, default_message: str) -> bool:
        """Run a backend operation between SetLoading(True) and SetLoading(False).

        A failure leaves the items as they were, sets the error status and
        remembers the operation for retry().
        """

        async def attempt() -> bool:
            self._store.dispatch(SetLoading(True))
            try:
                await op()
            except BackendError as e:
                logger.warning("cart_operation_failed", operation=name, error=str(e), retryable=e.retryable)
                self._pending = attempt
                self._store.dispatch(SetError(_failure_message(e, default_message)))
                return False
            self._pending = None
            self._store.dispatch(SetLoading(False))
            return True

        return await attempt()
