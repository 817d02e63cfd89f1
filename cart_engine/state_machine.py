"""Cart state machine.

apply() is the single pure transition function. Handlers are registered on
an ActionRouter and only decide the new items and status; the derived
item_count and total are recomputed once, in _settle(), for every action.

CartStore wraps apply() with the side effects: it owns the current state,
persists anonymous carts to the Local Snapshot Store and notifies
subscribers.
"""

from __future__ import annotations

from collections import deque
from typing import Callable, Generic, Optional, TypeVar

import structlog

from .actions import (
    Action,
    AddItem,
    Clear,
    ClearError,
    HydrateFromLocal,
    HydrateFromServer,
    RemoveItem,
    SetError,
    SetLoading,
    SyncLine,
    UpdateQuantity,
)
from .models import CartState, CartStatus, merge_lines
from .snapshot import LocalSnapshotStore

logger = structlog.get_logger(__name__)

S = TypeVar("S")

Transition = Callable[[S, object], S]
Listener = Callable[[CartState], None]


class ActionRouter(Generic[S]):
    """Maps action types to transition handlers.

    Example::

        router = (ActionRouter()
            .on(AddItem, apply_add)
            .on(RemoveItem, apply_remove))

        new_state = router.route(state, AddItem(item))
    """

    def __init__(self) -> None:
        self._handlers: dict[type, Transition[S]] = {}

    def on(self, action_type: type, handler: Transition[S]) -> ActionRouter[S]:
        """Register the handler for an action type.

        Raises:
            TypeError: If the action type already has a handler.
        """
        if action_type in self._handlers:
            raise TypeError(f"duplicate handler for {action_type.__name__}")
        self._handlers[action_type] = handler
        return self

    def handles(self, action_type: type) -> bool:
        return action_type in self._handlers

    def route(self, state: S, action: object) -> S:
        """Apply the registered handler; unknown actions leave state unchanged."""
        handler = self._handlers.get(type(action))
        if handler is None:
            return state
        return handler(state, action)


# --- Transition handlers ---


def _settled_status(state: CartState) -> CartStatus:
    # Item mutations drop a pending error but keep an in-flight LOADING.
    if state.status == CartStatus.ERROR:
        return CartStatus.IDLE
    return state.status


def _hydrate_from_server(state: CartState, action: HydrateFromServer) -> CartState:
    return CartState(items=merge_lines(action.cart.items), status=CartStatus.IDLE)


def _hydrate_from_local(state: CartState, action: HydrateFromLocal) -> CartState:
    return CartState(items=merge_lines(action.items), status=CartStatus.IDLE)


def _add_item(state: CartState, action: AddItem) -> CartState:
    added = action.item
    items = []
    merged = False
    for item in state.items:
        if item.key == added.key:
            items.append(item.with_quantity(item.quantity + added.quantity))
            merged = True
        else:
            items.append(item)
    if not merged:
        items.append(added)
    return CartState(items=tuple(items), status=_settled_status(state))


def _sync_line(state: CartState, action: SyncLine) -> CartState:
    # Quantity, price and labels all come from the server line.
    synced = action.item
    items = [synced if item.key == synced.key else item for item in state.items]
    if state.find(synced.product_id, synced.variants) is None:
        items.append(synced)
    return CartState(items=tuple(items), status=_settled_status(state))


def _update_quantity(state: CartState, action: UpdateQuantity) -> CartState:
    if action.quantity <= 0:
        return _remove_item(state, RemoveItem(action.product_id, action.variants))
    if state.find(action.product_id, action.variants) is None:
        return state
    items = tuple(
        item.with_quantity(action.quantity)
        if item.matches(action.product_id, action.variants)
        else item
        for item in state.items
    )
    return CartState(items=items, status=_settled_status(state))


def _remove_item(state: CartState, action: RemoveItem) -> CartState:
    if state.find(action.product_id, action.variants) is None:
        return state
    items = tuple(
        item for item in state.items if not item.matches(action.product_id, action.variants)
    )
    return CartState(items=items, status=_settled_status(state))


def _clear(state: CartState, action: Clear) -> CartState:
    return CartState(items=(), status=_settled_status(state))


def _set_loading(state: CartState, action: SetLoading) -> CartState:
    if action.loading:
        return CartState(items=state.items, status=CartStatus.LOADING)
    if state.status == CartStatus.ERROR:
        return state
    return CartState(items=state.items, status=CartStatus.IDLE)


def _set_error(state: CartState, action: SetError) -> CartState:
    return CartState(items=state.items, status=CartStatus.ERROR, last_error=action.message)


def _clear_error(state: CartState, action: ClearError) -> CartState:
    if state.status != CartStatus.ERROR:
        return state
    return CartState(items=state.items, status=CartStatus.IDLE)


cart_router: ActionRouter[CartState] = (
    ActionRouter()
    .on(HydrateFromServer, _hydrate_from_server)
    .on(HydrateFromLocal, _hydrate_from_local)
    .on(AddItem, _add_item)
    .on(SyncLine, _sync_line)
    .on(UpdateQuantity, _update_quantity)
    .on(RemoveItem, _remove_item)
    .on(Clear, _clear)
    .on(SetLoading, _set_loading)
    .on(SetError, _set_error)
    .on(ClearError, _clear_error)
)


def _settle(state: CartState) -> CartState:
    """Rebuild the state so derived fields and the error flag agree."""
    if state.status == CartStatus.ERROR:
        last_error = state.last_error or "Unknown error"
    else:
        last_error = None
    return CartState(items=state.items, status=state.status, last_error=last_error)


def apply(state: CartState, action: Action) -> CartState:
    """Pure transition: never raises, never mutates its arguments."""
    new_state = cart_router.route(state, action)
    if new_state is state:
        return state
    return _settle(new_state)


# --- Store ---


class CartStore:
    """Owner of the current CartState.

    All other components read `state` and change it only through
    `dispatch`. Dispatches are applied in the order they are issued.
    """

    def __init__(
        self,
        snapshots: Optional[LocalSnapshotStore] = None,
        *,
        initial: Optional[CartState] = None,
        history_size: int = 50,
        persist_locally: bool = True,
    ) -> None:
        self._state = initial if initial is not None else CartState.empty()
        self._snapshots = snapshots
        self._listeners: list[Listener] = []
        self.history: deque[tuple[Action, CartState]] = deque(maxlen=history_size)
        self.persist_locally = persist_locally

    @property
    def state(self) -> CartState:
        return self._state

    @property
    def snapshots(self) -> Optional[LocalSnapshotStore]:
        return self._snapshots

    def dispatch(self, action: Action) -> CartState:
        """Apply an action, persist the result and notify subscribers."""
        previous = self._state
        if isinstance(action, HydrateFromServer):
            self._check_reported_totals(action)

        self._state = apply(previous, action)
        self.history.append((action, self._state))
        logger.debug(
            "cart_transition",
            action=type(action).__name__,
            item_count=self._state.item_count,
            total=str(self._state.total),
            status=self._state.status.value,
        )

        if self._state.items != previous.items:
            self._persist()
        if self._state is not previous:
            for listener in list(self._listeners):
                listener(self._state)
        return self._state

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener called with each new state.

        Returns:
            A callable that removes the listener.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def bootstrap_from_local(self) -> bool:
        """Hydrate from a fresh local snapshot, if there is one."""
        if self._snapshots is None:
            return False
        snapshot = self._snapshots.load()
        if snapshot is None:
            return False
        self.dispatch(HydrateFromLocal(snapshot.items))
        logger.info("cart_restored_from_snapshot", item_count=snapshot.item_count)
        return True

    def _persist(self) -> None:
        if not self.persist_locally or self._snapshots is None:
            return
        if self._state.is_empty:
            self._snapshots.clear()
        else:
            self._snapshots.save_state(self._state)

    @staticmethod
    def _check_reported_totals(action: HydrateFromServer) -> None:
        cart = action.cart
        hydrated = CartState(items=merge_lines(cart.items))
        count_differs = cart.reported_count is not None and cart.reported_count != hydrated.item_count
        total_differs = cart.reported_total is not None and cart.reported_total != hydrated.total
        if count_differs or total_differs:
            logger.warning(
                "server_totals_mismatch",
                reported_count=cart.reported_count,
                reported_total=None if cart.reported_total is None else str(cart.reported_total),
                item_count=hydrated.item_count,
                total=str(hydrated.total),
            )
