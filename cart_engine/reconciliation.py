"""Reconciliation of the local cart with the server cart on login/logout.

On login every item of the local snapshot is added to the server cart, one
call at a time, in snapshot order. The snapshot is discarded afterwards
whatever the outcome of the individual adds, then the server cart is
adopted as ground truth. On logout the cart and the snapshot are cleared so
nothing leaks into the next anonymous session.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

import structlog

from .actions import Clear, HydrateFromServer, SetError, SetLoading
from .backend import CartBackend
from .errors import BackendError, errmsg
from .models import CartItem
from .snapshot import LocalSnapshotStore
from .state_machine import CartStore

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class AuthChange:
    """Signal from the authentication collaborator."""

    authenticated: bool
    identity: Optional[str] = None

    @classmethod
    def login(cls, identity: str) -> AuthChange:
        return cls(authenticated=True, identity=identity)

    @classmethod
    def logout(cls) -> AuthChange:
        return cls(authenticated=False)


@dataclass(frozen=True)
class MergePolicy:
    """How a failed per-item merge is handled.

    retry_transient: extra attempts for retryable backend failures. Rejected
    items are never retried. After the last attempt the item is dropped and
    logged.
    """

    retry_transient: int = 0

    def __post_init__(self) -> None:
        if self.retry_transient < 0:
            raise ValueError("retry_transient must not be negative")


@dataclass(frozen=True)
class DroppedItem:
    item: CartItem
    reason: str


@dataclass
class ReconciliationReport:
    identity: Optional[str]
    merged: list[CartItem] = field(default_factory=list)
    dropped: list[DroppedItem] = field(default_factory=list)
    hydrated: bool = False


class ReconciliationEngine:
    """Runs once per authentication-state edge.

    Signals arriving while a reconciliation is in flight are ignored, not
    queued. An anonymous signal before any login is not an edge: the cart
    restored from the snapshot stays as it is.
    """

    def __init__(
        self,
        store: CartStore,
        backend: CartBackend,
        snapshots: LocalSnapshotStore,
        policy: MergePolicy = MergePolicy(),
    ) -> None:
        self._store = store
        self._backend = backend
        self._snapshots = snapshots
        self._policy = policy
        self._in_flight = False
        # Every session starts anonymous.
        self._last = AuthChange.logout()

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    @property
    def last_change(self) -> AuthChange:
        return self._last

    def _is_edge(self, change: AuthChange) -> bool:
        return change != self._last

    async def on_auth_changed(self, change: AuthChange) -> Optional[ReconciliationReport]:
        """Handle an authentication signal.

        Returns:
            The report, or None when the signal was ignored.
        """
        if self._in_flight:
            logger.info("reconciliation_ignored", reason="in_flight", authenticated=change.authenticated)
            return None
        if not self._is_edge(change):
            logger.debug("reconciliation_ignored", reason="no_edge", authenticated=change.authenticated)
            return None

        self._in_flight = True
        try:
            if change.authenticated:
                report = await self._login(change.identity)
            else:
                report = self._logout()
            self._last = change
            return report
        finally:
            self._in_flight = False

    async def _login(self, identity: Optional[str]) -> ReconciliationReport:
        log = logger.bind(identity=identity)
        report = ReconciliationReport(identity=identity)
        self._store.persist_locally = False
        self._store.dispatch(SetLoading(True))

        snapshot = self._snapshots.load()
        try:
            if snapshot is not None:
                log.info("merging_local_cart", item_count=snapshot.item_count, lines=len(snapshot.items))
                for item in snapshot.items:
                    await self._merge_item(item, report, log)
        finally:
            self._snapshots.clear()

        try:
            cart = await self._backend.get_cart()
        except BackendError as e:
            log.warning("server_cart_fetch_failed", error=str(e))
            self._store.dispatch(SetError(e.message or errmsg.LOAD_CART_FAILED))
            return report

        self._store.dispatch(HydrateFromServer(cart))
        report.hydrated = True
        log.info(
            "reconciliation_complete",
            merged=len(report.merged),
            dropped=len(report.dropped),
            item_count=self._store.state.item_count,
        )
        return report

    async def _merge_item(self, item: CartItem, report: ReconciliationReport, log) -> None:
        attempts = 1 + self._policy.retry_transient
        for attempt in range(1, attempts + 1):
            try:
                await self._backend.add_item(item.product_id, item.quantity, item.variants)
            except BackendError as e:
                if e.retryable and attempt < attempts:
                    log.info("merge_item_retry", product_id=item.product_id, attempt=attempt, error=str(e))
                    continue
                log.warning(
                    "merge_item_dropped",
                    product_id=item.product_id,
                    quantity=item.quantity,
                    error=str(e),
                )
                report.dropped.append(DroppedItem(item=item, reason=str(e)))
                return
            report.merged.append(item)
            return

    def _logout(self) -> ReconciliationReport:
        self._store.dispatch(Clear())
        self._snapshots.clear()
        self._store.persist_locally = True
        logger.info("cart_cleared_on_logout")
        return ReconciliationReport(identity=None)
