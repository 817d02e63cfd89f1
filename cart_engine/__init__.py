"""Client-side cart consistency engine."""

from .models import (
    CartItem,
    CartState,
    CartStatus,
    CartSnapshot,
    ServerCart,
    line_key,
    to_money,
)
from .actions import (
    Action,
    HydrateFromServer,
    HydrateFromLocal,
    AddItem,
    SyncLine,
    UpdateQuantity,
    RemoveItem,
    Clear,
    SetLoading,
    SetError,
    ClearError,
)
from .state_machine import ActionRouter, CartStore, apply
from .snapshot import (
    KeyValueStore,
    MemoryKeyValueStore,
    JsonFileKeyValueStore,
    LocalSnapshotStore,
)
from .backend import (
    CartBackend,
    PricingBackend,
    CheckoutResult,
    CouponDecision,
    PaymentHandoff,
)
from .http_backend import ApiClient, CartApiClient, CouponApiClient
from .reconciliation import (
    AuthChange,
    MergePolicy,
    ReconciliationEngine,
    ReconciliationReport,
)
from .pricing import OrderTotals, PricingConfig, compute_totals
from .checkout import Address, AppliedCoupon, CheckoutOrchestrator, CheckoutStep
from .session import CartSession
from .settings import EngineSettings, configure_logging
from .errors import (
    EngineError,
    BackendError,
    TransportError,
    BackendUnavailableError,
    BackendRejectedError,
    MalformedResponseError,
    CheckoutError,
    CheckoutValidationError,
    CouponRejectedError,
    DuplicateSubmissionError,
    CheckoutStateError,
    CheckoutFailedError,
    errmsg,
)

__all__ = [
    # Models
    "CartItem",
    "CartState",
    "CartStatus",
    "CartSnapshot",
    "ServerCart",
    "line_key",
    "to_money",
    # Actions
    "Action",
    "HydrateFromServer",
    "HydrateFromLocal",
    "AddItem",
    "SyncLine",
    "UpdateQuantity",
    "RemoveItem",
    "Clear",
    "SetLoading",
    "SetError",
    "ClearError",
    # State machine
    "ActionRouter",
    "CartStore",
    "apply",
    # Snapshots
    "KeyValueStore",
    "MemoryKeyValueStore",
    "JsonFileKeyValueStore",
    "LocalSnapshotStore",
    # Backends
    "CartBackend",
    "PricingBackend",
    "CheckoutResult",
    "CouponDecision",
    "PaymentHandoff",
    "ApiClient",
    "CartApiClient",
    "CouponApiClient",
    # Reconciliation
    "AuthChange",
    "MergePolicy",
    "ReconciliationEngine",
    "ReconciliationReport",
    # Pricing and checkout
    "OrderTotals",
    "PricingConfig",
    "compute_totals",
    "Address",
    "AppliedCoupon",
    "CheckoutOrchestrator",
    "CheckoutStep",
    # Session and settings
    "CartSession",
    "EngineSettings",
    "configure_logging",
    # Errors
    "EngineError",
    "BackendError",
    "TransportError",
    "BackendUnavailableError",
    "BackendRejectedError",
    "MalformedResponseError",
    "CheckoutError",
    "CheckoutValidationError",
    "CouponRejectedError",
    "DuplicateSubmissionError",
    "CheckoutStateError",
    "CheckoutFailedError",
    "errmsg",
]
