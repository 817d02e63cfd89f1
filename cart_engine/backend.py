"""Contracts the engine expects from the server-side cart and coupon services.

Implementations raise cart_engine.errors.BackendError subclasses for every
failure; raw transport exceptions never cross this boundary.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Mapping, Optional, Protocol, Sequence

from .models import ZERO, CartItem, ServerCart


@dataclass(frozen=True)
class PaymentHandoff:
    """What the external payment flow needs to take over."""

    gateway_order_id: str
    amount: Decimal
    currency: str
    key_id: str = ""
    params: dict = field(default_factory=dict)


@dataclass(frozen=True)
class CheckoutResult:
    order: dict
    handoff: PaymentHandoff

    @property
    def order_number(self) -> str:
        return str(self.order.get("orderNumber") or self.order.get("_id") or "")


@dataclass(frozen=True)
class CouponDecision:
    """Pricing Backend verdict on a coupon code."""

    accepted: bool
    discount: Decimal = ZERO
    metadata: dict = field(default_factory=dict)
    reason: str = ""

    @classmethod
    def accept(cls, discount: Decimal, metadata: Optional[Mapping[str, Any]] = None) -> CouponDecision:
        return cls(accepted=True, discount=discount, metadata=dict(metadata or {}))

    @classmethod
    def reject(cls, reason: str) -> CouponDecision:
        return cls(accepted=False, reason=reason)

    @property
    def coupon_type(self) -> str:
        return str(self.metadata.get("type", ""))


class CartBackend(Protocol):
    """Server-authoritative cart.

    Mutations follow merge-by-identity semantics and return the full cart.
    """

    async def get_cart(self) -> ServerCart:
        ...

    async def add_item(self, product_id: str, quantity: int, variants: Mapping[str, Any]) -> ServerCart:
        ...

    async def update_item(self, product_id: str, quantity: int, variants: Mapping[str, Any]) -> ServerCart:
        ...

    async def remove_item(self, product_id: str, variants: Mapping[str, Any]) -> ServerCart:
        ...

    async def clear_cart(self) -> bool:
        ...

    async def checkout(
        self,
        shipping_address: Mapping[str, Any],
        billing_address: Optional[Mapping[str, Any]],
        coupon_code: Optional[str],
        items: Sequence[CartItem],
    ) -> CheckoutResult:
        ...


class PricingBackend(Protocol):
    """Coupon service."""

    async def validate_coupon(
        self, code: str, order_amount: Decimal, items: Sequence[CartItem]
    ) -> CouponDecision:
        ...
