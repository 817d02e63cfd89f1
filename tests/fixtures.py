"""Shared test fixtures: sample carts, a fixed clock and in-memory backends.

Products:
- shirt: 300 each, sold in size variants
- mug: 150 each
- poster: 99 each
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional

from cart_engine.backend import CheckoutResult, CouponDecision, PaymentHandoff
from cart_engine.checkout import Address
from cart_engine.errors import BackendError, BackendRejectedError
from cart_engine.models import CartItem, ServerCart, line_key
from cart_engine.snapshot import LocalSnapshotStore, MemoryKeyValueStore

CATALOG = {
    "shirt": Decimal("300"),
    "mug": Decimal("150"),
    "poster": Decimal("99"),
}

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def shirt(quantity: int = 1, size: str = "M") -> CartItem:
    return CartItem("shirt", {"size": size}, quantity, CATALOG["shirt"], "Shirt")


def mug(quantity: int = 1) -> CartItem:
    return CartItem("mug", {}, quantity, CATALOG["mug"], "Mug")


def poster(quantity: int = 1) -> CartItem:
    return CartItem("poster", {}, quantity, CATALOG["poster"], "Poster")


def address(**overrides) -> Address:
    values = dict(
        first_name="Asha",
        last_name="Rao",
        email="asha@example.com",
        phone="9999999999",
        address="12 MG Road",
        city="Bengaluru",
        state="Karnataka",
        pincode="560001",
    )
    values.update(overrides)
    return Address(**values)


class FixedClock:
    """Settable clock for snapshot expiry tests."""

    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


def snapshot_store(clock: Optional[FixedClock] = None) -> LocalSnapshotStore:
    return LocalSnapshotStore(MemoryKeyValueStore(), clock=clock or FixedClock())


# =============================================================================
# Cart Backend
# =============================================================================


class FakeCartBackend:
    """Server cart held in memory, with merge-by-identity adds.

    Failures are queued per operation with fail_next(); add_item can also
    reject chosen products permanently.
    """

    def __init__(self, items=(), catalog=None):
        self.catalog = dict(CATALOG if catalog is None else catalog)
        self.lines: dict = {}
        for item in items:
            self.lines[item.key] = item
        self.calls: list[tuple] = []
        self.rejected_products: set[str] = set()
        self.failures: dict[str, list[BackendError]] = {}
        self.checkout_gate: Optional[asyncio.Event] = None
        self.reported_total: Optional[Decimal] = None

    def fail_next(self, operation: str, error: BackendError, times: int = 1) -> None:
        self.failures.setdefault(operation, []).extend([error] * times)

    def calls_to(self, operation: str) -> list[tuple]:
        return [call for call in self.calls if call[0] == operation]

    async def _enter(self, operation: str, *args) -> None:
        self.calls.append((operation, *args))
        await asyncio.sleep(0)
        queued = self.failures.get(operation)
        if queued:
            raise queued.pop(0)

    def _cart(self) -> ServerCart:
        items = tuple(self.lines.values())
        return ServerCart(
            items=items,
            reported_count=sum(item.quantity for item in items),
            reported_total=self.reported_total,
        )

    async def get_cart(self) -> ServerCart:
        await self._enter("get_cart")
        return self._cart()

    async def add_item(self, product_id, quantity, variants) -> ServerCart:
        await self._enter("add_item", product_id, quantity, dict(variants))
        if product_id in self.rejected_products:
            raise BackendRejectedError("Product not found", 404)
        key = line_key(product_id, variants)
        existing = self.lines.get(key)
        if existing is None:
            self.lines[key] = CartItem(
                product_id, dict(variants), quantity, self.catalog.get(product_id, Decimal("0")), product_id.title()
            )
        else:
            self.lines[key] = existing.with_quantity(existing.quantity + quantity)
        return self._cart()

    async def update_item(self, product_id, quantity, variants) -> ServerCart:
        await self._enter("update_item", product_id, quantity, dict(variants))
        key = line_key(product_id, variants)
        if key not in self.lines:
            raise BackendRejectedError("Item not found in cart", 404)
        self.lines[key] = self.lines[key].with_quantity(quantity)
        return self._cart()

    async def remove_item(self, product_id, variants) -> ServerCart:
        await self._enter("remove_item", product_id, dict(variants))
        self.lines.pop(line_key(product_id, variants), None)
        return self._cart()

    async def clear_cart(self) -> bool:
        await self._enter("clear_cart")
        self.lines.clear()
        return True

    async def checkout(self, shipping_address, billing_address, coupon_code, items) -> CheckoutResult:
        await self._enter("checkout", shipping_address, billing_address, coupon_code, tuple(items))
        if self.checkout_gate is not None:
            await self.checkout_gate.wait()
        number = len(self.calls_to("checkout"))
        amount = sum((item.line_total for item in items), Decimal("0"))
        return CheckoutResult(
            order={"orderNumber": f"ORD-{number:04d}"},
            handoff=PaymentHandoff(
                gateway_order_id=f"order_gw_{number}",
                amount=amount,
                currency="INR",
                key_id="rzp_test_key",
            ),
        )


# =============================================================================
# Pricing Backend
# =============================================================================


@dataclass
class Coupon:
    type: str
    value: Decimal
    minimum: Decimal = Decimal("0")


class FakePricingBackend:
    """Coupon service with percentage, fixed and shipping coupons."""

    def __init__(self, coupons=None):
        self.coupons: dict[str, Coupon] = dict(coupons or {})
        self.calls: list[tuple] = []
        self.error: Optional[BackendError] = None

    async def validate_coupon(self, code, order_amount, items) -> CouponDecision:
        self.calls.append((code, order_amount, tuple(items)))
        await asyncio.sleep(0)
        if self.error is not None:
            raise self.error
        coupon = self.coupons.get(code.upper())
        if coupon is None:
            return CouponDecision.reject("Invalid coupon code")
        if order_amount < coupon.minimum:
            return CouponDecision.reject(f"Minimum order amount of ₹{coupon.minimum} required")
        if coupon.type == "percentage":
            discount = (order_amount * coupon.value / 100).quantize(Decimal("1"))
        elif coupon.type == "fixed":
            discount = min(coupon.value, order_amount)
        else:
            discount = Decimal("0")
        return CouponDecision.accept(discount, {"code": code.upper(), "type": coupon.type})


def standard_coupons() -> dict:
    return {
        "FLAT50": Coupon("fixed", Decimal("50")),
        "SAVE10": Coupon("percentage", Decimal("10")),
        "FREESHIP": Coupon("shipping", Decimal("0")),
        "BIG1000": Coupon("fixed", Decimal("100"), minimum=Decimal("1000")),
    }
