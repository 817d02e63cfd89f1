"""Cart data model: line items, the cart aggregate and its snapshots."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Iterable, Mapping

VariantKey = tuple[tuple[str, str], ...]
LineKey = tuple[str, VariantKey]

ZERO = Decimal("0")


def to_money(value: Any) -> Decimal:
    """Convert a price-like value to Decimal without float artifacts."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise ValueError(f"not a money amount: {value!r}")
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError) as e:
        raise ValueError(f"not a money amount: {value!r}") from e


def freeze_variants(variants: Mapping[str, Any] | None) -> VariantKey:
    """Order-independent form of a variant selector."""
    if not variants:
        return ()
    return tuple(sorted((str(k), str(v)) for k, v in variants.items()))


def line_key(product_id: str, variants: Mapping[str, Any] | None) -> LineKey:
    """Identity of a cart line: product plus variant selection."""
    return (product_id, freeze_variants(variants))


class CartStatus(Enum):
    IDLE = "idle"
    LOADING = "loading"
    ERROR = "error"


@dataclass(frozen=True)
class CartItem:
    """One distinct purchasable line."""

    product_id: str
    variants: dict = field(default_factory=dict)
    quantity: int = 1
    unit_price: Decimal = ZERO
    display_name: str = ""
    image_ref: str = ""

    def __post_init__(self) -> None:
        if not self.product_id:
            raise ValueError("product_id is required")
        if isinstance(self.quantity, bool) or not isinstance(self.quantity, int):
            raise ValueError(f"quantity must be an integer, got {self.quantity!r}")
        if self.quantity < 1:
            raise ValueError(f"quantity must be at least 1, got {self.quantity}")
        price = to_money(self.unit_price)
        if price < 0:
            raise ValueError(f"unit_price must not be negative, got {price}")
        object.__setattr__(self, "unit_price", price)
        object.__setattr__(self, "variants", dict(self.variants or {}))

    @property
    def key(self) -> LineKey:
        return line_key(self.product_id, self.variants)

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity

    def matches(self, product_id: str, variants: Mapping[str, Any] | None) -> bool:
        return self.key == line_key(product_id, variants)

    def with_quantity(self, quantity: int) -> CartItem:
        return CartItem(
            product_id=self.product_id,
            variants=self.variants,
            quantity=quantity,
            unit_price=self.unit_price,
            display_name=self.display_name,
            image_ref=self.image_ref,
        )

    def to_dict(self) -> dict:
        return {
            "productId": self.product_id,
            "variants": dict(self.variants),
            "quantity": self.quantity,
            "unitPrice": str(self.unit_price),
            "displayName": self.display_name,
            "imageRef": self.image_ref,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> CartItem:
        return cls(
            product_id=str(data["productId"]),
            variants=dict(data.get("variants") or {}),
            quantity=data["quantity"],
            unit_price=to_money(data.get("unitPrice", 0)),
            display_name=data.get("displayName", ""),
            image_ref=data.get("imageRef", ""),
        )


def merge_lines(items: Iterable[CartItem]) -> tuple[CartItem, ...]:
    """Collapse repeated lines by identity, keeping first-seen order."""
    merged: dict[LineKey, CartItem] = {}
    for item in items:
        existing = merged.get(item.key)
        if existing is None:
            merged[item.key] = item
        else:
            merged[item.key] = existing.with_quantity(existing.quantity + item.quantity)
    return tuple(merged.values())


def count_items(items: Iterable[CartItem]) -> int:
    return sum(item.quantity for item in items)


def sum_items(items: Iterable[CartItem]) -> Decimal:
    return sum((item.line_total for item in items), ZERO)


@dataclass(frozen=True)
class CartState:
    """The cart aggregate exposed to the rest of the application.

    item_count and total are derived from items on construction and cannot
    be passed in.
    """

    items: tuple[CartItem, ...] = ()
    status: CartStatus = CartStatus.IDLE
    last_error: str | None = None
    item_count: int = field(init=False, default=0)
    total: Decimal = field(init=False, default=ZERO)

    def __post_init__(self) -> None:
        items = tuple(self.items)
        object.__setattr__(self, "items", items)
        object.__setattr__(self, "item_count", count_items(items))
        object.__setattr__(self, "total", sum_items(items))

    @classmethod
    def empty(cls) -> CartState:
        return cls()

    @property
    def is_empty(self) -> bool:
        return not self.items

    def find(self, product_id: str, variants: Mapping[str, Any] | None) -> CartItem | None:
        key = line_key(product_id, variants)
        for item in self.items:
            if item.key == key:
                return item
        return None


@dataclass(frozen=True)
class ServerCart:
    """Cart as reported by the Cart Backend.

    reported_count / reported_total are diagnostics only.
    """

    items: tuple[CartItem, ...] = ()
    reported_count: int | None = None
    reported_total: Decimal | None = None


@dataclass(frozen=True)
class CartSnapshot:
    """Persisted copy of the last known anonymous cart."""

    items: tuple[CartItem, ...]
    saved_at: datetime
    item_count: int = field(init=False, default=0)
    total: Decimal = field(init=False, default=ZERO)

    def __post_init__(self) -> None:
        items = tuple(self.items)
        object.__setattr__(self, "items", items)
        object.__setattr__(self, "item_count", count_items(items))
        object.__setattr__(self, "total", sum_items(items))

    @classmethod
    def of(cls, state: CartState, saved_at: datetime) -> CartSnapshot:
        return cls(items=state.items, saved_at=saved_at)
