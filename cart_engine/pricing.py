"""Order total computation.

Pure and deterministic: the same items, config and discount always give the
same figures. Rounding happens once, at the tax step.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable

from .models import ZERO, CartItem, sum_items, to_money

WHOLE_UNITS = Decimal("1")

COUPON_SHIPPING = "shipping"


def round_half_up(amount: Decimal) -> Decimal:
    return amount.quantize(WHOLE_UNITS, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class PricingConfig:
    free_shipping_threshold: Decimal = Decimal("500")
    flat_shipping_fee: Decimal = Decimal("50")
    tax_rate: Decimal = Decimal("0.18")
    currency: str = "INR"

    def __post_init__(self) -> None:
        for name in ("free_shipping_threshold", "flat_shipping_fee", "tax_rate"):
            value = to_money(getattr(self, name))
            if value < 0:
                raise ValueError(f"{name} must not be negative")
            object.__setattr__(self, name, value)


@dataclass(frozen=True)
class OrderTotals:
    subtotal: Decimal
    shipping: Decimal
    tax: Decimal
    discount: Decimal
    total: Decimal


def shipping_for(subtotal: Decimal, config: PricingConfig, free_shipping: bool = False) -> Decimal:
    if free_shipping or subtotal >= config.free_shipping_threshold:
        return ZERO
    return config.flat_shipping_fee


def compute_totals(
    items: Iterable[CartItem],
    config: PricingConfig,
    discount: Decimal = ZERO,
    free_shipping: bool = False,
) -> OrderTotals:
    """subtotal + shipping + tax - discount, floored at zero."""
    subtotal = sum_items(items)
    discount = to_money(discount)
    shipping = shipping_for(subtotal, config, free_shipping)
    tax = round_half_up(subtotal * config.tax_rate)
    total = max(ZERO, subtotal + shipping + tax - discount)
    return OrderTotals(
        subtotal=subtotal,
        shipping=shipping,
        tax=tax,
        discount=discount,
        total=total,
    )
