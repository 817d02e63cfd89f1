"""Cart actions.

Every change to a CartState is one of these values, applied by
cart_engine.state_machine.apply.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Union

from .models import CartItem, ServerCart


@dataclass(frozen=True)
class HydrateFromServer:
    cart: ServerCart


@dataclass(frozen=True)
class HydrateFromLocal:
    items: tuple[CartItem, ...] = ()


@dataclass(frozen=True)
class AddItem:
    item: CartItem


@dataclass(frozen=True)
class SyncLine:
    """The server's copy of one line, replacing the local line with the same key."""

    item: CartItem


@dataclass(frozen=True)
class UpdateQuantity:
    """Set a line's quantity; zero or less removes the line."""

    product_id: str
    variants: dict = field(default_factory=dict)
    quantity: int = 0

    def __post_init__(self) -> None:
        if isinstance(self.quantity, bool) or not isinstance(self.quantity, int):
            raise ValueError(f"quantity must be an integer, got {self.quantity!r}")


@dataclass(frozen=True)
class RemoveItem:
    product_id: str
    variants: dict = field(default_factory=dict)


@dataclass(frozen=True)
class Clear:
    pass


@dataclass(frozen=True)
class SetLoading:
    loading: bool = True


@dataclass(frozen=True)
class SetError:
    message: str


@dataclass(frozen=True)
class ClearError:
    pass


Action = Union[
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
]

