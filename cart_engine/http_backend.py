"""REST clients for the cart and coupon services.

Both services answer with ``{"success": bool, "data": ..., "error": {"message": ...}}``.
Every httpx failure and error payload is converted to a BackendError here.
"""

from __future__ import annotations

import os
from decimal import Decimal
from typing import Any, Mapping, Optional, Sequence

import httpx
import structlog

from .backend import CheckoutResult, CouponDecision, PaymentHandoff
from .errors import (
    BackendRejectedError,
    BackendUnavailableError,
    MalformedResponseError,
    TransportError,
)
from .models import CartItem, ServerCart, to_money

logger = structlog.get_logger(__name__)

DEFAULT_TIMEOUT = 10.0


def _create_http_client(
    base_url: str, token: Optional[str] = None, timeout: float = DEFAULT_TIMEOUT
) -> httpx.AsyncClient:
    headers = {"Accept": "application/json"}
    if token:
        headers["Authorization"] = f"Bearer {token}"
    return httpx.AsyncClient(base_url=base_url.rstrip("/"), headers=headers, timeout=timeout)


def _error_message(body: Any, default: str) -> str:
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str) and error:
            return error
        if body.get("message"):
            return str(body["message"])
    return default


async def _call(
    http: httpx.AsyncClient,
    method: str,
    path: str,
    payload: Optional[Mapping[str, Any]] = None,
) -> Any:
    """Issue a request and return the ``data`` member of a successful payload."""
    try:
        response = await http.request(method, path, json=payload)
    except httpx.HTTPError as e:
        logger.warning("backend_transport_error", method=method, path=path, error=str(e))
        raise TransportError(e) from e

    try:
        body = response.json()
    except ValueError:
        body = None

    if response.status_code >= 500:
        message = _error_message(body, f"backend returned {response.status_code}")
        logger.warning("backend_unavailable", method=method, path=path, status=response.status_code)
        raise BackendUnavailableError(response.status_code, message)
    if response.status_code >= 400:
        message = _error_message(body, f"request rejected ({response.status_code})")
        raise BackendRejectedError(message, response.status_code)
    if not isinstance(body, dict):
        raise MalformedResponseError(f"{method} {path} did not return a JSON object")
    if not body.get("success", False):
        raise BackendRejectedError(_error_message(body, "request failed"), response.status_code)
    return body.get("data") or {}


def parse_line(entry: Mapping[str, Any]) -> Optional[CartItem]:
    """Decode one server cart line; zero-quantity lines are dropped."""
    quantity = int(entry["quantity"])
    if quantity <= 0:
        return None
    return CartItem(
        product_id=str(entry["productId"]),
        variants=dict(entry.get("variants") or {}),
        quantity=quantity,
        unit_price=to_money(entry.get("price", entry.get("unitPrice", 0))),
        display_name=str(entry.get("name", "")),
        image_ref=str(entry.get("image", "")),
    )


def parse_cart(data: Any) -> ServerCart:
    if not isinstance(data, dict):
        raise MalformedResponseError("cart payload is not an object")
    lines = data.get("cart", data.get("items", []))
    try:
        items = tuple(item for item in (parse_line(entry) for entry in lines or []) if item is not None)
        count = data.get("cartCount", data.get("itemCount"))
        total = data.get("cartTotal", data.get("total"))
        return ServerCart(
            items=items,
            reported_count=None if count is None else int(count),
            reported_total=None if total is None else to_money(total),
        )
    except (KeyError, TypeError, ValueError) as e:
        raise MalformedResponseError("cart line could not be decoded", e) from e


def parse_checkout(data: Any) -> CheckoutResult:
    if not isinstance(data, dict):
        raise MalformedResponseError("checkout payload is not an object")
    try:
        gateway = data.get("razorpayOrder") or {}
        handoff = PaymentHandoff(
            gateway_order_id=str(data.get("razorpayOrderId") or gateway["orderId"]),
            amount=to_money(data.get("amount", gateway.get("amount", 0))),
            currency=str(data.get("currency") or gateway.get("currency") or ""),
            key_id=str(data.get("razorpayKeyId") or gateway.get("keyId") or ""),
            params={
                "customerInfo": data.get("customerInfo", gateway.get("customerInfo")),
                "testMode": bool(data.get("testMode", gateway.get("testMode", False))),
            },
        )
    except (KeyError, TypeError, ValueError) as e:
        raise MalformedResponseError("payment handoff could not be decoded", e) from e
    return CheckoutResult(order=dict(data.get("order") or {}), handoff=handoff)


def _line_payload(item: CartItem) -> dict:
    return {
        "productId": item.product_id,
        "quantity": item.quantity,
        "variants": dict(item.variants),
    }


class CartApiClient:
    """Cart Backend over the storefront REST API."""

    def __init__(self, http: httpx.AsyncClient):
        self._http = http

    @classmethod
    def connect(
        cls, base_url: str, token: Optional[str] = None, timeout: float = DEFAULT_TIMEOUT
    ) -> "CartApiClient":
        return cls(_create_http_client(base_url, token, timeout))

    async def get_cart(self) -> ServerCart:
        return parse_cart(await _call(self._http, "GET", "/cart"))

    async def add_item(self, product_id: str, quantity: int, variants: Mapping[str, Any]) -> ServerCart:
        payload = {"productId": product_id, "quantity": quantity, "variants": dict(variants)}
        return parse_cart(await _call(self._http, "POST", "/cart/add", payload))

    async def update_item(self, product_id: str, quantity: int, variants: Mapping[str, Any]) -> ServerCart:
        payload = {"productId": product_id, "quantity": quantity, "variants": dict(variants)}
        return parse_cart(await _call(self._http, "PUT", "/cart/update", payload))

    async def remove_item(self, product_id: str, variants: Mapping[str, Any]) -> ServerCart:
        payload = {"productId": product_id, "variants": dict(variants)}
        return parse_cart(await _call(self._http, "DELETE", "/cart/remove", payload))

    async def clear_cart(self) -> bool:
        await _call(self._http, "POST", "/cart/clear")
        return True

    async def checkout(
        self,
        shipping_address: Mapping[str, Any],
        billing_address: Optional[Mapping[str, Any]],
        coupon_code: Optional[str],
        items: Sequence[CartItem],
    ) -> CheckoutResult:
        payload = {
            "shippingAddress": dict(shipping_address),
            "billingAddress": dict(billing_address) if billing_address else None,
            "couponCode": coupon_code,
            "order": {"items": [_line_payload(item) for item in items]},
        }
        return parse_checkout(await _call(self._http, "POST", "/cart/checkout", payload))

    async def aclose(self) -> None:
        await self._http.aclose()


class CouponApiClient:
    """Pricing Backend over the storefront REST API."""

    def __init__(self, http: httpx.AsyncClient):
        self._http = http

    @classmethod
    def connect(
        cls, base_url: str, token: Optional[str] = None, timeout: float = DEFAULT_TIMEOUT
    ) -> "CouponApiClient":
        return cls(_create_http_client(base_url, token, timeout))

    async def validate_coupon(
        self, code: str, order_amount: Decimal, items: Sequence[CartItem]
    ) -> CouponDecision:
        payload = {
            "code": code,
            "orderAmount": float(order_amount),
            "items": [{"product": item.product_id, "category": None} for item in items],
        }
        try:
            data = await _call(self._http, "POST", "/coupons/validate", payload)
        except BackendRejectedError as e:
            return CouponDecision.reject(e.message)
        if not isinstance(data, dict):
            raise MalformedResponseError("coupon payload is not an object")
        try:
            discount = to_money(data.get("discount", 0))
        except ValueError as e:
            raise MalformedResponseError("coupon discount could not be decoded", e) from e
        return CouponDecision.accept(discount, data.get("coupon") or {})

    async def aclose(self) -> None:
        await self._http.aclose()


class ApiClient:
    """Cart and coupon clients sharing one connection pool."""

    def __init__(self, http: httpx.AsyncClient):
        self.cart = CartApiClient(http)
        self.coupons = CouponApiClient(http)
        self._http = http

    @classmethod
    def connect(
        cls, base_url: str, token: Optional[str] = None, timeout: float = DEFAULT_TIMEOUT
    ) -> "ApiClient":
        """Connect to the storefront API at the given base URL."""
        return cls(_create_http_client(base_url, token, timeout))

    @classmethod
    def from_env(cls, env_var: str = "CART_API_URL", default: str = "http://localhost:5000/api/v1",
                 token: Optional[str] = None) -> "ApiClient":
        """Connect using an environment variable with fallback."""
        return cls.connect(os.environ.get(env_var, default), token)

    async def aclose(self) -> None:
        """Close the underlying connection pool."""
        await self._http.aclose()
