"""Tests for the REST cart and coupon clients."""

import json
from decimal import Decimal

import httpx
import pytest

from cart_engine.errors import (
    BackendRejectedError,
    BackendUnavailableError,
    MalformedResponseError,
    TransportError,
)
from cart_engine.http_backend import (
    ApiClient,
    _create_http_client,
    parse_cart,
    parse_checkout,
)

from .fixtures import shirt

BASE_URL = "http://shop.test/api/v1"

CART_DATA = {
    "cart": [
        {"productId": "shirt", "quantity": 2, "variants": {"size": "M"}, "price": 300, "name": "Shirt", "image": "s.png"},
        {"productId": "mug", "quantity": 0, "variants": {}, "price": 150, "name": "Mug"},
    ],
    "cartCount": 2,
    "cartTotal": 600,
}


def ok(data):
    return httpx.Response(200, json={"success": True, "data": data})


class Recorder:
    """MockTransport handler that records requests and replays responses."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    def body(self, index: int = -1):
        return json.loads(self.requests[index].content or b"null")


def _client(recorder: Recorder) -> ApiClient:
    http = httpx.AsyncClient(transport=httpx.MockTransport(recorder), base_url=BASE_URL)
    return ApiClient(http)


class TestParsing:
    """Tests for payload decoding."""

    def test_parse_cart(self) -> None:
        cart = parse_cart(CART_DATA)
        assert len(cart.items) == 1
        item = cart.items[0]
        assert item.key == shirt().key
        assert item.unit_price == Decimal("300")
        assert item.display_name == "Shirt"
        assert item.image_ref == "s.png"
        assert cart.reported_count == 2
        assert cart.reported_total == Decimal("600")

    def test_parse_cart_items_alias(self) -> None:
        cart = parse_cart({"items": [{"productId": "mug", "quantity": 1, "unitPrice": "150"}]})
        assert cart.items[0].unit_price == Decimal("150")
        assert cart.reported_total is None

    def test_parse_cart_bad_line(self) -> None:
        with pytest.raises(MalformedResponseError):
            parse_cart({"cart": [{"quantity": 1}]})

    def test_parse_cart_not_object(self) -> None:
        with pytest.raises(MalformedResponseError):
            parse_cart([1, 2])

    def test_parse_checkout(self) -> None:
        result = parse_checkout(
            {
                "order": {"orderNumber": "ORD-1"},
                "razorpayOrderId": "order_abc",
                "razorpayKeyId": "rzp_test",
                "amount": 70800,
                "currency": "INR",
                "customerInfo": {"name": "Asha Rao"},
                "testMode": True,
            }
        )
        assert result.order_number == "ORD-1"
        assert result.handoff.gateway_order_id == "order_abc"
        assert result.handoff.amount == Decimal("70800")
        assert result.handoff.key_id == "rzp_test"
        assert result.handoff.params == {"customerInfo": {"name": "Asha Rao"}, "testMode": True}

    def test_parse_checkout_without_gateway_order(self) -> None:
        with pytest.raises(MalformedResponseError):
            parse_checkout({"order": {}})


class TestCartApiClient:
    """Tests for the cart endpoints."""

    @pytest.mark.asyncio
    async def test_get_cart(self) -> None:
        recorder = Recorder(ok(CART_DATA))
        api = _client(recorder)

        cart = await api.cart.get_cart()

        assert recorder.requests[0].method == "GET"
        assert recorder.requests[0].url.path == "/api/v1/cart"
        assert cart.items[0].quantity == 2
        await api.aclose()

    @pytest.mark.asyncio
    async def test_mutations_send_wire_payloads(self) -> None:
        recorder = Recorder(ok(CART_DATA), ok(CART_DATA), ok(CART_DATA), ok({}))
        api = _client(recorder)

        await api.cart.add_item("shirt", 2, {"size": "M"})
        await api.cart.update_item("shirt", 3, {"size": "M"})
        await api.cart.remove_item("shirt", {"size": "M"})
        assert await api.cart.clear_cart()

        sent = [(r.method, r.url.path) for r in recorder.requests]
        assert sent == [
            ("POST", "/api/v1/cart/add"),
            ("PUT", "/api/v1/cart/update"),
            ("DELETE", "/api/v1/cart/remove"),
            ("POST", "/api/v1/cart/clear"),
        ]
        assert recorder.body(0) == {"productId": "shirt", "quantity": 2, "variants": {"size": "M"}}
        assert recorder.body(2) == {"productId": "shirt", "variants": {"size": "M"}}
        await api.aclose()

    @pytest.mark.asyncio
    async def test_checkout_payload(self) -> None:
        recorder = Recorder(ok({"order": {"orderNumber": "ORD-9"}, "razorpayOrderId": "order_9", "amount": 708, "currency": "INR"}))
        api = _client(recorder)

        result = await api.cart.checkout({"city": "Pune"}, None, "FLAT50", [shirt(2)])

        body = recorder.body()
        assert body["shippingAddress"] == {"city": "Pune"}
        assert body["billingAddress"] is None
        assert body["couponCode"] == "FLAT50"
        assert body["order"]["items"] == [{"productId": "shirt", "quantity": 2, "variants": {"size": "M"}}]
        assert result.handoff.gateway_order_id == "order_9"
        await api.aclose()


class TestErrorMapping:
    """Every failure leaves the client as a BackendError."""

    @pytest.mark.asyncio
    async def test_network_error(self) -> None:
        api = _client(Recorder(httpx.ConnectError("connection refused")))
        with pytest.raises(TransportError) as excinfo:
            await api.cart.get_cart()
        assert excinfo.value.retryable
        await api.aclose()

    @pytest.mark.asyncio
    async def test_server_error(self) -> None:
        response = httpx.Response(503, json={"success": False, "error": {"message": "Service unavailable"}})
        api = _client(Recorder(response))
        with pytest.raises(BackendUnavailableError) as excinfo:
            await api.cart.get_cart()
        assert excinfo.value.status_code == 503
        assert excinfo.value.message == "Service unavailable"
        assert excinfo.value.retryable
        await api.aclose()

    @pytest.mark.asyncio
    async def test_client_error(self) -> None:
        response = httpx.Response(404, json={"success": False, "error": {"message": "Item not found in cart"}})
        api = _client(Recorder(response))
        with pytest.raises(BackendRejectedError) as excinfo:
            await api.cart.remove_item("mug", {})
        assert excinfo.value.is_not_found()
        assert not excinfo.value.retryable
        assert str(excinfo.value) == "Item not found in cart"
        await api.aclose()

    @pytest.mark.asyncio
    async def test_unsuccessful_payload(self) -> None:
        response = httpx.Response(200, json={"success": False, "message": "Insufficient stock"})
        api = _client(Recorder(response))
        with pytest.raises(BackendRejectedError, match="Insufficient stock"):
            await api.cart.add_item("mug", 99, {})
        await api.aclose()

    @pytest.mark.asyncio
    async def test_non_json_body(self) -> None:
        api = _client(Recorder(httpx.Response(200, text="<html>oops</html>")))
        with pytest.raises(MalformedResponseError):
            await api.cart.get_cart()
        await api.aclose()


class TestCouponApiClient:
    """Tests for coupon validation."""

    @pytest.mark.asyncio
    async def test_accepted(self) -> None:
        recorder = Recorder(ok({"coupon": {"code": "FLAT50", "type": "fixed"}, "discount": 50, "finalAmount": 550}))
        api = _client(recorder)

        decision = await api.coupons.validate_coupon("FLAT50", Decimal("600"), [shirt(2)])

        assert decision.accepted
        assert decision.discount == Decimal("50")
        assert decision.coupon_type == "fixed"
        assert recorder.body() == {
            "code": "FLAT50",
            "orderAmount": 600.0,
            "items": [{"product": "shirt", "category": None}],
        }
        await api.aclose()

    @pytest.mark.asyncio
    async def test_rejected(self) -> None:
        response = httpx.Response(400, json={"success": False, "error": {"message": "Coupon has expired"}})
        api = _client(Recorder(response))

        decision = await api.coupons.validate_coupon("OLD", Decimal("600"), [])

        assert not decision.accepted
        assert decision.reason == "Coupon has expired"
        await api.aclose()

    @pytest.mark.asyncio
    async def test_server_error_is_not_a_rejection(self) -> None:
        api = _client(Recorder(httpx.Response(500, json={})))
        with pytest.raises(BackendUnavailableError):
            await api.coupons.validate_coupon("FLAT50", Decimal("600"), [])
        await api.aclose()


class TestConnect:
    """Tests for client construction."""

    @pytest.mark.asyncio
    async def test_bearer_token(self) -> None:
        http = _create_http_client(BASE_URL + "/", token="tok")
        assert http.headers["Authorization"] == "Bearer tok"
        assert str(http.base_url).rstrip("/") == BASE_URL
        await http.aclose()

    @pytest.mark.asyncio
    async def test_from_env(self, monkeypatch) -> None:
        monkeypatch.setenv("CART_API_URL", "http://env.test/api")
        api = ApiClient.from_env()
        assert str(api._http.base_url).startswith("http://env.test/api")
        assert "Authorization" not in api._http.headers
        await api.aclose()
