"""Error types for the cart engine."""

from typing import Optional


class EngineError(Exception):
    """Base class for cart engine errors."""

    def __init__(self, message: str, cause: Optional[Exception] = None):
        super().__init__(message)
        self.message = message
        self.cause = cause

    def __str__(self) -> str:
        if self.cause:
            return f"{self.message}: {self.cause}"
        return self.message


# --- Backend failures ---


class BackendError(EngineError):
    """A Cart or Pricing Backend call failed."""

    retryable = False


class TransportError(BackendError):
    """Network-level failure talking to a backend."""

    retryable = True

    def __init__(self, cause: Exception):
        super().__init__("transport error", cause)


class BackendUnavailableError(BackendError):
    """Backend answered with a server-side (5xx) failure."""

    retryable = True

    def __init__(self, status_code: int, message: str = "backend unavailable"):
        super().__init__(message)
        self.status_code = status_code


class BackendRejectedError(BackendError):
    """Backend refused the request (4xx or an unsuccessful payload)."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code

    def is_not_found(self) -> bool:
        """Return True if the backend reported NOT FOUND."""
        return self.status_code == 404


class MalformedResponseError(BackendError):
    """Backend payload could not be decoded."""

    def __init__(self, message: str, cause: Optional[Exception] = None):
        super().__init__(f"malformed response: {message}", cause)


# --- Checkout failures ---


class CheckoutError(EngineError):
    """Base class for checkout orchestrator errors."""


class CheckoutValidationError(CheckoutError):
    """Cart or address failed checkout preconditions."""

    def __init__(self, message: str, field_errors: Optional[dict[str, str]] = None):
        super().__init__(message)
        self.field_errors = dict(field_errors or {})


class CouponRejectedError(CheckoutError):
    """Pricing Backend declined a coupon."""

    def __init__(self, code: str, reason: str):
        super().__init__(reason)
        self.code = code


class DuplicateSubmissionError(CheckoutError):
    """A checkout submission is already in flight or handed off."""

    def __init__(self, message: str = "checkout already submitted"):
        super().__init__(message)


class CheckoutStateError(CheckoutError):
    """Operation is not allowed in the orchestrator's current step."""


class CheckoutFailedError(CheckoutError):
    """A backend call made on behalf of checkout failed."""

    def __init__(self, message: str, cause: Optional[Exception] = None):
        super().__init__(message, cause)


class errmsg:
    """User-facing message constants."""

    CART_INVALID = "Cart is invalid"
    CART_EMPTY = "Cart is empty"
    ADDRESS_INCOMPLETE = "Please fill in all required fields"
    COUPON_CODE_REQUIRED = "Please enter a coupon code"
    COUPON_INVALID = "Invalid coupon code"
    COUPON_STALE = "Coupon is no longer valid for this cart"
    CHECKOUT_IN_FLIGHT = "Checkout is already in progress"
    CHECKOUT_HANDED_OFF = "Order already submitted; awaiting payment"
    CHECKOUT_FAILED = "Failed to initiate checkout"
    NOT_HANDED_OFF = "No payment is pending"
    LOAD_CART_FAILED = "Failed to load cart"
    ADD_FAILED = "Failed to add to cart"
    UPDATE_FAILED = "Failed to update cart"
    REMOVE_FAILED = "Failed to remove item from cart"
    CLEAR_FAILED = "Failed to clear cart"
