"""Checkout orchestration.

IDLE -> VALIDATING -> PRICING_APPLIED -> SUBMITTING -> HANDED_OFF, with ERROR
reachable from the first three. The cart is cleared only when the payment
collaborator reports completion through complete_payment().
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Mapping, Optional

import structlog

from .actions import Clear
from .backend import CartBackend, CheckoutResult, PaymentHandoff, PricingBackend
from .errors import (
    BackendError,
    CheckoutFailedError,
    CheckoutStateError,
    CheckoutValidationError,
    CouponRejectedError,
    DuplicateSubmissionError,
    errmsg,
)
from .models import ZERO
from .pricing import COUPON_SHIPPING, OrderTotals, PricingConfig, compute_totals
from .state_machine import CartStore
from .validation import require_checkout_ready, require_exists, require_fields

logger = structlog.get_logger(__name__)


class CheckoutStep(Enum):
    IDLE = "idle"
    VALIDATING = "validating"
    PRICING_APPLIED = "pricing_applied"
    SUBMITTING = "submitting"
    HANDED_OFF = "handed_off"
    ERROR = "error"


@dataclass(frozen=True)
class Address:
    first_name: str = ""
    last_name: str = ""
    email: str = ""
    phone: str = ""
    address: str = ""
    city: str = ""
    state: str = ""
    pincode: str = ""
    country: str = "India"

    # wire name -> message shown when the field is blank
    REQUIRED = {
        "firstName": "First name is required",
        "lastName": "Last name is required",
        "email": "Email is required",
        "phone": "Phone number is required",
        "address": "Address is required",
        "city": "City is required",
        "state": "State is required",
        "pincode": "Pincode is required",
    }

    def to_payload(self) -> dict:
        return {
            "firstName": self.first_name,
            "lastName": self.last_name,
            "email": self.email,
            "phone": self.phone,
            "address": self.address,
            "city": self.city,
            "state": self.state,
            "pincode": self.pincode,
            "country": self.country,
        }

    @classmethod
    def from_payload(cls, data: Mapping[str, Any]) -> Address:
        values = {
            "first_name": data.get("firstName", ""),
            "last_name": data.get("lastName", ""),
            "email": data.get("email", ""),
            "phone": data.get("phone", ""),
            "address": data.get("address", ""),
            "city": data.get("city", ""),
            "state": data.get("state", ""),
            "pincode": data.get("pincode", ""),
            "country": data.get("country") or "India",
        }
        return cls(**{k: str(v) for k, v in values.items()})


@dataclass(frozen=True)
class AppliedCoupon:
    """A coupon accepted by the Pricing Backend for a given subtotal."""

    code: str
    discount: Decimal = ZERO
    metadata: dict = field(default_factory=dict)
    order_amount: Decimal = ZERO

    @property
    def coupon_type(self) -> str:
        return str(self.metadata.get("type", ""))

    @property
    def free_shipping(self) -> bool:
        return self.coupon_type == COUPON_SHIPPING


class CheckoutOrchestrator:
    """Drives one checkout for the cart held by a CartStore."""

    def __init__(
        self,
        store: CartStore,
        cart_backend: CartBackend,
        pricing_backend: PricingBackend,
        config: Optional[PricingConfig] = None,
    ) -> None:
        self._store = store
        self._cart_backend = cart_backend
        self._pricing_backend = pricing_backend
        self._config = config or PricingConfig()
        self._step = CheckoutStep.IDLE
        self._error: Optional[str] = None
        self._coupon: Optional[AppliedCoupon] = None
        self._result: Optional[CheckoutResult] = None

    @property
    def step(self) -> CheckoutStep:
        return self._step

    @property
    def error(self) -> Optional[str]:
        return self._error

    @property
    def coupon(self) -> Optional[AppliedCoupon]:
        return self._coupon

    @property
    def config(self) -> PricingConfig:
        return self._config

    @property
    def handoff(self) -> Optional[PaymentHandoff]:
        if self._result is None:
            return None
        return self._result.handoff

    @property
    def result(self) -> Optional[CheckoutResult]:
        return self._result

    def _move(self, step: CheckoutStep, error: Optional[str] = None) -> None:
        if step != self._step:
            logger.debug("checkout_step", from_step=self._step.value, to_step=step.value)
        self._step = step
        self._error = error

    def _fail(self, message: str) -> None:
        self._move(CheckoutStep.ERROR, message)

    def _require_not_submitted(self) -> None:
        if self._step == CheckoutStep.SUBMITTING:
            logger.warning("duplicate_submission_rejected", step=self._step.value)
            raise DuplicateSubmissionError(errmsg.CHECKOUT_IN_FLIGHT)
        if self._step == CheckoutStep.HANDED_OFF:
            logger.warning("duplicate_submission_rejected", step=self._step.value)
            raise DuplicateSubmissionError(errmsg.CHECKOUT_HANDED_OFF)

    def _ready_step(self) -> CheckoutStep:
        if self._coupon is not None:
            return CheckoutStep.PRICING_APPLIED
        return CheckoutStep.VALIDATING

    def begin(self) -> CheckoutStep:
        """Validate the cart and enter the pricing steps.

        Raises:
            CheckoutValidationError: The cart is empty or has an invalid line.
            DuplicateSubmissionError: A submission is in flight or handed off.
        """
        self._require_not_submitted()
        try:
            require_checkout_ready(self._store.state.items)
        except CheckoutValidationError as e:
            self._fail(e.message)
            logger.info("checkout_cart_invalid", lines=len(self._store.state.items))
            raise
        self._move(self._ready_step())
        return self._step

    async def apply_coupon(self, code: str) -> AppliedCoupon:
        """Ask the Pricing Backend to accept a coupon for the current cart.

        A declined code also drops any coupon applied earlier and returns to
        VALIDATING, so the quote always reflects the code last entered. When
        the Pricing Backend cannot be reached the earlier coupon stays.

        Raises:
            CheckoutStateError: Called outside VALIDATING / PRICING_APPLIED.
            CheckoutValidationError: The code is blank.
            CouponRejectedError: The Pricing Backend declined the code.
            CheckoutFailedError: The Pricing Backend could not be reached.
        """
        if self._step not in (CheckoutStep.VALIDATING, CheckoutStep.PRICING_APPLIED):
            raise CheckoutStateError(f"cannot apply a coupon while {self._step.value}")
        code = (code or "").strip()
        try:
            require_exists(code, errmsg.COUPON_CODE_REQUIRED)
        except CheckoutValidationError as e:
            self._error = e.message
            raise

        try:
            coupon = await self._validate_coupon(code)
        except CouponRejectedError as e:
            if self._coupon is not None:
                logger.info("coupon_dropped", code=self._coupon.code, rejected=code)
            self._coupon = None
            self._move(CheckoutStep.VALIDATING, e.message)
            raise
        self._coupon = coupon
        self._move(CheckoutStep.PRICING_APPLIED)
        logger.info("coupon_applied", code=code, discount=str(coupon.discount), type=coupon.coupon_type)
        return coupon

    async def _validate_coupon(self, code: str) -> AppliedCoupon:
        items = self._store.state.items
        subtotal = self._store.state.total
        try:
            decision = await self._pricing_backend.validate_coupon(code, subtotal, items)
        except BackendError as e:
            self._error = e.message
            logger.warning("coupon_validation_failed", code=code, error=str(e))
            raise CheckoutFailedError(e.message, e) from e

        if not decision.accepted:
            reason = decision.reason or errmsg.COUPON_INVALID
            self._error = reason
            logger.info("coupon_rejected", code=code, reason=reason)
            raise CouponRejectedError(code, reason)
        return AppliedCoupon(
            code=code,
            discount=decision.discount,
            metadata=dict(decision.metadata),
            order_amount=subtotal,
        )

    def remove_coupon(self) -> None:
        if self._step in (CheckoutStep.SUBMITTING, CheckoutStep.HANDED_OFF):
            raise CheckoutStateError(f"cannot remove a coupon while {self._step.value}")
        self._coupon = None
        if self._step == CheckoutStep.PRICING_APPLIED:
            self._move(CheckoutStep.VALIDATING)

    def quote(self) -> OrderTotals:
        """Totals for the current cart and applied coupon."""
        coupon = self._coupon
        if coupon is None:
            return compute_totals(self._store.state.items, self._config)
        return compute_totals(
            self._store.state.items,
            self._config,
            discount=coupon.discount,
            free_shipping=coupon.free_shipping,
        )

    async def submit(self, shipping: Address, billing: Optional[Address] = None) -> PaymentHandoff:
        """Create the order and hand off to the payment collaborator.

        A billing address of None means "same as shipping". Only one
        submission may be in flight; a second call is rejected before any
        backend call is made.

        Raises:
            DuplicateSubmissionError: A submission is in flight or handed off.
            CheckoutValidationError: Invalid cart or incomplete address.
            CouponRejectedError: The applied coupon no longer validates.
            CheckoutFailedError: The Cart Backend checkout call failed.
        """
        self._require_not_submitted()
        items = self._store.state.items
        try:
            require_checkout_ready(items)
            require_fields(shipping.to_payload(), Address.REQUIRED, errmsg.ADDRESS_INCOMPLETE)
            if billing is not None:
                require_fields(billing.to_payload(), Address.REQUIRED, errmsg.ADDRESS_INCOMPLETE)
        except CheckoutValidationError as e:
            self._fail(e.message)
            logger.info("checkout_validation_failed", fields=sorted(e.field_errors))
            raise

        self._move(CheckoutStep.SUBMITTING)
        log = logger.bind(lines=len(items), item_count=self._store.state.item_count)

        coupon = self._coupon
        if coupon is not None and coupon.order_amount != self._store.state.total:
            log.info("coupon_revalidating", code=coupon.code, order_amount=str(coupon.order_amount))
            try:
                coupon = await self._validate_coupon(coupon.code)
            except CouponRejectedError as e:
                self._coupon = None
                self._fail(errmsg.COUPON_STALE)
                raise CouponRejectedError(e.code, errmsg.COUPON_STALE) from e
            except CheckoutFailedError:
                self._fail(self._error or errmsg.CHECKOUT_FAILED)
                raise
            self._coupon = coupon

        try:
            result = await self._cart_backend.checkout(
                shipping.to_payload(),
                billing.to_payload() if billing is not None else None,
                coupon.code if coupon is not None else None,
                items,
            )
        except BackendError as e:
            self._fail(e.message or errmsg.CHECKOUT_FAILED)
            log.warning("checkout_failed", error=str(e))
            raise CheckoutFailedError(errmsg.CHECKOUT_FAILED, e) from e

        self._result = result
        self._move(CheckoutStep.HANDED_OFF)
        log.info(
            "checkout_handed_off",
            order_number=result.order_number,
            gateway_order_id=result.handoff.gateway_order_id,
            amount=str(result.handoff.amount),
            currency=result.handoff.currency,
        )
        return result.handoff

    def complete_payment(self, reference: str = "") -> CheckoutResult:
        """Called by the payment collaborator once payment succeeded.

        Clears the cart and returns the orchestrator to IDLE.
        """
        if self._step != CheckoutStep.HANDED_OFF or self._result is None:
            raise CheckoutStateError(errmsg.NOT_HANDED_OFF)
        result = self._result
        self._store.dispatch(Clear())
        self.reset()
        logger.info("checkout_completed", order_number=result.order_number, payment_reference=reference)
        return result

    def payment_failed(self, reason: str = "") -> None:
        """Payment was declined or dismissed; the cart stays as it is."""
        if self._step != CheckoutStep.HANDED_OFF:
            raise CheckoutStateError(errmsg.NOT_HANDED_OFF)
        order_number = self._result.order_number if self._result else ""
        self._result = None
        self._fail(reason or errmsg.CHECKOUT_FAILED)
        logger.info("payment_failed", order_number=order_number, reason=reason)

    def reset(self) -> None:
        self._coupon = None
        self._result = None
        self._move(CheckoutStep.IDLE)
