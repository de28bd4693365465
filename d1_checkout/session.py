"""
Checkout session state machine

Steps run customer -> shipping -> payment -> review. Payment status is an
orthogonal sub-state: idle -> processing -> succeeded | failed, with
failed -> processing allowed on retry and succeeded terminal.
"""
from typing import Any, Dict, Iterable, List, Optional, Union

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from core.exceptions import InvalidTransitionError
from core.logging import get_logger

from .models import (
    Address,
    CheckoutStep,
    Customer,
    LineItem,
    OrderSummary,
    PaymentInfo,
    PaymentMethod,
    PaymentStatus,
)
from .pricing import PricingPolicy

logger = get_logger(__name__, domain="d1")

Payload = Union[Dict[str, Any], BaseModel, None]

_PAYMENT_TRANSITIONS = {
    PaymentStatus.IDLE: {PaymentStatus.PROCESSING},
    PaymentStatus.PROCESSING: {PaymentStatus.SUCCEEDED, PaymentStatus.FAILED},
    PaymentStatus.FAILED: {PaymentStatus.PROCESSING},
    PaymentStatus.SUCCEEDED: set(),
}


def _errors_from(exc: PydanticValidationError, prefix: str) -> Dict[str, str]:
    errors = {}
    for error in exc.errors():
        loc = ".".join(str(part) for part in error["loc"])
        field = f"{prefix}.{loc}" if loc else prefix
        errors[field] = error["msg"]
    return errors


def _raw(data: Payload) -> Optional[Dict[str, Any]]:
    if data is None:
        return None
    if isinstance(data, BaseModel):
        return data.model_dump()
    return dict(data)


class CheckoutSession:
    """State for one checkout attempt"""

    def __init__(self, pricing: Optional[PricingPolicy] = None):
        self.pricing = pricing or PricingPolicy()
        self.reset()

    def reset(self) -> None:
        """Discard everything, as after success or leaving checkout"""
        self.step = CheckoutStep.CUSTOMER
        self.payment_status = PaymentStatus.IDLE
        self.payment_error: Optional[str] = None
        self.errors: Dict[str, str] = {}

        self.customer: Optional[Customer] = None
        self.shipping_address: Optional[Address] = None
        self._billing_address: Optional[Address] = None
        self.payment_info: Optional[PaymentInfo] = None
        self.same_as_shipping = True
        self.special_instructions = ""
        self.coupon_code = ""
        self.discount_cents = 0
        self.items: List[LineItem] = []

        self._raw_customer: Optional[Dict[str, Any]] = None
        self._raw_shipping: Optional[Dict[str, Any]] = None
        self._raw_billing: Optional[Dict[str, Any]] = None
        self._raw_payment: Optional[Dict[str, Any]] = None

    # Setters

    def set_customer(self, data: Payload) -> None:
        self._raw_customer = _raw(data)
        self.customer = None

    def set_shipping_address(self, data: Payload) -> None:
        self._raw_shipping = _raw(data)
        self.shipping_address = None

    def set_billing_address(self, data: Payload) -> None:
        self._raw_billing = _raw(data)
        self._billing_address = None

    def set_same_as_shipping(self, same: bool) -> None:
        self.same_as_shipping = same

    def set_payment_info(self, method: Union[str, PaymentMethod], token: Optional[str] = None) -> None:
        self._raw_payment = {"payment_method": method, "token": token}
        self.payment_info = None

    def set_special_instructions(self, text: str) -> None:
        self.special_instructions = text or ""

    def set_coupon_code(self, code: str, discount_cents: int = 0) -> None:
        self.coupon_code = (code or "").strip().upper()
        self.discount_cents = max(0, discount_cents) if self.coupon_code else 0

    def set_items(self, items: Iterable[Payload]) -> None:
        self.items = [
            item if isinstance(item, LineItem) else LineItem.model_validate(item)
            for item in items
        ]

    @property
    def billing_address(self) -> Optional[Address]:
        if self.same_as_shipping:
            return self.shipping_address
        return self._billing_address

    # Validation

    def clear_errors(self) -> None:
        self.errors = {}

    def _parse(self, model, raw, prefix: str, errors: Dict[str, str]):
        if raw is None:
            errors[prefix] = "This section is required"
            return None
        try:
            return model.model_validate(raw)
        except PydanticValidationError as e:
            errors.update(_errors_from(e, prefix))
            return None

    def validate_step(self, step: Optional[CheckoutStep] = None) -> Dict[str, str]:
        """Validate one step; the returned errors replace session.errors wholesale"""
        step = CheckoutStep(step or self.step)
        errors: Dict[str, str] = {}

        if step == CheckoutStep.CUSTOMER:
            customer = self._parse(Customer, self._raw_customer, "customer", errors)
            if customer:
                self.customer = customer

        elif step == CheckoutStep.SHIPPING:
            shipping = self._parse(Address, self._raw_shipping, "shippingAddress", errors)
            if shipping:
                self.shipping_address = shipping
            if not self.same_as_shipping:
                billing = self._parse(Address, self._raw_billing, "billingAddress", errors)
                if billing:
                    self._billing_address = billing

        elif step == CheckoutStep.PAYMENT:
            payment = self._parse(PaymentInfo, self._raw_payment, "paymentInfo", errors)
            if payment:
                self.payment_info = payment.model_copy(update={"billing_address": self.billing_address})
            if len(self.special_instructions) > 500:
                errors["specialInstructions"] = "Special instructions must be 500 characters or fewer"

        elif step == CheckoutStep.REVIEW:
            if not self.items:
                errors["items"] = "Your cart is empty"

        self.errors = errors
        return errors

    # Step navigation

    def advance(self) -> bool:
        """
        Move to the next step if the current one validates

        On failure the step is unchanged and errors hold only this pass's
        messages.
        """
        self.clear_errors()
        if self.step == CheckoutStep.REVIEW:
            return False

        if self.validate_step():
            logger.info(
                "Checkout step invalid",
                extra={"step": int(self.step), "error_fields": sorted(self.errors)},
            )
            return False

        target = CheckoutStep(self.step + 1)
        self._require_prerequisites(target)
        self.step = target
        return True

    def retreat(self) -> bool:
        """Go back one step; entered data is kept"""
        if self.step <= CheckoutStep.CUSTOMER:
            return False
        self.step = CheckoutStep(self.step - 1)
        self.clear_errors()
        return True

    def go_to_step(self, step: Union[int, CheckoutStep]) -> None:
        target = CheckoutStep(step)
        if target > self.step + 1:
            raise InvalidTransitionError(
                "Cannot skip checkout steps", current=self.step.name, target=target.name
            )
        self._require_prerequisites(target)
        self.step = target
        self.clear_errors()

    def _require_prerequisites(self, target: CheckoutStep) -> None:
        if target >= CheckoutStep.PAYMENT and (self.customer is None or self.shipping_address is None):
            raise InvalidTransitionError(
                "Customer and shipping details are required before payment",
                current=self.step.name,
                target=target.name,
            )

    # Payment status

    def _transition_payment(self, target: PaymentStatus) -> None:
        if target not in _PAYMENT_TRANSITIONS[self.payment_status]:
            raise InvalidTransitionError(
                f"Cannot move payment from {self.payment_status.value} to {target.value}",
                current=self.payment_status.value,
                target=target.value,
            )
        self.payment_status = target

    def begin_payment(self) -> None:
        """Submit payment; allowed from idle or after a failure"""
        if self.step < CheckoutStep.PAYMENT:
            raise InvalidTransitionError(
                "Payment cannot start before the payment step",
                current=self.step.name,
                target=PaymentStatus.PROCESSING.value,
            )
        self._require_prerequisites(CheckoutStep.PAYMENT)
        self._transition_payment(PaymentStatus.PROCESSING)
        self.payment_error = None

    def mark_succeeded(self) -> None:
        self._transition_payment(PaymentStatus.SUCCEEDED)
        self.payment_error = None

    def mark_failed(self, message: Optional[str] = None) -> None:
        self._transition_payment(PaymentStatus.FAILED)
        self.payment_error = message or "Payment failed. Please try again."

    def apply_payment_response(self, http_status: int, body: Optional[Dict[str, Any]] = None) -> PaymentStatus:
        """Fold a confirmation response into the payment status"""
        body = body or {}
        if 200 <= http_status < 300 and body.get("success", False):
            self.mark_succeeded()
        else:
            self.mark_failed(body.get("message") or body.get("error"))
        return self.payment_status

    # Pricing

    def summary(self) -> OrderSummary:
        return self.pricing.price(self.items, self.discount_cents)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "step": int(self.step),
            "paymentStatus": self.payment_status.value,
            "paymentError": self.payment_error,
            "errors": dict(self.errors),
            "customer": self.customer.model_dump(by_alias=True) if self.customer else None,
            "shippingAddress": self.shipping_address.model_dump(by_alias=True)
            if self.shipping_address
            else None,
            "billingAddress": self.billing_address.model_dump(by_alias=True)
            if self.billing_address
            else None,
            "sameAsShipping": self.same_as_shipping,
            "couponCode": self.coupon_code or None,
        }
