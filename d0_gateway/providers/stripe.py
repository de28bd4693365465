"""
Stripe payment processor backed by the official stripe SDK

Every call passes the API key and pinned API version explicitly, so the
process-global ``stripe.api_key`` is never touched.
"""
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import stripe

from ..base import PROMOTIONS, SUBSCRIPTIONS, WEBHOOKS, PaymentProcessor
from ..exceptions import ProcessorAPIError, SignatureVerificationError
from ..types import (
    IntentRequest,
    IntentStatus,
    PaymentMethodSummary,
    ProcessorCustomer,
    ProcessorEvent,
    ProcessorIntent,
    ProcessorInvoice,
    ProcessorSubscription,
    Promotion,
    SubscriptionStatus,
)


def _field(obj: Any, key: str, default: Any = None) -> Any:
    """Read a field from a StripeObject, plain dict or expanded id"""
    if obj is None or isinstance(obj, str):
        return default
    if isinstance(obj, dict):
        return obj.get(key, default)
    return getattr(obj, key, default)


def _object_id(obj: Any) -> Optional[str]:
    if isinstance(obj, str):
        return obj
    return _field(obj, "id")


def _card_summary(payment_method: Any) -> PaymentMethodSummary:
    card = _field(payment_method, "card")
    if card is None:
        return PaymentMethodSummary()
    return PaymentMethodSummary(
        brand=_field(card, "brand") or "card",
        last4=_field(card, "last4") or "****",
    )


def format_address_for_stripe(address: Dict[str, Any]) -> Dict[str, Any]:
    """Map a checkout address onto Stripe's address shape"""
    return {
        "line1": address.get("address1"),
        "line2": address.get("address2") or None,
        "city": address.get("city"),
        "state": address.get("state"),
        "postal_code": address.get("zip_code"),
        "country": address.get("country") or "US",
    }


class StripeProcessor(PaymentProcessor):
    """Stripe payment intents, subscriptions and signed webhooks"""

    name = "stripe"
    capabilities = frozenset({SUBSCRIPTIONS, WEBHOOKS, PROMOTIONS})

    def __init__(self, credentials: Optional[Dict[str, Any]] = None):
        super().__init__(credentials)
        self.api_key = self.credentials["api_key"]
        self.api_version = self.credentials.get("api_version") or self.settings.stripe_api_version
        self.webhook_secret = self.credentials.get("webhook_secret")

    @property
    def _opts(self) -> Dict[str, str]:
        return {"api_key": self.api_key, "stripe_version": self.api_version}

    # Errors

    def map_error(self, error: Exception) -> ProcessorAPIError:
        if isinstance(error, ProcessorAPIError):
            return error

        if isinstance(error, stripe.CardError):
            error_type = "card_error"
        elif isinstance(error, stripe.RateLimitError):
            error_type = "rate_limit"
        elif isinstance(error, stripe.InvalidRequestError):
            error_type = "invalid_request_error"
        elif isinstance(error, stripe.AuthenticationError):
            error_type = "authentication_error"
        elif isinstance(error, stripe.APIConnectionError):
            error_type = "api_connection_error"
        else:
            error_type = "api_error"

        code = getattr(error, "code", None)
        if error_type == "rate_limit" and not code:
            code = "rate_limit"
        json_body = getattr(error, "json_body", None) or {}
        error_body = json_body.get("error") or {}
        intent = error_body.get("payment_intent") or {}

        return ProcessorAPIError(
            processor=self.name,
            message=getattr(error, "user_message", None) or str(error),
            code=code,
            decline_code=getattr(error, "decline_code", None) or error_body.get("decline_code"),
            error_type=error_type,
            http_status=getattr(error, "http_status", None),
            intent_id=intent.get("id") if isinstance(intent, dict) else None,
        )

    def _call(self, operation: str, func, *args, **kwargs):
        try:
            return func(*args, **kwargs, **self._opts)
        except stripe.StripeError as e:
            mapped = self.map_error(e)
            self.logger.warning(
                f"Stripe {operation} failed",
                extra={"error_code": mapped.code, "error_type": mapped.error_type},
            )
            raise mapped from e

    # One-time payments

    def _to_intent(self, intent: Any) -> ProcessorIntent:
        last_error = _field(intent, "last_payment_error")
        return ProcessorIntent(
            id=_field(intent, "id"),
            status=IntentStatus(_field(intent, "status")),
            amount_cents=int(_field(intent, "amount", 0)),
            currency=_field(intent, "currency", "usd"),
            client_secret=_field(intent, "client_secret"),
            payment_method=_card_summary(_field(intent, "payment_method")),
            last_error_code=_field(last_error, "decline_code") or _field(last_error, "code"),
            last_error_message=_field(last_error, "message"),
            metadata=dict(_field(intent, "metadata") or {}),
        )

    def create_intent(self, request: IntentRequest) -> ProcessorIntent:
        params: Dict[str, Any] = {
            "amount": request.amount_cents,
            "currency": request.currency,
            "automatic_payment_methods": {"enabled": True},
            "metadata": request.metadata,
            "receipt_email": request.customer_email,
        }
        if request.description:
            params["description"] = request.description
        if request.payment_token:
            params["payment_method"] = request.payment_token
        if request.shipping:
            params["shipping"] = {
                "name": request.customer_name or "",
                "address": format_address_for_stripe(request.shipping),
            }
        if request.idempotency_key:
            params["idempotency_key"] = request.idempotency_key

        intent = self._call("create_intent", stripe.PaymentIntent.create, **params)
        self.logger.info(
            "Payment intent created",
            extra={"payment_intent_id": _field(intent, "id"), "amount": request.amount_cents},
        )
        return self._to_intent(intent)

    def retrieve_intent(self, intent_id: str) -> ProcessorIntent:
        intent = self._call(
            "retrieve_intent",
            stripe.PaymentIntent.retrieve,
            intent_id,
            expand=["payment_method"],
        )
        return self._to_intent(intent)

    # Promotions

    def find_promotion(self, code: str) -> Optional[Promotion]:
        """Case-insensitive lookup among active promotion codes"""
        codes = self._call(
            "find_promotion", stripe.PromotionCode.list, active=True, limit=100
        )
        wanted = code.strip().upper()
        match = next(
            (pc for pc in _field(codes, "data", []) if str(_field(pc, "code", "")).upper() == wanted),
            None,
        )
        if match is None or not _field(match, "active", False):
            return None

        coupon = _field(match, "coupon")
        if coupon is None:
            coupon = _field(_field(match, "promotion"), "coupon")
        if isinstance(coupon, str):
            coupon = self._call("retrieve_coupon", stripe.Coupon.retrieve, coupon)
        if coupon is None:
            return None

        return Promotion(
            id=_field(match, "id"),
            code=_field(match, "code"),
            coupon_id=_object_id(coupon),
            percent_off=_field(coupon, "percent_off"),
            amount_off_cents=_field(coupon, "amount_off"),
        )

    # Subscriptions

    def find_or_create_customer(
        self, email: str, name: str, shipping: Optional[Dict[str, Any]] = None
    ) -> ProcessorCustomer:
        existing = self._call("list_customers", stripe.Customer.list, email=email, limit=1)
        data = _field(existing, "data", [])
        if data:
            customer = data[0]
            return ProcessorCustomer(id=_field(customer, "id"), email=email, name=_field(customer, "name"))

        params: Dict[str, Any] = {
            "email": email,
            "name": name,
            "metadata": {"customer_type": "subscription"},
        }
        if shipping:
            address = format_address_for_stripe(shipping)
            params["address"] = address
            params["shipping"] = {"name": name, "address": address}

        customer = self._call("create_customer", stripe.Customer.create, **params)
        self.logger.info("Stripe customer created", extra={"customer_id": _field(customer, "id")})
        return ProcessorCustomer(id=_field(customer, "id"), email=email, name=name)

    def _to_subscription(self, subscription: Any) -> ProcessorSubscription:
        items = _field(_field(subscription, "items"), "data", []) or []
        first_item = items[0] if items else None
        price = _field(first_item, "price")
        recurring = _field(price, "recurring")

        # Newer API versions moved the period onto subscription items
        period_end = _field(subscription, "current_period_end") or _field(first_item, "current_period_end")

        invoice = _field(subscription, "latest_invoice")
        payment_intent = _field(invoice, "payment_intent")

        return ProcessorSubscription(
            id=_field(subscription, "id"),
            status=SubscriptionStatus(_field(subscription, "status")),
            customer_id=_object_id(_field(subscription, "customer")) or "",
            latest_invoice_id=_object_id(invoice),
            current_period_end=datetime.fromtimestamp(period_end, tz=timezone.utc)
            if period_end
            else None,
            amount_cents=_field(price, "unit_amount"),
            currency=_field(price, "currency"),
            interval=_field(recurring, "interval"),
            interval_count=int(_field(recurring, "interval_count", 1) or 1),
            payment_method=_card_summary(_field(payment_intent, "payment_method"))
            if payment_intent
            else None,
            metadata=dict(_field(subscription, "metadata") or {}),
        )

    def create_subscription(
        self,
        customer_id: str,
        price_id: str,
        promotion: Optional[Promotion] = None,
        trial_period_days: Optional[int] = None,
        metadata: Optional[Dict[str, str]] = None,
    ) -> ProcessorSubscription:
        params: Dict[str, Any] = {
            "customer": customer_id,
            "items": [{"price": price_id}],
            "payment_behavior": "default_incomplete",
            "payment_settings": {
                "payment_method_types": ["card"],
                "save_default_payment_method": "on_subscription",
            },
            "metadata": metadata or {},
        }
        if promotion:
            params["discounts"] = [{"promotion_code": promotion.id}]
        if trial_period_days:
            params["trial_period_days"] = trial_period_days

        subscription = self._call("create_subscription", stripe.Subscription.create, **params)
        self.logger.info(
            "Subscription created",
            extra={"subscription_id": _field(subscription, "id"), "status": _field(subscription, "status")},
        )
        return self._to_subscription(subscription)

    def retrieve_subscription(self, subscription_id: str) -> ProcessorSubscription:
        subscription = self._call(
            "retrieve_subscription",
            stripe.Subscription.retrieve,
            subscription_id,
            expand=["latest_invoice.payment_intent.payment_method"],
        )
        return self._to_subscription(subscription)

    def _to_invoice(self, invoice: Any) -> ProcessorInvoice:
        payment_intent = _field(invoice, "payment_intent")
        return ProcessorInvoice(
            id=_field(invoice, "id"),
            amount_due_cents=int(_field(invoice, "amount_due", 0)),
            currency=_field(invoice, "currency", "usd"),
            status=_field(invoice, "status"),
            payment_intent_id=_object_id(payment_intent),
            client_secret=_field(payment_intent, "client_secret"),
            paid=bool(_field(invoice, "paid", False)) or _field(invoice, "status") == "paid",
        )

    def retrieve_invoice(self, invoice_id: str) -> ProcessorInvoice:
        invoice = self._call(
            "retrieve_invoice",
            stripe.Invoice.retrieve,
            invoice_id,
            expand=["payment_intent"],
        )
        return self._to_invoice(invoice)

    def pay_invoice(self, invoice_id: str) -> ProcessorInvoice:
        invoice = self._call("pay_invoice", stripe.Invoice.pay, invoice_id)
        return self._to_invoice(invoice)

    def create_invoice_payment_intent(
        self, invoice: ProcessorInvoice, customer_id: str, metadata: Optional[Dict[str, str]] = None
    ) -> ProcessorIntent:
        intent = self._call(
            "create_invoice_payment_intent",
            stripe.PaymentIntent.create,
            amount=invoice.amount_due_cents,
            currency=invoice.currency,
            customer=customer_id,
            setup_future_usage="off_session",
            automatic_payment_methods={"enabled": True},
            metadata={**(metadata or {}), "invoice_id": invoice.id},
            idempotency_key=f"invoice-intent-{invoice.id}",
        )
        return self._to_intent(intent)

    # Webhooks

    def construct_event(self, payload: bytes, signature: Optional[str]) -> ProcessorEvent:
        if not self.webhook_secret:
            from core.exceptions import ConfigurationError

            raise ConfigurationError(
                "Webhook secret not configured", setting="stripe_webhook_secret"
            )
        if not signature:
            raise SignatureVerificationError(self.name, "Missing signature")

        try:
            event = stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        except ValueError as e:
            raise SignatureVerificationError(self.name, "Invalid payload") from e
        except stripe.SignatureVerificationError as e:
            raise SignatureVerificationError(self.name, "Invalid signature") from e

        data = _field(event, "data")
        obj = _field(data, "object")
        if obj is not None and not isinstance(obj, dict) and hasattr(obj, "to_dict"):
            obj = obj.to_dict()

        return ProcessorEvent(
            id=_field(event, "id"),
            type=_field(event, "type"),
            created=int(_field(event, "created", 0)),
            data={"object": obj or {}},
            livemode=bool(_field(event, "livemode", False)),
        )
