"""
Clover payment processor

Clover uses a synchronous tokenize-and-charge flow: the browser widget
produces a card token and the server charges it in one call, so there is
no client secret and no step-up handshake.
"""
from typing import Any, Dict, Optional

import httpx

from ..base import PaymentProcessor
from ..exceptions import ProcessorAPIError
from ..types import IntentRequest, IntentStatus, PaymentMethodSummary, ProcessorIntent


def format_address_for_clover(name: str, address: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "name": name,
        "address": {
            "line1": address.get("address1"),
            "line2": address.get("address2") or None,
            "city": address.get("city"),
            "state": address.get("state"),
            "postal_code": address.get("zip_code"),
            "country": address.get("country") or "US",
        },
    }


class CloverProcessor(PaymentProcessor):
    """Clover charges and orders over the REST API"""

    name = "clover"
    synchronous_charge = True
    api_version = "v1"

    def __init__(
        self,
        credentials: Optional[Dict[str, Any]] = None,
        client: Optional[httpx.Client] = None,
    ):
        super().__init__(credentials)
        self.base_url = self.credentials.get("base_url") or self.settings.clover_base_url
        self.merchant_id = self.credentials.get("merchant_id")
        self.client = client or httpx.Client(
            base_url=f"{self.base_url}/{self.api_version}",
            timeout=httpx.Timeout(float(self.settings.request_timeout)),
            headers={
                "Authorization": f"Bearer {self.credentials['api_key']}",
                "Content-Type": "application/json",
            },
        )

    def close(self) -> None:
        self.client.close()

    def map_error(self, error: Exception) -> ProcessorAPIError:
        if isinstance(error, ProcessorAPIError):
            return error

        if isinstance(error, httpx.HTTPStatusError):
            try:
                body = error.response.json()
            except ValueError:
                body = {}
            detail = body.get("error") if isinstance(body.get("error"), dict) else body
            status = error.response.status_code
            return ProcessorAPIError(
                processor=self.name,
                message=detail.get("message") or f"HTTP {status}",
                code=detail.get("code") or detail.get("decline_code"),
                decline_code=detail.get("decline_code"),
                error_type="rate_limit" if status == 429 else detail.get("type", "api_error"),
                http_status=status,
            )

        if isinstance(error, httpx.TransportError):
            return ProcessorAPIError(
                processor=self.name,
                message=str(error) or "Connection failed",
                error_type="api_connection_error",
                http_status=503,
            )

        return ProcessorAPIError(processor=self.name, message=str(error), error_type="api_error")

    def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        try:
            response = self.client.request(method, path, **kwargs)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPError as e:
            mapped = self.map_error(e)
            self.logger.warning(
                f"Clover {method} {path} failed",
                extra={"error_code": mapped.code, "http_status": mapped.http_status},
            )
            raise mapped from e

    def _to_intent(self, charge: Dict[str, Any]) -> ProcessorIntent:
        status = charge.get("status")
        if status == "succeeded" and charge.get("captured", False):
            intent_status = IntentStatus.SUCCEEDED
        elif status == "succeeded":
            intent_status = IntentStatus.REQUIRES_CAPTURE
        elif status == "pending":
            intent_status = IntentStatus.PROCESSING
        else:
            intent_status = IntentStatus.FAILED

        source = charge.get("source") or {}
        return ProcessorIntent(
            id=charge["id"],
            status=intent_status,
            amount_cents=int(charge.get("amount", 0)),
            currency=charge.get("currency", "usd"),
            payment_method=PaymentMethodSummary(
                brand=source.get("brand") or "card",
                last4=source.get("last4") or "****",
            ),
            last_error_code=charge.get("failure_code"),
            last_error_message=charge.get("failure_message"),
            metadata=charge.get("metadata") or {},
        )

    def create_intent(self, request: IntentRequest) -> ProcessorIntent:
        payload: Dict[str, Any] = {
            "amount": request.amount_cents,
            "currency": request.currency,
            "source": request.payment_token,
            "capture": True,
            "metadata": request.metadata,
            "customer": {"email": request.customer_email, "name": request.customer_name},
        }
        if request.description:
            payload["description"] = request.description
        if request.shipping:
            payload["shipping"] = format_address_for_clover(
                request.customer_name or "", request.shipping
            )

        headers = {}
        if request.idempotency_key:
            headers["Idempotency-Key"] = request.idempotency_key

        charge = self._request("POST", "/charges", json=payload, headers=headers)
        self.logger.info(
            "Clover charge created",
            extra={"charge_id": charge.get("id"), "status": charge.get("status")},
        )
        return self._to_intent(charge)

    def retrieve_intent(self, intent_id: str) -> ProcessorIntent:
        return self._to_intent(self._request("GET", f"/charges/{intent_id}"))

    def record_order(self, intent: ProcessorIntent, order: Any) -> Optional[str]:
        payload = {
            "state": "locked",
            "items": [
                {"name": item.name, "price": item.unit_price_cents, "quantity": item.quantity}
                for item in order.items
            ],
            "metadata": {
                "order_number": order.order_number,
                "charge_id": intent.id,
            },
        }
        result = self._request("POST", "/orders", json=payload)
        self.logger.info(
            "Clover order recorded",
            extra={"clover_order_id": result.get("id"), "order_number": order.order_number},
        )
        return result.get("id")
