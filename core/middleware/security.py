"""
Payment security middleware

Rate limits payment endpoints per client IP and blocks API requests whose
JSON body looks like raw card data. The webhook path is passed through
untouched because signature verification needs the exact raw body.
"""
import re
import time
from typing import Iterable, List, Optional

from fastapi import Request, Response, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from core.audit import AuditEvent, AuditLogger, Severity, get_audit_logger
from core.config import get_settings
from core.exceptions import RateLimitError, SecurityViolation
from core.logging import get_logger
from d0_gateway.rate_limiter import RateLimiter, create_rate_limiter

logger = get_logger(__name__, domain="security")

# Card data must only ever reach the processor's hosted fields
SENSITIVE_PATTERNS = [
    re.compile(r"\b\d{4}[\s\-]?\d{4}[\s\-]?\d{4}[\s\-]?\d{3,4}\b"),
    re.compile(r"\b(cvv|cvc|cvd|cid)[\s:]*\d{3,4}\b", re.IGNORECASE),
    re.compile(r'"(card_?number|cardNumber|card_no|cardNo|pan)"[\s:]*"?\d+', re.IGNORECASE),
    re.compile(r'"(exp_?(month|year)|expiryMonth|expiryYear)"[\s:]*"?\d+', re.IGNORECASE),
]

SENSITIVE_DATA_MESSAGE = (
    "Request contains sensitive data that must not be transmitted. "
    "Use the payment form's hosted fields for card data."
)


def contains_sensitive_data(body: str) -> bool:
    return any(pattern.search(body) for pattern in SENSITIVE_PATTERNS)


def get_client_id(request: Request) -> str:
    """Client IP from proxy headers, falling back to the connection peer"""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip
    return request.client.host if request.client else "unknown"


class PaymentSecurityMiddleware(BaseHTTPMiddleware):
    """Rate limiting and card-data scanning for the checkout API"""

    SCANNED_METHODS = ["POST", "PUT", "PATCH"]

    def __init__(
        self,
        app,
        rate_limiter: Optional[RateLimiter] = None,
        rate_limited_paths: Optional[Iterable[str]] = None,
        webhook_path: Optional[str] = None,
        audit: Optional[AuditLogger] = None,
    ):
        super().__init__(app)
        settings = get_settings()
        self.rate_limiter = rate_limiter or create_rate_limiter(settings)
        self.rate_limited_paths: List[str] = list(
            rate_limited_paths if rate_limited_paths is not None else settings.rate_limit_paths
        )
        self.webhook_path = webhook_path or settings.webhook_path
        self.audit = audit or get_audit_logger()

    async def dispatch(self, request: Request, call_next):
        path = request.url.path

        # Body must reach the webhook handler byte-for-byte
        if path == self.webhook_path:
            return await call_next(request)

        rate_headers = {}
        if any(path.startswith(prefix) for prefix in self.rate_limited_paths):
            client_id = get_client_id(request)
            decision = await self.rate_limiter.hit(client_id)
            if not decision.allowed:
                logger.warning("Rate limit exceeded", extra={"client_id": client_id, "path": path})
                self.audit.emit(
                    AuditEvent.RATE_LIMIT_EXCEEDED,
                    Severity.MEDIUM,
                    client_id=client_id,
                    path=path,
                )
                error = RateLimitError(decision.retry_after, decision.limit)
                return JSONResponse(
                    status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                    content=error.to_dict(),
                    headers=decision.headers(),
                )
            rate_headers = decision.headers()

        if path.startswith("/api/") and await self._has_sensitive_data(request):
            error = SecurityViolation(SENSITIVE_DATA_MESSAGE, code="SENSITIVE_DATA_BLOCKED")
            body = error.to_dict()
            body["error"] = "Invalid request"
            return JSONResponse(
                status_code=error.status_code,
                content=body,
                headers={"X-Security-Alert": "sensitive-data-detected"},
            )

        start_time = time.time()
        response: Response = await call_next(request)
        response.headers.update(rate_headers)

        logger.debug(
            "Request completed",
            extra={
                "method": request.method,
                "path": path,
                "status_code": response.status_code,
                "duration": round(time.time() - start_time, 3),
            },
        )
        return response

    async def _has_sensitive_data(self, request: Request) -> bool:
        if request.method not in self.SCANNED_METHODS:
            return False
        if "application/json" not in request.headers.get("content-type", ""):
            return False

        body_bytes = await request.body()

        # Reset body for downstream processing
        async def receive():
            return {"type": "http.request", "body": body_bytes, "more_body": False}

        request._receive = receive

        if not contains_sensitive_data(body_bytes.decode("utf-8", errors="replace")):
            return False

        client_id = get_client_id(request)
        logger.error(
            "Sensitive card data detected in request",
            extra={"path": request.url.path, "method": request.method, "client_id": client_id},
        )
        self.audit.emit(
            AuditEvent.SECURITY_VIOLATION,
            Severity.HIGH,
            violation="SENSITIVE_DATA_BLOCKED",
            path=request.url.path,
            method=request.method,
            client_id=client_id,
        )
        return True
