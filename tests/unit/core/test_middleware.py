"""
Tests for the payment security middleware
"""
import pytest
from fastapi import FastAPI, Request
from fastapi.testclient import TestClient

from core.audit import AuditLogger
from core.middleware import PaymentSecurityMiddleware, contains_sensitive_data, get_client_id
from d0_gateway.rate_limiter import InMemoryRateLimiter

pytestmark = pytest.mark.security


def build_app(limit: int = 2):
    app = FastAPI()
    audit = AuditLogger(keep_history=True)
    limiter = InMemoryRateLimiter(limit, 60)
    app.add_middleware(
        PaymentSecurityMiddleware,
        rate_limiter=limiter,
        rate_limited_paths=["/api/checkout/"],
        webhook_path="/api/checkout/webhook",
        audit=audit,
    )

    @app.post("/api/checkout/create-payment-intent")
    async def create(request: Request):
        return {"received": await request.json()}

    @app.post("/api/checkout/webhook")
    async def webhook(request: Request):
        return {"length": len(await request.body())}

    @app.post("/api/other")
    async def other(request: Request):
        return {"ok": True}

    @app.get("/health")
    def health():
        return {"status": "healthy"}

    return app, audit


def from_peer(app, host: str):
    """Wrap an app so every request arrives from the given peer address"""

    async def asgi(scope, receive, send):
        await app({**scope, "client": (host, 50000)}, receive, send)

    return asgi


def request_with(headers=None, client=("10.0.0.1", 50000)) -> Request:
    scope = {
        "type": "http",
        "method": "GET",
        "path": "/",
        "headers": [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()],
        "client": client,
    }
    return Request(scope)


class TestClientId:
    def test_forwarded_for_wins(self):
        request = request_with({"X-Forwarded-For": "2.2.2.2, 10.0.0.1", "X-Real-IP": "3.3.3.3"})
        assert get_client_id(request) == "2.2.2.2"

    def test_real_ip_header(self):
        assert get_client_id(request_with({"X-Real-IP": "3.3.3.3"})) == "3.3.3.3"

    def test_falls_back_to_connection_peer(self):
        """Direct connections are identified by their socket address"""
        assert get_client_id(request_with()) == "10.0.0.1"

    def test_unknown_without_peer(self):
        assert get_client_id(request_with(client=None)) == "unknown"


class TestSensitiveDataPatterns:
    @pytest.mark.parametrize(
        "body",
        [
            '{"note": "4242 4242 4242 4242"}',
            '{"note": "4242-4242-4242-4242"}',
            '{"note": "cvv: 123"}',
            '{"cardNumber": "4242"}',
            '{"exp_month": 12}',
            '{"expiryYear": "2030"}',
        ],
    )
    def test_detects_card_data(self, body):
        assert contains_sensitive_data(body)

    @pytest.mark.parametrize(
        "body",
        [
            '{"items": [{"id": "pro-pack", "price": 43.0}]}',
            '{"phone": "555-123-4567"}',
            '{"paymentIntentId": "pi_3Nabc123"}',
        ],
    )
    def test_ignores_ordinary_checkout_data(self, body):
        assert not contains_sensitive_data(body)


class TestSensitiveDataBlocking:
    def test_blocks_card_number_in_json_body(self):
        app, audit = build_app()
        client = TestClient(app)

        response = client.post(
            "/api/checkout/create-payment-intent",
            json={"customer": {"note": "my card is 4111 1111 1111 1111"}},
        )

        assert response.status_code == 400
        body = response.json()
        assert body["code"] == "SENSITIVE_DATA_BLOCKED"
        assert body["error"] == "Invalid request"
        assert response.headers["X-Security-Alert"] == "sensitive-data-detected"
        assert "SECURITY_VIOLATION" in audit.events()
        assert audit.history[-1]["severity"] == "HIGH"

    def test_clean_body_is_replayed_to_handler(self):
        app, _ = build_app()
        client = TestClient(app)

        response = client.post("/api/checkout/create-payment-intent", json={"items": [1, 2]})

        assert response.status_code == 200
        assert response.json() == {"received": {"items": [1, 2]}}

    def test_scans_all_api_paths(self):
        app, _ = build_app()
        client = TestClient(app)

        response = client.post("/api/other", json={"cvc": "cvc 123"})
        assert response.status_code == 400

    def test_webhook_body_is_untouched(self):
        app, audit = build_app(limit=1)
        client = TestClient(app)
        payload = b'{"card_number": "4242424242424242"}'

        for _ in range(3):
            response = client.post(
                "/api/checkout/webhook", content=payload, headers={"content-type": "application/json"}
            )
            assert response.status_code == 200
            assert response.json() == {"length": len(payload)}

        assert audit.events() == []


class TestRateLimiting:
    def test_rate_limit_headers_on_allowed_requests(self):
        app, _ = build_app(limit=2)
        client = TestClient(app)

        response = client.post("/api/checkout/create-payment-intent", json={})
        assert response.headers["X-RateLimit-Limit"] == "2"
        assert response.headers["X-RateLimit-Remaining"] == "1"

    def test_blocks_after_limit(self):
        app, audit = build_app(limit=2)
        client = TestClient(app)

        for _ in range(2):
            assert client.post("/api/checkout/create-payment-intent", json={}).status_code == 200

        response = client.post("/api/checkout/create-payment-intent", json={})
        assert response.status_code == 429
        assert response.json()["code"] == "RATE_LIMITED"
        assert int(response.headers["Retry-After"]) >= 1
        assert response.headers["X-RateLimit-Remaining"] == "0"
        assert "RATE_LIMIT_EXCEEDED" in audit.events()

    def test_limits_are_per_client(self):
        app, _ = build_app(limit=1)
        client = TestClient(app)

        first = client.post("/api/checkout/create-payment-intent", json={}, headers={"x-forwarded-for": "1.1.1.1"})
        second = client.post(
            "/api/checkout/create-payment-intent", json={}, headers={"x-forwarded-for": "2.2.2.2, 10.0.0.1"}
        )
        blocked = client.post("/api/checkout/create-payment-intent", json={}, headers={"x-forwarded-for": "1.1.1.1"})

        assert first.status_code == 200
        assert second.status_code == 200
        assert blocked.status_code == 429

    def test_direct_clients_get_separate_buckets(self):
        """Without proxy headers each connection peer is limited on its own"""
        app, _ = build_app(limit=2)
        first_client = TestClient(from_peer(app, "10.0.0.1"))
        second_client = TestClient(from_peer(app, "10.0.0.2"))

        for _ in range(2):
            assert first_client.post("/api/checkout/create-payment-intent", json={}).status_code == 200

        assert first_client.post("/api/checkout/create-payment-intent", json={}).status_code == 429
        assert second_client.post("/api/checkout/create-payment-intent", json={}).status_code == 200

    def test_unlimited_paths(self):
        app, _ = build_app(limit=1)
        client = TestClient(app)

        for _ in range(3):
            response = client.get("/health")
            assert response.status_code == 200
            assert "X-RateLimit-Limit" not in response.headers
