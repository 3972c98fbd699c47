"""
test_middleware.py — Rate-limit buckets, request tracing and security headers.

Uses a bare Starlette app so the tests need no database or app routers.
"""

import pytest
from starlette.applications import Starlette
from starlette.responses import JSONResponse
from starlette.routing import Route
from starlette.testclient import TestClient

from app.services.middleware import (
    RateLimitMiddleware,
    RequestTimingMiddleware,
    SecurityHeadersMiddleware,
    rate_limit_for,
)


async def _ok(request):
    return JSONResponse({"ok": True})


def _app(*middleware):
    app = Starlette(routes=[
        Route("/api/things", _ok, methods=["GET", "POST"]),
        Route("/api/auth/login", _ok, methods=["POST"]),
        Route("/health", _ok),
    ])
    for cls in middleware:
        app.add_middleware(cls)
    return app


class TestRateLimitBuckets:

    @pytest.mark.parametrize("path,method,expected", [
        ("/api/auth/login", "POST", ("auth", 10)),
        ("/api/auth/me", "GET", ("auth", 10)),
        ("/api/documents/extract", "POST", ("ai", 20)),
        ("/api/documents/ocr-region", "POST", ("ai", 20)),
        ("/api/documents", "POST", ("ai", 20)),
        ("/api/documents", "GET", ("general", 120)),
        ("/api/lots", "PUT", ("general", 120)),
    ])
    def test_bucket(self, path, method, expected):
        assert rate_limit_for(path, method) == expected


class TestRateLimitMiddleware:

    def test_auth_bucket_returns_429_after_limit(self):
        client = TestClient(_app(RateLimitMiddleware))
        for _ in range(10):
            assert client.post("/api/auth/login").status_code == 200
        response = client.post("/api/auth/login")
        assert response.status_code == 429
        assert response.headers["Retry-After"] == "60"

    def test_buckets_are_independent(self):
        client = TestClient(_app(RateLimitMiddleware))
        for _ in range(11):
            client.post("/api/auth/login")
        assert client.get("/api/things").status_code == 200

    def test_health_never_limited(self):
        client = TestClient(_app(RateLimitMiddleware))
        for _ in range(130):
            assert client.get("/health").status_code == 200


class TestTracingAndHeaders:

    def test_request_id_and_timing_headers(self):
        client = TestClient(_app(RequestTimingMiddleware))
        response = client.get("/api/things")
        assert len(response.headers["X-Request-ID"]) == 36
        assert float(response.headers["X-Process-Time"]) >= 0

    def test_security_headers(self):
        client = TestClient(_app(SecurityHeadersMiddleware))
        response = client.get("/api/things")
        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert response.headers["X-Frame-Options"] == "DENY"
        assert response.headers["Referrer-Policy"] == "strict-origin-when-cross-origin"
