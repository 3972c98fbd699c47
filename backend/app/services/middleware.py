"""Request tracing, rate limiting and security headers middleware."""
import collections
import time
import uuid
import logging
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

logger = logging.getLogger("landdev-api.middleware")

SKIP_LOG_PATHS = {"/health"}

# Paths that hit the vision providers or write uploads
_AI_PATHS = (
    "/api/documents/extract",
    "/api/documents/verify",
    "/api/documents/cross-reference",
    "/api/documents/analyze-pos",
    "/api/documents/ocr-region",
)


class RequestTimingMiddleware(BaseHTTPMiddleware):
    """
    Middleware that:
    - Assigns a unique X-Request-ID (uuid4) to every request/response.
    - Measures end-to-end request duration in milliseconds.
    - Adds X-Process-Time header to every response.
    - Emits a structured log line for every request (except /health).
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = str(uuid.uuid4())
        start_time = time.perf_counter()

        request.state.request_id = request_id

        response: Response = await call_next(request)

        duration_ms = round((time.perf_counter() - start_time) * 1000, 2)

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Process-Time"] = str(duration_ms)

        if request.url.path not in SKIP_LOG_PATHS:
            logger.info(
                "request completed",
                extra={
                    "http_method": request.method,
                    "http_path": request.url.path,
                    "http_status": response.status_code,
                    "request_id": request_id,
                    "duration_ms": duration_ms,
                },
            )

        return response


def rate_limit_for(path: str, method: str = "GET") -> tuple[str, int]:
    """Return (bucket name, requests per minute) for a request path."""
    if path.startswith("/api/auth/"):
        return "auth", 10
    if path in _AI_PATHS or (path == "/api/documents" and method == "POST"):
        return "ai", 20
    return "general", 120


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    In-memory sliding-window rate limiter, per client IP.
    Buckets:
      - /api/auth/*                       : 10 req/min
      - document upload + AI extraction   : 20 req/min
      - everything else                   : 120 req/min
    """
    def __init__(self, app, window_seconds: float = 60.0):
        super().__init__(app)
        self.window_seconds = window_seconds
        self._windows: dict = collections.defaultdict(collections.deque)

    async def dispatch(self, request: Request, call_next):
        path = request.url.path
        if path in SKIP_LOG_PATHS:
            return await call_next(request)
        ip = request.client.host if request.client else "unknown"
        bucket_name, limit = rate_limit_for(path, request.method)
        bucket = f"{ip}:{bucket_name}"
        now = time.monotonic()
        window = self._windows[bucket]
        while window and now - window[0] > self.window_seconds:
            window.popleft()
        if len(window) >= limit:
            logger.warning(f"Rate limit hit for {bucket}")
            return JSONResponse(
                status_code=429,
                content={"detail": "Too many requests. Please slow down."},
                headers={"Retry-After": str(int(self.window_seconds))},
            )
        window.append(now)
        return await call_next(request)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Adds standard security headers to every response."""
    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        return response
