"""
HRMS Core - Security Middleware

FastAPI middleware for:
1. Rate Limiting (general API limit, strict failed-login limit)
2. Security Headers
3. Request Logging
"""

import time
import logging
from collections import defaultdict
from typing import Callable, Dict, List, Tuple

from fastapi import FastAPI, Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from hrms.config import settings
from hrms.utils.error_handling import RateLimitException, create_error_response

logger = logging.getLogger(__name__)


# ============================================================================
# RATE LIMITING MIDDLEWARE
# ============================================================================

class RateLimitingMiddleware(BaseHTTPMiddleware):
    """
    Sliding-window rate limiting using in-memory storage.

    Two path groups are tracked per client IP:
    - auth: only failed (4xx) responses count, so a user who logs in
      successfully is never locked out
    - api: every request counts
    """

    AUTH_PREFIX = "/api/v1/auth"
    API_PREFIX = "/api"
    PRUNE_INTERVAL_SECONDS = 60

    def __init__(
        self,
        app: FastAPI,
        enabled: bool = True,
        window_seconds: int = 900,
        max_requests: int = 100,
        auth_window_seconds: int = 900,
        auth_max_attempts: int = 5,
        clock: Callable[[], float] = time.monotonic,
    ):
        super().__init__(app)
        self.enabled = enabled
        self.limits: Dict[str, Tuple[int, int]] = {
            "api": (max_requests, window_seconds),
            "auth": (auth_max_attempts, auth_window_seconds),
        }
        self.clock = clock

        # In-memory storage: {(ip, group): [timestamp, ...]}
        self._requests: Dict[Tuple[str, str], List[float]] = defaultdict(list)
        self._last_prune = clock()

    def _group(self, path: str):
        if path.startswith(self.AUTH_PREFIX):
            return "auth"
        if path.startswith(self.API_PREFIX):
            return "api"
        return None

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if not self.enabled:
            return await call_next(request)

        group = self._group(request.url.path)
        if group is None:
            return await call_next(request)

        client_ip = request.client.host if request.client else "127.0.0.1"
        key = (client_ip, group)
        limit, window = self.limits[group]

        is_limited, retry_after = self._check_rate_limit(key, limit, window)
        if is_limited:
            logger.warning(f"Rate limit exceeded for {client_ip} on {request.url.path}")
            exc = RateLimitException(
                f"Too many requests. Please try again in {retry_after} seconds.",
                retry_after=retry_after,
            )
            return create_error_response(
                code=exc.code,
                message=exc.message,
                status_code=exc.status_code,
                details=exc.details,
                headers=exc.headers,
            )

        if group == "api":
            self._requests[key].append(self.clock())

        response = await call_next(request)

        if group == "auth" and 400 <= response.status_code < 500:
            self._requests[key].append(self.clock())

        remaining = limit - len(self._requests[key])
        response.headers["X-RateLimit-Limit"] = str(limit)
        response.headers["X-RateLimit-Remaining"] = str(max(0, remaining))
        return response

    def _check_rate_limit(self, key: Tuple[str, str], limit: int, window: int) -> tuple:
        """Check if request is rate limited."""
        now = self.clock()
        self._prune(now)
        cutoff = now - window

        # Clean old entries
        self._requests[key] = [t for t in self._requests[key] if t > cutoff]

        if len(self._requests[key]) >= limit:
            oldest = min(self._requests[key])
            retry_after = int(oldest + window - now)
            return True, max(1, retry_after)

        return False, 0

    def _prune(self, now: float) -> None:
        """Forget clients whose requests have all left their window."""
        if now - self._last_prune < self.PRUNE_INTERVAL_SECONDS:
            return
        self._last_prune = now
        for key in list(self._requests):
            window = self.limits[key[1]][1]
            if not any(t > now - window for t in self._requests[key]):
                del self._requests[key]


# ============================================================================
# SECURITY HEADERS MIDDLEWARE
# ============================================================================

class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses."""

    def __init__(self, app: FastAPI, development_mode: bool = False):
        super().__init__(app)
        self.development_mode = development_mode

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        response = await call_next(request)

        # Prevent MIME type sniffing
        response.headers["X-Content-Type-Options"] = "nosniff"

        # Prevent clickjacking
        response.headers["X-Frame-Options"] = "DENY"

        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"

        # HSTS only makes sense behind TLS
        if not self.development_mode:
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"

        return response


# ============================================================================
# REQUEST LOGGING MIDDLEWARE
# ============================================================================

class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Log requests for security monitoring.

    Sensitive paths are always logged; everything else only on 4xx/5xx.
    """

    SENSITIVE_PATHS = [
        "/api/v1/auth",
        "/api/v1/roles",
        "/api/v1/permissions",
        "/api/v1/reconciliation",
    ]

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start_time = time.time()

        client_ip = request.client.host if request.client else "unknown"
        path = request.url.path
        method = request.method

        response = await call_next(request)

        duration = time.time() - start_time
        log_level = logging.WARNING if response.status_code >= 400 else logging.INFO
        is_sensitive = any(path.startswith(p) for p in self.SENSITIVE_PATHS)

        if is_sensitive or response.status_code >= 400:
            logger.log(
                log_level,
                f"{method} {path} - {response.status_code} - {duration:.3f}s - {client_ip}",
            )

        return response


# ============================================================================
# SETUP
# ============================================================================

def setup_security_middleware(
    app: FastAPI,
    development_mode: bool = False,
    rate_limiting_enabled: bool = True,
):
    """
    Setup all security middleware for the application.

    Args:
        app: FastAPI application instance
        development_mode: If True, relaxes some security headers
        rate_limiting_enabled: Enable rate limiting
    """
    # Order matters! Later middleware wraps earlier ones

    # 1. Rate limiting (innermost of the three)
    if rate_limiting_enabled:
        app.add_middleware(
            RateLimitingMiddleware,
            enabled=True,
            window_seconds=settings.rate_limit_window_seconds,
            max_requests=settings.rate_limit_max_requests,
            auth_window_seconds=settings.auth_rate_limit_window_seconds,
            auth_max_attempts=settings.auth_rate_limit_max_attempts,
        )

    # 2. Security headers
    app.add_middleware(SecurityHeadersMiddleware, development_mode=development_mode)

    # 3. Request logging (outermost - logs everything)
    app.add_middleware(RequestLoggingMiddleware)

    logger.info(f"Security middleware configured (rate limiting: {rate_limiting_enabled})")
