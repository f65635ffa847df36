"""
HRMS Core - Middleware Package
"""

from hrms.middleware.security import (
    RateLimitingMiddleware,
    RequestLoggingMiddleware,
    SecurityHeadersMiddleware,
    setup_security_middleware,
)

__all__ = [
    "RateLimitingMiddleware",
    "RequestLoggingMiddleware",
    "SecurityHeadersMiddleware",
    "setup_security_middleware",
]
