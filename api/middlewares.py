from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse
from typing import Callable, Any
import logging

from services.rate_limiter import check_rate_limit, client_key

logger = logging.getLogger(__name__)

# Public endpoints open to credential guessing or enumeration
RATE_LIMITED_ENDPOINTS = [
    "/api/auth/magic-link",
    "/api/auth/admin-login",
    "/api/gift-codes/validate",
]


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Middleware to apply rate limiting to abuse-prone public endpoints"""

    async def dispatch(self, request: Request, call_next: Callable) -> Any:
        path = request.url.path
        should_limit = request.method == "POST" and any(
            path.startswith(ep) for ep in RATE_LIMITED_ENDPOINTS
        )

        if not should_limit:
            return await call_next(request)

        identifier = self._get_identifier(request)

        is_allowed, headers = check_rate_limit(identifier, tokens_cost=1)

        if not is_allowed:
            logger.warning(f"Rate limit exceeded for {identifier} on {path}")
            return JSONResponse(
                status_code=429,
                content={
                    "error": "rate_limit_exceeded",
                    "detail": f"Too many requests. Limit: {headers['X-RateLimit-Limit']} calls per {headers['X-RateLimit-Window-Seconds']} seconds",
                    "retry_after": headers.get("X-RateLimit-Reset"),
                },
                headers=headers,
            )

        response = await call_next(request)

        for key, value in headers.items():
            response.headers[key] = value

        return response

    def _get_identifier(self, request: Request) -> str:
        """Client IP scoped to the endpoint, so one flow cannot drain another"""
        forwarded_for = request.headers.get("X-Forwarded-For")
        if forwarded_for:
            client_ip = forwarded_for.split(",")[0].strip()
        else:
            client_ip = request.client.host if request.client else "unknown"
        return client_key(client_ip, request.url.path)
