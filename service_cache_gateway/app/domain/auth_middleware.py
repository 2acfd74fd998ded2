"""
Authentication middleware for the cache gateway.
"""

import secrets
from typing import Optional

from fastapi import Request
from fastapi.security import HTTPBearer

from shared.errors import AuthenticationError, AuthorizationError
from shared.logging import get_logger
from shared.metrics import MetricsCollector


class SessionAuthGate:
    """Bearer-token gate for one gateway session.

    Used as an application-wide FastAPI dependency, so it runs before every
    route handler. Missing or non-bearer credentials raise
    ``AuthenticationError`` (401); a bearer token that does not match the
    session token raises ``AuthorizationError`` (403).
    """

    def __init__(self, token: str, metrics: Optional[MetricsCollector] = None):
        if not token:
            raise ValueError("session token must be non-empty")
        self._expected = token.encode("utf-8")
        self.metrics = metrics
        self.logger = get_logger("cache_gateway.auth_middleware")
        self.security = HTTPBearer(auto_error=False)

    def _reject(self, reason: str) -> None:
        if self.metrics is not None:
            self.metrics.record_auth_failure(reason)

    def verify_token(self, presented: str) -> bool:
        """Constant-time comparison against the session token."""
        return secrets.compare_digest(presented.encode("utf-8"), self._expected)

    async def authenticate_request(self, request: Request) -> None:
        """Authenticate an incoming request or raise."""
        credentials = await self.security(request)
        if credentials is None:
            self._reject("missing")
            self.logger.warning(
                "Rejected request without bearer credentials",
                method=request.method,
                path=request.url.path,
            )
            raise AuthenticationError("Unauthorized")

        if not self.verify_token(credentials.credentials):
            self._reject("mismatch")
            self.logger.warning(
                "Rejected request with invalid bearer token",
                method=request.method,
                path=request.url.path,
            )
            raise AuthorizationError("Forbidden")

    async def __call__(self, request: Request) -> None:
        await self.authenticate_request(request)
