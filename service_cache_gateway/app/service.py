"""
Cache gateway application for one session.
"""

from typing import Optional

from shared.base_service import BaseService
from shared.config import GatewayConfig
from shared.metrics import MetricsCollector

from .domain.auth_middleware import SessionAuthGate
from .handlers.contract import CacheHandler
from .routes import create_cache_router


class CacheGatewayService(BaseService):
    """FastAPI app wiring the session auth gate in front of the cache routes."""

    def __init__(self, handler: CacheHandler, token: str, config: GatewayConfig,
                 metrics: Optional[MetricsCollector] = None):
        self.handler = handler
        self.auth_gate = SessionAuthGate(token)
        super().__init__("cache_gateway", config, metrics=metrics, guards=[self.auth_gate])
        self.auth_gate.metrics = self.metrics

        # Expose service instance via app state for introspection/testing
        self.app.state.gateway_service = self

    def _setup_routes(self):
        """Mount the cache routes."""
        self.app.include_router(
            create_cache_router(
                self.handler,
                timeout=self.config.backend_timeout_seconds,
                metrics=self.metrics,
            )
        )
