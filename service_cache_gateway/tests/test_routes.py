"""
Unit tests for the cache routes served by CacheGatewayService.
"""

import asyncio

import pytest
from fastapi import HTTPException, Response
from fastapi.testclient import TestClient

from service_cache_gateway.app.service import CacheGatewayService
from shared.config import GatewayConfig
from shared.errors import BackendUnavailableError

from memory_handler import MemoryCacheHandler


TOKEN = "test-session-token"
AUTH = {"Authorization": f"Bearer {TOKEN}"}


class FailingHandler:
    """Handler whose operations raise the configured exception."""

    def __init__(self, exc: Exception):
        self.exc = exc

    async def store_file(self, key, request):
        raise self.exc

    async def retrieve_file(self, key):
        raise self.exc


class SlowHandler(MemoryCacheHandler):
    """Handler that never answers within the test deadline."""

    async def retrieve_file(self, key):
        await asyncio.sleep(5)
        return Response(status_code=200)


class TestCacheRoutes:
    """Test cases for the store/retrieve routes."""

    @pytest.fixture
    def config(self):
        """Gateway configuration."""
        return GatewayConfig(backend_timeout_seconds=5.0)

    @pytest.fixture
    def handler(self):
        """In-memory cache handler."""
        return MemoryCacheHandler()

    @pytest.fixture
    def service(self, handler, config):
        """Create CacheGatewayService instance."""
        return CacheGatewayService(handler, TOKEN, config)

    @pytest.fixture
    def client(self, service):
        """Create test client."""
        return TestClient(service.app)

    def test_store_then_retrieve(self, client, handler):
        """Stored payloads come back byte-for-byte."""
        response = client.put("/v1/cache/abc123", content=b"hello", headers=AUTH)
        assert response.status_code == 200
        assert response.content == b""
        assert handler.artifacts["abc123"] == b"hello"

        response = client.get("/v1/cache/abc123", headers=AUTH)
        assert response.status_code == 200
        assert response.content == b"hello"

    def test_binary_payload_roundtrip(self, client):
        """Arbitrary bytes pass through untouched."""
        payload = bytes(range(256)) * 64

        assert client.put("/v1/cache/bin", content=payload, headers=AUTH).status_code == 200
        assert client.get("/v1/cache/bin", headers=AUTH).content == payload

    def test_distinct_keys_are_independent(self, client):
        """Two keys stored separately are both retrievable."""
        client.put("/v1/cache/first", content=b"one", headers=AUTH)
        client.put("/v1/cache/second", content=b"two", headers=AUTH)

        assert client.get("/v1/cache/first", headers=AUTH).content == b"one"
        assert client.get("/v1/cache/second", headers=AUTH).content == b"two"

    def test_miss_status_comes_from_handler(self, client):
        """The gateway returns the handler's miss response as-is."""
        response = client.get("/v1/cache/unknown", headers=AUTH)

        assert response.status_code == 404

    def test_handler_response_headers_preserved(self, client, handler):
        """Headers chosen by the handler reach the client."""
        async def retrieve_file(key):
            return Response(content=b"x", status_code=203, headers={"X-Cache-Source": "memory"})

        handler.retrieve_file = retrieve_file
        response = client.get("/v1/cache/anything", headers=AUTH)

        assert response.status_code == 203
        assert response.headers["X-Cache-Source"] == "memory"

    def test_key_passed_verbatim(self, client, handler):
        """Keys are opaque strings, not parsed by the gateway."""
        key = "not-a-hash.v2~tmp"

        client.put(f"/v1/cache/{key}", content=b"data", headers=AUTH)

        assert list(handler.artifacts) == [key]

    @pytest.mark.parametrize("method", ["get", "put"])
    def test_missing_authorization_is_401(self, client, handler, method):
        """Requests without credentials are rejected before the handler runs."""
        response = getattr(client, method)("/v1/cache/abc123")

        assert response.status_code == 401
        assert response.headers["WWW-Authenticate"] == "Bearer"
        assert response.json()["code"] == "AUTHENTICATION_ERROR"
        assert handler.artifacts == {}

    @pytest.mark.parametrize("method", ["get", "put"])
    def test_wrong_token_is_403(self, client, handler, method):
        """Requests with another bearer token are rejected."""
        response = getattr(client, method)("/v1/cache/abc123", headers={"Authorization": "Bearer wrong"})

        assert response.status_code == 403
        assert response.json()["code"] == "AUTHORIZATION_ERROR"
        assert handler.artifacts == {}

    def test_basic_scheme_is_401(self, client):
        """Non-bearer schemes count as missing credentials."""
        response = client.get("/v1/cache/abc123", headers={"Authorization": f"Basic {TOKEN}"})

        assert response.status_code == 401

    def test_no_docs_routes(self, client):
        """Only the cache routes are exposed."""
        assert client.get("/docs", headers=AUTH).status_code == 404
        assert client.get("/openapi.json", headers=AUTH).status_code == 404

    def test_request_metrics(self, client, service):
        """Served requests are counted per route and status."""
        client.put("/v1/cache/abc123", content=b"hello", headers=AUTH)
        client.get("/v1/cache/abc123")

        assert service.metrics.get_sample_value(
            "cache_gateway_requests_total",
            {"route": "PUT /v1/cache/{key}", "status_code": "200"},
        ) == 1.0
        assert service.metrics.get_sample_value(
            "cache_gateway_requests_total",
            {"route": "GET /v1/cache/{key}", "status_code": "401"},
        ) == 1.0
        assert service.metrics.get_sample_value(
            "cache_gateway_backend_duration_seconds_count",
            {"operation": "store_file"},
        ) == 1.0


class TestBackendFailures:
    """Handler failures map to structured 5xx responses."""

    def _client(self, handler, **config) -> TestClient:
        service = CacheGatewayService(handler, TOKEN, GatewayConfig(**config))
        return TestClient(service.app)

    def test_unexpected_exception_is_rejected(self):
        """Arbitrary handler exceptions become BACKEND_REJECTED."""
        client = self._client(FailingHandler(RuntimeError("disk full")))

        response = client.put("/v1/cache/abc", content=b"x", headers=AUTH)

        assert response.status_code == 500
        body = response.json()
        assert body["code"] == "BACKEND_REJECTED"
        assert body["details"] == {"operation": "store_file"}

    def test_unavailable_backend_is_503(self):
        """BackendUnavailableError keeps its own status."""
        client = self._client(FailingHandler(BackendUnavailableError("bucket unreachable")))

        response = client.get("/v1/cache/abc", headers=AUTH)

        assert response.status_code == 503
        assert response.json()["code"] == "BACKEND_UNAVAILABLE"
        assert response.json()["message"] == "bucket unreachable"

    def test_handler_http_exception_passes_through(self):
        """HTTPException raised by a handler keeps the handler's status."""
        client = self._client(FailingHandler(HTTPException(status_code=404, detail="Cache miss")))

        response = client.get("/v1/cache/abc", headers=AUTH)

        assert response.status_code == 404
        assert response.json() == {"detail": "Cache miss"}

    def test_slow_backend_times_out(self):
        """Handler calls are bounded by the configured deadline."""
        client = self._client(SlowHandler(), backend_timeout_seconds=0.05)

        response = client.get("/v1/cache/abc", headers=AUTH)

        assert response.status_code == 504
        body = response.json()
        assert body["code"] == "BACKEND_TIMEOUT"
        assert body["details"]["operation"] == "retrieve_file"

    def test_backend_errors_counted(self):
        """Failures are counted per operation and error code."""
        service = CacheGatewayService(FailingHandler(RuntimeError("boom")), TOKEN, GatewayConfig())
        client = TestClient(service.app)

        client.get("/v1/cache/abc", headers=AUTH)

        assert service.metrics.get_sample_value(
            "cache_gateway_backend_errors_total",
            {"operation": "retrieve_file", "code": "BACKEND_REJECTED"},
        ) == 1.0
