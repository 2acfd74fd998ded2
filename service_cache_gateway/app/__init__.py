"""
Self-hosted cache gateway for build orchestrators.

The gateway lives for exactly one task run. It exposes a user-supplied
cache handler over two bearer-authenticated loopback routes:

- PUT /v1/cache/{key}: store an artifact
- GET /v1/cache/{key}: retrieve an artifact

Structure:
- app.main: orchestrator hooks (pre/post task execution) and the session registry.
- app.lifecycle: session start/stop around an embedded uvicorn server.
- app.service: FastAPI app wiring for one session.
- app.routes: the cache routes and handler call deadlines.
- app.domain: the session auth gate.
- app.auth: session token issuing.
- app.handlers: handler contract, loader, and the built-in local handler.
"""
