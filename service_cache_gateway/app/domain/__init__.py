"""
Domain utilities for the cache gateway.

Includes cross-cutting request processing helpers that do not belong to
handlers or transport-specific layers.
"""

from .auth_middleware import SessionAuthGate

__all__ = [
    "SessionAuthGate",
]
