"""
Cache handler contract, loader, and the built-in local-directory handler.

A handler module exports a factory (``create_handler`` by default) taking
``(PluginOptions, ExecutionContext)`` and returning a handler, or ``None`` /
``DISABLED`` to keep the gateway off for the run.
"""

from .contract import DISABLED, CacheHandler, ExecutionContext, PluginOptions
from .loader import HandlerLoader
from .local import LocalDirectoryHandler

__all__ = [
    "DISABLED",
    "CacheHandler",
    "ExecutionContext",
    "PluginOptions",
    "HandlerLoader",
    "LocalDirectoryHandler",
]
