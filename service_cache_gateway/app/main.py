"""
Orchestrator hooks for the self-hosted cache gateway.

``pre_tasks_execution`` starts a gateway before a task run and
``post_tasks_execution`` stops it afterwards. Both receive the same options
object; its identity pairs the two calls. Orchestrators that can carry a
value between the hooks should use ``start_session`` / ``CacheSession.close``
from ``app.lifecycle`` directly instead.
"""

import asyncio
import os
import weakref
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Union

from shared.config import GatewayConfig, get_config
from shared.logging import get_logger

from .handlers.contract import ExecutionContext, PluginOptions
from .lifecycle import CacheSession, ServerInfo, start_session


logger = get_logger("cache_gateway.hooks")

OptionsLike = Union[PluginOptions, Mapping[str, Any]]
ContextLike = Union[ExecutionContext, Mapping[str, Any]]


@dataclass
class RegisteredSession:
    """Registry entry; holds the options object so its id stays unique."""
    options: Any
    session: CacheSession
    config: GatewayConfig


class SessionRegistry:
    """Live sessions keyed by the identity of the options they were started with."""

    def __init__(self):
        self._sessions: Dict[int, RegisteredSession] = {}
        # Dropped once no caller holds or awaits the lock.
        self._locks: "weakref.WeakValueDictionary[int, asyncio.Lock]" = weakref.WeakValueDictionary()

    def lock_for(self, options: Any) -> asyncio.Lock:
        """Lock serialising start and stop for one options object."""
        lock = self._locks.get(id(options))
        if lock is None:
            lock = asyncio.Lock()
            self._locks[id(options)] = lock
        return lock

    def get(self, options: Any) -> Optional[RegisteredSession]:
        return self._sessions.get(id(options))

    def add(self, entry: RegisteredSession) -> None:
        self._sessions[id(entry.options)] = entry

    def pop(self, options: Any) -> Optional[RegisteredSession]:
        return self._sessions.pop(id(options), None)

    def __len__(self) -> int:
        return len(self._sessions)


session_registry = SessionRegistry()


def _coerce_options(options: OptionsLike) -> PluginOptions:
    if isinstance(options, PluginOptions):
        return options
    return PluginOptions.model_validate(dict(options))


def _coerce_context(context: ContextLike) -> ExecutionContext:
    if isinstance(context, ExecutionContext):
        return context
    return ExecutionContext.model_validate(dict(context))


def publish_server_info(info: ServerInfo, config: GatewayConfig) -> None:
    """Expose the gateway to task runners through the process environment."""
    os.environ[config.server_url_env] = info.url
    os.environ[config.access_token_env] = info.token


def unpublish_server_info(info: ServerInfo, config: GatewayConfig) -> None:
    """Remove published values, leaving entries another session overwrote."""
    for name, value in ((config.server_url_env, info.url), (config.access_token_env, info.token)):
        if os.environ.get(name) == value:
            del os.environ[name]


async def _stop_entry(entry: RegisteredSession) -> None:
    try:
        await entry.session.close()
    finally:
        if entry.config.publish_environment:
            unpublish_server_info(entry.session.info, entry.config)


async def pre_tasks_execution(options: OptionsLike, context: ContextLike,
                              config: Optional[GatewayConfig] = None,
                              registry: Optional[SessionRegistry] = None) -> Optional[ServerInfo]:
    """Start the gateway for a task run.

    Returns the published ``ServerInfo``, or ``None`` when the cache handler
    opted out. Handler load failures propagate and must abort the run.
    """
    if registry is None:
        registry = session_registry
    config = config or get_config()

    async with registry.lock_for(options):
        stale = registry.pop(options)
        if stale is not None:
            logger.warning("Replacing a gateway session that was never stopped", url=stale.session.info.url)
            await _stop_entry(stale)

        session = await start_session(_coerce_options(options), _coerce_context(context), config)
        if session is None:
            return None

        if config.publish_environment:
            publish_server_info(session.info, config)
        registry.add(RegisteredSession(options=options, session=session, config=config))
        return session.info


async def post_tasks_execution(options: OptionsLike,
                               registry: Optional[SessionRegistry] = None) -> None:
    """Stop the gateway started for ``options``; a no-op when none is running."""
    if registry is None:
        registry = session_registry

    async with registry.lock_for(options):
        entry = registry.pop(options)
        if entry is None:
            return
        await _stop_entry(entry)
