"""
Session lifecycle: load the handler, bind a loopback listener on an
ephemeral port, serve the gateway, and tear everything down again.

``start_session`` returns a ``CacheSession`` (or ``None`` when the handler
opted out); the caller keeps it and calls ``close()`` when the run is over.
"""

import asyncio
import contextlib
import inspect
import ipaddress
import socket
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

import uvicorn

from shared.config import GatewayConfig, get_config
from shared.errors import GatewayStartupError
from shared.logging import get_logger, session_id_var
from shared.metrics import MetricsCollector, get_metrics_collector

from .auth.tokens import issue_session_token
from .handlers.contract import CacheHandler, ExecutionContext, PluginOptions
from .handlers.loader import HandlerLoader
from .service import CacheGatewayService


logger = get_logger("cache_gateway.lifecycle")

STARTUP_POLL_INTERVAL = 0.01
# Extra time past the graceful window before the serve task is cancelled.
FORCE_EXIT_MARGIN = 1.0


class SessionState(str, Enum):
    """States of a running gateway session; one exists only once listening."""
    LISTENING = "listening"
    CLOSING = "closing"
    CLOSED = "closed"


@dataclass(frozen=True)
class ServerInfo:
    """Connection details task runners need to reach the gateway."""
    url: str
    token: str
    host: str
    port: int


def format_base_url(host: str, port: int) -> str:
    """Build ``http://host:port``, bracketing IPv6 literals."""
    try:
        address = ipaddress.ip_address(host.split("%", 1)[0])
    except ValueError:
        address = None
    if address is not None and address.version == 6:
        return f"http://[{host}]:{port}"
    return f"http://{host}:{port}"


def bind_listener(host: str) -> socket.socket:
    """Bind a TCP socket on ``host`` with an OS-assigned port."""
    family, socktype, proto, _, sockaddr = socket.getaddrinfo(
        host, 0, type=socket.SOCK_STREAM, flags=socket.AI_PASSIVE
    )[0]
    sock = socket.socket(family, socktype, proto)
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind(sockaddr)
    except OSError:
        sock.close()
        raise
    return sock


async def release_handler(handler: Any) -> None:
    """Call the handler's optional ``close`` hook, sync or async."""
    close = getattr(handler, "close", None)
    if not callable(close):
        return
    try:
        result = close()
        if inspect.isawaitable(result):
            await result
    except Exception as exc:
        logger.error("Cache handler release failed", error=str(exc), exc_info=True)


class _EmbeddedServer(uvicorn.Server):
    """uvicorn server that leaves the host process's signal handling alone."""

    def install_signal_handlers(self) -> None:
        pass

    @contextlib.contextmanager
    def capture_signals(self):
        yield


class CacheSession:
    """A running gateway: listener, serve task, and the cache handler."""

    def __init__(self, session_id: str, handler: CacheHandler, service: CacheGatewayService,
                 server: uvicorn.Server, serve_task: "asyncio.Task[None]",
                 sock: socket.socket, info: ServerInfo, config: GatewayConfig):
        self.session_id = session_id
        self.handler = handler
        self.service = service
        self.server = server
        self.serve_task = serve_task
        self.sock = sock
        self.info = info
        self.config = config
        self.state = SessionState.LISTENING
        self._close_lock = asyncio.Lock()

    @property
    def metrics(self) -> MetricsCollector:
        return self.service.metrics

    @property
    def closed(self) -> bool:
        return self.state == SessionState.CLOSED

    async def close(self) -> None:
        """Stop accepting, drain in-flight requests, then release the handler.

        Safe to call more than once.
        """
        async with self._close_lock:
            if self.state == SessionState.CLOSED:
                return
            self.state = SessionState.CLOSING
            try:
                await stop_server(self.server, self.serve_task, self.config.shutdown_grace_seconds)
            finally:
                self.sock.close()
                await release_handler(self.handler)
                self.state = SessionState.CLOSED
                logger.info("Cache gateway closed", session_id=self.session_id, url=self.info.url)


async def stop_server(server: uvicorn.Server, serve_task: "asyncio.Task[None]",
                      grace_seconds: float) -> None:
    """Ask uvicorn to exit, then force it if it outlives the grace period."""
    if serve_task.done():
        return
    server.should_exit = True
    try:
        await asyncio.wait_for(asyncio.shield(serve_task), grace_seconds + FORCE_EXIT_MARGIN)
    except asyncio.TimeoutError:
        logger.warning("Graceful shutdown timed out, forcing exit", grace_seconds=grace_seconds)
        server.force_exit = True
        serve_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await serve_task
    finally:
        # uvicorn skips its own shutdown when asked to exit during startup.
        for listener in getattr(server, "servers", []):
            listener.close()


async def _wait_until_started(server: uvicorn.Server, serve_task: "asyncio.Task[None]",
                              timeout: float) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not server.started:
        if serve_task.done():
            exc = None if serve_task.cancelled() else serve_task.exception()
            raise GatewayStartupError(
                "Listener exited during startup",
                {"error": repr(exc) if exc else None},
            ) from exc
        if loop.time() >= deadline:
            await stop_server(server, serve_task, 0.0)
            raise GatewayStartupError(
                f"Listener did not start within {timeout:g}s",
                {"timeout_seconds": timeout},
            )
        await asyncio.sleep(STARTUP_POLL_INTERVAL)


async def start_session(options: PluginOptions, context: ExecutionContext,
                        config: Optional[GatewayConfig] = None,
                        loader: Optional[HandlerLoader] = None) -> Optional[CacheSession]:
    """Load the handler and bring up a gateway for it.

    Returns ``None`` when the handler factory opted out. Handler load
    failures propagate as ``HandlerLoadError``; listener failures release
    the handler and raise ``GatewayStartupError``.
    """
    config = config or get_config()
    loader = loader or HandlerLoader(config.handler_factory)

    handler = await loader.load(options, context)
    if handler is None:
        return None

    token = issue_session_token()
    session_id = uuid.uuid4().hex[:12]
    context_token = session_id_var.set(session_id)
    sock: Optional[socket.socket] = None
    serve_task: Optional["asyncio.Task[None]"] = None
    try:
        service = CacheGatewayService(handler, token, config, metrics=get_metrics_collector("cache_gateway"))
        try:
            sock = bind_listener(config.host)
        except OSError as exc:
            raise GatewayStartupError(f"Cannot bind {config.host}: {exc}") from exc

        server = _EmbeddedServer(uvicorn.Config(
            service.app,
            lifespan="off",
            log_config=None,
            log_level=config.log_level.lower(),
            access_log=False,
            timeout_graceful_shutdown=config.shutdown_grace_seconds,
        ))
        # The serve task copies the current context, so request logs carry session_id.
        serve_task = asyncio.create_task(server.serve(sockets=[sock]))
        await _wait_until_started(server, serve_task, config.startup_timeout_seconds)
    except BaseException:
        if serve_task is not None and not serve_task.done():
            await stop_server(server, serve_task, 0.0)
        if sock is not None:
            sock.close()
        await release_handler(handler)
        raise
    finally:
        session_id_var.reset(context_token)

    host, port = sock.getsockname()[:2]
    info = ServerInfo(url=format_base_url(host, port), token=token, host=host, port=port)
    logger.info("Cache gateway listening", session_id=session_id, url=info.url)
    return CacheSession(session_id, handler, service, server, serve_task, sock, info, config)
