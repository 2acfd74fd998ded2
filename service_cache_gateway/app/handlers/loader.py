"""
Cache handler resolution and loading.

A locator is resolved exactly once per session start, in this order:

1. a name from the built-in registry (``"local"``);
2. a path to a ``.py`` file, absolute or relative to the workspace root;
3. an importable dotted module path.

Forms 2 and 3 accept a ``:factory`` suffix that overrides the configured
factory attribute name.
"""

import hashlib
import importlib
import importlib.util
import inspect
from pathlib import Path
from types import ModuleType
from typing import Callable, Dict, Optional, Tuple

from shared.errors import HandlerLoadError
from shared.logging import get_logger

from .contract import DISABLED, CacheHandler, ExecutionContext, FactoryResult, PluginOptions, is_cache_handler
from .local import create_local_handler


HandlerFactory = Callable[[PluginOptions, ExecutionContext], FactoryResult]

BUILTIN_HANDLERS: Dict[str, HandlerFactory] = {
    "local": create_local_handler,
}


class HandlerLoader:
    """Resolves a handler locator to a factory and invokes it."""

    def __init__(self, factory_attribute: str = "create_handler",
                 registry: Optional[Dict[str, HandlerFactory]] = None):
        self.factory_attribute = factory_attribute
        self.registry = dict(BUILTIN_HANDLERS if registry is None else registry)
        self.logger = get_logger("cache_gateway.handler_loader")

    def _split_locator(self, locator: str) -> Tuple[str, Optional[str]]:
        # Windows drive letters ("C:\...") also contain a colon.
        head, sep, tail = locator.rpartition(":")
        if sep and tail.isidentifier() and len(head) > 1:
            return head, tail
        return locator, None

    def _import_from_path(self, path: Path) -> ModuleType:
        digest = hashlib.sha1(str(path).encode("utf-8")).hexdigest()[:12]
        module_name = f"_cache_gateway_handler_{path.stem}_{digest}"
        spec = importlib.util.spec_from_file_location(module_name, path)
        if spec is None or spec.loader is None:
            raise ImportError(f"cannot build an import spec for {path}")
        module = importlib.util.module_from_spec(spec)
        spec.loader.exec_module(module)
        return module

    def resolve(self, locator: str, context: ExecutionContext) -> HandlerFactory:
        """Resolve a locator to a handler factory without calling it."""
        if not locator or not locator.strip():
            raise HandlerLoadError(locator, "empty handler locator")

        if locator in self.registry:
            return self.registry[locator]

        target, attribute = self._split_locator(locator)
        attribute = attribute or self.factory_attribute

        try:
            if target.endswith(".py"):
                path = Path(target)
                if not path.is_absolute():
                    path = Path(context.workspace_root) / path
                path = path.resolve()
                if not path.is_file():
                    raise HandlerLoadError(locator, f"handler file not found: {path}")
                module = self._import_from_path(path)
            else:
                module = importlib.import_module(target)
        except HandlerLoadError:
            raise
        except Exception as exc:
            raise HandlerLoadError(locator, f"import failed: {exc}") from exc

        factory = getattr(module, attribute, None)
        if not callable(factory):
            raise HandlerLoadError(
                locator,
                f"module does not export a callable {attribute!r}",
                {"factory": attribute},
            )
        return factory

    async def load(self, options: PluginOptions, context: ExecutionContext) -> Optional[CacheHandler]:
        """Load the handler for ``options``.

        Returns the handler instance, or ``None`` when the factory opted out.
        Raises ``HandlerLoadError`` for every other outcome.
        """
        locator = options.custom_cache_handler
        factory = self.resolve(locator, context)

        try:
            result = factory(options, context)
            if inspect.isawaitable(result):
                result = await result
        except Exception as exc:
            raise HandlerLoadError(locator, f"factory raised {type(exc).__name__}: {exc}") from exc

        if result is None or result is DISABLED:
            self.logger.info("Cache handler disabled for this run", locator=locator)
            return None

        if not is_cache_handler(result):
            raise HandlerLoadError(
                locator,
                "factory result does not provide store_file/retrieve_file",
                {"result_type": type(result).__name__},
            )

        self.logger.info("Cache handler loaded", locator=locator, handler=type(result).__name__)
        return result
