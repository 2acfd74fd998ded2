"""
Cache handler capability contract and the values passed to handler factories.
"""

from pathlib import Path
from typing import Any, Optional, Protocol, Union, runtime_checkable

from fastapi import Request, Response
from pydantic import BaseModel, ConfigDict, Field


class PluginOptions(BaseModel):
    """Options the orchestrator hands to both hooks.

    ``custom_cache_handler`` locates the handler module; every other field is
    passed through to the handler factory untouched.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    custom_cache_handler: str = Field(alias="customCacheHandler")

    def passthrough(self, name: str, default: Any = None) -> Any:
        """Read a handler-specific option by the name it was passed under."""
        extra = self.model_extra or {}
        return extra.get(name, default)


class ExecutionContext(BaseModel):
    """Orchestrator execution context, passed opaquely to the handler factory."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    workspace_root: Path = Field(alias="workspaceRoot")


@runtime_checkable
class CacheHandler(Protocol):
    """Storage capability a cache handler module provides.

    ``close`` is optional; when present it is called once when the session
    stops, and may be a coroutine function.
    """

    async def store_file(self, key: str, request: Request) -> None:
        ...

    async def retrieve_file(self, key: str) -> Response:
        ...


class _Disabled:
    """Sentinel a factory returns to opt out of the gateway for this run."""

    _instance: Optional["_Disabled"] = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "DISABLED"

    def __bool__(self) -> bool:
        return False


DISABLED = _Disabled()

FactoryResult = Union[CacheHandler, _Disabled, None]


def is_cache_handler(candidate: Any) -> bool:
    """Check the capability contract without relying on isinstance quirks."""
    return callable(getattr(candidate, "store_file", None)) and callable(
        getattr(candidate, "retrieve_file", None)
    )
