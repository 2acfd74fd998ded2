"""
Built-in cache handler storing each artifact as a file in a local directory.
"""

import hashlib
import os
import tempfile
from pathlib import Path
from typing import Optional

from fastapi import Request, Response
from fastapi.responses import FileResponse, JSONResponse

from shared.errors import BackendRejectedError, BackendUnavailableError
from shared.logging import get_logger

from .contract import ExecutionContext, PluginOptions


DEFAULT_CACHE_SUBDIR = Path(".nx") / "self-hosted-cache"
# Longer keys are stored under a digest; mkstemp adds a prefix and suffix
# around the name, so this stays well below the usual 255-byte limit.
MAX_FILENAME_BYTES = 200
HASHED_PREFIX = "sha256-"


class LocalDirectoryHandler:
    """Stores artifacts under ``root``, one file per cache key.

    A second ``store_file`` for the same key replaces the previous artifact.
    """

    def __init__(self, root: Path):
        self.root = Path(root)
        self.logger = get_logger("cache_gateway.local_handler")

    def _path_for(self, key: str) -> Path:
        if not key or key in {".", ".."} or any(sep in key for sep in ("/", "\\", "\x00")):
            raise BackendRejectedError("Invalid cache key", {"key": key})
        if len(key.encode("utf-8")) > MAX_FILENAME_BYTES or key.startswith(HASHED_PREFIX):
            return self.root / (HASHED_PREFIX + hashlib.sha256(key.encode("utf-8")).hexdigest())
        return self.root / key

    async def store_file(self, key: str, request: Request) -> None:
        target = self._path_for(key)
        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise BackendUnavailableError(f"Cache directory not writable: {exc}") from exc

        fd, tmp_name = tempfile.mkstemp(prefix=f".{target.name}.", dir=self.root)
        try:
            with os.fdopen(fd, "wb") as file_obj:
                async for chunk in request.stream():
                    file_obj.write(chunk)
            os.replace(tmp_name, target)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

        self.logger.debug("Stored artifact", key=key, bytes=target.stat().st_size)

    async def retrieve_file(self, key: str) -> Response:
        path = self._path_for(key)
        if not path.is_file():
            return JSONResponse(status_code=404, content={"message": "Cache miss", "key": key})
        return FileResponse(path, media_type="application/octet-stream")


def create_local_handler(options: PluginOptions, context: ExecutionContext) -> LocalDirectoryHandler:
    """Factory registered under the ``local`` locator.

    The directory comes from the ``cacheDirectory`` option, relative paths
    resolved against the workspace root.
    """
    configured: Optional[str] = options.passthrough("cacheDirectory")
    root = Path(configured) if configured else DEFAULT_CACHE_SUBDIR
    if not root.is_absolute():
        root = Path(context.workspace_root) / root
    return LocalDirectoryHandler(root)
