#!/usr/bin/env python3
"""
Run a cache gateway session by hand, outside of an orchestrator run.

Loads the given cache handler, prints the gateway URL and bearer token as
JSON, and serves until interrupted. Useful for poking a handler with curl
while developing it.
"""

import argparse
import asyncio
import json
import os
import sys
from pathlib import Path
from typing import Dict, List

from service_cache_gateway.app.handlers.contract import ExecutionContext, PluginOptions
from service_cache_gateway.app.lifecycle import start_session
from shared.config import get_config


def _parse_passthrough(pairs: List[str]) -> Dict[str, str]:
    options: Dict[str, str] = {}
    for pair in pairs:
        name, sep, value = pair.partition("=")
        if not sep or not name:
            raise argparse.ArgumentTypeError(f"expected NAME=VALUE, got {pair!r}")
        options[name] = value
    return options


async def serve(handler: str, workspace_root: Path, passthrough: Dict[str, str]) -> int:
    """Start a session and keep it open until cancelled."""
    options = PluginOptions(customCacheHandler=handler, **passthrough)
    context = ExecutionContext(workspaceRoot=workspace_root)
    session = await start_session(options, context, get_config())
    if session is None:
        print("[cache-gateway] handler disabled itself; nothing to serve", file=sys.stderr)
        return 0

    print(json.dumps({"url": session.info.url, "token": session.info.token}), flush=True)
    try:
        await session.serve_task
    finally:
        await session.close()
    return 0


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Serve a self-hosted cache gateway session.")
    parser.add_argument("--handler", default="local", help="Cache handler locator (registry name, module[:factory] or path.py)")
    parser.add_argument("--workspace-root", type=Path, default=Path(os.getcwd()), help="Workspace root passed to the handler factory")
    parser.add_argument("--option", action="append", default=[], metavar="NAME=VALUE", help="Handler-specific option (repeatable)")
    return parser.parse_args()


def main() -> int:
    args = _parse_args()
    try:
        return asyncio.run(serve(args.handler, args.workspace_root, _parse_passthrough(args.option)))
    except KeyboardInterrupt:
        return 130
    except Exception as exc:  # pragma: no cover - CLI surface
        print(f"[cache-gateway] failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
