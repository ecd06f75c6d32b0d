#!/usr/bin/env python3
"""Headless browser agent: connects to the bridge and serves a static page probe.

Useful for exercising the MCP tools without a browser:

    python3 scripts/run_clueprint_agent.py --url https://example.com --title Example
"""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import logging
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

from mcp_servers.clueprint.agent import SessionManager, StaticPageProbe  # noqa: E402
from mcp_servers.clueprint.config import AgentConfig  # noqa: E402


def _parse_args(argv: list[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    p.add_argument("--url", default="about:blank")
    p.add_argument("--title", default="")
    p.add_argument("--server", default=None, help="Bridge URL (default: from CLUEPRINT_HOST/CLUEPRINT_PORT)")
    return p.parse_args(argv)


async def _run(args: argparse.Namespace) -> None:
    config = AgentConfig.from_env()
    if args.server:
        config = dataclasses.replace(config, server_url=args.server)
    session = SessionManager(config=config, probe=StaticPageProbe(url=args.url, title=args.title))
    await session.start()
    if not await session.wait_connected(timeout=config.reconnect_delay_s + 2.0):
        logging.getLogger("mcp.clueprint.agent").warning(
            "bridge not reachable at %s yet; retrying every %.1fs", config.server_url, config.reconnect_delay_s
        )
    try:
        await asyncio.Event().wait()
    finally:
        await session.stop()


def main(argv: list[str] | None = None) -> int:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
    args = _parse_args(sys.argv[1:] if argv is None else argv)
    try:
        asyncio.run(_run(args))
    except KeyboardInterrupt:
        pass
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
